import json
from datetime import date, timedelta

from yubarta.models import MarketplaceListing
from yubarta.services.negotiation import (
    Clause,
    StructuredPrice,
    calculate_delivery_periods,
    normalize_price_json,
    per_delivery_quantity,
    validate_listing,
    validate_offer,
    validate_purchase_offer,
    validate_requirement,
)
from yubarta.tests.conftest import days, make_listing, make_offer, make_purchase_offer, make_requirement


# ---------------------------------------------------------------------------
# Cláusulas y precio estructurado
# ---------------------------------------------------------------------------

def test_rejected_clause_needs_counter_proposal():
    assert Clause(accepted=True).is_valid()
    assert not Clause(accepted=False).is_valid()
    assert not Clause(accepted=False, counter_proposal='   ').is_valid()
    assert Clause(accepted=False, counter_proposal='Humedad máxima 8%').is_valid()


def test_structured_price_total_is_recomputed():
    raw = json.dumps({'variables': [{'name': 'Base', 'value': 1200.5}, {'name': 'Flete', 'value': '99.5'}],
                      'total': 5})
    price = StructuredPrice.parse(raw)
    assert not price.is_consistent()
    assert price.recompute().total == 1300.0
    assert json.loads(normalize_price_json(raw))['total'] == 1300.0


def test_plain_text_price_is_left_alone():
    assert StructuredPrice.parse('Precio de bolsa menos 10%') is None
    assert normalize_price_json('Precio de bolsa menos 10%') == 'Precio de bolsa menos 10%'


# ---------------------------------------------------------------------------
# Periodos de entrega
# ---------------------------------------------------------------------------

def test_monthly_periods_are_deterministic():
    first = calculate_delivery_periods('2024-01-01', '2024-03-01', 'Mensual')
    assert first == 3
    assert calculate_delivery_periods('2024-01-01', '2024-03-01', 'Mensual') == first


def test_delivery_period_edge_cases():
    assert calculate_delivery_periods(None, '2024-03-01', 'Mensual') == 1
    assert calculate_delivery_periods('2024-01-01', '2024-12-31', 'Única Vez') == 1
    assert calculate_delivery_periods('2024-03-01', '2024-03-01', 'Diario') == 0
    assert calculate_delivery_periods('2024-03-05', '2024-03-01', 'Diario') == 0


def test_delivery_periods_per_frequency():
    assert calculate_delivery_periods('2024-01-01', '2024-01-10', 'Diario') == 10
    assert calculate_delivery_periods('2024-01-01', '2024-01-29', 'Semanal') == 5
    assert calculate_delivery_periods('2024-01-01', '2024-01-29', 'Quincenal') == 3
    assert calculate_delivery_periods('2024-01-15', '2024-12-31', 'Trimestral') == 4
    assert calculate_delivery_periods('2024-06-01', '2026-01-01', 'Anual') == 3


def test_per_delivery_quantity():
    assert per_delivery_quantity(300, '2024-01-01', '2024-03-01', 'Mensual') == 100
    assert per_delivery_quantity(300, '2024-03-01', '2024-03-01', 'Mensual') == 300


# ---------------------------------------------------------------------------
# Validaciones
# ---------------------------------------------------------------------------

def test_valid_listing_has_no_errors():
    assert validate_listing(make_listing()) == []


def test_listing_validation_messages():
    listing = make_listing(quantity=0, description='', photos=[], valid_from=days(-1),
                           management_fee_accepted=False,
                           price_structure=json.dumps({'variables': [{'name': 'Base', 'value': 0}]}))
    errors = validate_listing(listing)
    assert 'La cantidad disponible debe ser mayor a 0' in errors
    assert 'La descripción es obligatoria' in errors
    assert 'Debe adjuntar al menos una foto del material' in errors
    assert 'La fecha de inicio no puede ser anterior a hoy' in errors
    assert 'El precio total debe ser mayor a 0' in errors
    assert 'Debe aceptar la comisión de gestión de la plataforma' in errors


def test_requirement_end_before_start():
    req = make_requirement(vigencia_inicio=days(10), vigencia_fin=days(5))
    assert validate_requirement(req) == ['La fecha de fin no puede ser anterior a la fecha de inicio']


def test_offer_rejected_clause_without_text_is_blocked():
    req = make_requirement()
    offer = make_offer('M1-REQ-x', 10, acepta_especificaciones_calidad=False)
    assert 'Debe justificar la contrapropuesta de especificaciones de calidad' in validate_offer(offer, req)

    offer.contrapropuesta_calidad = 'Humedad máxima 8%'
    assert validate_offer(offer, req) == []


def test_offer_cannot_outlive_requirement():
    req = make_requirement(vigencia_fin=days(30))
    offer = make_offer('M1-REQ-x', 10, fecha_fin_vigencia=days(40))
    errors = validate_offer(offer, req)
    assert any('fin del requerimiento' in e for e in errors)


def test_offer_cannot_start_before_requirement():
    req = make_requirement(vigencia_inicio=days(10))
    offer = make_offer('M1-REQ-x', 10, fecha_inicio_vigencia=days(5))
    assert any('no puede ser anterior a' in e for e in validate_offer(offer, req))


def test_offer_requires_vehicle_and_penalty():
    req = make_requirement()
    offer = make_offer('M1-REQ-x', 10, tipo_vehiculo='', penalty_fee_accepted=False)
    errors = validate_offer(offer, req)
    assert 'Debe indicar el tipo de vehículo' in errors
    assert 'Debe aceptar la penalidad por incumplimiento' in errors


def test_purchase_offer_quantity_bounded_by_listing():
    listing = make_listing(quantity=500)
    assert validate_purchase_offer(make_purchase_offer('L', 500), listing) == []
    assert any('supera la disponible' in e for e in validate_purchase_offer(make_purchase_offer('L', 501), listing))
    assert 'La cantidad solicitada debe ser mayor a 0' in validate_purchase_offer(make_purchase_offer('L', 0), listing)


def test_purchase_offer_price_counter_needs_explanation():
    listing = make_listing()
    po = make_purchase_offer('L', 100, acepta_precio=False)
    assert 'Debe justificar la contrapropuesta de precio' in validate_purchase_offer(po, listing)
    po.price_explanation = 'El flete es menor desde Barranquilla'
    assert validate_purchase_offer(po, listing) == []


def test_purchase_offer_quality_counter_needs_text():
    po = make_purchase_offer('L', 100, acepta_calidad=False, contrapropuesta_calidad='')
    assert 'Debe describir la contrapropuesta de calidad' in validate_purchase_offer(po, make_listing())


def test_validations_accept_explicit_today():
    today = date(2030, 1, 1)
    listing = make_listing(valid_from='2030-01-01', valid_until='2030-02-01')
    assert validate_listing(listing, today=today) == []
    assert validate_listing(listing, today=today + timedelta(days=1)) != []
    assert isinstance(listing, MarketplaceListing)
