# ==============================================================================
# NEGOCIACIÓN - Cláusulas, precio estructurado, periodos de entrega y
# validaciones previas al envío
# ==============================================================================
# Todas las validaciones retornan una LISTA de mensajes en español.
# Lista vacía = se puede enviar. Los servicios convierten una lista no vacía
# en ValidationError sin tocar el almacenamiento.
# ==============================================================================

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from yubarta.models import MarketplaceListing, Offer, PurchaseOffer, Requirement


# Frecuencias de entrega
FREQ_ONCE = 'Única Vez'
FREQ_DAILY = 'Diario'
FREQ_WEEKLY = 'Semanal'
FREQ_BIWEEKLY = 'Quincenal'
FREQ_MONTHLY = 'Mensual'
FREQ_QUARTERLY = 'Trimestral'
FREQ_YEARLY = 'Anual'


# ==============================================================================
# CLÁUSULAS
# ==============================================================================

@dataclass
class Clause:
    """
    Término negociable: se acepta tal cual o se contrapropone.

    Rechazar sin contrapropuesta no es válido.
    """
    accepted: bool = True
    counter_proposal: Optional[str] = None

    def is_valid(self) -> bool:
        if self.accepted:
            return True
        return bool(self.counter_proposal and str(self.counter_proposal).strip())


# Cláusulas de una Oferta: (etiqueta, campo acepta, campo contrapropuesta)
OFFER_CLAUSES = (
    ('especificaciones de calidad', 'acepta_especificaciones_calidad', 'contrapropuesta_calidad'),
    ('condiciones logísticas', 'acepta_condiciones_logisticas', 'contrapropuesta_logistica'),
    ('lugar de entrega', 'acepta_lugar_entrega', 'contrapropuesta_logistica'),
    ('fórmula de precio', 'acepta_formula_precio', 'contrapropuesta_formula_precio'),
    ('condiciones de pago', 'acepta_condiciones_pago', 'contrapropuesta_condiciones_pago'),
    ('método de pago', 'acepta_metodo_pago', 'contrapropuesta_metodo_pago'),
)


def offer_clauses(offer: Offer) -> Dict[str, Clause]:
    return {
        label: Clause(getattr(offer, accepted), getattr(offer, counter))
        for label, accepted, counter in OFFER_CLAUSES
    }


# ==============================================================================
# PRECIO ESTRUCTURADO
# ==============================================================================

def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class PriceVariable:
    """Componente del precio (ej. 'Precio base', 'Flete')."""
    name: str
    value: float = 0.0
    original_value: Optional[float] = None
    is_new: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = {'name': self.name, 'value': self.value, 'isNew': self.is_new}
        if self.original_value is not None:
            d['originalValue'] = self.original_value
        return d


@dataclass
class StructuredPrice:
    """
    Precio como suma de variables.

    El total guardado nunca se toma del cliente: recompute() lo deriva de
    las variables antes de enviar.
    """
    variables: List[PriceVariable] = field(default_factory=list)
    total: float = 0.0
    observation: Optional[str] = None

    @classmethod
    def parse(cls, raw: Any) -> Optional['StructuredPrice']:
        """Parsea JSON (str o dict). None si el texto no es un precio estructurado."""
        if raw is None or raw == '':
            return None
        data = raw
        if isinstance(raw, str):
            try:
                data = json.loads(raw)
            except ValueError:
                return None
        if not isinstance(data, dict) or not isinstance(data.get('variables'), list):
            return None
        variables = [
            PriceVariable(
                name=str(v.get('name', '')),
                value=_to_float(v.get('value')),
                original_value=(_to_float(v['originalValue'])
                                if v.get('originalValue') is not None else None),
                is_new=bool(v.get('isNew', False)),
            )
            for v in data['variables'] if isinstance(v, dict)
        ]
        return cls(variables, _to_float(data.get('total')), data.get('observation'))

    def computed_total(self) -> float:
        return round(sum(v.value for v in self.variables), 2)

    def recompute(self) -> 'StructuredPrice':
        self.total = self.computed_total()
        return self

    def is_consistent(self) -> bool:
        return abs(self.total - self.computed_total()) <= 0.01

    def to_dict(self) -> Dict[str, Any]:
        d = {'variables': [v.to_dict() for v in self.variables], 'total': self.total}
        if self.observation:
            d['observation'] = self.observation
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def normalize_price_json(raw: Any) -> Any:
    """Si raw es un precio estructurado, lo retorna con el total recalculado."""
    price = StructuredPrice.parse(raw)
    if price is None:
        return raw
    return price.recompute().to_json()


# ==============================================================================
# PERIODOS DE ENTREGA
# ==============================================================================

def parse_date(value: Any) -> Optional[date]:
    """'YYYY-MM-DD' (o ISO completo) -> date. None si falta o es inválida."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _first_of_month(year: int, month: int) -> datetime:
    # month puede exceder 12
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return datetime(year, month, 1, tzinfo=timezone.utc)


def _advance(cursor: datetime, frequency: str) -> datetime:
    if frequency == FREQ_DAILY:
        return cursor + timedelta(days=1)
    if frequency == FREQ_WEEKLY:
        return cursor + timedelta(days=7)
    if frequency == FREQ_BIWEEKLY:
        return cursor + timedelta(days=14)
    if frequency == FREQ_MONTHLY:
        return _first_of_month(cursor.year, cursor.month + 1)
    if frequency == FREQ_QUARTERLY:
        return _first_of_month(cursor.year, cursor.month + 3)
    if frequency == FREQ_YEARLY:
        return datetime(cursor.year + 1, 1, 1, tzinfo=timezone.utc)
    return cursor + timedelta(days=365)


def calculate_delivery_periods(valid_from: Any, valid_until: Any, frequency: Optional[str]) -> int:
    """
    Número de entregas dentro de la vigencia.

    Sin fechas o frecuencia 'Única Vez' -> 1. Inicio >= fin -> 0.
    En otro caso cuenta avances del cursor (UTC) mientras no pase el fin.
    """
    start = parse_date(valid_from)
    end = parse_date(valid_until)
    if start is None or end is None or frequency == FREQ_ONCE:
        return 1
    if start >= end:
        return 0

    cursor = datetime(start.year, start.month, start.day, tzinfo=timezone.utc)
    limit = datetime(end.year, end.month, end.day, tzinfo=timezone.utc)
    periods = 0
    while cursor <= limit:
        periods += 1
        cursor = _advance(cursor, frequency or '')
    return max(1, periods)


def per_delivery_quantity(total: float, valid_from: Any, valid_until: Any,
                          frequency: Optional[str]) -> float:
    """Cantidad estimada por entrega."""
    periods = calculate_delivery_periods(valid_from, valid_until, frequency)
    return _to_float(total) / max(periods, 1)


# ==============================================================================
# VALIDACIONES PREVIAS AL ENVÍO
# ==============================================================================

def _validity_errors(start_raw: Any, end_raw: Any, today: date,
                     min_start: Optional[date] = None) -> List[str]:
    errors = []
    start = parse_date(start_raw)
    end = parse_date(end_raw)
    min_start = max(today, min_start) if min_start else today

    if start is None:
        errors.append('La fecha de inicio de vigencia es obligatoria')
    elif start < min_start:
        if min_start > today:
            errors.append(f'La fecha de inicio no puede ser anterior a {min_start.isoformat()}')
        else:
            errors.append('La fecha de inicio no puede ser anterior a hoy')
    if end is None:
        errors.append('La fecha de fin de vigencia es obligatoria')
    elif start is not None and end < start:
        errors.append('La fecha de fin no puede ser anterior a la fecha de inicio')
    return errors


def validate_requirement(req: Requirement, today: Optional[date] = None) -> List[str]:
    """Validaciones de un Requerimiento antes de enviarlo a revisión."""
    today = today or date.today()
    errors = []
    if _to_float(req.cantidad_requerida or req.total_volume) <= 0:
        errors.append('La cantidad requerida debe ser mayor a 0')
    if not (req.title or req.categoria_material):
        errors.append('Debe indicar el material requerido')
    errors.extend(_validity_errors(req.vigencia_inicio, req.vigencia_fin, today))
    if not req.management_fee_accepted:
        errors.append('Debe aceptar la comisión de gestión de la plataforma')
    return errors


def validate_listing(listing: MarketplaceListing, today: Optional[date] = None) -> List[str]:
    """Validaciones de una Publicación antes de enviarla a revisión."""
    today = today or date.today()
    errors = []
    if _to_float(listing.quantity) <= 0:
        errors.append('La cantidad disponible debe ser mayor a 0')
    if not (listing.description or '').strip():
        errors.append('La descripción es obligatoria')

    price = StructuredPrice.parse(listing.price_structure)
    total = price.computed_total() if price else _to_float(listing.price_per_unit)
    if total <= 0:
        errors.append('El precio total debe ser mayor a 0')

    errors.extend(_validity_errors(listing.valid_from, listing.valid_until, today))
    if not listing.photos:
        errors.append('Debe adjuntar al menos una foto del material')
    if not listing.management_fee_accepted:
        errors.append('Debe aceptar la comisión de gestión de la plataforma')
    return errors


def validate_offer(offer: Offer, requirement: Requirement,
                   today: Optional[date] = None) -> List[str]:
    """Validaciones de una Oferta contra su Requerimiento."""
    today = today or date.today()
    errors = _validity_errors(
        offer.fecha_inicio_vigencia, offer.fecha_fin_vigencia, today,
        min_start=parse_date(requirement.vigencia_inicio),
    )

    req_end = parse_date(requirement.vigencia_fin)
    offer_end = parse_date(offer.fecha_fin_vigencia)
    # Si el requerimiento ya venció no se limita el fin
    if req_end and offer_end and req_end >= today and offer_end > req_end:
        errors.append(
            f'La fecha de fin no puede ser posterior al fin del requerimiento ({req_end.isoformat()})'
        )

    if _to_float(offer.cantidad_ofertada) <= 0:
        errors.append('La cantidad ofertada debe ser mayor a 0')
    if not (offer.tipo_vehiculo or '').strip():
        errors.append('Debe indicar el tipo de vehículo')

    for label, clause in offer_clauses(offer).items():
        if not clause.is_valid():
            errors.append(f'Debe justificar la contrapropuesta de {label}')

    if not offer.acepta_formula_precio:
        price = StructuredPrice.parse(offer.contrapropuesta_formula_precio)
        if price is not None and price.computed_total() <= 0:
            errors.append('El precio contrapropuesto debe ser mayor a 0')

    if not offer.penalty_fee_accepted:
        errors.append('Debe aceptar la penalidad por incumplimiento')
    return errors


def validate_purchase_offer(po: PurchaseOffer, listing: MarketplaceListing,
                            today: Optional[date] = None) -> List[str]:
    """Validaciones de una Oferta de compra contra su Publicación."""
    today = today or date.today()
    errors = _validity_errors(po.valid_from, po.valid_until, today)

    qty = _to_float(po.quantity_requested)
    if qty <= 0:
        errors.append('La cantidad solicitada debe ser mayor a 0')
    elif qty > _to_float(listing.quantity):
        errors.append(f'La cantidad solicitada supera la disponible ({listing.quantity} {listing.unit})')

    if not po.acepta_precio:
        if not (po.price_explanation or '').strip():
            errors.append('Debe justificar la contrapropuesta de precio')
        price = StructuredPrice.parse(po.offer_price_structure)
        if price is not None and price.computed_total() <= 0:
            errors.append('El precio contrapropuesto debe ser mayor a 0')
    if not Clause(po.acepta_calidad, po.contrapropuesta_calidad).is_valid():
        errors.append('Debe describir la contrapropuesta de calidad')
    if not Clause(po.acepta_ubicacion, po.contrapropuesta_logistica).is_valid():
        errors.append('Debe describir la contrapropuesta logística')

    if not po.penalty_fee_accepted:
        errors.append('Debe aceptar la penalidad por incumplimiento')
    return errors
