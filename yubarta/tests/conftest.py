import json
from datetime import date, timedelta
from urllib.parse import urlsplit

import pytest
import requests

from yubarta.app_container import AppContainer
from yubarta.config import Settings
from yubarta.main import create_app
from yubarta.models import MarketplaceListing, Offer, PurchaseOffer, Requirement
from yubarta.repositories import ApiClient


def days(n):
    """Fecha ISO relativa a hoy."""
    return (date.today() + timedelta(days=n)).isoformat()


class FlaskTestSession:
    """Adapta el test_client de Flask a la interfaz de requests.Session."""

    def __init__(self, client):
        self.client = client
        self.calls = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        path = urlsplit(url).path
        self.calls.append((method, path))
        r = self.client.open(path, method=method, json=json)
        response = requests.models.Response()
        response.status_code = r.status_code
        response._content = r.get_data()
        response.reason = r.status.split(' ', 1)[-1]
        response.url = url
        response.headers.update(dict(r.headers))
        return response


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_url='http://testserver/api',
        data_dir=str(tmp_path / 'data'),
        poll_interval=0.05,
    )


@pytest.fixture
def backend(settings):
    app = create_app(settings, AppContainer(settings))
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(backend):
    # Sin contexto retenido: el DataStore pide desde hilos del pool
    return backend.test_client()


@pytest.fixture
def http_session(client):
    return FlaskTestSession(client)


@pytest.fixture
def container(settings, http_session):
    c = AppContainer(settings, api_client=ApiClient(settings.api_url, session=http_session))
    yield c
    c.reset()


@pytest.fixture
def store(container):
    return container.store


@pytest.fixture
def marketplace(container):
    return container.marketplace_service


@pytest.fixture
def sourcing(container):
    return container.sourcing_service


def _seed_user(client, name, email, role, city):
    r = client.post('/api/users', json={
        'name': name,
        'email': email,
        'password': 'clave123',
        'role': role,
        'status': 'ACTIVE',
        'isVerified': True,
        'needsAdminApproval': False,
        'city': city,
        'phone1': '3001234567',
    })
    assert r.status_code == 201
    return r.get_json()['id']


@pytest.fixture
def users(client, store):
    """admin, buyer, buyer2 y seller ya cargados en el snapshot."""
    ids = {
        'admin': _seed_user(client, 'Admin Yubarta', 'admin@yubarta.co', 'ADMIN', 'Bogotá'),
        'buyer': _seed_user(client, 'Recicladora Andina', 'compras@andina.co', 'BUYER', 'Medellín'),
        'buyer2': _seed_user(client, 'Papeles del Valle', 'compras@pvalle.co', 'BUYER', 'Cali'),
        'seller': _seed_user(client, 'Acopio Norte', 'ventas@acopionorte.co', 'SELLER', 'Barranquilla'),
    }
    assert store.refresh()
    return {key: store.get('users', user_id) for key, user_id in ids.items()}


def make_listing(**overrides):
    data = dict(
        title='PET molido transparente',
        category='Plásticos',
        subcategory='PET',
        presentation='Molido',
        description='Material limpio, sin etiquetas',
        quantity=1000,
        unit='Kilogramos (Kg)',
        price_structure=json.dumps({
            'variables': [{'name': 'Precio base', 'value': 1500}, {'name': 'Flete', 'value': 200}],
            'total': 999,
        }),
        valid_from=days(1),
        valid_until=days(60),
        location_city='Barranquilla',
        location_department='Atlántico',
        photos=[{'name': 'pet.jpg', 'content': 'data:image/jpeg;base64,AAAA'}],
        management_fee_accepted=True,
    )
    data.update(overrides)
    return MarketplaceListing(**data)


def make_purchase_offer(listing_id, quantity, **overrides):
    data = dict(
        listing_id=listing_id,
        quantity_requested=quantity,
        total_price_offered=quantity * 1700,
        tipo_vehiculo='Camión sencillo',
        frecuencia_retiro='Única Vez',
        metodo_pago_propuesto='Transferencia',
        condiciones_pago_propuestas='Contado',
        valid_from=days(1),
        valid_until=days(30),
        penalty_fee_accepted=True,
    )
    data.update(overrides)
    return PurchaseOffer(**data)


def make_requirement(**overrides):
    data = dict(
        categoria_material='Plásticos',
        subcategoria='PEAD',
        presentacion_material='Pacas',
        cantidad_requerida=100,
        unidad='Toneladas (Ton)',
        frecuencia='Mensual',
        especificaciones_calidad='Humedad < 5%',
        especificaciones_logisticas='Entrega en planta',
        departamento_recepcion='Antioquia',
        ciudad_recepcion='Medellín',
        condiciones_precio='Precio fijo',
        tipo_pago='Crédito',
        metodo_pago='Transferencia',
        vigencia_inicio=days(1),
        vigencia_fin=days(120),
        management_fee_accepted=True,
    )
    data.update(overrides)
    return Requirement(**data)


def make_offer(requirement_id, quantity, **overrides):
    data = dict(
        requirement_id=requirement_id,
        cantidad_ofertada=quantity,
        unidad_medida='Toneladas (Ton)',
        frecuencia_suministro='Mensual',
        tipo_vehiculo='Tractomula',
        fecha_inicio_vigencia=days(2),
        fecha_fin_vigencia=days(90),
        penalty_fee_accepted=True,
    )
    data.update(overrides)
    return Offer(**data)


@pytest.fixture
def active_listing(users, marketplace):
    listing = marketplace.create_listing(users['seller'], make_listing())
    return marketplace.approve_listing(users['admin'], listing.id)


@pytest.fixture
def active_requirement(users, sourcing):
    req = sourcing.create_requirement(users['buyer'], make_requirement())
    return sourcing.approve_requirement(users['admin'], req.id)
