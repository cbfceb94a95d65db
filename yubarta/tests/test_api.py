import pytest
import requests

from yubarta.errors import ApiError
from yubarta.repositories import ApiClient


def _register(client, email='nuevo@reciclaje.co', role='SELLER'):
    return client.post('/api/auth/register', json={
        'name': 'Reciclajes del Sur',
        'email': email,
        'password': 'secreto1',
        'role': role,
        'city': 'Pasto',
    })


def test_health(client):
    r = client.get('/api/health')
    assert r.status_code == 200
    assert r.get_json()['status'] == 'ok'


def test_security_headers(client):
    r = client.get('/api/health')
    assert r.headers['X-Frame-Options'] == 'DENY'
    assert r.headers['X-Content-Type-Options'] == 'nosniff'
    assert 'Strict-Transport-Security' not in r.headers


def test_register_hashes_password_and_waits_for_verification(client):
    r = _register(client)
    assert r.status_code == 201
    body = r.get_json()
    assert 'password' not in body
    assert body['status'] == 'PENDING_VERIFICATION'
    assert body['isVerified'] is False
    assert body['registeredAt'].endswith('Z')


def test_register_duplicate_email(client):
    _register(client)
    r = _register(client, email='NUEVO@reciclaje.co')
    assert r.status_code == 409
    assert r.get_json() == {'error': 'El email ya está registrado'}


def test_register_cannot_choose_admin(client):
    r = _register(client, role='ADMIN')
    assert r.status_code == 400
    assert 'Rol inválido' in r.get_json()['error']


def test_login(client):
    _register(client)
    ok = client.post('/api/auth/login', json={'email': 'nuevo@reciclaje.co', 'password': 'secreto1'})
    assert ok.status_code == 200
    assert ok.get_json()['email'] == 'nuevo@reciclaje.co'
    assert 'password' not in ok.get_json()

    bad = client.post('/api/auth/login', json={'email': 'nuevo@reciclaje.co', 'password': 'otra'})
    assert bad.status_code == 401
    assert bad.get_json() == {'error': 'Credenciales inválidas'}


def test_users_never_expose_password(client, users):
    listed = client.get('/api/users').get_json()
    assert len(listed) == 4
    assert all('password' not in u for u in listed)
    one = client.get(f"/api/users/{users['buyer'].id}").get_json()
    assert 'password' not in one


def test_collection_crud(client):
    created = client.post('/api/purchase-offers', json={'id': 'M2-BID-20240101-AAAA', 'quantityRequested': 5})
    assert created.status_code == 201
    assert 'createdAt' in created.get_json()

    updated = client.put('/api/purchase-offers/M2-BID-20240101-AAAA', json={'quantityRequested': 7})
    assert updated.get_json()['quantityRequested'] == 7

    assert client.delete('/api/purchase-offers/M2-BID-20240101-AAAA').get_json() == {'success': True}
    missing = client.get('/api/purchase-offers/M2-BID-20240101-AAAA')
    assert missing.status_code == 404
    assert 'error' in missing.get_json()


def test_duplicate_id_conflicts(client):
    client.post('/api/commitments', json={'id': 'C1'})
    assert client.post('/api/commitments', json={'id': 'C1'}).status_code == 409


def test_invalid_body(client):
    r = client.post('/api/listings', data='no es json', content_type='text/plain')
    assert r.status_code == 400
    assert r.get_json()['error'] == 'Cuerpo JSON inválido'


def test_unknown_route_returns_error_body(client):
    r = client.get('/api/desconocido')
    assert r.status_code == 404
    assert 'error' in r.get_json()


# ---------------------------------------------------------------------------
# Cliente HTTP
# ---------------------------------------------------------------------------

def test_client_surfaces_backend_error_message(http_session):
    api = ApiClient('http://testserver/api', session=http_session)
    with pytest.raises(ApiError) as info:
        api.login('nadie@x.co', 'x')
    assert str(info.value) == 'Credenciales inválidas'
    assert info.value.status_code == 401


def test_client_register_then_login(http_session):
    api = ApiClient('http://testserver/api', session=http_session)
    created = api.register({'name': 'Chatarrería Sur', 'email': 'sur@chatarra.co',
                            'password': 'clave123', 'role': 'SELLER'})
    assert 'password' not in created
    assert api.login('sur@chatarra.co', 'clave123')['id'] == created['id']


def test_client_get_by_id_missing_is_none(http_session):
    api = ApiClient('http://testserver/api', session=http_session)
    assert api.collection('listings').get_by_id('no-existe') is None
    assert api.health()['status'] == 'ok'


class _DownSession:
    def request(self, *args, **kwargs):
        raise requests.ConnectionError('connection refused')


class _HtmlErrorSession:
    def request(self, method, url, **kwargs):
        response = requests.models.Response()
        response.status_code = 502
        response._content = b'<html>Bad Gateway</html>'
        response.url = url
        return response


def test_client_network_failure():
    api = ApiClient('http://localhost:1/api', session=_DownSession())
    with pytest.raises(ApiError, match='No se pudo conectar con el servidor'):
        api.collection('users').get_all()


def test_client_error_without_json_body():
    api = ApiClient('http://localhost:1/api', session=_HtmlErrorSession())
    with pytest.raises(ApiError, match='HTTP error! status: 502'):
        api.collection('users').get_all()


def test_store_refreshes_repeatedly_through_backend(client, store, http_session):
    client.post('/api/listings', json={'id': 'L1', 'status': 'Publicado', 'quantity': 10})
    for _ in range(3):
        assert store.refresh()
    assert store.error is None
    assert store.get('listings', 'L1').quantity == 10
    assert sum(1 for method, _ in http_session.calls if method == 'GET') == 18
