# ==============================================================================
# CLIENTE HTTP DEL BACKEND
# ==============================================================================
# Implementa ICollectionRepository sobre la API REST:
#   GET    /api/<colección>        -> lista
#   GET    /api/<colección>/<id>   -> registro
#   POST   /api/<colección>        -> registro creado
#   PUT    /api/<colección>/<id>   -> registro actualizado
#   DELETE /api/<colección>/<id>   -> {success: true}
#
# Respuestas no exitosas traen {error: "..."}; se convierten en ApiError.
# ==============================================================================

import logging
from typing import Any, Dict, List, Optional

import requests

from yubarta.errors import ApiError
from yubarta.repositories.interfaces import COLLECTIONS

logger = logging.getLogger(__name__)


class ApiClient:
    """
    Sesión HTTP compartida por todas las colecciones.

    Args:
        base_url: URL base (ej. http://localhost:5000/api)
        timeout: Timeout en segundos por request
        session: Sesión requests (inyectable para tests)
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method, url,
                json=payload,
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("[API] %s %s falló: %s", method, url, exc)
            raise ApiError('No se pudo conectar con el servidor') from exc

        if not response.ok:
            message = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    message = body.get('error')
            except ValueError:
                pass
            message = message or f'HTTP error! status: {response.status_code}'
            logger.warning("[API] %s %s -> %s: %s", method, url, response.status_code, message)
            raise ApiError(message, response.status_code)

        if not response.content:
            return None
        return response.json()

    # =========================================================================
    # AUTENTICACIÓN Y SALUD
    # =========================================================================

    def login(self, email: str, password: str) -> Dict[str, Any]:
        return self.request('POST', 'auth/login', {'email': email, 'password': password})

    def register(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request('POST', 'auth/register', data)

    def health(self) -> Dict[str, Any]:
        return self.request('GET', 'health')

    def collection(self, name: str) -> 'ApiCollectionRepository':
        return ApiCollectionRepository(self, COLLECTIONS[name])


class ApiCollectionRepository:
    """Colección remota. Cumple ICollectionRepository."""

    def __init__(self, client: ApiClient, path: str):
        self.client = client
        self.path = path

    def get_all(self) -> List[Dict[str, Any]]:
        return self.client.request('GET', self.path) or []

    def get_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.client.request('GET', f'{self.path}/{record_id}')
        except ApiError as exc:
            if exc.status_code == 404:
                return None
            raise

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.request('POST', self.path, data)

    def update(self, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.request('PUT', f'{self.path}/{record_id}', data)

    def delete(self, record_id: str) -> None:
        self.client.request('DELETE', f'{self.path}/{record_id}')
