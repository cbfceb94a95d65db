# ==============================================================================
# BACKEND DE REFERENCIA - API REST (Flask)
# ==============================================================================
# Expone las seis colecciones con el contrato que consume ApiClient:
#
#   GET/POST        /api/<colección>
#   GET/PUT/DELETE  /api/<colección>/<id>
#   POST            /api/auth/register   (409 si el email existe)
#   POST            /api/auth/login      (401 si las credenciales fallan)
#   GET             /api/health
#
# Errores: {"error": "..."} con código HTTP no exitoso.
# Los usuarios nunca se devuelven con password.
# ==============================================================================

import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from yubarta.app_container import AppContainer
from yubarta.config import Settings, configure_logging
from yubarta.errors import ConflictError, NotFoundError, ValidationError, YubartaError
from yubarta.models import User, utcnow
from yubarta.models.entities import format_timestamp
from yubarta.repositories import COLLECTIONS

logger = logging.getLogger(__name__)

# Colecciones a las que el servidor les pone createdAt si no viene
TIMESTAMPED = frozenset(['requirements', 'offers', 'listings', 'purchaseOffers'])


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError(['Cuerpo JSON inválido'])
    return data


def _public(collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
    if collection == 'users':
        return User.from_dict(record).public_dict()
    return record


def create_app(settings: Optional[Settings] = None, container: Optional[AppContainer] = None) -> Flask:
    """
    Crea la aplicación Flask.

    Args:
        settings: Configuración (por defecto desde variables de entorno)
        container: Contenedor ya armado (tests)
    """
    settings = settings or Settings.from_env()
    container = container or AppContainer(settings)
    configure_logging()

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # adjuntos en base64
    app.config['YUBARTA_CONTAINER'] = container

    repos = container.json_repositories
    user_service = container.backend_user_service

    admin_email = os.environ.get('YUBARTA_ADMIN_EMAIL')
    admin_password = os.environ.get('YUBARTA_ADMIN_PASSWORD')
    if admin_email and admin_password:
        user_service.ensure_admin_account(admin_email, admin_password)

    # =========================================================================
    # ERRORES Y CABECERAS
    # =========================================================================

    @app.errorhandler(YubartaError)
    def handle_domain_error(exc: YubartaError):
        status = getattr(exc, 'status_code', None) or 500
        if status >= 500:
            logger.error("[SERVIDOR] %s %s: %s", request.method, request.path, exc)
        return jsonify({'error': str(exc)}), status

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({'error': exc.description or exc.name}), exc.code

    @app.after_request
    def set_security_headers(response):
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['Referrer-Policy'] = 'no-referrer-when-downgrade'
        response.headers['Permissions-Policy'] = 'geolocation=(), microphone=()'
        # HSTS sólo con HTTPS real
        if request.is_secure:
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        return response

    # =========================================================================
    # SALUD Y AUTENTICACIÓN
    # =========================================================================

    @app.route('/api/health', methods=['GET'])
    def health():
        return {'status': 'ok', 'timestamp': format_timestamp(utcnow())}

    @app.route('/api/auth/register', methods=['POST'])
    def register():
        return user_service.register(_json_body()), 201

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        data = _json_body()
        user = user_service.authenticate(data.get('email', ''), data.get('password', ''))
        if user is None:
            return {'error': 'Credenciales inválidas'}, 401
        return user

    # =========================================================================
    # COLECCIONES
    # =========================================================================

    def _prepare_user(data: Dict[str, Any], record_id: Optional[str] = None) -> Dict[str, Any]:
        data = dict(data)
        if data.get('password') and not str(data['password']).startswith(('pbkdf2:', 'scrypt:')):
            data['password'] = generate_password_hash(data['password'])
        if 'email' in data:
            data['email'] = (data['email'] or '').strip().lower()
            other = user_service.find_by_email(data['email'])
            if other is not None and other.id != record_id:
                raise ConflictError('El email ya está registrado')
        if record_id is None:
            now = format_timestamp(utcnow())
            data.setdefault('registeredAt', now)
            data.setdefault('lastActivity', now)
        return data

    def _register_collection(name: str, path: str) -> None:
        repo = repos[name]

        def list_records():
            return jsonify([_public(name, r) for r in repo.get_all()])

        def get_record(record_id):
            record = repo.get_by_id(record_id)
            if record is None:
                raise NotFoundError('No encontrado')
            return _public(name, record)

        def create_record():
            data = _json_body()
            if name == 'users':
                data = _prepare_user(data)
            elif name in TIMESTAMPED:
                data.setdefault('createdAt', format_timestamp(utcnow()))
            return _public(name, repo.create(data)), 201

        def update_record(record_id):
            data = _json_body()
            data.pop('id', None)
            if name == 'users':
                data = _prepare_user(data, record_id)
            return _public(name, repo.update(record_id, data))

        def delete_record(record_id):
            repo.delete(record_id)
            return {'success': True}

        base = f'/api/{path}'
        app.add_url_rule(base, f'{name}_list', list_records, methods=['GET'])
        app.add_url_rule(base, f'{name}_create', create_record, methods=['POST'])
        app.add_url_rule(f'{base}/<record_id>', f'{name}_get', get_record, methods=['GET'])
        app.add_url_rule(f'{base}/<record_id>', f'{name}_update', update_record, methods=['PUT'])
        app.add_url_rule(f'{base}/<record_id>', f'{name}_delete', delete_record, methods=['DELETE'])

    for name, path in COLLECTIONS.items():
        _register_collection(name, path)

    return app


if __name__ == "__main__":
    # Desarrollo local. En producción usar WSGI (gunicorn wsgi:app)
    DEBUG = os.environ.get('FLASK_DEBUG', '0') == '1'
    HOST = os.environ.get('FLASK_HOST', '0.0.0.0')
    PORT = int(os.environ.get('FLASK_PORT', 5000))
    create_app().run(debug=DEBUG, host=HOST, port=PORT)
