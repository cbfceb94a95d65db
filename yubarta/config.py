# ==============================================================================
# CONFIGURACIÓN - Variables de entorno
# ==============================================================================
# Toda la configuración se lee del entorno, igual que STOCK_SECRET_KEY o
# FLASK_PORT en el servidor. Valores por defecto pensados para desarrollo local.
#
#   YUBARTA_API_URL        URL base del backend   (http://localhost:5000/api)
#   YUBARTA_POLL_INTERVAL  Segundos entre sincronizaciones   (5)
#   YUBARTA_HTTP_TIMEOUT   Timeout de cada request en segundos (10)
#   YUBARTA_DATA_DIR       Carpeta de los JSON del backend de referencia
#   YUBARTA_SECRET_KEY     Clave Flask
#   YUBARTA_PRODUCTION     '1' activa modo producción
# ==============================================================================

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_DEFAULT_SECRET = "yubarta_dev_secret_key_change_in_production"
_BASE = os.path.dirname(os.path.abspath(__file__))


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("[CONFIG] %s=%r no es numérico, usando %s", name, raw, default)
        return default


@dataclass
class Settings:
    """Configuración de la plataforma."""
    api_url: str = "http://localhost:5000/api"
    poll_interval: float = 5.0
    http_timeout: float = 10.0
    data_dir: str = field(default_factory=lambda: os.path.join(_BASE, 'data'))
    secret_key: str = _DEFAULT_SECRET
    production: bool = False

    @classmethod
    def from_env(cls) -> 'Settings':
        """Construye la configuración desde variables de entorno."""
        defaults = cls()
        settings = cls(
            api_url=os.environ.get('YUBARTA_API_URL', defaults.api_url).rstrip('/'),
            poll_interval=_float_env('YUBARTA_POLL_INTERVAL', defaults.poll_interval),
            http_timeout=_float_env('YUBARTA_HTTP_TIMEOUT', defaults.http_timeout),
            data_dir=os.environ.get('YUBARTA_DATA_DIR', defaults.data_dir),
            secret_key=os.environ.get('YUBARTA_SECRET_KEY') or _DEFAULT_SECRET,
            production=os.environ.get('YUBARTA_PRODUCTION', '0') == '1',
        )
        if settings.production and settings.secret_key == _DEFAULT_SECRET:
            logger.warning("[ADVERTENCIA] Modo producción sin YUBARTA_SECRET_KEY definida")
        return settings


def configure_logging(level: int = logging.INFO) -> None:
    """Configura el logging raíz una sola vez."""
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
