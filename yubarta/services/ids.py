# ==============================================================================
# IDENTIFICADORES DE ENTIDADES
# ==============================================================================
# Formato: {MODULO}-{TIPO}-{yyyymmdd}-{4 caracteres base36}
#   MODULO: M1 (Sourcing) | M2 (Marketplace)
#   TIPO:   REQ | OFF | LST | BID | COM
#
# La validación es sólo informativa: hay ids legacy que no cumplen el
# formato y deben seguir funcionando.
# ==============================================================================

import hashlib
import logging
import random
import string
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

MODULE_SOURCING = 'M1'
MODULE_MARKETPLACE = 'M2'

TYPE_REQUIREMENT = 'REQ'
TYPE_OFFER = 'OFF'
TYPE_LISTING = 'LST'
TYPE_BID = 'BID'
TYPE_COMMITMENT = 'COM'

_ALPHABET = string.digits + string.ascii_uppercase


def _to_base36(number: int, width: int = 4) -> str:
    chars = []
    for _ in range(width):
        number, rem = divmod(number, 36)
        chars.append(_ALPHABET[rem])
    return ''.join(reversed(chars))


def generate_id(module: str, entity_type: str, now: Optional[datetime] = None) -> str:
    """Genera un id nuevo con sufijo aleatorio."""
    now = now or datetime.now()
    suffix = ''.join(random.choice(_ALPHABET) for _ in range(4))
    return f"{module}-{entity_type}-{now:%Y%m%d}-{suffix}"


def derived_id(module: str, entity_type: str, source_id: str, now: Optional[datetime] = None) -> str:
    """
    Id determinista derivado de otro id.

    El mismo source_id produce siempre el mismo sufijo, así un reintento
    encuentra el registro ya creado en lugar de duplicarlo.
    """
    now = now or datetime.now()
    digest = hashlib.sha1(source_id.encode('utf-8')).hexdigest()
    return f"{module}-{entity_type}-{now:%Y%m%d}-{_to_base36(int(digest, 16))}"


def validate_id(entity_id: str, module: str, entity_type: str) -> bool:
    """Verifica el prefijo del id. Si no cumple sólo registra una advertencia."""
    prefix = f"{module}-{entity_type}-"
    valid = bool(entity_id) and entity_id.startswith(prefix)
    if not valid:
        logger.warning("[ID] %r no tiene el prefijo esperado %s", entity_id, prefix)
    return valid
