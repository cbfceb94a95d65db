# ==============================================================================
# CAPA DE SERVICIOS - Lógica de negocio
# ==============================================================================
# Los servicios reciben repositorios/DataStore en __init__ y NO conocen el
# transporte (HTTP o JSON). Toda regla de negocio vive aquí, no en rutas.
# ==============================================================================

from .audit_service import AuditService
from .commitment_service import CommitmentService
from .marketplace_service import MarketplaceService
from .sourcing_service import SourcingService
from .user_service import UserService

__all__ = [
    'AuditService',
    'CommitmentService',
    'MarketplaceService',
    'SourcingService',
    'UserService',
]
