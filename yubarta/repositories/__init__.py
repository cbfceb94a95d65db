# ==============================================================================
# CAPA DE REPOSITORIOS - Acceso a colecciones
# ==============================================================================
# ApiCollectionRepository: cliente del backend HTTP (uso normal)
# JsonCollectionRepository: almacenamiento en archivos del backend de referencia
# ==============================================================================

from .interfaces import COLLECTIONS, ICollectionRepository
from .base import JsonCollectionRepository
from .api_repository import ApiClient, ApiCollectionRepository

__all__ = [
    'COLLECTIONS',
    'ICollectionRepository',
    'JsonCollectionRepository',
    'ApiClient',
    'ApiCollectionRepository',
]
