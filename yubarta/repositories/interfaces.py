# ==============================================================================
# INTERFACES DE REPOSITORIOS
# ==============================================================================
#
# Contrato CRUD de colección que cumplen las dos implementaciones:
#
# 1. ApiCollectionRepository  -> cliente HTTP contra el backend (/api/<colección>)
# 2. JsonCollectionRepository -> archivos JSON del backend de referencia
#
# Los servicios y el DataStore dependen de esta interfaz, NO de la
# implementación. Cambiar de backend sólo requiere otra clase que la cumpla.
#
# ==============================================================================

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


# Nombres de colección (clave interna -> ruta HTTP)
COLLECTIONS = {
    'users': 'users',
    'requirements': 'requirements',
    'offers': 'offers',
    'commitments': 'commitments',
    'listings': 'listings',
    'purchaseOffers': 'purchase-offers',
}


@runtime_checkable
class ICollectionRepository(Protocol):
    """
    Interfaz de una colección de registros con id.

    Las actualizaciones son parciales: sólo se envían los campos que cambian.
    """

    def get_all(self) -> List[Dict[str, Any]]:
        """Obtiene todos los registros."""
        ...

    def get_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        """Obtiene un registro por id o None."""
        ...

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Crea un registro y retorna la versión guardada."""
        ...

    def update(self, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Actualiza campos de un registro y retorna la versión guardada."""
        ...

    def delete(self, record_id: str) -> None:
        """Elimina un registro."""
        ...

