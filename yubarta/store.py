# ==============================================================================
# DATA STORE - Snapshot local sincronizado por polling
# ==============================================================================
# Mantiene las seis colecciones como un Snapshot inmutable:
#   - refresh() trae todo en paralelo y REEMPLAZA el snapshot completo
#   - si falla, conserva el último snapshot bueno y marca error
#   - las mutaciones llaman al repositorio y, sólo si tienen éxito,
#     parchean el snapshot local con la entidad devuelta
#
# Sin control de versiones: gana la última escritura.
# ==============================================================================

import dataclasses
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from yubarta.errors import ConflictError, NotFoundError, YubartaError
from yubarta.models import (
    Commitment,
    MarketplaceListing,
    Offer,
    PurchaseOffer,
    Requirement,
    User,
    WireEntity,
    utcnow,
)
from yubarta.repositories.interfaces import COLLECTIONS, ICollectionRepository

logger = logging.getLogger(__name__)

ENTITY_TYPES = {
    'users': User,
    'requirements': Requirement,
    'offers': Offer,
    'commitments': Commitment,
    'listings': MarketplaceListing,
    'purchaseOffers': PurchaseOffer,
}


@dataclass(frozen=True)
class Snapshot:
    """Vista consistente de todas las colecciones en un instante."""
    users: Tuple[User, ...] = ()
    requirements: Tuple[Requirement, ...] = ()
    offers: Tuple[Offer, ...] = ()
    commitments: Tuple[Commitment, ...] = ()
    listings: Tuple[MarketplaceListing, ...] = ()
    purchaseOffers: Tuple[PurchaseOffer, ...] = ()
    fetched_at: Optional[datetime] = None

    def items(self, collection: str) -> Tuple[Any, ...]:
        return getattr(self, collection)

    def find(self, collection: str, record_id: str) -> Optional[Any]:
        for item in self.items(collection):
            if item.id == record_id:
                return item
        return None

    def user(self, user_id: str) -> Optional[User]:
        return self.find('users', user_id)

    def with_items(self, collection: str, items) -> 'Snapshot':
        return dataclasses.replace(self, **{collection: tuple(items)})


class DataStore:
    """
    Modelo de lectura local.

    Args:
        repositories: colección -> ICollectionRepository
        poll_interval: segundos entre refrescos automáticos
    """

    def __init__(self, repositories: Dict[str, ICollectionRepository], poll_interval: float = 5.0):
        missing = set(COLLECTIONS) - set(repositories)
        if missing:
            raise ValueError(f'Faltan repositorios: {sorted(missing)}')
        self.repositories = repositories
        self.poll_interval = poll_interval
        self.error: Optional[str] = None
        self.loading = True

        self._snapshot = Snapshot()
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def _publish(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    # =========================================================================
    # SINCRONIZACIÓN
    # =========================================================================

    def _fetch(self, collection: str) -> List[WireEntity]:
        entity_cls = ENTITY_TYPES[collection]
        return [entity_cls.from_dict(raw) for raw in self.repositories[collection].get_all()]

    def refresh(self) -> bool:
        """
        Trae todas las colecciones y reemplaza el snapshot.

        Returns:
            True si se actualizó, False si falló (se conserva el anterior)
        """
        try:
            with ThreadPoolExecutor(max_workers=len(ENTITY_TYPES)) as pool:
                futures = {name: pool.submit(self._fetch, name) for name in ENTITY_TYPES}
                fetched = {name: tuple(f.result()) for name, f in futures.items()}
        except YubartaError as exc:
            self.error = str(exc) or 'Error de sincronización'
            logger.warning("[SYNC] Falló la sincronización, se conserva el último snapshot: %s", exc)
            return False
        except Exception as exc:
            # Registros malformados del backend no deben detener el polling
            self.error = f'Datos inválidos del servidor: {exc}'
            logger.exception("[SYNC] Respuesta inválida, se conserva el último snapshot")
            return False
        finally:
            self.loading = False

        self.error = None
        self._publish(Snapshot(fetched_at=utcnow(), **fetched))
        return True

    def _poll_loop(self) -> None:
        while not self._stop.is_set():
            self.refresh()
            self._stop.wait(self.poll_interval)

    def start_polling(self) -> None:
        """Inicia el refresco periódico en un hilo daemon."""
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._poll_loop, name='yubarta-sync', daemon=True)
        self._thread.start()
        logger.info("[SYNC] Polling iniciado cada %ss", self.poll_interval)

    def stop_polling(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    # =========================================================================
    # LECTURA
    # =========================================================================

    def get(self, collection: str, record_id: str) -> Any:
        """
        Raises:
            NotFoundError: el registro no está en el snapshot
        """
        item = self._snapshot.find(collection, record_id)
        if item is None:
            raise NotFoundError(f'{collection}: {record_id} no encontrado')
        return item

    # =========================================================================
    # MUTACIONES - sólo parchean el snapshot si el backend confirma
    # =========================================================================

    def _patch(self, collection: str, entity: Any) -> None:
        with self._lock:
            items = list(self._snapshot.items(collection))
            for i, existing in enumerate(items):
                if existing.id == entity.id:
                    items[i] = entity
                    break
            else:
                items.append(entity)
            self._snapshot = self._snapshot.with_items(collection, items)

    def create(self, collection: str, entity: WireEntity) -> Any:
        """
        Crea una entidad. El id generado sirve de clave de idempotencia.

        Raises:
            ConflictError: ya existe una entidad con ese id en el snapshot
        """
        if entity.id and self._snapshot.find(collection, entity.id) is not None:
            raise ConflictError(f'{collection}: {entity.id} ya fue enviado')
        data = self.repositories[collection].create(entity.to_dict())
        saved = ENTITY_TYPES[collection].from_dict(data)
        self._patch(collection, saved)
        return saved

    def update(self, collection: str, record_id: str, changes: Dict[str, Any]) -> Any:
        """Envía una actualización parcial (campos en formato de intercambio)."""
        data = self.repositories[collection].update(record_id, changes)
        saved = ENTITY_TYPES[collection].from_dict(data)
        self._patch(collection, saved)
        return saved

    def delete(self, collection: str, record_id: str) -> None:
        self.repositories[collection].delete(record_id)
        with self._lock:
            items = [i for i in self._snapshot.items(collection) if i.id != record_id]
            self._snapshot = self._snapshot.with_items(collection, items)
