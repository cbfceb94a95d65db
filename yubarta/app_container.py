# ==============================================================================
# CONTENEDOR DE DEPENDENCIAS - Inyección de servicios
# ==============================================================================
# Punto único para obtener repositorios, DataStore y servicios.
#
#   Cliente:  ApiClient -> ApiCollectionRepository x6 -> DataStore -> servicios
#   Backend:  JsonCollectionRepository x6 (archivos en settings.data_dir)
#
# Todas las instancias se crean de forma perezosa y se reutilizan.
# Para tests: construir AppContainer(settings, api_client=...) con un
# cliente apuntando al test_client de Flask.
# ==============================================================================

import os
from typing import Dict, Optional

from yubarta.config import Settings
from yubarta.repositories import (
    COLLECTIONS,
    ApiClient,
    ICollectionRepository,
    JsonCollectionRepository,
)
from yubarta.services import (
    AuditService,
    CommitmentService,
    MarketplaceService,
    SourcingService,
    UserService,
)
from yubarta.store import DataStore


class AppContainer:
    """
    Contenedor de dependencias de la aplicación.

    Uso:
        container = get_container()
        container.store.refresh()
        container.marketplace_service.accept_purchase_offer(user, po_id)
    """

    _instance: Optional['AppContainer'] = None

    def __init__(self, settings: Optional[Settings] = None, api_client: Optional[ApiClient] = None):
        """
        Args:
            settings: Configuración (por defecto desde el entorno)
            api_client: Cliente HTTP ya armado (opcional)
        """
        self.settings = settings or Settings.from_env()

        # Inicialización perezosa
        self._api_client: Optional[ApiClient] = api_client
        self._api_repositories: Optional[Dict[str, ICollectionRepository]] = None
        self._json_repositories: Optional[Dict[str, JsonCollectionRepository]] = None
        self._store: Optional[DataStore] = None

        self._audit_service: Optional[AuditService] = None
        self._commitment_service: Optional[CommitmentService] = None
        self._sourcing_service: Optional[SourcingService] = None
        self._marketplace_service: Optional[MarketplaceService] = None
        self._user_service: Optional[UserService] = None
        self._backend_user_service: Optional[UserService] = None

    # =========================================================================
    # REPOSITORIOS
    # =========================================================================

    @property
    def api_client(self) -> ApiClient:
        """Cliente HTTP del backend (singleton)."""
        if self._api_client is None:
            self._api_client = ApiClient(self.settings.api_url, self.settings.http_timeout)
        return self._api_client

    @property
    def api_repositories(self) -> Dict[str, ICollectionRepository]:
        if self._api_repositories is None:
            self._api_repositories = {name: self.api_client.collection(name) for name in COLLECTIONS}
        return self._api_repositories

    @property
    def json_repositories(self) -> Dict[str, JsonCollectionRepository]:
        """Colecciones en archivos JSON (backend de referencia)."""
        if self._json_repositories is None:
            self._json_repositories = {
                name: JsonCollectionRepository(os.path.join(self.settings.data_dir, f'{name}.json'))
                for name in COLLECTIONS
            }
        return self._json_repositories

    @property
    def store(self) -> DataStore:
        """Snapshot local sincronizado con el backend (singleton)."""
        if self._store is None:
            self._store = DataStore(self.api_repositories, self.settings.poll_interval)
        return self._store

    # =========================================================================
    # SERVICIOS
    # =========================================================================

    @property
    def audit_service(self) -> AuditService:
        if self._audit_service is None:
            self._audit_service = AuditService()
        return self._audit_service

    @property
    def commitment_service(self) -> CommitmentService:
        if self._commitment_service is None:
            self._commitment_service = CommitmentService(self.store)
        return self._commitment_service

    @property
    def sourcing_service(self) -> SourcingService:
        if self._sourcing_service is None:
            self._sourcing_service = SourcingService(
                self.store,
                self.commitment_service,
                self.audit_service
            )
        return self._sourcing_service

    @property
    def marketplace_service(self) -> MarketplaceService:
        if self._marketplace_service is None:
            self._marketplace_service = MarketplaceService(self.store, self.commitment_service)
        return self._marketplace_service

    @property
    def user_service(self) -> UserService:
        """Usuarios vía API (lado cliente)."""
        if self._user_service is None:
            self._user_service = UserService(self.api_repositories['users'])
        return self._user_service

    @property
    def backend_user_service(self) -> UserService:
        """Usuarios sobre los archivos JSON (lado servidor)."""
        if self._backend_user_service is None:
            self._backend_user_service = UserService(self.json_repositories['users'])
        return self._backend_user_service

    # =========================================================================
    # UTILIDADES
    # =========================================================================

    def reset(self) -> None:
        """Reinicia todas las instancias (detiene el polling si estaba activo)."""
        if self._store is not None:
            self._store.stop_polling()
        self._api_repositories = None
        self._json_repositories = None
        self._store = None
        self._audit_service = None
        self._commitment_service = None
        self._sourcing_service = None
        self._marketplace_service = None
        self._user_service = None
        self._backend_user_service = None

    @classmethod
    def get_instance(cls, settings: Optional[Settings] = None) -> 'AppContainer':
        """Instancia global (settings sólo se usa en la primera llamada)."""
        if cls._instance is None:
            cls._instance = cls(settings)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Elimina la instancia global (útil para tests)."""
        if cls._instance is not None:
            cls._instance.reset()
            cls._instance = None


def get_container(settings: Optional[Settings] = None) -> AppContainer:
    """Obtiene el contenedor de dependencias global."""
    return AppContainer.get_instance(settings)
