# ==============================================================================
# EXCEPCIONES DEL DOMINIO
# ==============================================================================
# Todas las reglas de negocio fallan con una de estas excepciones.
# Las rutas Flask las traducen a respuestas {"error": ...} con su código HTTP.
# ==============================================================================

from typing import List, Optional


class YubartaError(Exception):
    """Excepción base de la plataforma."""
    status_code = 400


class ValidationError(YubartaError):
    """
    Falla de validación previa al envío.

    Nunca llega al almacenamiento: el servicio la lanza antes de llamar
    al repositorio.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__('; '.join(self.errors))


class ConflictError(YubartaError):
    """Conflicto con una regla de negocio (email duplicado, id repetido...)."""
    status_code = 409


class TransitionError(ConflictError):
    """Transición de estado no permitida desde el estado actual o para el rol."""


class NotFoundError(YubartaError):
    """La entidad referenciada no existe."""
    status_code = 404


class ApiError(YubartaError):
    """Error de transporte o respuesta no exitosa del backend."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CommitmentDerivationError(YubartaError):
    """
    La aceptación quedó a medias.

    Attributes:
        completed_steps: Pasos que sí se completaron ('status', 'commitment', 'proposal')
    """
    status_code = 500

    def __init__(self, message: str, completed_steps: List[str]):
        super().__init__(message)
        self.completed_steps = list(completed_steps)
