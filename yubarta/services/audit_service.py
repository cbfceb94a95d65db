# ==============================================================================
# SERVICIO DE HISTORIAL DE NEGOCIACIÓN
# ==============================================================================
# Historial append-only de una Oferta: rechazos, retroalimentación del admin
# y respuestas del proveedor. Las entradas nunca se editan ni se borran;
# cada cambio produce una lista NUEVA con la entrada agregada al final.
# ==============================================================================

import logging
import uuid
from typing import List, Optional

from yubarta.models import CommunicationLog, LogAuthor, LogEventType, Offer, User, UserRole, utcnow

logger = logging.getLogger(__name__)


class AuditService:
    """
    Construcción de entradas del historial.

    Además de la entrada persistida, cada evento se registra en el log de
    la aplicación con el prefijo [AUDITORIA].
    """

    @staticmethod
    def author_for(user: User) -> LogAuthor:
        if user.role == UserRole.ADMIN:
            return LogAuthor.ADMIN
        if user.role == UserRole.SELLER:
            return LogAuthor.SELLER
        return LogAuthor.BUYER

    def entry(self, user: User, message: str, event_type: LogEventType) -> CommunicationLog:
        """Crea una entrada nueva con id y timestamp."""
        return CommunicationLog(
            id=str(uuid.uuid4()),
            author=self.author_for(user),
            author_id=user.id,
            message=message.strip(),
            timestamp=utcnow(),
            event_type=event_type,
        )

    def append(self, offer: Offer, user: User, message: str,
               event_type: LogEventType) -> List[CommunicationLog]:
        """
        Historial de la oferta con la nueva entrada al final.

        Args:
            offer: Oferta cuyo historial se extiende
            user: Autor del mensaje
            message: Texto (motivo de rechazo, retroalimentación, respuesta)
            event_type: Tipo de evento

        Returns:
            Lista nueva; la de la oferta no se modifica
        """
        new_entry = self.entry(user, message, event_type)
        logger.info(
            "[AUDITORIA] Oferta %s: %s de %s (%s)",
            offer.id, new_entry.event_type.value, user.id, new_entry.author.value
        )
        return list(offer.communication_log) + [new_entry]

    @staticmethod
    def last_event(offer: Offer) -> Optional[LogEventType]:
        """Tipo del último evento del historial, o None si está vacío."""
        if not offer.communication_log:
            return None
        return offer.communication_log[-1].event_type
