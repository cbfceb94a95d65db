# ==============================================================================
# SERVICIO SOURCING (M1) - Requerimientos y Ofertas de proveedores
# ==============================================================================
# El comprador publica un Requerimiento de suministro planificado; los
# proveedores responden con Ofertas cláusula por cláusula. El admin arbitra:
# aprueba, rechaza, pide correcciones y propone ediciones.
#
# Historial: cada rechazo, retroalimentación y respuesta queda en el
# communicationLog de la oferta (append-only, ver AuditService).
#
# Aceptar una oferta que excede el volumen pendiente NO la acepta: el
# requerimiento pasa a 'Pendiente Aumento Cantidad' y decide el admin.
# ==============================================================================

import logging
from datetime import date
from typing import Any, Dict, Optional

from yubarta.errors import ConflictError, TransitionError, ValidationError
from yubarta.models import (
    LogEventType,
    Offer,
    OfferStatus,
    Requirement,
    RequirementStatus,
    User,
    utcnow,
)
from yubarta.services import fees, ids
from yubarta.services.audit_service import AuditService
from yubarta.services.commitment_service import CommitmentService
from yubarta.services.negotiation import normalize_price_json, validate_offer, validate_requirement
from yubarta.services.state_machine import (
    OFFER_MACHINE,
    REJECT_PREFIX,
    REQUIREMENT_MACHINE,
    RETURN_PREFIX,
    Actor,
)
from yubarta.services.workflow import merged, require_actor, status_value, transition
from yubarta.store import DataStore

logger = logging.getLogger(__name__)

# Tolerancia para comparar volúmenes en coma flotante
VOLUME_EPSILON = 1e-9

INCREASE_CLEARED = {'pendingQuantityIncrease': None, 'triggeringOfferIdForIncrease': None}


class SourcingService:
    """Flujos de Sourcing."""

    def __init__(self, store: DataStore, commitment_service: CommitmentService,
                 audit_service: AuditService):
        self.store = store
        self.commitments = commitment_service
        self.audit_service = audit_service

    # =========================================================================
    # REQUERIMIENTOS
    # =========================================================================

    @staticmethod
    def _stamp_fee(req: Requirement) -> Requirement:
        req.management_fee_per_kg = fees.management_fee_per_kg(fees.proposal_volume_kg(req))
        req.fee_schedule_version = fees.FEE_SCHEDULE_VERSION
        return req

    def create_requirement(self, user: User, req: Requirement,
                           on_behalf_of: Optional[str] = None,
                           today: Optional[date] = None) -> Requirement:
        """
        Crea un requerimiento y lo envía a revisión del admin.

        El volumen total es la cantidad requerida. La comisión se calcula
        sobre ese volumen en kg y queda guardada.
        """
        by_admin = bool(on_behalf_of) and user.is_admin
        req.buyer_id = on_behalf_of if by_admin else user.id
        req.created_by_admin = True if by_admin else None
        req.status = REQUIREMENT_MACHINE.initial_status(by_admin)
        req.id = req.id or ids.generate_id(ids.MODULE_SOURCING, ids.TYPE_REQUIREMENT)
        req.created_at = utcnow()
        req.total_volume = req.cantidad_requerida
        req.title = req.title or f'{req.categoria_material} {req.subcategoria}'.strip()
        self._stamp_fee(req)

        errors = validate_requirement(req, today)
        if errors:
            raise ValidationError(errors)

        saved = self.store.create('requirements', req)
        total_fee = fees.management_fee_total(saved.quantity, saved.unit, saved.management_fee_per_kg or 0)
        logger.info("[SOURCING] Requerimiento %s creado por %s (%s), comisión total %s COP",
                    saved.id, user.id, saved.status.value, total_fee)
        return saved

    def _requirement_candidate(self, req: Requirement, changes: Optional[Dict[str, Any]]) -> Requirement:
        candidate = merged(req, changes)
        if changes and 'cantidadRequerida' in changes:
            candidate.total_volume = candidate.cantidad_requerida
        return self._stamp_fee(candidate)

    def approve_requirement(self, admin: User, req_id: str) -> Requirement:
        req = self.store.get('requirements', req_id)
        actor = require_actor(admin, req.buyer_id, allowed=(Actor.ADMIN,))
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, 'approve', actor,
                          extra={'rejectionReason': None})

    def reject_requirement(self, admin: User, req_id: str, reason: str,
                           return_for_correction: bool = False) -> Requirement:
        req = self.store.get('requirements', req_id)
        actor = require_actor(admin, req.buyer_id, allowed=(Actor.ADMIN,))
        action = 'return' if return_for_correction else 'reject'
        prefix = RETURN_PREFIX if return_for_correction else REJECT_PREFIX
        text = (reason or '').strip()
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, action, actor, text,
                          extra={'rejectionReason': prefix + text})

    def enable_requirement_editing(self, admin: User, req_id: str) -> Requirement:
        req = self.store.get('requirements', req_id)
        actor = require_actor(admin, req.buyer_id, allowed=(Actor.ADMIN,))
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, 'enable_editing', actor)

    def resubmit_requirement(self, user: User, req_id: str, changes: Optional[Dict[str, Any]] = None,
                             today: Optional[date] = None) -> Requirement:
        req = self.store.get('requirements', req_id)
        actor = require_actor(user, req.buyer_id, allowed=(Actor.AUTHOR,))
        REQUIREMENT_MACHINE.apply('resubmit', req.status, actor)
        candidate = self._requirement_candidate(req, changes)
        errors = validate_requirement(candidate, today)
        if errors:
            raise ValidationError(errors)
        extra = dict(changes or {})
        extra.update(candidate.to_patch('total_volume', 'management_fee_per_kg', 'fee_schedule_version'))
        extra['rejectionReason'] = None
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, 'resubmit', actor, extra=extra)

    def ratify_requirement(self, user: User, req_id: str, accept: bool = True) -> Requirement:
        """El comprador acepta o declina un requerimiento creado por el admin."""
        req = self.store.get('requirements', req_id)
        actor = require_actor(user, req.buyer_id, allowed=(Actor.AUTHOR,))
        action = 'ratify' if accept else 'decline'
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, action, actor)

    def cancel_requirement(self, user: User, req_id: str) -> Requirement:
        req = self.store.get('requirements', req_id)
        actor = require_actor(user, req.buyer_id, allowed=(Actor.AUTHOR,))
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, 'cancel', actor)

    def request_requirement_deletion(self, user: User, req_id: str) -> Requirement:
        req = self.store.get('requirements', req_id)
        actor = require_actor(user, req.buyer_id, allowed=(Actor.AUTHOR,))
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, 'request_deletion', actor)

    def decide_requirement_deletion(self, admin: User, req_id: str, approve: bool) -> Requirement:
        req = self.store.get('requirements', req_id)
        actor = require_actor(admin, req.buyer_id, allowed=(Actor.ADMIN,))
        action = 'confirm_deletion' if approve else 'deny_deletion'
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, action, actor)

    def hide_requirement(self, admin: User, req_id: str) -> Requirement:
        req = self.store.get('requirements', req_id)
        actor = require_actor(admin, req.buyer_id, allowed=(Actor.ADMIN,))
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, 'hide', actor)

    def propose_requirement_edit(self, admin: User, req_id: str, edits: Dict[str, Any]) -> Requirement:
        req = self.store.get('requirements', req_id)
        actor = require_actor(admin, req.buyer_id, allowed=(Actor.ADMIN,))
        merged(req, edits)
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, 'propose_edit', actor,
                          extra={'pendingEdits': dict(edits)})

    def decide_requirement_edit(self, user: User, req_id: str, accept: bool) -> Requirement:
        req = self.store.get('requirements', req_id)
        actor = require_actor(user, req.buyer_id, allowed=(Actor.AUTHOR,))
        extra: Dict[str, Any] = {'pendingEdits': None}
        if accept and req.pending_edits:
            candidate = self._requirement_candidate(req, req.pending_edits)
            extra.update(req.pending_edits)
            extra.update(candidate.to_patch('total_volume', 'management_fee_per_kg', 'fee_schedule_version'))
        action = 'accept_edit' if accept else 'decline_edit'
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, action, actor, extra=extra)

    # =========================================================================
    # OFERTAS
    # =========================================================================

    def _offer_actor(self, user: User, offer: Offer, *allowed: Actor) -> Actor:
        req = self.store.snapshot.find('requirements', offer.requirement_id)
        buyer_id = req.buyer_id if req else None
        return require_actor(user, offer.seller_id, buyer_id, allowed=allowed)

    def _log(self, offer: Offer, user: User, message: str, event_type: LogEventType):
        return [e.to_dict() for e in self.audit_service.append(offer, user, message, event_type)]

    def create_offer(self, user: User, offer: Offer, on_behalf_of: Optional[str] = None,
                     today: Optional[date] = None) -> Offer:
        """
        Crea una oferta contra un requerimiento activo.

        La penalidad se copia de la comisión guardada en el requerimiento.
        """
        req = self.store.get('requirements', offer.requirement_id)
        if req.status != RequirementStatus.ACTIVE:
            raise TransitionError('El requerimiento no está recibiendo ofertas')

        by_admin = bool(on_behalf_of) and user.is_admin
        offer.seller_id = on_behalf_of if by_admin else user.id
        if offer.seller_id == req.buyer_id:
            raise ConflictError('No puede ofertar sobre su propio requerimiento')

        offer.created_by_admin = True if by_admin else None
        offer.status = OFFER_MACHINE.initial_status(by_admin)
        offer.id = offer.id or ids.generate_id(ids.MODULE_SOURCING, ids.TYPE_OFFER)
        offer.created_at = utcnow()
        offer.communication_log = []
        offer.penalty_fee_per_kg = fees.resolve_penalty_fee(req)
        offer.contrapropuesta_formula_precio = normalize_price_json(offer.contrapropuesta_formula_precio)

        errors = validate_offer(offer, req, today)
        if errors:
            raise ValidationError(errors)

        ids.validate_id(req.id, ids.MODULE_SOURCING, ids.TYPE_REQUIREMENT)
        saved = self.store.create('offers', offer)
        logger.info("[SOURCING] Oferta %s sobre %s (%s)", saved.id, req.id, saved.status.value)
        return saved

    def approve_offer(self, admin: User, offer_id: str) -> Offer:
        """El admin aprueba: la oferta pasa al comprador."""
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(admin, offer, Actor.ADMIN)
        return transition(self.store, 'offers', OFFER_MACHINE, offer, 'approve', actor)

    def reject_offer(self, user: User, offer_id: str, reason: str) -> Offer:
        """Rechazo del admin o del comprador; el motivo queda en el historial."""
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(user, offer, Actor.ADMIN, Actor.COUNTERPARTY)
        OFFER_MACHINE.apply('reject', offer.status, actor, reason)
        event = LogEventType.ADMIN_REJECTION if actor == Actor.ADMIN else LogEventType.BUYER_REJECTION
        text = reason.strip()
        rejected = transition(self.store, 'offers', OFFER_MACHINE, offer, 'reject', actor, text, extra={
            'rejectionReason': text,
            'communicationLog': self._log(offer, user, text, event),
        })

        # Si era la oferta que pidió el aumento, el aumento ya no aplica
        req = self.store.snapshot.find('requirements', offer.requirement_id)
        if (req is not None and req.status == RequirementStatus.PENDING_QUANTITY_INCREASE
                and req.triggering_offer_id_for_increase == offer.id):
            self._release_quantity_increase(req)
        return rejected

    def request_seller_action(self, admin: User, offer_id: str, feedback: str) -> Offer:
        """Retroalimentación del admin: la oferta vuelve al proveedor."""
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(admin, offer, Actor.ADMIN)
        OFFER_MACHINE.apply('request_seller_action', offer.status, actor, feedback)
        return transition(self.store, 'offers', OFFER_MACHINE, offer, 'request_seller_action', actor,
                          feedback, extra={
                              'communicationLog': self._log(offer, admin, feedback, LogEventType.ADMIN_FEEDBACK),
                          })

    def seller_respond(self, user: User, offer_id: str, message: str) -> Offer:
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(user, offer, Actor.AUTHOR)
        OFFER_MACHINE.apply('seller_respond', offer.status, actor, message)
        return transition(self.store, 'offers', OFFER_MACHINE, offer, 'seller_respond', actor, message, extra={
            'communicationLog': self._log(offer, user, message, LogEventType.SELLER_RESPONSE),
        })

    def admin_reply(self, admin: User, offer_id: str, message: str) -> Offer:
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(admin, offer, Actor.ADMIN)
        OFFER_MACHINE.apply('admin_reply', offer.status, actor, message)
        return transition(self.store, 'offers', OFFER_MACHINE, offer, 'admin_reply', actor, message, extra={
            'communicationLog': self._log(offer, admin, message, LogEventType.ADMIN_RESPONSE),
        })

    def enable_offer_editing(self, admin: User, offer_id: str) -> Offer:
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(admin, offer, Actor.ADMIN)
        return transition(self.store, 'offers', OFFER_MACHINE, offer, 'enable_editing', actor)

    def resubmit_offer(self, user: User, offer_id: str, changes: Optional[Dict[str, Any]] = None,
                       today: Optional[date] = None) -> Offer:
        """Reenvío del proveedor (mismo id): vuelve a revisión del admin."""
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(user, offer, Actor.AUTHOR)
        OFFER_MACHINE.apply('resubmit', offer.status, actor)

        req = self.store.get('requirements', offer.requirement_id)
        candidate = merged(offer, changes)
        candidate.contrapropuesta_formula_precio = normalize_price_json(candidate.contrapropuesta_formula_precio)
        candidate.penalty_fee_per_kg = fees.resolve_penalty_fee(req)
        errors = validate_offer(candidate, req, today)
        if errors:
            raise ValidationError(errors)

        extra = dict(changes or {})
        extra.update(candidate.to_patch('contrapropuesta_formula_precio', 'penalty_fee_per_kg'))
        extra['rejectionReason'] = None
        return transition(self.store, 'offers', OFFER_MACHINE, offer, 'resubmit', actor, extra=extra)

    def ratify_offer(self, user: User, offer_id: str, accept: bool = True) -> Offer:
        """El proveedor acepta (pasa al comprador) o declina una oferta sugerida por el admin."""
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(user, offer, Actor.AUTHOR)
        action = 'ratify' if accept else 'decline'
        return transition(self.store, 'offers', OFFER_MACHINE, offer, action, actor)

    def propose_offer_edit(self, admin: User, offer_id: str, edits: Dict[str, Any]) -> Offer:
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(admin, offer, Actor.ADMIN)
        merged(offer, edits)
        return transition(self.store, 'offers', OFFER_MACHINE, offer, 'propose_edit', actor,
                          extra={'pendingEdits': dict(edits)})

    def decide_offer_edit(self, user: User, offer_id: str, accept: bool) -> Offer:
        """El proveedor aprueba (se aplican) o rechaza (se descartan) las ediciones del admin."""
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(user, offer, Actor.AUTHOR)
        extra: Dict[str, Any] = {'pendingEdits': None}
        if accept and offer.pending_edits:
            merged(offer, offer.pending_edits)
            extra.update(offer.pending_edits)
        action = 'accept_edit' if accept else 'decline_edit'
        return transition(self.store, 'offers', OFFER_MACHINE, offer, action, actor, extra=extra)

    def request_offer_deletion(self, user: User, offer_id: str) -> Offer:
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(user, offer, Actor.AUTHOR)
        return transition(self.store, 'offers', OFFER_MACHINE, offer, 'request_deletion', actor)

    def decide_offer_deletion(self, admin: User, offer_id: str, approve: bool) -> Offer:
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(admin, offer, Actor.ADMIN)
        action = 'confirm_deletion' if approve else 'deny_deletion'
        return transition(self.store, 'offers', OFFER_MACHINE, offer, action, actor)

    def hide_offer(self, admin: User, offer_id: str) -> Offer:
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(admin, offer, Actor.ADMIN)
        return transition(self.store, 'offers', OFFER_MACHINE, offer, 'hide', actor)

    # =========================================================================
    # ACEPTACIÓN Y AUMENTO DE CANTIDAD
    # =========================================================================

    def remaining_volume(self, req: Requirement) -> float:
        return max(0.0, req.total_volume - self.commitments.committed_volume(req.id))

    def accept_offer(self, user: User, offer_id: str):
        """
        El comprador acepta una oferta.

        Si la oferta cabe en el volumen pendiente: ACEPTADA + compromiso
        (+ COMPLETADO si se cubre el total). Si lo excede, el requerimiento
        queda esperando la decisión del admin sobre el aumento de cantidad.

        Returns:
            La oferta aceptada, o el requerimiento en aumento pendiente

        Raises:
            TransitionError: el requerimiento no está activo
        """
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(user, offer, Actor.COUNTERPARTY)
        OFFER_MACHINE.apply('accept', offer.status, actor)
        req = self.store.get('requirements', offer.requirement_id)
        if req.status != RequirementStatus.ACTIVE:
            raise TransitionError('El requerimiento no está activo')

        committed = self.commitments.committed_volume(req.id)
        if committed + offer.volume > req.total_volume + VOLUME_EPSILON:
            logger.info("[SOURCING] Oferta %s excede el volumen de %s, pendiente de aumento", offer.id, req.id)
            return transition(
                self.store, 'requirements', REQUIREMENT_MACHINE, req, 'request_quantity_increase', Actor.AUTHOR,
                extra={
                    'pendingQuantityIncrease': committed + offer.volume,
                    'triggeringOfferIdForIncrease': offer.id,
                },
            )

        accepted = transition(self.store, 'offers', OFFER_MACHINE, offer, 'accept', actor)
        self.commitments.derive_sourcing(accepted)
        logger.info("[SOURCING] Oferta %s aceptada por %s", offer.id, user.id)
        return accepted

    def _release_quantity_increase(self, req: Requirement) -> Requirement:
        """Vuelve el requerimiento a ACTIVO sin aumento pendiente."""
        return transition(self.store, 'requirements', REQUIREMENT_MACHINE, req,
                          'release_quantity_increase', Actor.SYSTEM, extra=INCREASE_CLEARED)

    def decide_quantity_increase(self, admin: User, req_id: str, approve: bool,
                                 reason: Optional[str] = None) -> Requirement:
        """
        Decisión del admin sobre el aumento de cantidad.

        Aprobar: nuevo volumen total, oferta ACEPTADA y compromiso.
        Rechazar: requerimiento ACTIVO y oferta RECHAZADA con motivo.

        Raises:
            TransitionError: al aprobar, la oferta ya no espera al comprador.
                El requerimiento vuelve a ACTIVO sin aumento
        """
        req = self.store.get('requirements', req_id)
        actor = require_actor(admin, req.buyer_id, allowed=(Actor.ADMIN,))
        action = 'approve_quantity_increase' if approve else 'reject_quantity_increase'
        REQUIREMENT_MACHINE.apply(action, req.status, actor, reason)

        offer = self.store.snapshot.find('offers', req.triggering_offer_id_for_increase)
        # La aceptación pendiente es del comprador; el admin sólo la habilita
        if offer is None or not OFFER_MACHINE.can('accept', offer.status, Actor.COUNTERPARTY):
            released = self._release_quantity_increase(req)
            if not approve:
                return released
            raise TransitionError('La oferta que pidió el aumento ya no está pendiente del comprador')

        if approve:
            new_total = req.pending_quantity_increase or req.total_volume
            req = transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, action, actor,
                             extra={**INCREASE_CLEARED, 'totalVolume': new_total})
            accepted = transition(self.store, 'offers', OFFER_MACHINE, offer, 'accept', Actor.COUNTERPARTY)
            self.commitments.derive_sourcing(accepted)
            logger.info("[SOURCING] Aumento de %s a %s aprobado, oferta %s aceptada", req.id, new_total, offer.id)
            return self.store.get('requirements', req.id)

        text = reason.strip()
        req = transition(self.store, 'requirements', REQUIREMENT_MACHINE, req, action, actor, text,
                         extra=INCREASE_CLEARED)
        transition(self.store, 'offers', OFFER_MACHINE, offer, 'reject', actor, text, extra={
            'rejectionReason': text,
            'communicationLog': self._log(offer, admin, text, LogEventType.ADMIN_REJECTION),
        })
        return req

    def force_offer_status(self, admin: User, offer_id: str, target: Any) -> Offer:
        """Cambio de estado directo del admin. ACEPTADA dispara el compromiso."""
        offer = self.store.get('offers', offer_id)
        actor = self._offer_actor(admin, offer, Actor.ADMIN)
        new_status = OFFER_MACHINE.force(offer.status, target, actor)
        updated = self.store.update('offers', offer.id, {'status': status_value(new_status)})
        if new_status == OfferStatus.ACCEPTED and offer.status != OfferStatus.ACCEPTED:
            self.commitments.derive_sourcing(updated)
        return updated
