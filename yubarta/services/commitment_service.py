# ==============================================================================
# SERVICIO DE COMPROMISOS
# ==============================================================================
# Al aceptar una respuesta:
#   1. la respuesta queda ACEPTADA (lo hace el servicio del módulo)
#   2. se crea UN compromiso por respuesta (id derivado del id de la respuesta)
#   3. M2: se descuenta el volumen de la publicación (VENDIDO en 0)
#      M1: se cierra el requerimiento si lo comprometido cubre el total
#
# Los pasos 2 y 3 son idempotentes: un reintento no duplica compromisos ni
# descuenta dos veces (la publicación guarda appliedCommitmentIds).
# reconcile() repara respuestas aceptadas con pasos pendientes.
# ==============================================================================

import logging
from typing import List, Optional

from yubarta.errors import CommitmentDerivationError, ConflictError, YubartaError
from yubarta.models import (
    Commitment,
    ListingStatus,
    MarketplaceListing,
    Offer,
    OfferStatus,
    PurchaseOffer,
    PurchaseOfferStatus,
    Requirement,
    RequirementStatus,
)
from yubarta.services import ids
from yubarta.store import DataStore

logger = logging.getLogger(__name__)

CLOSABLE_REQUIREMENT_STATES = (RequirementStatus.ACTIVE, RequirementStatus.PENDING_QUANTITY_INCREASE)


class CommitmentService:
    """Derivación idempotente de compromisos y efectos sobre la propuesta."""

    def __init__(self, store: DataStore):
        self.store = store

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    def find_for_offer(self, offer_id: str) -> Optional[Commitment]:
        for commitment in self.store.snapshot.commitments:
            if commitment.offer_id == offer_id:
                return commitment
        return None

    def committed_volume(self, proposal_id: str) -> float:
        """Suma de compromisos de una propuesta (requerimiento o publicación)."""
        return sum(c.volume for c in self.store.snapshot.commitments if c.requirement_id == proposal_id)

    # =========================================================================
    # PASOS IDEMPOTENTES
    # =========================================================================

    def ensure_commitment(self, module: str, response, proposal_id: str) -> Commitment:
        """Crea el compromiso de la respuesta si aún no existe."""
        existing = self.find_for_offer(response.id)
        if existing is not None:
            return existing

        commitment = Commitment(
            id=ids.derived_id(module, ids.TYPE_COMMITMENT, response.id),
            offer_id=response.id,
            requirement_id=proposal_id,
            volume=response.volume,
        )
        try:
            saved = self.store.create('commitments', commitment)
        except ConflictError:
            # Mismo id derivado ya presente: otro intento ganó
            return self.store.get('commitments', commitment.id)
        logger.info("[COMPROMISO] %s creado: %s por %s", saved.id, saved.volume, response.id)
        return saved

    def apply_listing_decrement(self, listing: MarketplaceListing, commitment: Commitment) -> MarketplaceListing:
        """Descuenta el volumen del compromiso una sola vez."""
        applied = list(listing.applied_commitment_ids or [])
        if commitment.id in applied:
            return listing

        remaining = max(0.0, listing.quantity - commitment.volume)
        status = ListingStatus.SOLD if remaining == 0 else listing.status
        changes = {
            'quantity': remaining,
            'status': getattr(status, 'value', status),
            'appliedCommitmentIds': applied + [commitment.id],
        }
        updated = self.store.update('listings', listing.id, changes)
        if remaining == 0:
            logger.info("[COMPROMISO] Publicación %s agotada", listing.id)
        return updated

    def close_requirement_if_complete(self, requirement: Requirement) -> Requirement:
        """COMPLETADO cuando lo comprometido cubre el volumen total."""
        if requirement.status not in CLOSABLE_REQUIREMENT_STATES:
            return requirement
        if self.committed_volume(requirement.id) < requirement.total_volume:
            return requirement
        logger.info("[COMPROMISO] Requerimiento %s completado", requirement.id)
        return self.store.update(
            'requirements', requirement.id,
            {'status': RequirementStatus.COMPLETED.value,
             'pendingQuantityIncrease': None,
             'triggeringOfferIdForIncrease': None}
        )

    # =========================================================================
    # DERIVACIÓN COMPLETA
    # =========================================================================

    def derive_marketplace(self, po: PurchaseOffer) -> Commitment:
        """
        Pasos 2 y 3 para una oferta de compra ya aceptada.

        Raises:
            CommitmentDerivationError: con los pasos completados
        """
        completed = ['status']
        try:
            commitment = self.ensure_commitment(ids.MODULE_MARKETPLACE, po, po.listing_id)
            completed.append('commitment')
            listing = self.store.get('listings', po.listing_id)
            self.apply_listing_decrement(listing, commitment)
            completed.append('proposal')
        except YubartaError as exc:
            logger.error("[COMPROMISO] Aceptación parcial de %s (%s): %s", po.id, completed, exc)
            raise CommitmentDerivationError(
                f'La oferta {po.id} quedó aceptada pero faltan pasos: {exc}', completed
            ) from exc
        return commitment

    def derive_sourcing(self, offer: Offer) -> Commitment:
        """Pasos 2 y 3 para una oferta de proveedor ya aceptada."""
        completed = ['status']
        try:
            commitment = self.ensure_commitment(ids.MODULE_SOURCING, offer, offer.requirement_id)
            completed.append('commitment')
            requirement = self.store.get('requirements', offer.requirement_id)
            self.close_requirement_if_complete(requirement)
            completed.append('proposal')
        except YubartaError as exc:
            logger.error("[COMPROMISO] Aceptación parcial de %s (%s): %s", offer.id, completed, exc)
            raise CommitmentDerivationError(
                f'La oferta {offer.id} quedó aceptada pero faltan pasos: {exc}', completed
            ) from exc
        return commitment

    # =========================================================================
    # RECONCILIACIÓN
    # =========================================================================

    def reconcile(self) -> List[str]:
        """
        Repara respuestas aceptadas sin compromiso o sin efecto en la propuesta.

        Las publicaciones legacy sin appliedCommitmentIds no se descuentan
        (no hay forma de saber si ya se aplicó).

        Returns:
            Ids de respuestas reparadas
        """
        repaired = []
        snapshot = self.store.snapshot

        for po in snapshot.purchaseOffers:
            if po.status != PurchaseOfferStatus.ACCEPTED:
                continue
            had_commitment = self.find_for_offer(po.id) is not None
            commitment = self.ensure_commitment(ids.MODULE_MARKETPLACE, po, po.listing_id)
            listing = self.store.snapshot.find('listings', po.listing_id)
            if listing is None:
                logger.warning("[RECONCILIAR] Publicación %s no existe", po.listing_id)
                continue
            tracked = listing.applied_commitment_ids is not None or not had_commitment
            needs_decrement = tracked and commitment.id not in (listing.applied_commitment_ids or [])
            if needs_decrement:
                self.apply_listing_decrement(listing, commitment)
            if needs_decrement or not had_commitment:
                repaired.append(po.id)

        for offer in snapshot.offers:
            if offer.status != OfferStatus.ACCEPTED:
                continue
            had_commitment = self.find_for_offer(offer.id) is not None
            self.ensure_commitment(ids.MODULE_SOURCING, offer, offer.requirement_id)
            requirement = self.store.snapshot.find('requirements', offer.requirement_id)
            if requirement is not None:
                self.close_requirement_if_complete(requirement)
            if not had_commitment:
                repaired.append(offer.id)

        if repaired:
            logger.info("[RECONCILIAR] %d respuestas reparadas: %s", len(repaired), repaired)
        return repaired
