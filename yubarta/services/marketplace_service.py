# ==============================================================================
# SERVICIO MARKETPLACE (M2) - Publicaciones y Ofertas de compra
# ==============================================================================
# El proveedor publica material en stock (Publicación); los compradores
# responden con Ofertas de compra. El admin revisa ambas antes de que la
# contraparte las vea.
#
# Reglas clave:
#   - La comisión de gestión se calcula al crear/editar y se guarda.
#   - La penalidad de la oferta de compra ES la comisión guardada.
#   - Aceptar crea un compromiso y descuenta stock (VENDIDO en 0).
#   - Una oferta aceptada ya no se reenvía ni se edita.
# ==============================================================================

import logging
from datetime import date
from typing import Any, Dict, Optional

from yubarta.errors import ConflictError, TransitionError, ValidationError
from yubarta.models import (
    ListingStatus,
    MarketplaceListing,
    PurchaseOffer,
    PurchaseOfferStatus,
    User,
    utcnow,
)
from yubarta.models.entities import format_timestamp
from yubarta.services import fees, ids
from yubarta.services.commitment_service import CommitmentService
from yubarta.services.negotiation import (
    StructuredPrice,
    normalize_price_json,
    validate_listing,
    validate_purchase_offer,
)
from yubarta.services.state_machine import (
    LISTING_MACHINE,
    PURCHASE_OFFER_MACHINE,
    REJECT_PREFIX,
    RETURN_PREFIX,
    Actor,
)
from yubarta.services.workflow import merged, require_actor, status_value, transition
from yubarta.store import DataStore

logger = logging.getLogger(__name__)


class MarketplaceService:
    """
    Flujos del Marketplace.

    Todas las operaciones reciben el usuario que actúa; los permisos se
    derivan de su relación con el registro (ver state_machine).
    """

    def __init__(self, store: DataStore, commitment_service: CommitmentService):
        self.store = store
        self.commitments = commitment_service

    # =========================================================================
    # PUBLICACIONES
    # =========================================================================

    def _stamp_fee(self, listing: MarketplaceListing) -> MarketplaceListing:
        listing.management_fee_per_kg = fees.management_fee_per_kg(fees.proposal_volume_kg(listing))
        listing.fee_schedule_version = fees.FEE_SCHEDULE_VERSION
        return listing

    def _normalize_listing(self, listing: MarketplaceListing) -> MarketplaceListing:
        price = StructuredPrice.parse(listing.price_structure)
        if price is not None:
            price.recompute()
            listing.price_structure = price.to_json()
            listing.price_per_unit = price.total
        return self._stamp_fee(listing)

    def create_listing(self, user: User, listing: MarketplaceListing,
                       on_behalf_of: Optional[str] = None,
                       today: Optional[date] = None) -> MarketplaceListing:
        """
        Crea una publicación y la envía a revisión.

        Si el admin la crea en nombre de un proveedor (on_behalf_of) queda
        esperando la ratificación de ese proveedor.

        Raises:
            ValidationError: datos incompletos o comisión no aceptada
        """
        by_admin = bool(on_behalf_of) and user.is_admin
        listing.seller_id = on_behalf_of if by_admin else user.id
        listing.created_by_admin = True if by_admin else None
        listing.status = LISTING_MACHINE.initial_status(by_admin)
        listing.id = listing.id or ids.generate_id(ids.MODULE_MARKETPLACE, ids.TYPE_LISTING)
        listing.created_at = utcnow()
        listing.applied_commitment_ids = []
        self._normalize_listing(listing)

        errors = validate_listing(listing, today)
        if errors:
            raise ValidationError(errors)

        saved = self.store.create('listings', listing)
        total_fee = fees.management_fee_total(saved.quantity, saved.unit, saved.management_fee_per_kg or 0)
        logger.info("[MARKETPLACE] Publicación %s creada por %s (%s), comisión total %s COP",
                    saved.id, user.id, saved.status.value, total_fee)
        return saved

    def update_listing(self, user: User, listing_id: str, changes: Dict[str, Any],
                       today: Optional[date] = None) -> MarketplaceListing:
        """Edición del proveedor: vuelve a revisión del admin con comisión recalculada."""
        listing = self.store.get('listings', listing_id)
        actor = require_actor(user, listing.seller_id, allowed=(Actor.AUTHOR,))
        candidate = self._normalize_listing(merged(listing, changes))
        errors = validate_listing(candidate, today)
        if errors:
            raise ValidationError(errors)
        extra = dict(changes)
        extra.update(candidate.to_patch('price_structure', 'price_per_unit',
                                        'management_fee_per_kg', 'fee_schedule_version'))
        return transition(self.store, 'listings', LISTING_MACHINE, listing, 'edit', actor, extra=extra)

    def approve_listing(self, admin: User, listing_id: str) -> MarketplaceListing:
        listing = self.store.get('listings', listing_id)
        actor = require_actor(admin, listing.seller_id, allowed=(Actor.ADMIN,))
        return transition(self.store, 'listings', LISTING_MACHINE, listing, 'approve', actor,
                          extra={'rejectionReason': None})

    def reject_listing(self, admin: User, listing_id: str, reason: str,
                       return_for_correction: bool = False) -> MarketplaceListing:
        """Rechazo o devolución. Ambos quedan RECHAZADO; el prefijo del motivo los distingue."""
        listing = self.store.get('listings', listing_id)
        actor = require_actor(admin, listing.seller_id, allowed=(Actor.ADMIN,))
        action = 'return' if return_for_correction else 'reject'
        prefix = RETURN_PREFIX if return_for_correction else REJECT_PREFIX
        text = (reason or '').strip()
        return transition(self.store, 'listings', LISTING_MACHINE, listing, action, actor, text,
                          extra={'rejectionReason': prefix + text})

    def resubmit_listing(self, user: User, listing_id: str, changes: Optional[Dict[str, Any]] = None,
                         today: Optional[date] = None) -> MarketplaceListing:
        listing = self.store.get('listings', listing_id)
        actor = require_actor(user, listing.seller_id, allowed=(Actor.AUTHOR,))
        candidate = self._normalize_listing(merged(listing, changes))
        errors = validate_listing(candidate, today)
        if errors:
            raise ValidationError(errors)
        extra = dict(changes or {})
        extra.update(candidate.to_patch('management_fee_per_kg', 'fee_schedule_version'))
        extra['rejectionReason'] = None
        return transition(self.store, 'listings', LISTING_MACHINE, listing, 'resubmit', actor, extra=extra)

    def ratify_listing(self, user: User, listing_id: str, accept: bool = True) -> MarketplaceListing:
        """El proveedor acepta (publica) o declina una publicación creada por el admin."""
        listing = self.store.get('listings', listing_id)
        actor = require_actor(user, listing.seller_id, allowed=(Actor.AUTHOR,))
        action = 'ratify' if accept else 'decline'
        return transition(self.store, 'listings', LISTING_MACHINE, listing, action, actor)

    def set_listing_paused(self, user: User, listing_id: str, paused: bool) -> MarketplaceListing:
        listing = self.store.get('listings', listing_id)
        actor = require_actor(user, listing.seller_id, allowed=(Actor.AUTHOR,))
        action = 'pause' if paused else 'resume'
        return transition(self.store, 'listings', LISTING_MACHINE, listing, action, actor)

    def archive_listing(self, admin: User, listing_id: str) -> MarketplaceListing:
        listing = self.store.get('listings', listing_id)
        actor = require_actor(admin, listing.seller_id, allowed=(Actor.ADMIN,))
        return transition(self.store, 'listings', LISTING_MACHINE, listing, 'archive', actor)

    def propose_listing_edit(self, admin: User, listing_id: str, edits: Dict[str, Any]) -> MarketplaceListing:
        """El admin propone cambios; el proveedor los aprueba o rechaza."""
        listing = self.store.get('listings', listing_id)
        actor = require_actor(admin, listing.seller_id, allowed=(Actor.ADMIN,))
        merged(listing, edits)
        return transition(self.store, 'listings', LISTING_MACHINE, listing, 'propose_edit', actor,
                          extra={'pendingEdits': dict(edits)})

    def decide_listing_edit(self, user: User, listing_id: str, accept: bool) -> MarketplaceListing:
        listing = self.store.get('listings', listing_id)
        actor = require_actor(user, listing.seller_id, allowed=(Actor.AUTHOR,))
        extra: Dict[str, Any] = {'pendingEdits': None}
        if accept and listing.pending_edits:
            candidate = self._normalize_listing(merged(listing, listing.pending_edits))
            extra.update(listing.pending_edits)
            extra.update(candidate.to_patch('management_fee_per_kg', 'fee_schedule_version'))
        action = 'accept_edit' if accept else 'decline_edit'
        return transition(self.store, 'listings', LISTING_MACHINE, listing, action, actor, extra=extra)

    # =========================================================================
    # OFERTAS DE COMPRA
    # =========================================================================

    def _po_actor(self, user: User, po: PurchaseOffer, *allowed: Actor) -> Actor:
        listing = self.store.snapshot.find('listings', po.listing_id)
        seller_id = listing.seller_id if listing else None
        return require_actor(user, po.buyer_id, seller_id, allowed=allowed)

    def create_purchase_offer(self, user: User, po: PurchaseOffer,
                              on_behalf_of: Optional[str] = None,
                              today: Optional[date] = None) -> PurchaseOffer:
        """
        Crea una oferta de compra sobre una publicación activa.

        La penalidad se copia de la comisión guardada en la publicación.

        Raises:
            TransitionError: la publicación no está publicada
            ValidationError: validaciones del formulario
        """
        listing = self.store.get('listings', po.listing_id)
        if listing.status != ListingStatus.ACTIVE:
            raise TransitionError('La publicación no está disponible para ofertas')

        by_admin = bool(on_behalf_of) and user.is_admin
        po.buyer_id = on_behalf_of if by_admin else user.id
        if po.buyer_id == listing.seller_id:
            raise ConflictError('No puede ofertar sobre su propia publicación')

        po.created_by_admin = True if by_admin else None
        po.status = PURCHASE_OFFER_MACHINE.initial_status(by_admin)
        po.id = po.id or ids.generate_id(ids.MODULE_MARKETPLACE, ids.TYPE_BID)
        po.created_at = utcnow()
        po.penalty_fee_per_kg = fees.resolve_penalty_fee(listing)
        po.offer_price_structure = normalize_price_json(po.offer_price_structure)

        errors = validate_purchase_offer(po, listing, today)
        if errors:
            raise ValidationError(errors)

        ids.validate_id(listing.id, ids.MODULE_MARKETPLACE, ids.TYPE_LISTING)
        saved = self.store.create('purchaseOffers', po)
        logger.info("[MARKETPLACE] Oferta de compra %s sobre %s (%s)", saved.id, listing.id, saved.status.value)
        return saved

    def approve_purchase_offer(self, admin: User, po_id: str) -> PurchaseOffer:
        po = self.store.get('purchaseOffers', po_id)
        actor = self._po_actor(admin, po, Actor.ADMIN)
        return transition(self.store, 'purchaseOffers', PURCHASE_OFFER_MACHINE, po, 'approve', actor)

    def reject_purchase_offer(self, user: User, po_id: str, reason: str) -> PurchaseOffer:
        """Rechazo del admin o del proveedor. El motivo es obligatorio y se guarda."""
        po = self.store.get('purchaseOffers', po_id)
        actor = self._po_actor(user, po, Actor.ADMIN, Actor.COUNTERPARTY)
        text = (reason or '').strip()
        stored = REJECT_PREFIX + text if actor == Actor.ADMIN else text
        return transition(self.store, 'purchaseOffers', PURCHASE_OFFER_MACHINE, po, 'reject', actor, text,
                          extra={'rejectionReason': stored})

    def resubmit_purchase_offer(self, user: User, po_id: str,
                                changes: Optional[Dict[str, Any]] = None,
                                today: Optional[date] = None) -> PurchaseOffer:
        """
        Reenvío tras un rechazo: mismo id, vuelve directo al proveedor.

        Se limpia el motivo de rechazo y se renueva createdAt.
        """
        po = self.store.get('purchaseOffers', po_id)
        actor = self._po_actor(user, po, Actor.AUTHOR)
        PURCHASE_OFFER_MACHINE.apply('resubmit', po.status, actor)

        listing = self.store.get('listings', po.listing_id)
        candidate = merged(po, changes)
        candidate.offer_price_structure = normalize_price_json(candidate.offer_price_structure)
        candidate.penalty_fee_per_kg = fees.resolve_penalty_fee(listing)
        errors = validate_purchase_offer(candidate, listing, today)
        if errors:
            raise ValidationError(errors)

        extra = dict(changes or {})
        extra.update(candidate.to_patch('offer_price_structure', 'penalty_fee_per_kg'))
        extra['rejectionReason'] = None
        extra['createdAt'] = format_timestamp(utcnow())
        return transition(self.store, 'purchaseOffers', PURCHASE_OFFER_MACHINE, po, 'resubmit', actor, extra=extra)

    def ratify_purchase_offer(self, user: User, po_id: str, accept: bool = True) -> PurchaseOffer:
        """El comprador acepta o declina una oferta creada por el admin en su nombre."""
        po = self.store.get('purchaseOffers', po_id)
        actor = self._po_actor(user, po, Actor.AUTHOR)
        action = 'ratify' if accept else 'decline'
        return transition(self.store, 'purchaseOffers', PURCHASE_OFFER_MACHINE, po, action, actor)

    def archive_purchase_offer(self, admin: User, po_id: str) -> PurchaseOffer:
        po = self.store.get('purchaseOffers', po_id)
        actor = self._po_actor(admin, po, Actor.ADMIN)
        return transition(self.store, 'purchaseOffers', PURCHASE_OFFER_MACHINE, po, 'archive', actor)

    def accept_purchase_offer(self, user: User, po_id: str) -> PurchaseOffer:
        """
        El proveedor acepta: ACEPTADA + compromiso + descuento de stock.

        Raises:
            TransitionError: la publicación ya no está activa
            ConflictError: la cantidad supera el stock disponible
            CommitmentDerivationError: quedó aceptada pero faltan pasos
        """
        po = self.store.get('purchaseOffers', po_id)
        actor = self._po_actor(user, po, Actor.COUNTERPARTY)
        PURCHASE_OFFER_MACHINE.apply('accept', po.status, actor)

        listing = self.store.get('listings', po.listing_id)
        if listing.status != ListingStatus.ACTIVE:
            raise TransitionError('La publicación no está activa')
        if po.quantity_requested > listing.quantity:
            raise ConflictError(
                f'La cantidad solicitada ({po.quantity_requested}) supera la disponible ({listing.quantity})'
            )
        accepted = transition(self.store, 'purchaseOffers', PURCHASE_OFFER_MACHINE, po, 'accept', actor)
        self.commitments.derive_marketplace(accepted)
        logger.info("[MARKETPLACE] Oferta de compra %s aceptada por %s", po.id, user.id)
        return accepted

    def force_purchase_offer_status(self, admin: User, po_id: str, target: Any) -> PurchaseOffer:
        """Cambio de estado directo del admin. ACEPTADA dispara el compromiso."""
        po = self.store.get('purchaseOffers', po_id)
        actor = self._po_actor(admin, po, Actor.ADMIN)
        new_status = PURCHASE_OFFER_MACHINE.force(po.status, target, actor)
        updated = self.store.update('purchaseOffers', po.id, {'status': status_value(new_status)})
        if new_status == PurchaseOfferStatus.ACCEPTED and po.status != PurchaseOfferStatus.ACCEPTED:
            self.commitments.derive_marketplace(updated)
        return updated
