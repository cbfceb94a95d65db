# ==============================================================================
# NOTIFICACIONES - Contadores de pendientes por rol
# ==============================================================================
# Función pura sobre un Snapshot: se recalcula completa con cada snapshot,
# nunca de forma incremental.
# ==============================================================================

from dataclasses import dataclass
from typing import Dict, Optional

from yubarta.models import (
    ListingStatus,
    LogEventType,
    OfferStatus,
    PurchaseOfferStatus,
    RequirementStatus,
    User,
    UserRole,
)
from yubarta.services.audit_service import AuditService
from yubarta.store import Snapshot


@dataclass(frozen=True)
class NotificationCounts:
    sourcing: int = 0
    marketplace: int = 0
    admin_users: int = 0

    @property
    def total(self) -> int:
        return self.sourcing + self.marketplace + self.admin_users

    def to_dict(self) -> Dict[str, int]:
        return {
            'sourcing': self.sourcing,
            'marketplace': self.marketplace,
            'adminUsers': self.admin_users,
            'total': self.total,
        }


def _admin_counts(snap: Snapshot) -> NotificationCounts:
    sourcing = sum(
        1 for r in snap.requirements
        if r.status in (RequirementStatus.PENDING_ADMIN, RequirementStatus.PENDING_QUANTITY_INCREASE)
    )
    for o in snap.offers:
        if o.status == OfferStatus.PENDING_ADMIN:
            sourcing += 1
        elif (o.status == OfferStatus.PENDING_SELLER_ACTION
              and AuditService.last_event(o) == LogEventType.SELLER_RESPONSE):
            # El proveedor respondió y espera al admin
            sourcing += 1

    marketplace = sum(1 for l in snap.listings if l.status == ListingStatus.PENDING_ADMIN)
    marketplace += sum(1 for p in snap.purchaseOffers if p.status == PurchaseOfferStatus.PENDING_ADMIN)

    # Un usuario nuevo con cambios pendientes cuenta dos veces
    users = sum(1 for u in snap.users if u.needs_admin_approval and not u.is_verified)
    users += sum(1 for u in snap.users if u.pending_changes)
    return NotificationCounts(sourcing, marketplace, users)


def _buyer_counts(snap: Snapshot, user: User) -> NotificationCounts:
    own_reqs = {r.id for r in snap.requirements if r.buyer_id == user.id}
    sourcing = sum(1 for o in snap.offers if o.status == OfferStatus.PENDING_BUYER and o.requirement_id in own_reqs)
    sourcing += sum(
        1 for r in snap.requirements
        if r.buyer_id == user.id and r.status == RequirementStatus.PENDING_BUYER_APPROVAL
    )
    marketplace = sum(
        1 for p in snap.purchaseOffers
        if p.buyer_id == user.id and p.status == PurchaseOfferStatus.PENDING_BUYER_APPROVAL
    )
    return NotificationCounts(sourcing, marketplace)


SELLER_ATTENTION_OFFER_STATES = (
    OfferStatus.PENDING_SELLER_ACTION,
    OfferStatus.PENDING_SELLER_APPROVAL,
    OfferStatus.WAITING_FOR_OWNER_EDIT_APPROVAL,
)


def _seller_counts(snap: Snapshot, user: User) -> NotificationCounts:
    sourcing = sum(
        1 for o in snap.offers
        if o.seller_id == user.id and o.status in SELLER_ATTENTION_OFFER_STATES
    )
    own_listings = {l.id for l in snap.listings if l.seller_id == user.id}
    marketplace = sum(
        1 for p in snap.purchaseOffers
        if p.status == PurchaseOfferStatus.PENDING_SELLER and p.listing_id in own_listings
    )
    marketplace += sum(
        1 for l in snap.listings
        if l.seller_id == user.id and l.status == ListingStatus.PENDING_SELLER_APPROVAL
    )
    return NotificationCounts(sourcing, marketplace)


def notification_counts(snap: Snapshot, viewer: Optional[User]) -> NotificationCounts:
    """Pendientes que requieren acción de 'viewer'. Sin usuario: todo en cero."""
    if viewer is None:
        return NotificationCounts()
    if viewer.role == UserRole.ADMIN:
        return _admin_counts(snap)
    if viewer.role == UserRole.SELLER:
        return _seller_counts(snap, viewer)
    return _buyer_counts(snap, viewer)
