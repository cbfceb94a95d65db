# ==============================================================================
# CAPA DE MODELOS - Estructuras de datos de la plataforma
# ==============================================================================
# Entidades del dominio como dataclasses, independientes del transporte
# (API HTTP o archivos JSON del backend de referencia).
# ==============================================================================

from .entities import (
    # Usuarios
    User,
    UserRole,
    UserStatus,
    SELF_EDITABLE_USER_FIELDS,
    ADMIN_GATED_USER_FIELDS,

    # Sourcing (M1)
    Requirement,
    RequirementStatus,
    Offer,
    OfferStatus,

    # Marketplace (M2)
    MarketplaceListing,
    ListingStatus,
    PurchaseOffer,
    PurchaseOfferStatus,

    # Compromisos e historial
    Commitment,
    CommunicationLog,
    LogAuthor,
    LogEventType,

    # Utilidades
    WireEntity,
    parse_timestamp,
    utcnow,
)

__all__ = [
    'User',
    'UserRole',
    'UserStatus',
    'SELF_EDITABLE_USER_FIELDS',
    'ADMIN_GATED_USER_FIELDS',
    'Requirement',
    'RequirementStatus',
    'Offer',
    'OfferStatus',
    'MarketplaceListing',
    'ListingStatus',
    'PurchaseOffer',
    'PurchaseOfferStatus',
    'Commitment',
    'CommunicationLog',
    'LogAuthor',
    'LogEventType',
    'WireEntity',
    'parse_timestamp',
    'utcnow',
]
