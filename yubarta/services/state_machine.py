# ==============================================================================
# MÁQUINAS DE ESTADO - Requerimiento, Oferta, Publicación, Oferta de compra
# ==============================================================================
# Cada máquina es una tabla de acciones con nombre:
#   acción -> (estados origen, estado destino, actores permitidos, requiere motivo)
#
# Los actores son RELACIONES del usuario con el registro, no roles:
#   ADMIN        administrador de la plataforma
#   AUTHOR       dueño del registro (quien lo creó o en cuyo nombre se creó)
#   COUNTERPARTY dueño de la propuesta a la que responde el registro
#   SYSTEM       efectos derivados (ej. agotar stock al aceptar)
#
# Una misma acción puede tener varias filas (ej. 'reject' del admin y de la
# contraparte con distintos orígenes).
# ==============================================================================

from dataclasses import dataclass
from enum import Enum
from typing import Any, FrozenSet, Iterable, List, Optional

from yubarta.errors import TransitionError, ValidationError
from yubarta.models import (
    ListingStatus,
    OfferStatus,
    PurchaseOfferStatus,
    RequirementStatus,
    User,
)


class Actor(str, Enum):
    ADMIN = "ADMIN"
    AUTHOR = "AUTHOR"
    COUNTERPARTY = "COUNTERPARTY"
    SYSTEM = "SYSTEM"


# Prefijos de motivo del admin
RETURN_PREFIX = 'DEVOLUCIÓN (Corregir): '
REJECT_PREFIX = 'RECHAZO: '


@dataclass(frozen=True)
class Transition:
    action: str
    sources: FrozenSet[Any]
    target: Any
    actors: FrozenSet[Actor]
    requires_reason: bool = False


def _t(action, sources, target, actors, requires_reason=False) -> Transition:
    return Transition(action, frozenset(sources), target, frozenset(actors), requires_reason)


def actor_for(user: Optional[User], author_id: str, counterparty_id: Optional[str] = None) -> Optional[Actor]:
    """Relación del usuario con el registro. None si no tiene ninguna."""
    if user is None:
        return None
    if user.is_admin:
        return Actor.ADMIN
    if author_id and user.id == author_id:
        return Actor.AUTHOR
    if counterparty_id and user.id == counterparty_id:
        return Actor.COUNTERPARTY
    return None


class StateMachine:
    """
    Tabla de transiciones de una entidad.

    Attributes:
        name: Nombre legible de la entidad (para mensajes)
        status_enum: Enum de estados
        initial: Estado al enviar a revisión
        on_behalf_initial: Estado cuando el admin crea en nombre del usuario
        terminal: Estados sin salida (ni siquiera forzando)
    """

    def __init__(
        self,
        name: str,
        status_enum,
        initial,
        on_behalf_initial,
        transitions: Iterable[Transition],
        terminal: Iterable[Any] = (),
    ):
        self.name = name
        self.status_enum = status_enum
        self.initial = initial
        self.on_behalf_initial = on_behalf_initial
        self.transitions: List[Transition] = list(transitions)
        self.terminal = frozenset(terminal)

    def _normalize(self, status):
        try:
            return self.status_enum(status)
        except ValueError:
            return status

    def initial_status(self, created_by_admin: bool = False):
        return self.on_behalf_initial if created_by_admin else self.initial

    def actions(self) -> FrozenSet[str]:
        return frozenset(t.action for t in self.transitions)

    def find(self, action: str, current, actor: Optional[Actor]) -> Optional[Transition]:
        current = self._normalize(current)
        for t in self.transitions:
            if t.action == action and current in t.sources and actor in t.actors:
                return t
        return None

    def can(self, action: str, current, actor: Optional[Actor]) -> bool:
        return self.find(action, current, actor) is not None

    def apply(self, action: str, current, actor: Optional[Actor], reason: Optional[str] = None):
        """
        Valida una transición y retorna el estado destino.

        Raises:
            TransitionError: acción desconocida, origen inválido o actor no permitido
            ValidationError: la acción exige motivo y no se dio
        """
        if action not in self.actions():
            raise TransitionError(f'{self.name}: acción desconocida "{action}"')
        current = self._normalize(current)
        t = self.find(action, current, actor)
        if t is None:
            label = current.value if isinstance(current, Enum) else current
            who = actor.value if actor else 'sin relación'
            raise TransitionError(
                f'{self.name}: no se puede "{action}" desde "{label}" ({who})'
            )
        if t.requires_reason and not (reason and reason.strip()):
            raise ValidationError([f'{self.name}: debe indicar un motivo'])
        return t.target

    def force(self, current, target, actor: Optional[Actor]):
        """Cambio de estado arbitrario del admin. Los estados terminales no se abandonan."""
        if actor != Actor.ADMIN:
            raise TransitionError(f'{self.name}: sólo el administrador puede forzar estados')
        current = self._normalize(current)
        target = self._normalize(target)
        if not isinstance(target, self.status_enum):
            raise TransitionError(f'{self.name}: estado desconocido "{target}"')
        if current in self.terminal and current != target:
            raise TransitionError(f'{self.name}: "{current.value}" es definitivo')
        return target


A, AU, CP, SYS = Actor.ADMIN, Actor.AUTHOR, Actor.COUNTERPARTY, Actor.SYSTEM


# ==============================================================================
# REQUERIMIENTO (M1)
# ==============================================================================
R = RequirementStatus
REQUIREMENT_MACHINE = StateMachine(
    'Requerimiento', RequirementStatus,
    initial=R.PENDING_ADMIN,
    on_behalf_initial=R.PENDING_BUYER_APPROVAL,
    transitions=[
        _t('approve', [R.PENDING_ADMIN], R.ACTIVE, [A]),
        _t('reject', [R.PENDING_ADMIN, R.ACTIVE, R.PENDING_EDIT], R.REJECTED, [A], True),
        _t('return', [R.PENDING_ADMIN, R.ACTIVE, R.PENDING_EDIT], R.REJECTED, [A], True),
        _t('enable_editing', [R.PENDING_ADMIN, R.REJECTED], R.PENDING_EDIT, [A]),
        _t('resubmit', [R.REJECTED, R.PENDING_EDIT], R.PENDING_ADMIN, [AU]),
        _t('ratify', [R.PENDING_BUYER_APPROVAL], R.ACTIVE, [AU]),
        _t('decline', [R.PENDING_BUYER_APPROVAL], R.HIDDEN_BY_ADMIN, [AU]),
        _t('request_quantity_increase', [R.ACTIVE], R.PENDING_QUANTITY_INCREASE, [AU]),
        _t('approve_quantity_increase', [R.PENDING_QUANTITY_INCREASE], R.ACTIVE, [A]),
        _t('reject_quantity_increase', [R.PENDING_QUANTITY_INCREASE], R.ACTIVE, [A], True),
        _t('release_quantity_increase', [R.PENDING_QUANTITY_INCREASE], R.ACTIVE, [SYS]),
        _t('complete', [R.ACTIVE, R.PENDING_QUANTITY_INCREASE], R.COMPLETED, [SYS, A]),
        _t('propose_edit', [R.PENDING_ADMIN, R.ACTIVE], R.WAITING_FOR_OWNER_EDIT_APPROVAL, [A]),
        _t('accept_edit', [R.WAITING_FOR_OWNER_EDIT_APPROVAL], R.ACTIVE, [AU]),
        _t('decline_edit', [R.WAITING_FOR_OWNER_EDIT_APPROVAL], R.ACTIVE, [AU]),
        _t('request_deletion', [R.PENDING_ADMIN, R.ACTIVE], R.PENDING_DELETION, [AU]),
        _t('confirm_deletion', [R.PENDING_DELETION], R.CANCELLED, [A]),
        _t('deny_deletion', [R.PENDING_DELETION], R.ACTIVE, [A]),
        _t('cancel', [R.PENDING_ADMIN, R.ACTIVE], R.CANCELLED, [AU]),
        _t('hide', [R.PENDING_ADMIN, R.ACTIVE, R.REJECTED, R.PENDING_EDIT, R.PENDING_DELETION],
           R.HIDDEN_BY_ADMIN, [A]),
    ],
    terminal=[R.COMPLETED],
)


# ==============================================================================
# OFERTA (M1)
# ==============================================================================
O = OfferStatus
OFFER_MACHINE = StateMachine(
    'Oferta', OfferStatus,
    initial=O.PENDING_ADMIN,
    on_behalf_initial=O.PENDING_SELLER_APPROVAL,
    transitions=[
        _t('approve', [O.PENDING_ADMIN], O.PENDING_BUYER, [A]),
        _t('reject', [O.PENDING_ADMIN, O.PENDING_SELLER_ACTION, O.PENDING_BUYER], O.REJECTED, [A], True),
        _t('reject', [O.PENDING_BUYER], O.REJECTED, [CP], True),
        _t('request_seller_action', [O.PENDING_ADMIN, O.PENDING_BUYER], O.PENDING_SELLER_ACTION, [A], True),
        _t('seller_respond', [O.PENDING_SELLER_ACTION], O.PENDING_SELLER_ACTION, [AU], True),
        _t('admin_reply', [O.PENDING_SELLER_ACTION], O.PENDING_SELLER_ACTION, [A], True),
        _t('enable_editing', [O.PENDING_SELLER_ACTION, O.REJECTED], O.PENDING_EDIT, [A]),
        _t('resubmit', [O.REJECTED, O.PENDING_EDIT, O.PENDING_SELLER_ACTION], O.PENDING_ADMIN, [AU]),
        _t('ratify', [O.PENDING_SELLER_APPROVAL], O.PENDING_BUYER, [AU]),
        _t('decline', [O.PENDING_SELLER_APPROVAL], O.HIDDEN_BY_ADMIN, [AU]),
        _t('accept', [O.PENDING_BUYER], O.ACCEPTED, [CP]),
        _t('propose_edit', [O.PENDING_ADMIN, O.PENDING_BUYER], O.WAITING_FOR_OWNER_EDIT_APPROVAL, [A]),
        _t('accept_edit', [O.WAITING_FOR_OWNER_EDIT_APPROVAL], O.PENDING_BUYER, [AU]),
        _t('decline_edit', [O.WAITING_FOR_OWNER_EDIT_APPROVAL], O.PENDING_BUYER, [AU]),
        _t('request_deletion', [O.PENDING_ADMIN, O.PENDING_BUYER, O.PENDING_SELLER_ACTION],
           O.PENDING_DELETION, [AU]),
        _t('confirm_deletion', [O.PENDING_DELETION], O.HIDDEN_BY_ADMIN, [A]),
        _t('deny_deletion', [O.PENDING_DELETION], O.PENDING_ADMIN, [A]),
        _t('hide', [O.PENDING_ADMIN, O.PENDING_BUYER, O.REJECTED, O.PENDING_EDIT,
                    O.PENDING_SELLER_ACTION, O.PENDING_DELETION], O.HIDDEN_BY_ADMIN, [A]),
    ],
    terminal=[O.ACCEPTED],
)


# ==============================================================================
# PUBLICACIÓN (M2)
# ==============================================================================
L = ListingStatus
LISTING_MACHINE = StateMachine(
    'Publicación', ListingStatus,
    initial=L.PENDING_ADMIN,
    on_behalf_initial=L.PENDING_SELLER_APPROVAL,
    transitions=[
        _t('approve', [L.PENDING_ADMIN], L.ACTIVE, [A]),
        _t('reject', [L.PENDING_ADMIN, L.ACTIVE], L.REJECTED, [A], True),
        _t('return', [L.PENDING_ADMIN, L.ACTIVE], L.REJECTED, [A], True),
        _t('resubmit', [L.REJECTED], L.PENDING_ADMIN, [AU]),
        _t('edit', [L.ACTIVE, L.HIDDEN, L.PENDING_ADMIN], L.PENDING_ADMIN, [AU]),
        _t('ratify', [L.PENDING_SELLER_APPROVAL], L.ACTIVE, [AU]),
        _t('decline', [L.PENDING_SELLER_APPROVAL], L.HIDDEN_BY_ADMIN, [AU]),
        _t('pause', [L.ACTIVE], L.HIDDEN, [AU]),
        _t('resume', [L.HIDDEN], L.ACTIVE, [AU]),
        _t('sell_out', [L.ACTIVE], L.SOLD, [SYS]),
        _t('propose_edit', [L.PENDING_ADMIN, L.ACTIVE], L.WAITING_FOR_OWNER_EDIT_APPROVAL, [A]),
        _t('accept_edit', [L.WAITING_FOR_OWNER_EDIT_APPROVAL], L.ACTIVE, [AU]),
        _t('decline_edit', [L.WAITING_FOR_OWNER_EDIT_APPROVAL], L.ACTIVE, [AU]),
        _t('archive', [L.PENDING_ADMIN, L.ACTIVE, L.HIDDEN, L.REJECTED, L.SOLD], L.HIDDEN_BY_ADMIN, [A]),
    ],
)


# ==============================================================================
# OFERTA DE COMPRA (M2)
# ==============================================================================
P = PurchaseOfferStatus
PURCHASE_OFFER_MACHINE = StateMachine(
    'Oferta de compra', PurchaseOfferStatus,
    initial=P.PENDING_ADMIN,
    on_behalf_initial=P.PENDING_BUYER_APPROVAL,
    transitions=[
        _t('approve', [P.PENDING_ADMIN], P.PENDING_SELLER, [A]),
        _t('reject', [P.PENDING_ADMIN, P.PENDING_SELLER], P.REJECTED, [A], True),
        _t('reject', [P.PENDING_SELLER], P.REJECTED, [CP], True),
        _t('resubmit', [P.REJECTED], P.PENDING_SELLER, [AU]),
        _t('ratify', [P.PENDING_BUYER_APPROVAL], P.PENDING_SELLER, [AU]),
        _t('decline', [P.PENDING_BUYER_APPROVAL], P.HIDDEN_BY_ADMIN, [AU]),
        _t('accept', [P.PENDING_SELLER], P.ACCEPTED, [CP]),
        _t('archive', [P.PENDING_ADMIN, P.PENDING_SELLER, P.REJECTED], P.HIDDEN_BY_ADMIN, [A]),
    ],
    terminal=[P.ACCEPTED],
)
