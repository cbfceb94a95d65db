# ==============================================================================
# UTILIDADES DE FLUJO - compartidas por Sourcing y Marketplace
# ==============================================================================

import dataclasses
from typing import Any, Dict, Iterable, Optional

from yubarta.errors import TransitionError, ValidationError
from yubarta.models import User, WireEntity
from yubarta.services.state_machine import Actor, StateMachine, actor_for
from yubarta.store import DataStore

# Campos que ninguna edición puede tocar (se controlan desde los servicios)
PROTECTED_FIELDS = frozenset([
    'id', 'status', 'buyerId', 'sellerId', 'createdAt', 'createdByAdmin',
    'managementFeePerKg', 'feeScheduleVersion', 'penaltyFeePerKg',
    'communicationLog', 'appliedCommitmentIds', 'pendingEdits',
    'requirementId', 'listingId',
])


def status_value(status: Any) -> Any:
    return getattr(status, 'value', status)


def check_changes(entity_cls, changes: Dict[str, Any]) -> None:
    """
    Valida un diccionario de cambios en formato de intercambio.

    Raises:
        ValidationError: campos desconocidos o protegidos
    """
    errors = []
    for key in changes:
        if key in PROTECTED_FIELDS:
            errors.append(f'El campo "{key}" no es editable')
        elif entity_cls.attr_name(key) is None:
            errors.append(f'Campo desconocido "{key}"')
    if errors:
        raise ValidationError(errors)


def merged(record: WireEntity, changes: Optional[Dict[str, Any]]) -> WireEntity:
    """Copia del registro con los cambios aplicados (sin persistir)."""
    if not changes:
        # Nunca se modifican las entidades del snapshot
        return dataclasses.replace(record)
    check_changes(type(record), changes)
    return type(record).from_dict({**record.to_dict(), **changes})


def require_actor(user: Optional[User], author_id: str, counterparty_id: Optional[str] = None,
                  allowed: Iterable[Actor] = (Actor.ADMIN, Actor.AUTHOR, Actor.COUNTERPARTY)) -> Actor:
    actor = actor_for(user, author_id, counterparty_id)
    if actor is None or actor not in tuple(allowed):
        raise TransitionError('El usuario no tiene permisos sobre este registro')
    return actor


def transition(store: DataStore, collection: str, machine: StateMachine, record: WireEntity,
               action: str, actor: Optional[Actor], reason: Optional[str] = None,
               extra: Optional[Dict[str, Any]] = None) -> WireEntity:
    """Aplica una acción de la máquina y persiste estado + campos extra."""
    target = machine.apply(action, record.status, actor, reason)
    changes = dict(extra or {})
    changes['status'] = status_value(target)
    return store.update(collection, record.id, changes)
