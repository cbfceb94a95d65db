import pytest

from yubarta.errors import ConflictError, TransitionError, ValidationError
from yubarta.models import LogAuthor, LogEventType, OfferStatus, RequirementStatus
from yubarta.services.state_machine import RETURN_PREFIX
from yubarta.tests.conftest import make_offer, make_requirement


def _sent_to_buyer(users, sourcing, requirement_id, quantity):
    offer = sourcing.create_offer(users['seller'], make_offer(requirement_id, quantity))
    return sourcing.approve_offer(users['admin'], offer.id)


# ---------------------------------------------------------------------------
# Requerimientos
# ---------------------------------------------------------------------------

def test_requirement_volume_and_fee(users, sourcing):
    req = sourcing.create_requirement(users['buyer'], make_requirement())
    assert req.status == RequirementStatus.PENDING_ADMIN
    assert req.buyer_id == users['buyer'].id
    assert req.total_volume == 100
    assert req.management_fee_per_kg == 70.0
    assert req.id.startswith('M1-REQ-')
    assert req.title == 'Plásticos PEAD'


def test_requirement_return_and_resubmit(users, sourcing):
    req = sourcing.create_requirement(users['buyer'], make_requirement())
    returned = sourcing.reject_requirement(users['admin'], req.id, 'Precise la humedad',
                                           return_for_correction=True)
    assert returned.status == RequirementStatus.REJECTED
    assert returned.rejection_reason.startswith(RETURN_PREFIX)

    again = sourcing.resubmit_requirement(users['buyer'], req.id, {'especificacionesCalidad': 'Humedad < 3%'})
    assert again.status == RequirementStatus.PENDING_ADMIN
    assert again.especificaciones_calidad == 'Humedad < 3%'
    assert again.rejection_reason is None


def test_requirement_edit_proposal_recomputes_fee(users, sourcing, active_requirement):
    proposed = sourcing.propose_requirement_edit(users['admin'], active_requirement.id, {'cantidadRequerida': 300})
    assert proposed.status == RequirementStatus.WAITING_FOR_OWNER_EDIT_APPROVAL

    accepted = sourcing.decide_requirement_edit(users['buyer'], active_requirement.id, accept=True)
    assert accepted.status == RequirementStatus.ACTIVE
    assert accepted.cantidad_requerida == 300
    assert accepted.total_volume == 300
    assert accepted.management_fee_per_kg == 60.0
    assert accepted.pending_edits is None


def test_requirement_deletion_request(users, sourcing, active_requirement):
    pending = sourcing.request_requirement_deletion(users['buyer'], active_requirement.id)
    assert pending.status == RequirementStatus.PENDING_DELETION
    assert sourcing.decide_requirement_deletion(users['admin'], active_requirement.id, approve=True).status == \
        RequirementStatus.CANCELLED


def test_requirement_created_on_behalf(users, sourcing):
    req = sourcing.create_requirement(users['admin'], make_requirement(), on_behalf_of=users['buyer'].id)
    assert req.status == RequirementStatus.PENDING_BUYER_APPROVAL
    declined = sourcing.ratify_requirement(users['buyer'], req.id, accept=False)
    assert declined.status == RequirementStatus.HIDDEN_BY_ADMIN


# ---------------------------------------------------------------------------
# Ofertas
# ---------------------------------------------------------------------------

def test_offer_penalty_mirrors_requirement_fee(users, sourcing, active_requirement):
    offer = sourcing.create_offer(users['seller'], make_offer(active_requirement.id, 30))
    assert offer.status == OfferStatus.PENDING_ADMIN
    assert offer.penalty_fee_per_kg == active_requirement.management_fee_per_kg
    assert offer.communication_log == []


def test_offer_needs_active_requirement(users, sourcing):
    req = sourcing.create_requirement(users['buyer'], make_requirement())
    with pytest.raises(TransitionError):
        sourcing.create_offer(users['seller'], make_offer(req.id, 10))


def test_buyer_cannot_offer_on_own_requirement(users, sourcing, active_requirement):
    with pytest.raises(ConflictError):
        sourcing.create_offer(users['buyer'], make_offer(active_requirement.id, 10))


def test_counter_proposal_without_text_is_blocked(users, sourcing, store, active_requirement):
    with pytest.raises(ValidationError):
        sourcing.create_offer(users['seller'], make_offer(active_requirement.id, 10, acepta_metodo_pago=False))
    assert store.snapshot.offers == ()


def test_buyer_rejection_is_logged(users, sourcing, active_requirement):
    offer = _sent_to_buyer(users, sourcing, active_requirement.id, 20)
    rejected = sourcing.reject_offer(users['buyer'], offer.id, 'No cumple humedad')

    assert rejected.status == OfferStatus.REJECTED
    assert rejected.rejection_reason == 'No cumple humedad'
    entry = rejected.communication_log[-1]
    assert entry.event_type == LogEventType.BUYER_REJECTION
    assert entry.author == LogAuthor.BUYER
    assert entry.author_id == users['buyer'].id
    assert entry.message == 'No cumple humedad'
    assert entry.timestamp is not None


def test_admin_rejection_is_logged(users, sourcing, active_requirement):
    offer = sourcing.create_offer(users['seller'], make_offer(active_requirement.id, 20))
    rejected = sourcing.reject_offer(users['admin'], offer.id, 'Documentos incompletos')
    assert rejected.communication_log[-1].event_type == LogEventType.ADMIN_REJECTION


def test_buyer_cannot_reject_before_review(users, sourcing, active_requirement):
    offer = sourcing.create_offer(users['seller'], make_offer(active_requirement.id, 20))
    with pytest.raises(TransitionError):
        sourcing.reject_offer(users['buyer'], offer.id, 'No')


def test_feedback_round_trip_keeps_history(users, sourcing, active_requirement):
    offer = sourcing.create_offer(users['seller'], make_offer(active_requirement.id, 20))
    sourcing.request_seller_action(users['admin'], offer.id, 'Adjunte fotos del proceso')
    sourcing.seller_respond(users['seller'], offer.id, 'Fotos adjuntas')
    replied = sourcing.admin_reply(users['admin'], offer.id, 'Recibido, falta la ficha')

    assert replied.status == OfferStatus.PENDING_SELLER_ACTION
    assert [e.event_type for e in replied.communication_log] == [
        LogEventType.ADMIN_FEEDBACK,
        LogEventType.SELLER_RESPONSE,
        LogEventType.ADMIN_RESPONSE,
    ]

    resubmitted = sourcing.resubmit_offer(users['seller'], offer.id)
    assert resubmitted.status == OfferStatus.PENDING_ADMIN
    assert len(resubmitted.communication_log) == 3


def test_feedback_requires_message(users, sourcing, active_requirement):
    offer = sourcing.create_offer(users['seller'], make_offer(active_requirement.id, 20))
    with pytest.raises(ValidationError):
        sourcing.request_seller_action(users['admin'], offer.id, ' ')


def test_offer_suggested_by_admin(users, sourcing, active_requirement):
    offer = sourcing.create_offer(users['admin'], make_offer(active_requirement.id, 20),
                                  on_behalf_of=users['seller'].id)
    assert offer.status == OfferStatus.PENDING_SELLER_APPROVAL
    assert sourcing.ratify_offer(users['seller'], offer.id).status == OfferStatus.PENDING_BUYER


def test_offer_edit_proposal(users, sourcing, active_requirement):
    offer = _sent_to_buyer(users, sourcing, active_requirement.id, 20)
    sourcing.propose_offer_edit(users['admin'], offer.id, {'tipoVehiculo': 'Camión sencillo'})
    decided = sourcing.decide_offer_edit(users['seller'], offer.id, accept=True)
    assert decided.status == OfferStatus.PENDING_BUYER
    assert decided.tipo_vehiculo == 'Camión sencillo'


def test_offer_deletion_and_hide(users, sourcing, active_requirement):
    offer = sourcing.create_offer(users['seller'], make_offer(active_requirement.id, 20))
    sourcing.request_offer_deletion(users['seller'], offer.id)
    denied = sourcing.decide_offer_deletion(users['admin'], offer.id, approve=False)
    assert denied.status == OfferStatus.PENDING_ADMIN
    assert sourcing.hide_offer(users['admin'], offer.id).status == OfferStatus.HIDDEN_BY_ADMIN


# ---------------------------------------------------------------------------
# Aceptación
# ---------------------------------------------------------------------------

def test_acceptance_until_completion(users, sourcing, store, active_requirement):
    first = _sent_to_buyer(users, sourcing, active_requirement.id, 60)
    second = _sent_to_buyer(users, sourcing, active_requirement.id, 40)

    assert sourcing.accept_offer(users['buyer'], first.id).status == OfferStatus.ACCEPTED
    req = store.get('requirements', active_requirement.id)
    assert req.status == RequirementStatus.ACTIVE
    assert sourcing.remaining_volume(req) == 40

    sourcing.accept_offer(users['buyer'], second.id)
    assert store.get('requirements', active_requirement.id).status == RequirementStatus.COMPLETED
    assert len(store.snapshot.commitments) == 2


def test_only_requirement_owner_accepts(users, sourcing, active_requirement):
    offer = _sent_to_buyer(users, sourcing, active_requirement.id, 10)
    with pytest.raises(TransitionError):
        sourcing.accept_offer(users['buyer2'], offer.id)


def test_overflow_waits_for_quantity_increase(users, sourcing, store, active_requirement):
    sourcing.accept_offer(users['buyer'], _sent_to_buyer(users, sourcing, active_requirement.id, 60).id)
    big = _sent_to_buyer(users, sourcing, active_requirement.id, 50)

    req = sourcing.accept_offer(users['buyer'], big.id)
    assert req.status == RequirementStatus.PENDING_QUANTITY_INCREASE
    assert req.pending_quantity_increase == 110
    assert req.triggering_offer_id_for_increase == big.id
    assert store.get('offers', big.id).status == OfferStatus.PENDING_BUYER
    assert len(store.snapshot.commitments) == 1


def test_quantity_increase_approved(users, sourcing, store, active_requirement):
    sourcing.accept_offer(users['buyer'], _sent_to_buyer(users, sourcing, active_requirement.id, 60).id)
    big = _sent_to_buyer(users, sourcing, active_requirement.id, 50)
    sourcing.accept_offer(users['buyer'], big.id)

    req = sourcing.decide_quantity_increase(users['admin'], active_requirement.id, approve=True)
    assert req.total_volume == 110
    assert req.status == RequirementStatus.COMPLETED
    assert req.pending_quantity_increase is None
    assert store.get('offers', big.id).status == OfferStatus.ACCEPTED


def test_quantity_increase_rejected(users, sourcing, store, active_requirement):
    sourcing.accept_offer(users['buyer'], _sent_to_buyer(users, sourcing, active_requirement.id, 60).id)
    big = _sent_to_buyer(users, sourcing, active_requirement.id, 50)
    sourcing.accept_offer(users['buyer'], big.id)

    with pytest.raises(ValidationError):
        sourcing.decide_quantity_increase(users['admin'], active_requirement.id, approve=False)

    req = sourcing.decide_quantity_increase(users['admin'], active_requirement.id, approve=False,
                                            reason='Presupuesto agotado')
    assert req.status == RequirementStatus.ACTIVE
    assert req.total_volume == 100
    offer = store.get('offers', big.id)
    assert offer.status == OfferStatus.REJECTED
    assert offer.communication_log[-1].event_type == LogEventType.ADMIN_REJECTION


def test_accepted_offer_is_final(users, sourcing, active_requirement):
    offer = _sent_to_buyer(users, sourcing, active_requirement.id, 10)
    sourcing.accept_offer(users['buyer'], offer.id)
    with pytest.raises(TransitionError):
        sourcing.force_offer_status(users['admin'], offer.id, OfferStatus.REJECTED)
    with pytest.raises(TransitionError):
        sourcing.resubmit_offer(users['seller'], offer.id)


def test_buyer_rejection_releases_pending_increase(users, sourcing, store, active_requirement):
    sourcing.accept_offer(users['buyer'], _sent_to_buyer(users, sourcing, active_requirement.id, 60).id)
    big = _sent_to_buyer(users, sourcing, active_requirement.id, 50)
    sourcing.accept_offer(users['buyer'], big.id)

    sourcing.reject_offer(users['buyer'], big.id, 'Mejor no')
    req = store.get('requirements', active_requirement.id)
    assert req.status == RequirementStatus.ACTIVE
    assert req.triggering_offer_id_for_increase is None
    assert req.pending_quantity_increase is None

    with pytest.raises(TransitionError):
        sourcing.decide_quantity_increase(users['admin'], active_requirement.id, approve=True)
    assert store.get('offers', big.id).status == OfferStatus.REJECTED
    assert len(store.snapshot.commitments) == 1


def test_increase_approval_needs_offer_still_waiting(users, sourcing, store, active_requirement):
    sourcing.accept_offer(users['buyer'], _sent_to_buyer(users, sourcing, active_requirement.id, 60).id)
    big = _sent_to_buyer(users, sourcing, active_requirement.id, 50)
    sourcing.accept_offer(users['buyer'], big.id)
    # El admin oculta la oferta antes de decidir el aumento
    sourcing.hide_offer(users['admin'], big.id)

    with pytest.raises(TransitionError):
        sourcing.decide_quantity_increase(users['admin'], active_requirement.id, approve=True)

    req = store.get('requirements', active_requirement.id)
    assert req.status == RequirementStatus.ACTIVE
    assert req.total_volume == 100
    assert req.triggering_offer_id_for_increase is None
    assert store.get('offers', big.id).status == OfferStatus.HIDDEN_BY_ADMIN
    assert len(store.snapshot.commitments) == 1


def test_offer_on_cancelled_requirement_cannot_be_accepted(users, sourcing, store, active_requirement):
    offer = _sent_to_buyer(users, sourcing, active_requirement.id, 10)
    sourcing.cancel_requirement(users['buyer'], active_requirement.id)

    with pytest.raises(TransitionError):
        sourcing.accept_offer(users['buyer'], offer.id)
    assert store.get('offers', offer.id).status == OfferStatus.PENDING_BUYER
    assert store.snapshot.commitments == ()
