import pytest

from src.core.service_requests import (
    AuthorizationError,
    CancellationRequest,
    DisputeRequest,
    DisputeResolutionRequest,
    InvalidStateError,
    ValidationError,
    ValidationRequest,
)
from src.infrastructure.service_requests import InMemoryServiceRequestRepository
from tests.factories import (
    ADMIN,
    ARTISAN,
    CLIENT,
    FixedClock,
    OTHER_ARTISAN,
    OTHER_CLIENT,
    artisan_validation,
    build_service,
    request_awaiting_assignation,
    request_awaiting_estimate_acceptation,
    request_in_progress,
)


def _service():
    repository = InMemoryServiceRequestRepository()
    return build_service(repository=repository), repository


def _dispute(details="The tap still drips after the visit.", reason="quality"):
    return DisputeRequest(reason=reason, details=details, photos=["uploads/drip.jpg", " "])


def _actions(repository, service_request_id, action_type):
    return [
        action
        for action in repository.list_actions(service_request_id=service_request_id)
        if action.action_type == action_type
    ]


def test_accept_assignment_assigns_artisan_once():
    service, repository = _service()
    service_request_id, _ = request_awaiting_assignation(service)

    response = service.accept_assignment(actor=ARTISAN, service_request_id=service_request_id)

    assert response.previous_status == "AWAITING_ASSIGNATION"
    assert response.status == "IN_PROGRESS"
    record = repository.get_service_request(service_request_id=service_request_id)
    assert record.assigned_artisan_id == ARTISAN.actor_id
    with pytest.raises(InvalidStateError):
        service.accept_assignment(actor=OTHER_ARTISAN, service_request_id=service_request_id)
    with pytest.raises(AuthorizationError):
        service.accept_assignment(actor=CLIENT, service_request_id=service_request_id)


def test_decline_assignment_records_refusal_without_status_change():
    service, repository = _service()
    service_request_id, _ = request_awaiting_assignation(service)

    response = service.decline_assignment(actor=ARTISAN, service_request_id=service_request_id)

    assert response.status == "AWAITING_ASSIGNATION"
    assert response.status_history_id is None
    assert response.refusal_recorded is True
    assert len(response.action_ids) == 1
    assert repository.has_refusal(
        service_request_id=service_request_id, artisan_id=ARTISAN.actor_id
    )

    with pytest.raises(InvalidStateError) as repeat:
        service.decline_assignment(actor=ARTISAN, service_request_id=service_request_id)
    assert repeat.value.code == "ASSIGNMENT_ALREADY_REFUSED"
    with pytest.raises(InvalidStateError) as accept:
        service.accept_assignment(actor=ARTISAN, service_request_id=service_request_id)
    assert accept.value.code == "ASSIGNMENT_PREVIOUSLY_REFUSED"


def test_decline_assignment_requires_awaiting_assignation():
    service, _ = _service()
    service_request_id, _ = request_awaiting_estimate_acceptation(service)

    with pytest.raises(InvalidStateError):
        service.decline_assignment(actor=ARTISAN, service_request_id=service_request_id)


def test_start_mission_is_idempotent_for_assigned_artisan():
    service, repository = _service()
    service_request_id, _ = request_in_progress(service)

    first = service.start_mission(actor=ARTISAN, service_request_id=service_request_id)
    second = service.start_mission(actor=ARTISAN, service_request_id=service_request_id)

    assert first.status == "IN_PROGRESS"
    assert len(first.action_ids) == 1
    assert second.status == "IN_PROGRESS"
    assert second.action_ids == []
    assert len(_actions(repository, service_request_id, "mission_start")) == 1
    with pytest.raises(AuthorizationError):
        service.start_mission(actor=OTHER_ARTISAN, service_request_id=service_request_id)
    with pytest.raises(AuthorizationError):
        service.start_mission(actor=CLIENT, service_request_id=service_request_id)


def test_dual_validation_completes_request():
    service, repository = _service()
    service_request_id, _ = request_in_progress(service)

    artisan = service.validate(
        actor=ARTISAN, service_request_id=service_request_id, payload=artisan_validation()
    )
    assert artisan.status == "ARTISAN_VALIDATED"

    client = service.validate(
        actor=CLIENT, service_request_id=service_request_id, payload=ValidationRequest()
    )
    assert client.previous_status == "ARTISAN_VALIDATED"
    assert client.status == "COMPLETED"
    validations = _actions(repository, service_request_id, "validation")
    assert [action.actor_type for action in validations] == ["professional", "client"]
    assert validations[0].additional_data == {"photos": ["uploads/sr/after.jpg"]}


def test_repeat_validation_by_same_party_is_rejected_without_new_action():
    service, repository = _service()
    service_request_id, _ = request_in_progress(service)
    service.validate(
        actor=CLIENT, service_request_id=service_request_id, payload=ValidationRequest()
    )

    with pytest.raises(InvalidStateError) as exc:
        service.validate(
            actor=CLIENT, service_request_id=service_request_id, payload=ValidationRequest()
        )

    assert exc.value.code == "ALREADY_VALIDATED"
    assert len(_actions(repository, service_request_id, "validation")) == 1
    record = repository.get_service_request(service_request_id=service_request_id)
    assert record.status == "CLIENT_VALIDATED"


def test_artisan_validation_requires_notes_and_photo():
    service, _ = _service()
    service_request_id, _ = request_in_progress(service)

    with pytest.raises(ValidationError) as notes:
        service.validate(
            actor=ARTISAN,
            service_request_id=service_request_id,
            payload=ValidationRequest(notes="Done.", photos=["uploads/after.jpg"]),
        )
    assert notes.value.code == "VALIDATION_NOTES_TOO_SHORT"
    with pytest.raises(ValidationError) as photos:
        service.validate(
            actor=ARTISAN,
            service_request_id=service_request_id,
            payload=ValidationRequest(notes="Cartridge replaced and leak tested.", photos=[" "]),
        )
    assert photos.value.code == "VALIDATION_PHOTO_REQUIRED"


def test_validation_limited_to_parties_of_the_request():
    service, _ = _service()
    service_request_id, _ = request_in_progress(service)

    with pytest.raises(AuthorizationError):
        service.validate(
            actor=OTHER_CLIENT, service_request_id=service_request_id, payload=ValidationRequest()
        )
    with pytest.raises(AuthorizationError):
        service.validate(
            actor=OTHER_ARTISAN,
            service_request_id=service_request_id,
            payload=artisan_validation(),
        )
    with pytest.raises(AuthorizationError):
        service.validate(
            actor=ADMIN, service_request_id=service_request_id, payload=ValidationRequest()
        )


def test_completed_request_admits_no_further_transition():
    service, repository = _service()
    service_request_id, _ = request_in_progress(service)
    service.validate(
        actor=CLIENT, service_request_id=service_request_id, payload=ValidationRequest()
    )
    service.validate(
        actor=ARTISAN, service_request_id=service_request_id, payload=artisan_validation()
    )
    assert repository.get_service_request(service_request_id=service_request_id).status == (
        "COMPLETED"
    )

    with pytest.raises(InvalidStateError):
        service.raise_dispute(
            actor=CLIENT, service_request_id=service_request_id, payload=_dispute()
        )
    with pytest.raises(InvalidStateError):
        service.cancel_service_request(
            actor=ADMIN,
            service_request_id=service_request_id,
            payload=CancellationRequest(reason="Too late."),
        )
    with pytest.raises(InvalidStateError):
        service.start_mission(actor=ARTISAN, service_request_id=service_request_id)


def test_disputes_escalate_and_admin_resolves():
    service, repository = _service()
    service_request_id, _ = request_in_progress(service)

    client = service.raise_dispute(
        actor=CLIENT, service_request_id=service_request_id, payload=_dispute()
    )
    assert client.status == "DISPUTED_BY_CLIENT"
    artisan = service.raise_dispute(
        actor=ARTISAN,
        service_request_id=service_request_id,
        payload=_dispute(details="Client denied access twice.", reason="access_denied"),
    )
    assert artisan.status == "DISPUTED_BY_BOTH"

    resolved = service.resolve_dispute(
        actor=ADMIN,
        service_request_id=service_request_id,
        payload=DisputeResolutionRequest(),
    )
    assert resolved.previous_status == "DISPUTED_BY_BOTH"
    assert resolved.status == "RESOLVED"

    disputes = _actions(repository, service_request_id, "dispute")
    assert [action.dispute_reason for action in disputes] == ["quality", "access_denied"]
    assert disputes[0].additional_data == {"photos": ["uploads/drip.jpg"]}
    resolution = _actions(repository, service_request_id, "dispute_resolution")[0]
    assert resolution.completion_notes == "Dispute resolved by admin"


def test_resolved_request_cannot_be_disputed_again_but_can_be_validated():
    service, _ = _service()
    service_request_id, _ = request_in_progress(service)
    service.raise_dispute(actor=CLIENT, service_request_id=service_request_id, payload=_dispute())
    service.resolve_dispute(
        actor=ADMIN,
        service_request_id=service_request_id,
        payload=DisputeResolutionRequest(resolution_notes="Artisan returns free of charge."),
    )

    with pytest.raises(InvalidStateError):
        service.raise_dispute(
            actor=ARTISAN, service_request_id=service_request_id, payload=_dispute()
        )

    client = service.validate(
        actor=CLIENT, service_request_id=service_request_id, payload=ValidationRequest()
    )
    assert client.status == "CLIENT_VALIDATED"
    artisan = service.validate(
        actor=ARTISAN, service_request_id=service_request_id, payload=artisan_validation()
    )
    assert artisan.status == "COMPLETED"


def test_dispute_rejections():
    service, _ = _service()
    service_request_id, _ = request_in_progress(service)

    with pytest.raises(ValidationError) as short:
        service.raise_dispute(
            actor=CLIENT, service_request_id=service_request_id, payload=_dispute(details="Bad")
        )
    assert short.value.code == "DISPUTE_DETAILS_TOO_SHORT"
    with pytest.raises(InvalidStateError):
        service.resolve_dispute(
            actor=ADMIN,
            service_request_id=service_request_id,
            payload=DisputeResolutionRequest(),
        )
    service.raise_dispute(actor=CLIENT, service_request_id=service_request_id, payload=_dispute())
    with pytest.raises(InvalidStateError) as repeat:
        service.raise_dispute(
            actor=CLIENT, service_request_id=service_request_id, payload=_dispute()
        )
    assert repeat.value.code == "DISPUTE_ALREADY_OPEN"
    with pytest.raises(AuthorizationError):
        service.resolve_dispute(
            actor=CLIENT,
            service_request_id=service_request_id,
            payload=DisputeResolutionRequest(),
        )


def test_dispute_before_assignment_is_rejected():
    service, _ = _service()
    service_request_id, _ = request_awaiting_assignation(service)

    with pytest.raises(InvalidStateError):
        service.raise_dispute(
            actor=CLIENT, service_request_id=service_request_id, payload=_dispute()
        )


def test_admin_cancellation_rejects_pending_estimate():
    service, repository = _service()
    service_request_id, estimate_id = request_awaiting_estimate_acceptation(service)

    with pytest.raises(ValidationError):
        service.cancel_service_request(
            actor=ADMIN,
            service_request_id=service_request_id,
            payload=CancellationRequest(reason=" "),
        )
    with pytest.raises(AuthorizationError):
        service.cancel_service_request(
            actor=CLIENT,
            service_request_id=service_request_id,
            payload=CancellationRequest(reason="Changed my mind."),
        )

    response = service.cancel_service_request(
        actor=ADMIN,
        service_request_id=service_request_id,
        payload=CancellationRequest(reason="Client no longer reachable."),
    )

    assert response.status == "CANCELLED"
    assert response.estimate_id == estimate_id
    assert repository.get_estimate(estimate_id=estimate_id).status == "rejected"
    with pytest.raises(InvalidStateError):
        service.cancel_service_request(
            actor=ADMIN,
            service_request_id=service_request_id,
            payload=CancellationRequest(reason="Again."),
        )


def test_dispute_queue_lists_disputed_requests_with_latest_dispute():
    clock = FixedClock()
    service = build_service(clock=clock)
    client_only, _ = request_in_progress(service)
    both_sides, _ = request_in_progress(service)
    resolved, _ = request_in_progress(service)
    request_in_progress(service)

    clock.advance(hours=1)
    service.raise_dispute(actor=CLIENT, service_request_id=client_only, payload=_dispute())
    for service_request_id in (both_sides, resolved):
        service.raise_dispute(
            actor=CLIENT, service_request_id=service_request_id, payload=_dispute()
        )
    service.resolve_dispute(
        actor=ADMIN, service_request_id=resolved, payload=DisputeResolutionRequest()
    )
    clock.advance(hours=1)
    service.raise_dispute(
        actor=ARTISAN,
        service_request_id=both_sides,
        payload=_dispute(details="Client denied access twice.", reason="access_denied"),
    )

    queue = service.list_disputed_requests(actor=ADMIN)

    assert queue.count == 2
    assert [item.service_request.service_request_id for item in queue.items] == [
        both_sides,
        client_only,
    ]
    assert [item.service_request.status for item in queue.items] == [
        "DISPUTED_BY_BOTH",
        "DISPUTED_BY_CLIENT",
    ]
    latest = queue.items[0].latest_dispute
    assert latest.actor_id == ARTISAN.actor_id
    assert latest.dispute_reason == "access_denied"
    assert queue.items[1].latest_dispute.dispute_reason == "quality"

    for actor in (CLIENT, ARTISAN):
        with pytest.raises(AuthorizationError) as exc:
            service.list_disputed_requests(actor=actor)
        assert exc.value.code == "ROLE_NOT_PERMITTED"


def test_dispute_queue_is_empty_without_disputes():
    service, _ = _service()
    request_in_progress(service)

    queue = service.list_disputed_requests(actor=ADMIN)

    assert queue.items == []
    assert queue.count == 0
