from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.core.service_requests import (
    ConcurrencyConflictError,
    PersistenceError,
    ServiceRequestCreateRequest,
)
from src.core.service_requests.audit import new_action, new_status_history
from src.core.service_requests.models import (
    ArtisanRefusalRecord,
    BillingEstimateRecord,
    ServiceRequestRecord,
    ServiceRequestTransitionWrite,
)
from src.infrastructure.service_requests import (
    InMemoryServiceRequestRepository,
    SqliteServiceRequestRepository,
)
from tests.factories import CLIENT, build_service

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["in_memory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "sqlite":
        return SqliteServiceRequestRepository(
            database_path=str(tmp_path / "nested" / "service_requests.db")
        )
    return InMemoryServiceRequestRepository()


def _request(service_request_id="sr_1", status="AWAITING_ESTIMATE", row_version=1, **changes):
    return ServiceRequestRecord(
        service_request_id=service_request_id,
        client_id="usr_client_01",
        status=status,
        service_type="plumbing",
        title="Leaking tap",
        created_at=NOW,
        updated_at=NOW,
        row_version=row_version,
        **changes,
    )


def _estimate(estimate_id="est_1", status="pending", row_version=1, **changes):
    values = {
        "service_request_id": "sr_1",
        "author_id": "usr_admin_01",
        "estimated_price": Decimal("180.50"),
        "description": "Replace cartridge.",
        "revision_number": 1,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(changes)
    return BillingEstimateRecord(
        estimate_id=estimate_id, status=status, row_version=row_version, **values
    )


def _create(repository, service_request_id="sr_1"):
    repository.commit_transition(
        ServiceRequestTransitionWrite(
            service_request=_request(service_request_id),
            status_history=new_status_history(
                service_request_id=service_request_id,
                status="AWAITING_ESTIMATE",
                recorded_at=NOW,
            ),
        )
    )


def _with_estimate(repository, estimate: BillingEstimateRecord, row_version: int) -> None:
    repository.commit_transition(
        ServiceRequestTransitionWrite(
            service_request=_request(
                status="AWAITING_ESTIMATE_ACCEPTATION", row_version=row_version + 1
            ),
            expected_row_version=row_version,
            estimate=estimate,
            status_history=new_status_history(
                service_request_id="sr_1",
                status="AWAITING_ESTIMATE_ACCEPTATION",
                recorded_at=NOW,
            ),
            actions=[
                new_action(
                    service_request_id="sr_1",
                    actor_id="usr_admin_01",
                    actor_type="admin",
                    action_type="estimate_creation",
                    status="AWAITING_ESTIMATE_ACCEPTATION",
                    occurred_at=NOW,
                    estimate_id=estimate.estimate_id,
                    additional_data={"photos": ["uploads/a.jpg"]},
                )
            ],
        )
    )


def test_commit_persists_aggregate_and_audit_rows(repository):
    _create(repository)
    _with_estimate(repository, _estimate(valid_until=NOW + timedelta(days=1)), row_version=1)

    record = repository.get_service_request(service_request_id="sr_1")
    assert record.status == "AWAITING_ESTIMATE_ACCEPTATION"
    assert record.row_version == 2
    estimate = repository.get_estimate(estimate_id="est_1")
    assert estimate.estimated_price == Decimal("180.50")
    assert estimate.valid_until == NOW + timedelta(days=1)
    assert estimate.client_accepted is None
    history = repository.list_status_history(service_request_id="sr_1")
    assert [entry.status for entry in history] == [
        "AWAITING_ESTIMATE",
        "AWAITING_ESTIMATE_ACCEPTATION",
    ]
    actions = repository.list_actions(service_request_id="sr_1")
    assert actions[0].additional_data == {"photos": ["uploads/a.jpg"]}
    assert actions[0].estimate_id == "est_1"
    assert repository.get_service_request(service_request_id="sr_missing") is None
    assert repository.get_estimate(estimate_id="est_missing") is None


def test_duplicate_insert_conflicts(repository):
    _create(repository)
    with pytest.raises(ConcurrencyConflictError):
        _create(repository)


def test_stale_version_conflicts_without_partial_write(repository):
    _create(repository)
    _with_estimate(repository, _estimate(), row_version=1)

    with pytest.raises(ConcurrencyConflictError):
        repository.commit_transition(
            ServiceRequestTransitionWrite(
                service_request=_request(status="CANCELLED", row_version=2),
                expected_row_version=1,
                status_history=new_status_history(
                    service_request_id="sr_1", status="CANCELLED", recorded_at=NOW
                ),
            )
        )

    assert repository.get_service_request(service_request_id="sr_1").status == (
        "AWAITING_ESTIMATE_ACCEPTATION"
    )
    assert len(repository.list_status_history(service_request_id="sr_1")) == 2


def test_stale_estimate_version_conflicts(repository):
    _create(repository)
    _with_estimate(repository, _estimate(), row_version=1)

    with pytest.raises(ConcurrencyConflictError):
        repository.commit_transition(
            ServiceRequestTransitionWrite(
                service_request=_request(status="AWAITING_ASSIGNATION", row_version=3),
                expected_row_version=2,
                estimate=_estimate(status="accepted", row_version=3),
                expected_estimate_row_version=2,
            )
        )
    assert repository.get_estimate(estimate_id="est_1").status == "pending"


def test_second_pending_estimate_conflicts(repository):
    _create(repository)
    _with_estimate(repository, _estimate(), row_version=1)

    with pytest.raises(ConcurrencyConflictError):
        repository.commit_transition(
            ServiceRequestTransitionWrite(
                service_request=_request(
                    status="AWAITING_ESTIMATE_ACCEPTATION", row_version=3
                ),
                expected_row_version=2,
                estimate=_estimate(estimate_id="est_2"),
            )
        )

    estimates = repository.list_estimates(service_request_id="sr_1")
    assert [estimate.estimate_id for estimate in estimates] == ["est_1"]
    assert repository.get_service_request(service_request_id="sr_1").row_version == 2


def test_estimates_listed_in_creation_order_and_lapsed_ones_found(repository):
    _create(repository)
    _with_estimate(repository, _estimate(valid_until=NOW + timedelta(hours=1)), row_version=1)
    repository.commit_transition(
        ServiceRequestTransitionWrite(
            service_request=_request(status="AWAITING_ESTIMATE", row_version=3),
            expected_row_version=2,
            estimate=_estimate(status="expired", row_version=2, valid_until=NOW),
            expected_estimate_row_version=1,
        )
    )
    repository.commit_transition(
        ServiceRequestTransitionWrite(
            service_request=_request(status="AWAITING_ESTIMATE_ACCEPTATION", row_version=4),
            expected_row_version=3,
            estimate=_estimate(estimate_id="a_est_2", valid_until=NOW + timedelta(hours=2)),
        )
    )

    estimates = repository.list_estimates(service_request_id="sr_1")
    assert [estimate.estimate_id for estimate in estimates] == ["est_1", "a_est_2"]
    assert repository.list_lapsed_pending_estimates(now=NOW + timedelta(hours=1)) == []
    lapsed = repository.list_lapsed_pending_estimates(now=NOW + timedelta(hours=3))
    assert [estimate.estimate_id for estimate in lapsed] == ["a_est_2"]


def test_refusals_are_unique_per_artisan(repository):
    _create(repository)
    for row_version in (1, 2):
        repository.commit_transition(
            ServiceRequestTransitionWrite(
                service_request=_request(row_version=row_version + 1),
                expected_row_version=row_version,
                refusal=ArtisanRefusalRecord(
                    artisan_id="usr_artisan_07",
                    service_request_id="sr_1",
                    source="ASSIGNMENT",
                    refused_at=NOW,
                ),
            )
        )

    assert repository.has_refusal(service_request_id="sr_1", artisan_id="usr_artisan_07")
    assert not repository.has_refusal(service_request_id="sr_1", artisan_id="usr_artisan_08")
    assert len(repository.list_refusals(service_request_id="sr_1")) == 1


def test_list_service_requests_filters_and_pages(repository):
    for index in range(3):
        _create(repository, service_request_id=f"sr_{index}")

    page, cursor = repository.list_service_requests(
        status="AWAITING_ESTIMATE",
        client_id="usr_client_01",
        assigned_artisan_id=None,
        limit=2,
        cursor=None,
    )
    assert [row.service_request_id for row in page] == ["sr_2", "sr_1"]
    assert cursor == "sr_1"
    page, cursor = repository.list_service_requests(
        status=None, client_id=None, assigned_artisan_id=None, limit=2, cursor=cursor
    )
    assert [row.service_request_id for row in page] == ["sr_0"]
    assert cursor is None
    page, _ = repository.list_service_requests(
        status=None, client_id=None, assigned_artisan_id="usr_artisan_07", limit=10, cursor=None
    )
    assert page == []


def test_sqlite_unreachable_database_raises_retriable_persistence_error(tmp_path):
    repository = SqliteServiceRequestRepository(database_path=str(tmp_path / "sr.db"))
    repository._database_path = str(tmp_path / "gone" / "sr.db")
    service = build_service(repository=repository)

    with pytest.raises(PersistenceError) as exc:
        service.create_service_request(
            actor=CLIENT,
            payload=ServiceRequestCreateRequest(service_type="plumbing"),
        )
    assert exc.value.code == "SERVICE_REQUEST_PERSISTENCE_FAILED"
    assert exc.value.retriable is True

    with pytest.raises(PersistenceError):
        repository.get_service_request(service_request_id="sr_1")
    with pytest.raises(PersistenceError):
        repository.has_refusal(service_request_id="sr_1", artisan_id="usr_artisan_07")
