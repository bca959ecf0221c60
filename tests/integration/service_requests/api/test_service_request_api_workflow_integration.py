import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.routers.service_requests import reset_service_request_workflow_service_for_tests

CLIENT = {"X-Actor-Id": "usr_client_01", "X-Actor-Role": "client"}
ARTISAN = {"X-Actor-Id": "usr_artisan_07", "X-Actor-Role": "professional"}
OTHER_ARTISAN = {"X-Actor-Id": "usr_artisan_08", "X-Actor-Role": "professional"}
ADMIN = {"X-Actor-Id": "usr_admin_01", "X-Actor-Role": "admin"}


@pytest.fixture
def sqlite_backend(monkeypatch, tmp_path):
    monkeypatch.setenv("SERVICE_REQUEST_STORE_BACKEND", "SQLITE")
    monkeypatch.setenv("SERVICE_REQUEST_SQL_PATH", str(tmp_path / "service_requests.db"))
    reset_service_request_workflow_service_for_tests()


@pytest.mark.filterwarnings("ignore::DeprecationWarning")
def test_revision_refusal_reassigns_and_survives_service_restart(sqlite_backend) -> None:
    with TestClient(app) as client:
        created = client.post(
            "/service-requests",
            json={"service_type": "plumbing", "title": "Corroded supply pipe"},
            headers={**CLIENT, "X-Correlation-Id": "corr-integration-sr-1"},
        )
        assert created.status_code == 200
        assert created.headers["X-Correlation-Id"] == "corr-integration-sr-1"
        service_request_id = created.json()["service_request_id"]

        estimate_id = client.post(
            f"/service-requests/{service_request_id}/estimates",
            json={"estimated_price": "180.00", "description": "Replace mixer tap cartridge."},
            headers=ADMIN,
        ).json()["estimate_id"]
        client.post(
            f"/billing-estimates/{estimate_id}/response",
            json={"decision": "ACCEPT", "response": "Go ahead."},
            headers=CLIENT,
        )
        client.post(f"/service-requests/{service_request_id}/assignment/accept", headers=ARTISAN)
        client.post(
            f"/billing-estimates/{estimate_id}/artisan-rejection",
            json={
                "reason": (
                    "On site the supply pipe behind the wall is corroded and must be "
                    "fully replaced."
                )
            },
            headers=ARTISAN,
        )
        revision_id = client.post(
            f"/service-requests/{service_request_id}/estimates/revisions",
            json={"estimated_price": "320.00", "description": "Replace the supply pipe."},
            headers=ADMIN,
        ).json()["estimate_id"]
        client_accept = client.post(
            f"/billing-estimates/{revision_id}/revision-response",
            json={"decision": "ACCEPT"},
            headers=CLIENT,
        )
        artisan_refuse = client.post(
            f"/billing-estimates/{revision_id}/revision-response",
            json={"decision": "REFUSE", "response": "Out of my scope."},
            headers=ARTISAN,
        )

    assert client_accept.json()["status"] == "AWAITING_DUAL_ACCEPTANCE"
    assert artisan_refuse.json()["status"] == "AWAITING_ASSIGNATION"
    assert artisan_refuse.json()["refusal_recorded"] is True

    reset_service_request_workflow_service_for_tests()

    with TestClient(app) as client:
        detail = client.get(f"/service-requests/{service_request_id}", headers=ADMIN).json()
        refused_again = client.post(
            f"/service-requests/{service_request_id}/assignment/accept", headers=ARTISAN
        )
        reassigned = client.post(
            f"/service-requests/{service_request_id}/assignment/accept", headers=OTHER_ARTISAN
        )
        refusals = client.get(
            f"/service-requests/{service_request_id}/refusals", headers=ADMIN
        ).json()
        timeline = client.get(
            f"/service-requests/{service_request_id}/timeline", headers=ADMIN
        ).json()

    assert detail["service_request"]["status"] == "AWAITING_ASSIGNATION"
    assert detail["service_request"]["assigned_artisan_id"] is None
    assert detail["service_request"]["estimated_price"] == "180.00"
    assert detail["current_estimate"]["estimate_id"] == revision_id
    assert detail["current_estimate"]["status"] == "rejected"
    assert detail["current_estimate"]["client_accepted"] is True
    assert refused_again.status_code == 409
    assert refused_again.json()["detail"]["code"] == "ASSIGNMENT_PREVIOUSLY_REFUSED"
    assert reassigned.json()["status"] == "IN_PROGRESS"
    assert [(item["artisan_id"], item["source"]) for item in refusals["refusals"]] == [
        ("usr_artisan_07", "REVISION")
    ]
    assert timeline["projected_status"] == "IN_PROGRESS"
    assert "AWAITING_DUAL_ACCEPTANCE" in timeline["visited_statuses"]
