"""Tests for exception, expected variance and health endpoints."""

from uuid import uuid4

import pytest

from tally.reconciliation.types import SourceType
from tally.services.reconciliation_service import ReconciliationService
from tests.api.conftest import actor_headers
from tests.sample_data import bank_rows, gl_rows, register_rows


@pytest.fixture
async def open_exception(session, preparer, test_pay_run, import_sources):
    await import_sources(
        test_pay_run,
        {
            SourceType.REGISTER: register_rows(),
            SourceType.BANK: bank_rows(second_payment=70000),
            SourceType.GL: gl_rows(),
        },
    )
    outcome = await ReconciliationService(session).run_reconciliation(
        preparer, test_pay_run.pay_run_id
    )
    return outcome.exceptions[0]


class TestExceptionEndpoints:
    async def test_resolve(self, api_client, preparer, open_exception):
        response = await api_client.post(
            f"/api/v1/exceptions/{open_exception.exception_id}/resolve",
            headers=actor_headers(preparer),
            json={"note": "Second payment made on the 2nd."},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "RESOLVED"
        assert data["resolution_note"] == "Second payment made on the 2nd."

    async def test_blank_note(self, api_client, preparer, open_exception):
        response = await api_client.post(
            f"/api/v1/exceptions/{open_exception.exception_id}/dismiss",
            headers=actor_headers(preparer),
            json={"note": " "},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_preparer_override_forbidden(self, api_client, preparer, open_exception):
        response = await api_client.post(
            f"/api/v1/exceptions/{open_exception.exception_id}/override",
            headers=actor_headers(preparer),
            json={"note": "Accept."},
        )

        assert response.status_code == 403

    async def test_assign(self, api_client, preparer, reviewer_user, open_exception):
        response = await api_client.post(
            f"/api/v1/exceptions/{open_exception.exception_id}/assign",
            headers=actor_headers(preparer),
            json={"assignee_user_id": str(reviewer_user.user_id)},
        )

        assert response.status_code == 200
        assert response.json()["assigned_to_user_id"] == str(reviewer_user.user_id)

    async def test_unknown_exception(self, api_client, preparer):
        response = await api_client.post(
            f"/api/v1/exceptions/{uuid4()}/resolve",
            headers=actor_headers(preparer),
            json={"note": "x"},
        )

        assert response.status_code == 404


class TestExpectedVarianceEndpoints:
    async def test_create_list_archive(self, api_client, reviewer, test_client):
        url = f"/api/v1/clients/{test_client.client_id}/expected-variances"

        response = await api_client.post(
            url,
            headers=actor_headers(reviewer),
            json={
                "variance_type": "ROUNDING",
                "check_type": "CHK_JOURNAL_DEBITS_EQUAL_CREDITS",
                "condition": {"amountBounds": {"max": 100}},
                "effect": {"downgradeTo": "PASS"},
            },
        )
        assert response.status_code == 201
        variance_id = response.json()["expected_variance_id"]

        response = await api_client.get(url, headers=actor_headers(reviewer))
        assert [v["expected_variance_id"] for v in response.json()] == [variance_id]

        archive_url = f"/api/v1/expected-variances/{variance_id}/archive"
        response = await api_client.post(archive_url, headers=actor_headers(reviewer))
        assert response.status_code == 200
        assert response.json()["active"] is False

        response = await api_client.post(archive_url, headers=actor_headers(reviewer))
        assert response.status_code == 400

        response = await api_client.get(url, headers=actor_headers(reviewer))
        assert response.json() == []

    async def test_preparer_forbidden(self, api_client, preparer, test_client):
        response = await api_client.post(
            f"/api/v1/clients/{test_client.client_id}/expected-variances",
            headers=actor_headers(preparer),
            json={
                "variance_type": "ROUNDING",
                "condition": {"amountBounds": {"max": 100}},
                "effect": {"downgradeTo": "PASS"},
            },
        )

        assert response.status_code == 403


class TestHealth:
    async def test_health(self, api_client):
        response = await api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": True, "artifact_store": True}

    async def test_unwritable_store_degrades(self, api_client, tmp_path):
        (tmp_path / "artifacts").write_bytes(b"not a directory")

        response = await api_client.get("/health")

        assert response.status_code == 503
        assert response.json() == {"status": "degraded", "database": True, "artifact_store": False}

    async def test_live(self, api_client):
        response = await api_client.get("/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}
