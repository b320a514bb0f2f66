"""
API Tests for the people merge endpoints

Endpoints tested:
- POST /api/merge-people
- GET /api/groups/{group_id}/merge-audit
- GET /api/groups/{group_id}/merge-candidates

The database session is overridden and MergeStore is patched to return the
in-memory store, so the real service runs behind the HTTP layer.

Run with: pytest tests/test_merge_api.py -v
"""

import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import patch, MagicMock

import pytest
from fastapi.testclient import TestClient

from database import get_db
from people_merge.errors import ConfigurationError
from services.auth import create_access_token
from server import app


def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token(str(user_id))}"}


@asynccontextmanager
async def fake_session_scope():
    yield MagicMock()


@asynccontextmanager
async def misconfigured_session_scope():
    raise ConfigurationError("Server misconfigured")
    yield


@pytest.fixture
def client(store):
    async def fake_db():
        yield MagicMock()

    app.dependency_overrides[get_db] = fake_db
    with patch("people_merge.router.MergeStore", return_value=store), \
            patch("people_merge.router.session_scope", fake_session_scope):
        yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def misconfigured_client(store):
    with patch("people_merge.router.MergeStore", return_value=store), \
            patch("people_merge.router.session_scope", misconfigured_session_scope):
        yield TestClient(app)


def merge_body(household, **overrides):
    body = {
        "groupId": str(household.group_id),
        "sourcePersonId": str(household.source_id),
        "targetPersonId": str(household.target_id),
    }
    body.update(overrides)
    return body


class TestMergePeopleEndpoint:
    """POST /api/merge-people"""

    def test_success(self, client, store, household):
        expense = uuid.uuid4()
        store.add_split(expense, household.source_id, 3000)
        store.add_split(expense, household.target_id, 2000)

        response = client.post(
            "/api/merge-people",
            json=merge_body(household),
            headers=auth_headers(household.admin_user_id),
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert store.split_for(expense, household.target_id).amount_owed_cents == 5000
        assert store.people[household.source_id]["is_archived"] is True

    @pytest.mark.parametrize("missing", ["groupId", "sourcePersonId", "targetPersonId"])
    def test_missing_field(self, client, household, missing):
        body = merge_body(household)
        del body[missing]

        response = client.post("/api/merge-people", json=body, headers=auth_headers(household.admin_user_id))

        assert response.status_code == 400
        assert missing in response.json()["error"]

    def test_empty_body(self, client, household):
        response = client.post("/api/merge-people", headers=auth_headers(household.admin_user_id))

        assert response.status_code == 400
        assert "error" in response.json()

    def test_invalid_uuid(self, client, household):
        response = client.post(
            "/api/merge-people",
            json=merge_body(household, sourcePersonId="not-a-uuid"),
            headers=auth_headers(household.admin_user_id),
        )

        assert response.status_code == 400
        assert response.json() == {"error": "sourcePersonId must be a valid UUID"}

    def test_missing_credential(self, client, store, household):
        response = client.post("/api/merge-people", json=merge_body(household))

        assert response.status_code == 401
        assert response.json() == {"error": "Missing auth token"}
        assert store.calls == []

    def test_invalid_credential(self, client, household):
        response = client.post(
            "/api/merge-people",
            json=merge_body(household),
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401

    def test_expired_credential(self, client, household):
        token = create_access_token(str(household.admin_user_id), expires_delta=timedelta(minutes=-5))

        response = client.post(
            "/api/merge-people",
            json=merge_body(household),
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    def test_non_admin(self, client, store, household):
        response = client.post(
            "/api/merge-people",
            json=merge_body(household),
            headers=auth_headers(household.member_user_id),
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Admin access required"}
        assert store.people[household.source_id]["is_archived"] is False

    def test_same_identity(self, client, store, household):
        response = client.post(
            "/api/merge-people",
            json=merge_body(household, sourcePersonId=str(household.target_id)),
            headers=auth_headers(household.admin_user_id),
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Source and target must differ"}
        assert store.audit == []

    def test_person_not_found(self, client, household):
        response = client.post(
            "/api/merge-people",
            json=merge_body(household, sourcePersonId=str(uuid.uuid4())),
            headers=auth_headers(household.admin_user_id),
        )

        assert response.status_code == 404

    def test_group_mismatch(self, client, store, household):
        stranger = store.add_person(uuid.uuid4(), "Elsewhere")

        response = client.post(
            "/api/merge-people",
            json=merge_body(household, sourcePersonId=str(stranger)),
            headers=auth_headers(household.admin_user_id),
        )

        assert response.status_code == 404

    def test_wrong_claim_state(self, client, household):
        response = client.post(
            "/api/merge-people",
            json=merge_body(household, sourcePersonId=str(household.other_id)),
            headers=auth_headers(household.admin_user_id),
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Source must be unclaimed"}

    def test_second_merge_of_same_pair(self, client, household):
        headers = auth_headers(household.admin_user_id)
        first = client.post("/api/merge-people", json=merge_body(household), headers=headers)
        second = client.post("/api/merge-people", json=merge_body(household), headers=headers)

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json() == {"error": "Source already archived"}

    def test_store_misconfigured(self, misconfigured_client, store, household):
        response = misconfigured_client.post(
            "/api/merge-people",
            json=merge_body(household),
            headers=auth_headers(household.admin_user_id),
        )

        assert response.status_code == 500
        assert response.json() == {"error": "Server misconfigured"}
        assert store.calls == []

    def test_missing_fields_reported_before_store_misconfiguration(self, misconfigured_client, household):
        response = misconfigured_client.post(
            "/api/merge-people",
            json={},
            headers=auth_headers(household.admin_user_id),
        )

        assert response.status_code == 400
        assert "groupId" in response.json()["error"]

    def test_missing_credential_reported_before_store_misconfiguration(self, misconfigured_client, household):
        response = misconfigured_client.post("/api/merge-people", json=merge_body(household))

        assert response.status_code == 401
        assert response.json() == {"error": "Missing auth token"}


class TestMergeAuditEndpoint:
    """GET /api/groups/{group_id}/merge-audit"""

    def test_member_sees_entries(self, client, household):
        client.post(
            "/api/merge-people",
            json=merge_body(household),
            headers=auth_headers(household.admin_user_id),
        )

        response = client.get(
            f"/api/groups/{household.group_id}/merge-audit",
            headers=auth_headers(household.member_user_id),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["entries"][0]["moved_counts"]["splits"] == 0

    def test_requires_authentication(self, client, household):
        response = client.get(f"/api/groups/{household.group_id}/merge-audit")

        assert response.status_code == 401

    def test_outsider_is_refused(self, client, household):
        response = client.get(
            f"/api/groups/{household.group_id}/merge-audit",
            headers=auth_headers(uuid.uuid4()),
        )

        assert response.status_code == 403


class TestMergeCandidatesEndpoint:
    """GET /api/groups/{group_id}/merge-candidates"""

    def test_admin_sees_candidates(self, client, household):
        response = client.get(
            f"/api/groups/{household.group_id}/merge-candidates",
            headers=auth_headers(household.admin_user_id),
        )

        assert response.status_code == 200
        data = response.json()
        assert [p["id"] for p in data["sources"]] == [str(household.source_id)]
        assert {p["id"] for p in data["targets"]} == {str(household.target_id), str(household.other_id)}
        assert all(p["user_id"] is None for p in data["sources"])

    def test_member_is_refused(self, client, household):
        response = client.get(
            f"/api/groups/{household.group_id}/merge-candidates",
            headers=auth_headers(household.member_user_id),
        )

        assert response.status_code == 403

    def test_invalid_group_id(self, client, household):
        response = client.get(
            "/api/groups/not-a-uuid/merge-candidates",
            headers=auth_headers(household.admin_user_id),
        )

        assert response.status_code == 400
