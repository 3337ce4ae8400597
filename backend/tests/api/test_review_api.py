from __future__ import annotations

import pytest

from chirisu.infra import jwt as jwt_helper
from chirisu.settings import settings

AUTHOR = {"X-User-Id": "user-author", "X-User-Roles": "user"}
OWNER = {"X-User-Id": "user-owner", "X-User-Roles": "user"}
MOD_A = {"X-User-Id": "mod-1", "X-User-Roles": "moderator"}
MOD_B = {"X-User-Id": "mod-2", "X-User-Roles": "moderator"}

BASE = "/api/review/v1"


async def _submit_title_change(api_client, changes=None) -> dict:
    response = await api_client.post(
        f"{BASE}/contributions",
        json={
            "subject_type": "anime",
            "subject_id": 42,
            "proposed_changes": changes or {"title": {"old": "Foo", "new": "Bar"}},
        },
        headers=AUTHOR,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_contribution_lifecycle(api_client, catalog) -> None:
    case = await _submit_title_change(api_client)
    assert case["status"] == "pending"
    assert case["kind"] == "content_contributions"

    claim = await api_client.post(f"{BASE}/cases/contributions/{case['case_id']}/assign", headers=MOD_A)
    assert claim.status_code == 200
    assert claim.json()["assigned_to"] == "mod-1"

    resolve = await api_client.post(
        f"{BASE}/cases/content_contributions/{case['case_id']}/resolve",
        json={"status": "approved"},
        headers=MOD_A,
    )
    assert resolve.status_code == 200
    body = resolve.json()
    assert body["status"] == "approved"
    assert body["resolved_by"] == "mod-1"
    assert catalog.get("anime", 42)["title"] == "Bar"


@pytest.mark.asyncio
async def test_claim_conflict_returns_current_assignee(api_client) -> None:
    case = await _submit_title_change(api_client)
    await api_client.post(f"{BASE}/cases/contributions/{case['case_id']}/assign", headers=MOD_A)

    response = await api_client.post(f"{BASE}/cases/contributions/{case['case_id']}/assign", headers=MOD_B)

    assert response.status_code == 409
    body = response.json()
    assert body["detail"] == "case_already_taken"
    assert body["assigned_to"] == "mod-1"
    assert body["request_id"]


@pytest.mark.asyncio
async def test_apply_failure_is_unprocessable(api_client, catalog) -> None:
    case = await _submit_title_change(api_client, {"episodeCount": {"old": 12, "new": "not-a-number"}})

    response = await api_client.post(
        f"{BASE}/cases/contributions/{case['case_id']}/resolve",
        json={"status": "approved"},
        headers=MOD_A,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["detail"] == "apply_failed"
    assert body["fields"] == {"episodeCount": "expected_integer"}
    assert catalog.get("anime", 42)["episode_count"] == 12


@pytest.mark.asyncio
async def test_release_by_non_assignee_is_forbidden(api_client) -> None:
    case = await _submit_title_change(api_client)
    await api_client.post(f"{BASE}/cases/contributions/{case['case_id']}/assign", headers=MOD_A)

    response = await api_client.delete(f"{BASE}/cases/contributions/{case['case_id']}/assign", headers=MOD_B)
    assert response.status_code == 403
    assert response.json()["detail"] == "not_assignee"

    response = await api_client.delete(f"{BASE}/cases/contributions/{case['case_id']}/assign", headers=MOD_A)
    assert response.status_code == 200
    assert response.json()["assigned_to"] is None


@pytest.mark.asyncio
async def test_report_guards(api_client) -> None:
    payload = {"subject_kind": "comment", "subject_id": 501, "reason": "spam", "description": "Same link everywhere"}

    created = await api_client.post(f"{BASE}/reports", json=payload, headers=AUTHOR)
    assert created.status_code == 201
    assert created.json()["kind"] == "comment_reports"

    duplicate = await api_client.post(f"{BASE}/reports", json=payload, headers=AUTHOR)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "duplicate_report"

    self_report = await api_client.post(f"{BASE}/reports", json=payload, headers=OWNER)
    assert self_report.status_code == 400
    assert self_report.json()["detail"] == "self_report"


@pytest.mark.asyncio
async def test_unknown_fields_are_rejected(api_client) -> None:
    response = await api_client.post(
        f"{BASE}/contributions",
        json={"subject_type": "anime", "subject_id": 42, "proposed_changes": {"owner": {"new": "me"}}},
        headers=AUTHOR,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "unknown_fields"


@pytest.mark.asyncio
async def test_missing_case_is_not_found(api_client) -> None:
    response = await api_client.get(f"{BASE}/cases/contributions/00000000-0000-0000-0000-000000000000", headers=MOD_A)

    assert response.status_code == 404
    assert response.json()["detail"] == "case_not_found"


@pytest.mark.asyncio
async def test_unauthenticated_requests_are_rejected(api_client) -> None:
    response = await api_client.get(f"{BASE}/cases/contributions")

    assert response.status_code == 401
    assert response.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_dev_headers_are_ignored_outside_dev(api_client) -> None:
    settings.environment = "production"

    response = await api_client.get(f"{BASE}/cases/contributions", headers=MOD_A)

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_bearer_token_roles_are_honoured(api_client) -> None:
    settings.environment = "production"
    token = jwt_helper.encode_access({"sub": "mod-1", "roles": ["moderator"]})

    response = await api_client.get(f"{BASE}/cases/counts", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["content_contributions"] == 0


@pytest.mark.asyncio
async def test_counts_require_staff(api_client) -> None:
    response = await api_client.get(f"{BASE}/cases/counts", headers=AUTHOR)

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_my_cases_lists_own_submissions(api_client) -> None:
    case = await _submit_title_change(api_client)

    response = await api_client.get(f"{BASE}/me/cases", params={"kind": "contributions"}, headers=AUTHOR)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["items"][0]["case_id"] == case["case_id"]


@pytest.mark.asyncio
async def test_unknown_kind_is_bad_request(api_client) -> None:
    response = await api_client.get(f"{BASE}/cases/episodes", headers=MOD_A)

    assert response.status_code == 400
    assert response.json()["detail"] == "unknown_kind"


@pytest.mark.asyncio
async def test_health_and_metrics(api_client) -> None:
    health = await api_client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    metrics = await api_client.get("/metrics")
    assert metrics.status_code == 200
    assert "chirisu_http_requests_total" in metrics.text
