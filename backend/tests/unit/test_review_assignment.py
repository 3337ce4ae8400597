from __future__ import annotations

import asyncio

import pytest

from chirisu.review.domain.errors import (
    AlreadyAssignedError,
    AuthenticationError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
)
from chirisu.review.domain.kinds import IN_REVIEW, PENDING, CaseKind
from chirisu.review.domain.rbac import ReviewerContext

AUTHOR = ReviewerContext("user-author", ("user",))
MOD_A = ReviewerContext("mod-1", ("moderator",))
MOD_B = ReviewerContext("mod-2", ("moderator",))
ADMIN = ReviewerContext("admin-1", ("admin",))


async def _contribution(service):
    return await service.create_contribution(
        AUTHOR,
        subject_type="anime",
        subject_id=42,
        proposed_changes={"title": {"old": "Foo", "new": "Bar"}},
    )


@pytest.mark.asyncio
async def test_claim_moves_pending_case_into_review(case_service) -> None:
    case = await _contribution(case_service)

    claimed = await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    assert claimed.status == IN_REVIEW
    assert claimed.assigned_to == "mod-1"
    assert claimed.assigned_at == case_service.clock()


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner(case_service) -> None:
    case = await _contribution(case_service)

    results = await asyncio.gather(
        case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id),
        case_service.claim_case(MOD_B, CaseKind.CONTRIBUTION, case.case_id),
        return_exceptions=True,
    )

    winners = [result for result in results if not isinstance(result, Exception)]
    losers = [result for result in results if isinstance(result, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], AlreadyAssignedError)
    assert losers[0].current_assignee == winners[0].assigned_to


@pytest.mark.asyncio
async def test_claim_conflict_reports_current_assignee(case_service) -> None:
    case = await _contribution(case_service)
    await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    with pytest.raises(AlreadyAssignedError) as excinfo:
        await case_service.claim_case(MOD_B, CaseKind.CONTRIBUTION, case.case_id)

    assert excinfo.value.current_assignee == "mod-1"
    assert excinfo.value.extra() == {"assigned_to": "mod-1"}


@pytest.mark.asyncio
async def test_reclaiming_own_case_is_a_no_op(case_service, clock) -> None:
    case = await _contribution(case_service)
    first = await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)
    clock.advance(hours=2)

    again = await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    assert again.assigned_at == first.assigned_at


@pytest.mark.asyncio
async def test_stale_claim_can_be_taken_over(case_service, clock) -> None:
    case = await _contribution(case_service)
    await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)
    clock.advance(days=16)

    taken = await case_service.claim_case(MOD_B, CaseKind.CONTRIBUTION, case.case_id)

    assert taken.assigned_to == "mod-2"
    assert taken.assigned_at == clock.now


@pytest.mark.asyncio
async def test_claim_exactly_at_window_is_still_held(case_service, clock) -> None:
    case = await _contribution(case_service)
    await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)
    clock.advance(days=15)

    with pytest.raises(AlreadyAssignedError):
        await case_service.claim_case(MOD_B, CaseKind.CONTRIBUTION, case.case_id)


@pytest.mark.asyncio
async def test_claim_requires_staff(case_service) -> None:
    case = await _contribution(case_service)

    with pytest.raises(NotAuthorizedError):
        await case_service.claim_case(AUTHOR, CaseKind.CONTRIBUTION, case.case_id)
    with pytest.raises(AuthenticationError):
        await case_service.claim_case(None, CaseKind.CONTRIBUTION, case.case_id)


@pytest.mark.asyncio
async def test_claim_unknown_case(case_service) -> None:
    with pytest.raises(NotFoundError):
        await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, "00000000-0000-0000-0000-000000000000")


@pytest.mark.asyncio
async def test_claim_closed_case_is_rejected(case_service) -> None:
    case = await _contribution(case_service)
    await case_service.resolve_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id, status="rejected")

    with pytest.raises(InvalidTransitionError) as excinfo:
        await case_service.claim_case(MOD_B, CaseKind.CONTRIBUTION, case.case_id)

    assert excinfo.value.code == "case_closed"


@pytest.mark.asyncio
async def test_assignee_can_release(case_service) -> None:
    case = await _contribution(case_service)
    await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    released = await case_service.release_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    assert released.assigned_to is None
    assert released.assigned_at is None
    assert released.status == PENDING


@pytest.mark.asyncio
async def test_admin_can_release_any_claim(case_service) -> None:
    case = await _contribution(case_service)
    await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    released = await case_service.release_case(ADMIN, CaseKind.CONTRIBUTION, case.case_id)

    assert released.assigned_to is None


@pytest.mark.asyncio
async def test_other_moderator_cannot_release_even_when_stale(case_service, clock) -> None:
    case = await _contribution(case_service)
    await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)
    clock.advance(days=30)

    with pytest.raises(NotAuthorizedError) as excinfo:
        await case_service.release_case(MOD_B, CaseKind.CONTRIBUTION, case.case_id)

    assert excinfo.value.code == "not_assignee"
    current = await case_service.repository.get_case(CaseKind.CONTRIBUTION, case.case_id)
    assert current is not None and current.assigned_to == "mod-1"


@pytest.mark.asyncio
async def test_release_of_closed_case_keeps_assignment(case_service) -> None:
    case = await _contribution(case_service)
    await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)
    await case_service.resolve_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id, status="rejected")

    released = await case_service.release_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    assert released.status == "rejected"
    assert released.assigned_to == "mod-1"


@pytest.mark.asyncio
async def test_claim_and_release_are_audited(case_service) -> None:
    case = await _contribution(case_service)
    await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)
    await case_service.release_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    entries = await case_service.list_case_audit(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    assert [entry.action for entry in entries] == ["contribution.create", "case.claim", "case.release"]


def _failing_audit(*args, **kwargs):
    raise RuntimeError("audit store unavailable")


@pytest.mark.asyncio
async def test_failed_audit_write_leaves_case_unclaimed(case_service, monkeypatch) -> None:
    case = await _contribution(case_service)
    monkeypatch.setattr(case_service.repository, "_write_audit", _failing_audit)

    with pytest.raises(RuntimeError):
        await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    current = await case_service.repository.get_case(CaseKind.CONTRIBUTION, case.case_id)
    assert current is not None
    assert current.assigned_to is None
    assert current.assigned_at is None
    assert current.status == PENDING


@pytest.mark.asyncio
async def test_failed_audit_write_keeps_assignment_on_release(case_service, monkeypatch) -> None:
    case = await _contribution(case_service)
    await case_service.claim_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)
    monkeypatch.setattr(case_service.repository, "_write_audit", _failing_audit)

    with pytest.raises(RuntimeError):
        await case_service.release_case(MOD_A, CaseKind.CONTRIBUTION, case.case_id)

    current = await case_service.repository.get_case(CaseKind.CONTRIBUTION, case.case_id)
    assert current is not None
    assert current.assigned_to == "mod-1"
    assert current.status == IN_REVIEW


@pytest.mark.asyncio
async def test_failed_audit_write_stores_no_case(case_service, monkeypatch) -> None:
    monkeypatch.setattr(case_service.repository, "_write_audit", _failing_audit)

    with pytest.raises(RuntimeError):
        await _contribution(case_service)

    page = await case_service.list_my_cases(AUTHOR, CaseKind.CONTRIBUTION)
    assert page.items == []
    assert page.total == 0
