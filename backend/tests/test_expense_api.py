"""HTTP tests for the expense, approval and approval-rule endpoints.

Services are patched at the router module; these tests cover routing,
role checks and the workflow-error -> status mapping.
"""
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient, ASGITransport

from app.api.v1.errors import status_for
from app.core.deps import get_current_user
from app.core.exceptions import (
    AlreadyProcessedError,
    ApprovalRecordNotFoundError,
    DoubleInitializationError,
    InvalidDecisionError,
    NotCurrentApproverError,
    WorkflowError,
)
from app.db.session import get_session, get_sync_session
from app.main import app
from app.rules.approval_engine import Transition
from app.services.approval import DecisionResult


# ─── Fixtures ─────────────────────────────────────────────────────────────────

COMPANY_ID = uuid.UUID("0b6f2a57-1f0c-4a4e-9d43-5f4f8f0d2c11")


class FakeUser:
    """Minimal user stub for dependency overrides."""

    def __init__(self, role: str = "MANAGER", is_approver: bool = True):
        self.id = uuid.uuid4()
        self.company_id = COMPANY_ID
        self.email = f"{role.lower()}@example.com"
        self.name = role.title()
        self.role = role
        self.manager_id = None
        self.is_approver = is_approver
        self.approver_level = 1
        self.is_active = True
        self.deleted_at = None


def _fake_expense(status: str = "IN_PROGRESS", current_step: int = 1, total_steps: int = 2) -> MagicMock:
    expense = MagicMock()
    expense.id = uuid.uuid4()
    expense.status = status
    expense.current_step = current_step
    expense.total_steps = total_steps
    return expense


def _override_user(user: FakeUser):
    async def _override():
        return user
    return _override


def _override_sync_session():
    yield MagicMock()


async def _override_async_session():
    yield AsyncMock()


def _install(user: FakeUser):
    app.dependency_overrides[get_current_user] = _override_user(user)
    app.dependency_overrides[get_sync_session] = _override_sync_session
    app.dependency_overrides[get_session] = _override_async_session


async def _request(method: str, url: str, **kwargs):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.request(method, url, **kwargs)


# ─── POST /expenses/{id}/approve ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_approve_returns_transition():
    expense = _fake_expense(current_step=2)
    result = DecisionResult(
        expense=expense,
        record=MagicMock(),
        transition=Transition("advanced", "IN_PROGRESS", 2, "step 1 approved"),
    )
    _install(FakeUser())
    try:
        with patch("app.api.v1.expenses.decide_expense", return_value=result) as decide:
            response = await _request(
                "POST", f"/api/v1/expenses/{expense.id}/approve",
                json={"action": "APPROVED", "comments": "ok"},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "advanced"
    assert body["current_step"] == 2
    assert body["status"] == "IN_PROGRESS"
    assert decide.call_args.kwargs["action"] == "APPROVED"
    assert decide.call_args.kwargs["comments"] == "ok"


@pytest.mark.asyncio
@pytest.mark.parametrize("error, status_code, code", [
    (NotCurrentApproverError(uuid.uuid4(), uuid.uuid4(), 1), 403, "UNAUTHORIZED"),
    (AlreadyProcessedError("Expense already APPROVED."), 409, "ALREADY_PROCESSED"),
    (InvalidDecisionError("bad action"), 400, "INVALID_DECISION"),
])
async def test_approve_maps_workflow_errors(error, status_code, code):
    _install(FakeUser())
    try:
        with patch("app.api.v1.expenses.decide_expense", side_effect=error):
            response = await _request(
                "POST", f"/api/v1/expenses/{uuid.uuid4()}/approve", json={"action": "REJECTED"},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == status_code
    assert response.json()["detail"]["code"] == code


@pytest.mark.asyncio
async def test_approve_rejects_unknown_action_value():
    _install(FakeUser())
    try:
        response = await _request(
            "POST", f"/api/v1/expenses/{uuid.uuid4()}/approve", json={"action": "MAYBE"},
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_approve_requires_auth():
    response = await _request("POST", f"/api/v1/expenses/{uuid.uuid4()}/approve", json={"action": "APPROVED"})
    assert response.status_code == 401


# ─── GET / submit ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_unknown_expense_returns_404():
    repo = MagicMock()
    repo.get_expense.return_value = None
    _install(FakeUser())
    try:
        with patch("app.api.v1.expenses.ExpenseRepository", return_value=repo):
            response = await _request("GET", f"/api/v1/expenses/{uuid.uuid4()}")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_submit_someone_elses_expense_returns_403():
    expense = _fake_expense(status="PENDING")
    expense.user_id = uuid.uuid4()
    repo = MagicMock()
    repo.get_expense.return_value = expense
    _install(FakeUser(role="EMPLOYEE", is_approver=False))
    try:
        with patch("app.api.v1.expenses.ExpenseRepository", return_value=repo), \
             patch("app.api.v1.expenses.initialize_workflow") as init:
            response = await _request("POST", f"/api/v1/expenses/{expense.id}/submit")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 403
    init.assert_not_called()


@pytest.mark.asyncio
async def test_submit_twice_returns_409():
    user = FakeUser(role="EMPLOYEE", is_approver=False)
    expense = _fake_expense(status="IN_PROGRESS")
    expense.user_id = user.id
    repo = MagicMock()
    repo.get_expense.return_value = expense
    _install(user)
    try:
        with patch("app.api.v1.expenses.ExpenseRepository", return_value=repo), \
             patch("app.api.v1.expenses.initialize_workflow", side_effect=DoubleInitializationError(expense.id)):
            response = await _request("POST", f"/api/v1/expenses/{expense.id}/submit")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "DOUBLE_INITIALIZATION"


@pytest.mark.asyncio
async def test_create_expense_requires_original_currency_with_amount():
    _install(FakeUser(role="EMPLOYEE", is_approver=False))
    try:
        response = await _request(
            "POST", "/api/v1/expenses",
            json={
                "amount": "10.00",
                "original_amount": "9.00",
                "description": "Taxi",
                "expense_date": "2026-02-01",
            },
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 422


# ─── GET /expenses/stats/dashboard ────────────────────────────────────────────

def _override_sync_session_with(db: MagicMock):
    def _override():
        yield db
    return _override


@pytest.mark.asyncio
async def test_dashboard_stats_counts_by_status():
    db = MagicMock()
    db.execute.return_value.all.return_value = [
        ("PENDING", 2, Decimal("30.00")),
        ("APPROVED", 1, Decimal("10.00")),
    ]
    _install(FakeUser(role="EMPLOYEE", is_approver=False))
    app.dependency_overrides[get_sync_session] = _override_sync_session_with(db)
    try:
        response = await _request("GET", "/api/v1/expenses/stats/dashboard", params={"timeframe": 7})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    body = response.json()
    assert body["timeframe_days"] == 7
    assert body["total_expenses"] == 3
    assert body["pending_expenses"] == 2
    assert body["approved_expenses"] == 1
    assert body["in_progress_expenses"] == 0
    assert body["rejected_expenses"] == 0
    assert Decimal(str(body["total_amount"])) == Decimal("40.00")
    assert body["pending_approvals"] == 0


@pytest.mark.asyncio
async def test_dashboard_stats_include_approver_queue():
    db = MagicMock()
    db.execute.return_value.all.return_value = []
    _install(FakeUser(role="ADMIN"))
    app.dependency_overrides[get_sync_session] = _override_sync_session_with(db)
    try:
        with patch(
            "app.api.v1.expenses.get_pending_approvals_for_approver",
            return_value=[MagicMock(), MagicMock()],
        ):
            response = await _request("GET", "/api/v1/expenses/stats/dashboard")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    body = response.json()
    assert body["timeframe_days"] == 30
    assert body["total_expenses"] == 0
    assert body["pending_approvals"] == 2


@pytest.mark.asyncio
async def test_dashboard_stats_rejects_empty_timeframe():
    _install(FakeUser())
    try:
        response = await _request("GET", "/api/v1/expenses/stats/dashboard", params={"timeframe": 0})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 422


# ─── Approval queue / records ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_pending_queue_requires_approver_flag():
    _install(FakeUser(role="EMPLOYEE", is_approver=False))
    try:
        response = await _request("GET", "/api/v1/expenses/pending/approvals")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_decide_unknown_approval_record_returns_404():
    _install(FakeUser())
    try:
        with patch(
            "app.api.v1.approvals.decide_approval_record",
            side_effect=ApprovalRecordNotFoundError(uuid.uuid4()),
        ):
            response = await _request(
                "POST", f"/api/v1/approvals/{uuid.uuid4()}", json={"action": "APPROVED"},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_approval_history_forbidden_for_employees():
    _install(FakeUser(role="EMPLOYEE", is_approver=False))
    try:
        response = await _request("GET", "/api/v1/approvals/history")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 403


# ─── Admin-only configuration ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_approval_rules_are_admin_only():
    _install(FakeUser(role="MANAGER"))
    try:
        response = await _request("GET", "/api/v1/approval-rules")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_percentage_rule_without_percentage_is_invalid():
    _install(FakeUser(role="ADMIN"))
    try:
        response = await _request(
            "POST", "/api/v1/approval-rules",
            json={"name": "Half", "rule_type": "PERCENTAGE"},
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_company_settings_update_is_admin_only():
    _install(FakeUser(role="MANAGER"))
    try:
        response = await _request(
            "PATCH", "/api/v1/company/approval-settings", json={"minimum_approval_percent": 60},
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 403


# ─── Workflow error handler ───────────────────────────────────────────────────

def test_unmapped_workflow_error_is_a_bad_request():
    assert status_for(WorkflowError("unexpected state")) == 400


def test_workflow_error_subclass_keeps_its_parent_status():
    class StaleDecisionError(AlreadyProcessedError):
        pass

    assert status_for(StaleDecisionError("stale")) == 409


@pytest.mark.asyncio
async def test_approval_record_errors_use_the_shared_error_body():
    _install(FakeUser())
    try:
        with patch(
            "app.api.v1.approvals.decide_approval_record",
            side_effect=AlreadyProcessedError("Approval record already APPROVED."),
        ):
            response = await _request(
                "POST", f"/api/v1/approvals/{uuid.uuid4()}", json={"action": "APPROVED"},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 409
    assert response.json() == {
        "detail": {"code": "ALREADY_PROCESSED", "message": "Approval record already APPROVED."}
    }
