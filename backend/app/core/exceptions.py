"""Typed errors raised by the approval workflow services.

Every error carries a machine-readable ``code`` so the HTTP layer can map
it to a status without matching on message text:

    WorkflowError
    +-- ExpenseNotFoundError          (NOT_FOUND)
    +-- ApprovalRecordNotFoundError   (NOT_FOUND)
    +-- NotCurrentApproverError       (UNAUTHORIZED)
    +-- AlreadyProcessedError         (ALREADY_PROCESSED)
    +-- DoubleInitializationError     (DOUBLE_INITIALIZATION)
    +-- InvalidDecisionError          (INVALID_DECISION)

Misconfigured rules and failed rate lookups are not errors: both degrade
(fallback policy, identity conversion) and are only logged.
"""
import uuid


class WorkflowError(Exception):
    code = "WORKFLOW_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ExpenseNotFoundError(WorkflowError):
    code = "NOT_FOUND"

    def __init__(self, expense_id: uuid.UUID | str):
        self.expense_id = expense_id
        super().__init__(f"Expense {expense_id} not found.")


class ApprovalRecordNotFoundError(WorkflowError):
    code = "NOT_FOUND"

    def __init__(self, record_id: uuid.UUID | str):
        self.record_id = record_id
        super().__init__(f"Approval record {record_id} not found.")


class NotCurrentApproverError(WorkflowError):
    code = "UNAUTHORIZED"

    def __init__(self, expense_id: uuid.UUID | str, approver_id: uuid.UUID | str, step: int):
        self.expense_id = expense_id
        self.approver_id = approver_id
        self.step = step
        super().__init__(
            f"User {approver_id} is not authorized to decide expense {expense_id} at step {step}."
        )


class AlreadyProcessedError(WorkflowError):
    code = "ALREADY_PROCESSED"


class DoubleInitializationError(WorkflowError):
    code = "DOUBLE_INITIALIZATION"

    def __init__(self, expense_id: uuid.UUID | str):
        self.expense_id = expense_id
        super().__init__(f"Approval workflow for expense {expense_id} is already initialized.")


class InvalidDecisionError(WorkflowError):
    code = "INVALID_DECISION"
