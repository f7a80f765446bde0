from app.models.company import Company
from app.models.user import User
from app.models.expense import Expense, ExpenseCategory, ExpenseStatus
from app.models.approval import ExpenseApproval, ApprovalStatus
from app.models.approval_rule import ApprovalRule, ApprovalRuleStep, RuleType
from app.models.audit import AuditLog

__all__ = [
    "Company",
    "User",
    "Expense", "ExpenseCategory", "ExpenseStatus",
    "ExpenseApproval", "ApprovalStatus",
    "ApprovalRule", "ApprovalRuleStep", "RuleType",
    "AuditLog",
]
