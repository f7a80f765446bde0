"""Company approval rules and their ordered approver steps."""
import enum
import uuid

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin, UUIDMixin


class RuleType(str, enum.Enum):
    SEQUENTIAL = "SEQUENTIAL"
    PERCENTAGE = "PERCENTAGE"
    SPECIFIC_APPROVER = "SPECIFIC_APPROVER"
    HYBRID = "HYBRID"


class ApprovalRule(Base, UUIDMixin, TimestampMixin):
    """Decides how an expense in scope (amount range / categories) gets approved."""

    __tablename__ = "approval_rules"

    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    min_amount: Mapped[float | None] = mapped_column(Numeric(18, 2), nullable=True)
    max_amount: Mapped[float | None] = mapped_column(Numeric(18, 2), nullable=True)
    category_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list, server_default="[]")
    rule_type: Mapped[str] = mapped_column(String(30), nullable=False)
    required_percentage: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1-100
    is_manager_approver: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    specific_approver_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list, server_default="[]")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    steps: Mapped[list["ApprovalRuleStep"]] = relationship(
        "ApprovalRuleStep",
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="ApprovalRuleStep.step",
    )


class ApprovalRuleStep(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "approval_rule_steps"

    rule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("approval_rules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    rule: Mapped["ApprovalRule"] = relationship("ApprovalRule", back_populates="steps")
