from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin, UUIDMixin


class Company(Base, UUIDMixin, TimestampMixin):
    """Tenant. Holds the fallback approval policy used when no rule applies."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    sequential_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    minimum_approval_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    # None -> use settings.STEP_REQUIRES_UNANIMOUS
    step_requires_unanimous: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
