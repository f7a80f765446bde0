"""Seed script: creates a demo company, users, a category and approval rules for dev."""
import asyncio
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.security import hash_password as get_password_hash
from app.models.approval_rule import ApprovalRule, ApprovalRuleStep, RuleType
from app.models.company import Company
from app.models.expense import ExpenseCategory
from app.models.user import User


async def seed():
    engine = create_async_engine(settings.DATABASE_URL, echo=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async with SessionLocal() as db:
        company = Company(
            name="Acme Corp",
            country="United States",
            currency=settings.DEFAULT_COMPANY_CURRENCY,
            sequential_approval=False,
            minimum_approval_percent=settings.DEFAULT_MINIMUM_APPROVAL_PERCENT,
        )
        db.add(company)
        await db.flush()

        admin = User(
            company_id=company.id,
            email="admin@example.com",
            name="Admin User",
            password_hash=get_password_hash("changeme123"),
            role="ADMIN",
            is_approver=True,
            approver_level=2,
            is_active=True,
        )
        manager = User(
            company_id=company.id,
            email="manager@example.com",
            name="Team Manager",
            password_hash=get_password_hash("changeme123"),
            role="MANAGER",
            is_approver=True,
            approver_level=1,
            is_active=True,
        )
        db.add_all([admin, manager])
        await db.flush()

        employee = User(
            company_id=company.id,
            email="employee@example.com",
            name="Employee",
            password_hash=get_password_hash("changeme123"),
            role="EMPLOYEE",
            manager_id=manager.id,
            is_active=True,
        )
        db.add(employee)

        travel = ExpenseCategory(company_id=company.id, name="Travel", is_active=True)
        db.add(travel)
        await db.flush()

        # Large travel claims go manager first, then admin.
        db.add(ApprovalRule(
            company_id=company.id,
            name="Travel over 1000",
            min_amount=1000,
            category_ids=[str(travel.id)],
            rule_type=RuleType.SEQUENTIAL.value,
            is_manager_approver=True,
            is_active=True,
            steps=[ApprovalRuleStep(user_id=admin.id, step=2)],
        ))
        # Everything else: half the approvers, or the admin alone.
        db.add(ApprovalRule(
            company_id=company.id,
            name="Default hybrid",
            rule_type=RuleType.HYBRID.value,
            required_percentage=50,
            specific_approver_ids=[str(admin.id)],
            is_active=True,
        ))

        await db.commit()
        print("Seed complete.")
        print("  admin@example.com / changeme123")
        print("  manager@example.com / changeme123")
        print("  employee@example.com / changeme123")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
