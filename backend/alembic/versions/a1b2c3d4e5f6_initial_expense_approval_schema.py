"""initial_expense_approval_schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-17 09:12:41.208315

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'companies',
        _id_column(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('country', sa.String(100), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('sequential_approval', sa.Boolean(), nullable=False),
        sa.Column('minimum_approval_percent', sa.Integer(), nullable=False),
        sa.Column('step_requires_unanimous', sa.Boolean(), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_companies'),
    )

    op.create_table(
        'users',
        _id_column(),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('manager_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('is_approver', sa.Boolean(), nullable=False),
        sa.Column('approver_level', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], name='fk_users_company_id_companies'),
        sa.ForeignKeyConstraint(['manager_id'], ['users.id'], name='fk_users_manager_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_company_id', 'users', ['company_id'])
    op.create_index('ix_users_manager_id', 'users', ['manager_id'])

    op.create_table(
        'expense_categories',
        _id_column(),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], name='fk_expense_categories_company_id_companies'),
        sa.PrimaryKeyConstraint('id', name='pk_expense_categories'),
    )
    op.create_index('ix_expense_categories_company_id', 'expense_categories', ['company_id'])

    op.create_table(
        'approval_rules',
        _id_column(),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('min_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('max_amount', sa.Numeric(18, 2), nullable=True),
        sa.Column('category_ids', sa.JSON(), server_default='[]', nullable=False),
        sa.Column('rule_type', sa.String(30), nullable=False),
        sa.Column('required_percentage', sa.Integer(), nullable=True),
        sa.Column('is_manager_approver', sa.Boolean(), nullable=False),
        sa.Column('specific_approver_ids', sa.JSON(), server_default='[]', nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], name='fk_approval_rules_company_id_companies'),
        sa.PrimaryKeyConstraint('id', name='pk_approval_rules'),
    )
    op.create_index('ix_approval_rules_company_id', 'approval_rules', ['company_id'])

    op.create_table(
        'approval_rule_steps',
        _id_column(),
        sa.Column('rule_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('step', sa.Integer(), nullable=False),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(
            ['rule_id'], ['approval_rules.id'],
            name='fk_approval_rule_steps_rule_id_approval_rules', ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_approval_rule_steps_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_approval_rule_steps'),
    )
    op.create_index('ix_approval_rule_steps_rule_id', 'approval_rule_steps', ['rule_id'])

    op.create_table(
        'expenses',
        _id_column(),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('approval_rule_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('approval_policy', sa.JSON(), nullable=True),
        sa.Column('amount', sa.Numeric(18, 4), nullable=False),
        sa.Column('original_amount', sa.Numeric(18, 4), nullable=True),
        sa.Column('original_currency', sa.String(3), nullable=True),
        sa.Column('exchange_rate', sa.Numeric(18, 8), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('merchant_name', sa.String(255), nullable=True),
        sa.Column('receipt_url', sa.String(500), nullable=True),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('current_step', sa.Integer(), nullable=False),
        sa.Column('total_steps', sa.Integer(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_readonly', sa.Boolean(), nullable=False),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], name='fk_expenses_company_id_companies'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_expenses_user_id_users'),
        sa.ForeignKeyConstraint(
            ['category_id'], ['expense_categories.id'], name='fk_expenses_category_id_expense_categories',
        ),
        sa.ForeignKeyConstraint(
            ['approval_rule_id'], ['approval_rules.id'], name='fk_expenses_approval_rule_id_approval_rules',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_expenses'),
    )
    op.create_index('ix_expenses_company_id', 'expenses', ['company_id'])
    op.create_index('ix_expenses_user_id', 'expenses', ['user_id'])
    op.create_index('ix_expenses_category_id', 'expenses', ['category_id'])
    op.create_index('ix_expenses_status', 'expenses', ['status'])

    op.create_table(
        'expense_approvals',
        _id_column(),
        sa.Column('expense_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('approver_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('step', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(['expense_id'], ['expenses.id'], name='fk_expense_approvals_expense_id_expenses'),
        sa.ForeignKeyConstraint(['approver_id'], ['users.id'], name='fk_expense_approvals_approver_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_expense_approvals'),
        sa.UniqueConstraint('expense_id', 'approver_id', 'step', name='uq_expense_approvals_slot'),
    )
    op.create_index('ix_expense_approvals_expense_id', 'expense_approvals', ['expense_id'])
    op.create_index('ix_expense_approvals_approver_id', 'expense_approvals', ['approver_id'])

    op.create_table(
        'audit_logs',
        _id_column(),
        sa.Column('company_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('actor_email', sa.String(255), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('entity_type', sa.String(100), nullable=False),
        sa.Column('entity_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('before_state', sa.Text(), nullable=True),
        sa.Column('after_state', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], name='fk_audit_logs_company_id_companies'),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id'], name='fk_audit_logs_actor_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_audit_logs'),
    )
    op.create_index('ix_audit_logs_company_id', 'audit_logs', ['company_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])

    # Audit trail is append-only for the app role.
    op.execute("REVOKE UPDATE, DELETE ON audit_logs FROM PUBLIC;")
    op.execute("GRANT SELECT, INSERT ON audit_logs TO PUBLIC;")


def downgrade() -> None:
    op.execute("GRANT UPDATE, DELETE ON audit_logs TO PUBLIC;")
    op.drop_table('audit_logs')
    op.drop_table('expense_approvals')
    op.drop_table('expenses')
    op.drop_table('approval_rule_steps')
    op.drop_table('approval_rules')
    op.drop_table('expense_categories')
    op.drop_table('users')
    op.drop_table('companies')
