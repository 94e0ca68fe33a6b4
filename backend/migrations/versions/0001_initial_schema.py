"""Initial schema: identity, roles, expenses, advances, notifications

Revision ID: 0001_initial
Revises:
Create Date: 2026-01-21

This migration adds:
1. users, profiles, user_roles, session_tokens (identity and role sets)
2. security_events (append-only audit of denials and role changes)
3. expenses, expense_files, expense_status_logs (expense pipeline)
4. advance_requests (cash advances)
5. notifications
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


USER_ROLE = ('employee', 'manager', 'owner', 'accounts')
EXPENSE_STATUS = (
    'draft', 'submitted', 'reviewed', 'manager_approved', 'manager_rejected',
    'owner_approved', 'owner_rejected', 'pending_payment', 'paid',
)
ADVANCE_STATUS = ('pending', 'approved', 'rejected', 'disbursed')
FILE_CATEGORY = ('bill', 'payment_proof')


def _enum(values, name):
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True)


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, server_default=sa.func.now())


def upgrade():
    # ==========================================================================
    # 1. IDENTITY
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table('profiles',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('department', sa.String(length=100), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table('user_roles',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('role', _enum(USER_ROLE, 'user_role'), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role', name='uq_user_roles'),
    )
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        _timestamp('created_at'),
        _timestamp('last_used_at'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ==========================================================================
    # 2. SECURITY EVENTS
    # ==========================================================================
    op.create_table('security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=128), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        _timestamp('occurred_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_security_events_user_id', 'security_events', ['user_id'])
    op.create_index('ix_security_events_event_type', 'security_events', ['event_type'])
    op.create_index('ix_security_events_success', 'security_events', ['success'])
    op.create_index('ix_security_events_occurred_at', 'security_events', ['occurred_at'])
    op.create_index('ix_security_events_user_type', 'security_events', ['user_id', 'event_type'])

    # ==========================================================================
    # 3. EXPENSES
    # ==========================================================================
    op.create_table('expenses',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=False),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('status', _enum(EXPENSE_STATUS, 'expense_status'), nullable=False),
        sa.Column('reviewed_by', sa.String(length=36), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('manager_approved_by', sa.String(length=36), nullable=True),
        sa.Column('manager_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('manager_rejection_reason', sa.Text(), nullable=True),
        sa.Column('owner_approved_by', sa.String(length=36), nullable=True),
        sa.Column('owner_approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('owner_rejection_reason', sa.Text(), nullable=True),
        sa.Column('payment_reference', sa.String(length=120), nullable=True),
        sa.Column('paid_by', sa.String(length=36), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint('amount_cents > 0', name='ck_expenses_amount_positive'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['reviewed_by'], ['users.id']),
        sa.ForeignKeyConstraint(['manager_approved_by'], ['users.id']),
        sa.ForeignKeyConstraint(['owner_approved_by'], ['users.id']),
        sa.ForeignKeyConstraint(['paid_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_expenses_user_id', 'expenses', ['user_id'])
    op.create_index('ix_expenses_status', 'expenses', ['status'])
    op.create_index('ix_expenses_user_status', 'expenses', ['user_id', 'status'])
    op.create_index('ix_expenses_manager_approved_by', 'expenses', ['manager_approved_by'])
    op.create_index('ix_expenses_owner_approved_by', 'expenses', ['owner_approved_by'])
    op.create_index('ix_expenses_paid_by', 'expenses', ['paid_by'])

    op.create_table('expense_files',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('expense_id', sa.String(length=36), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('file_path', sa.String(length=512), nullable=False),
        sa.Column('file_type', sa.String(length=100), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False),
        sa.Column('uploaded_by', sa.String(length=36), nullable=False),
        sa.Column('file_category', _enum(FILE_CATEGORY, 'file_category'), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['expense_id'], ['expenses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['uploaded_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_expense_files_expense_id', 'expense_files', ['expense_id'])

    op.create_table('expense_status_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('expense_id', sa.String(length=36), nullable=False),
        sa.Column('status', _enum(EXPENSE_STATUS, 'expense_status'), nullable=False),
        sa.Column('changed_by', sa.String(length=36), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['expense_id'], ['expenses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['changed_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_expense_status_logs_expense', 'expense_status_logs', ['expense_id', 'id'])

    # ==========================================================================
    # 4. ADVANCES
    # ==========================================================================
    op.create_table('advance_requests',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', _enum(ADVANCE_STATUS, 'advance_status'), nullable=False),
        _timestamp('requested_at'),
        sa.Column('reviewed_by', sa.String(length=36), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('disbursed_by', sa.String(length=36), nullable=True),
        sa.Column('disbursed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_reference', sa.String(length=120), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint('amount_cents > 0', name='ck_advance_requests_amount_positive'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['reviewed_by'], ['users.id']),
        sa.ForeignKeyConstraint(['disbursed_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_advance_requests_user_id', 'advance_requests', ['user_id'])
    op.create_index('ix_advance_requests_status', 'advance_requests', ['status'])

    # ==========================================================================
    # 5. NOTIFICATIONS
    # ==========================================================================
    op.create_table('notifications',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('expense_id', sa.String(length=36), nullable=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['expense_id'], ['expenses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_user_read', 'notifications', ['user_id', 'is_read'])


def downgrade():
    op.drop_table('notifications')
    op.drop_table('advance_requests')
    op.drop_table('expense_status_logs')
    op.drop_table('expense_files')
    op.drop_table('expenses')
    op.drop_table('security_events')
    op.drop_table('session_tokens')
    op.drop_table('user_roles')
    op.drop_table('profiles')
    op.drop_table('users')
