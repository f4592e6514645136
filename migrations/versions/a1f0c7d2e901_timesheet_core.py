"""timesheet core tables

Revision ID: a1f0c7d2e901
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1f0c7d2e901'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20)),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
    )
    op.create_table(
        'user_roles',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='CASCADE'), primary_key=True),
    )
    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(120), nullable=False, unique=True),
        sa.Column('name', sa.String(150)),
    )
    op.create_table(
        'role_permissions',
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id', ondelete='CASCADE'), primary_key=True),
    )

    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        'sites',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('company_id', 'name', name='uq_site_company_name'),
    )
    op.create_index('ix_sites_company_id', 'sites', ['company_id'])

    op.create_table(
        'site_memberships',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='STAFF'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'site_id', 'role', name='uq_site_membership'),
    )
    op.create_index('ix_site_memberships_user_id', 'site_memberships', ['user_id'])
    op.create_index('ix_site_memberships_site_id', 'site_memberships', ['site_id'])
    op.create_table(
        'bank_memberships',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'company_id', name='uq_bank_membership'),
    )
    op.create_index('ix_bank_memberships_user_id', 'bank_memberships', ['user_id'])
    op.create_index('ix_bank_memberships_company_id', 'bank_memberships', ['company_id'])
    op.create_table(
        'company_memberships',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('positions', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'company_id', name='uq_company_membership'),
    )
    op.create_index('ix_company_memberships_user_id', 'company_memberships', ['user_id'])
    op.create_index('ix_company_memberships_company_id', 'company_memberships', ['company_id'])

    op.create_table(
        'shift_types',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code', sa.String(20), nullable=False),
        sa.Column('label', sa.String(100), nullable=False),
        sa.Column('default_hours', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('kind', sa.String(20)),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('company_id', 'code', name='uq_shift_type_company_code'),
    )
    op.create_index('ix_shift_types_company_id', 'shift_types', ['company_id'])

    op.create_table(
        'rotas',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('month_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='DRAFT'),
        sa.Column('published_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('site_id', 'month_date', name='uq_rota_site_month'),
    )
    op.create_index('ix_rotas_site_id', 'rotas', ['site_id'])
    op.create_table(
        'rota_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rota_id', sa.Integer(), sa.ForeignKey('rotas.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day_of_month', sa.Integer(), nullable=False),
        sa.Column('shift_type_id', sa.Integer(), sa.ForeignKey('shift_types.id', ondelete='SET NULL')),
        sa.Column('hours', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.UniqueConstraint('rota_id', 'user_id', 'day_of_month', name='uq_rota_entry_user_day'),
    )
    op.create_index('ix_rota_entries_rota_id', 'rota_entries', ['rota_id'])
    op.create_index('ix_rota_entries_user_id', 'rota_entries', ['user_id'])

    op.create_table(
        'timesheets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('worker_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('month_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='DRAFT'),
        sa.Column('submitted_at', sa.DateTime()),
        sa.Column('forwarded_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('site_id', 'worker_id', 'month_date', name='uq_timesheet_site_worker_month'),
    )
    op.create_index('ix_timesheets_site_id', 'timesheets', ['site_id'])
    op.create_index('ix_timesheets_worker_id', 'timesheets', ['worker_id'])
    op.create_index('ix_timesheets_worker_month', 'timesheets', ['worker_id', 'month_date'])

    op.create_table(
        'timesheet_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('timesheet_id', sa.Integer(), sa.ForeignKey('timesheets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day_of_month', sa.Integer(), nullable=False),
        sa.Column('shift_type_id', sa.Integer(), sa.ForeignKey('shift_types.id', ondelete='SET NULL')),
        sa.Column('hours', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text()),
        sa.Column('source', sa.String(10), nullable=False, server_default='MANUAL'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('timesheet_id', 'day_of_month', name='uq_timesheet_entry_day'),
        sa.CheckConstraint('hours >= 0', name='ck_timesheet_entry_hours_nonneg'),
    )
    op.create_index('ix_timesheet_entries_timesheet_id', 'timesheet_entries', ['timesheet_id'])

    op.create_table(
        'timesheet_site_reviews',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('timesheet_id', sa.Integer(), sa.ForeignKey('timesheets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('acted_by_user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('acted_at', sa.DateTime()),
        sa.Column('comment', sa.Text()),
        sa.UniqueConstraint('timesheet_id', 'site_id', name='uq_timesheet_site_review'),
    )
    op.create_index('ix_timesheet_site_reviews_timesheet_id', 'timesheet_site_reviews', ['timesheet_id'])

    op.create_table(
        'timesheet_actions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('timesheet_id', sa.Integer(), sa.ForeignKey('timesheets.id', ondelete='SET NULL')),
        sa.Column('site_id', sa.Integer()),
        sa.Column('worker_id', sa.Integer()),
        sa.Column('month_date', sa.Date()),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('comment', sa.Text()),
        sa.Column('detail', sa.JSON()),
        sa.Column('acted_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_timesheet_actions_timesheet_id', 'timesheet_actions', ['timesheet_id'])


def downgrade() -> None:
    for table in (
        'timesheet_actions', 'timesheet_site_reviews', 'timesheet_entries', 'timesheets',
        'rota_entries', 'rotas', 'shift_types',
        'company_memberships', 'bank_memberships', 'site_memberships',
        'sites', 'companies',
        'role_permissions', 'permissions', 'user_roles', 'roles', 'users',
    ):
        op.drop_table(table)
