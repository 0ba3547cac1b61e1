"""create_mat_views_tables

Revision ID: 001_mat_views
Revises:
Create Date: 2026-10-16 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_mat_views'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    refresh_strategy_enum = postgresql.ENUM('regular', 'concurrent', 'swap', name='mat_view_refresh_strategy', create_type=False)
    refresh_strategy_enum.create(op.get_bind(), checkfirst=True)
    run_operation_enum = postgresql.ENUM('create', 'refresh', 'drop', name='mat_view_run_operation', create_type=False)
    run_operation_enum.create(op.get_bind(), checkfirst=True)
    run_status_enum = postgresql.ENUM('running', 'success', 'failed', name='mat_view_run_status', create_type=False)
    run_status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'mat_view_definitions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('sql', sa.Text(), nullable=False),
        sa.Column('refresh_strategy', refresh_strategy_enum, server_default='regular', nullable=False),
        sa.Column('schedule_cron', sa.String(), nullable=True),
        sa.Column('unique_index_columns', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('dependencies', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_mat_view_definitions_name'),
    )

    op.create_table(
        'mat_view_runs',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('mat_view_definition_id', sa.Integer(), nullable=False),
        sa.Column('operation', run_operation_enum, nullable=False),
        sa.Column('status', run_status_enum, server_default='running', nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('meta', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('error', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['mat_view_definition_id'], ['mat_view_definitions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_index('ix_mat_view_runs_mat_view_definition_id', 'mat_view_runs', ['mat_view_definition_id'])
    op.create_index('idx_mat_view_runs_definition_started', 'mat_view_runs', ['mat_view_definition_id', 'started_at'])


def downgrade() -> None:
    op.drop_index('idx_mat_view_runs_definition_started', table_name='mat_view_runs')
    op.drop_index('ix_mat_view_runs_mat_view_definition_id', table_name='mat_view_runs')
    op.drop_table('mat_view_runs')
    op.drop_table('mat_view_definitions')
    op.execute('DROP TYPE IF EXISTS mat_view_run_status')
    op.execute('DROP TYPE IF EXISTS mat_view_run_operation')
    op.execute('DROP TYPE IF EXISTS mat_view_refresh_strategy')
