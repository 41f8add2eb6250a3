"""Initial schema: workflow item snapshots and append-only transition records.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'workflow_items',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('kind', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('initial_status', sa.String(), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_transition_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('draft', 'pending', 'approved', 'rejected')",
            name='ck_workflow_items_status',
        ),
        sa.CheckConstraint(
            "kind IN ('story_idea', 'teacher_request')",
            name='ck_workflow_items_kind',
        ),
        sa.CheckConstraint(
            "last_transition_at >= created_at",
            name='ck_workflow_items_transition_after_creation',
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_items_kind'), 'workflow_items', ['kind'], unique=False)
    op.create_index(op.f('ix_workflow_items_owner_id'), 'workflow_items', ['owner_id'], unique=False)
    op.create_index(
        'ix_workflow_items_status_last_transition',
        'workflow_items',
        ['status', 'last_transition_at'],
        unique=False,
    )

    op.create_table(
        'transition_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('item_id', sa.String(), nullable=False),
        sa.Column('from_status', sa.String(), nullable=False),
        sa.Column('to_status', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('actor_id', sa.String(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('idempotency_key', sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(['item_id'], ['workflow_items.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index(op.f('ix_transition_records_item_id'), 'transition_records', ['item_id'], unique=False)
    op.create_index('ix_transition_records_item_id_id', 'transition_records', ['item_id', 'id'], unique=False)

    # history rows are immutable
    op.execute("""
        CREATE OR REPLACE FUNCTION transition_records_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'transition_records is append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_transition_records_append_only
        BEFORE UPDATE OR DELETE ON transition_records
        FOR EACH ROW EXECUTE FUNCTION transition_records_append_only();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_transition_records_append_only ON transition_records")
    op.execute("DROP FUNCTION IF EXISTS transition_records_append_only()")
    op.drop_index('ix_transition_records_item_id_id', table_name='transition_records')
    op.drop_index(op.f('ix_transition_records_item_id'), table_name='transition_records')
    op.drop_table('transition_records')
    op.drop_index('ix_workflow_items_status_last_transition', table_name='workflow_items')
    op.drop_index(op.f('ix_workflow_items_owner_id'), table_name='workflow_items')
    op.drop_index(op.f('ix_workflow_items_kind'), table_name='workflow_items')
    op.drop_table('workflow_items')
