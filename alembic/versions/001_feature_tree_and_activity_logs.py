"""Feature tree, activity logs, timelines, tree locks and dashboard metrics.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Feature nodes with denormalized child/descendant indexes
    op.create_table(
        'features',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('fid', sa.String(36), nullable=False),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('name_key', sa.String(200), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('parent_fid', sa.String(36), nullable=True),
        sa.Column('child_ids', sa.JSON, nullable=False),
        sa.Column('all_child_ids', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.Column('modified_by', sa.String(64), nullable=False),
        sa.UniqueConstraint('owner_id', 'fid', name='uq_features_owner_fid'),
        sa.UniqueConstraint('owner_id', 'name_key', name='uq_features_owner_name_key'),
    )
    op.create_index('ix_features_owner_id', 'features', ['owner_id'])
    op.create_index('ix_features_parent_fid', 'features', ['parent_fid'])

    # Activity log chain
    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('subject_id', sa.String(64), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('topic', sa.Enum('Create', 'Update', 'Delete', name='audittopic'), nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('payloads', sa.JSON, nullable=False),
        sa.Column('route_to_view', sa.String(255), nullable=False, server_default=''),
        sa.Column('navigation_workflow', sa.JSON, nullable=False),
        sa.Column('prev_link', sa.String(255), nullable=False, server_default=''),
        sa.Column('next_link', sa.String(255), nullable=False, server_default=''),
        sa.Column('modified_before_by', sa.JSON, nullable=False),
        sa.Column('modified_after_by', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_activity_logs_owner_id', 'activity_logs', ['owner_id'])
    op.create_index('ix_activity_logs_entity_type', 'activity_logs', ['entity_type'])
    op.create_index('ix_activity_logs_created_at', 'activity_logs', ['created_at'])
    op.create_index(
        'ix_activity_logs_owner_subject_created',
        'activity_logs',
        ['owner_id', 'subject_id', 'created_at'],
    )

    # Per-subject timelines
    op.create_table(
        'activity_log_timelines',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('subject_id', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('owner_id', 'subject_id', name='uq_activity_log_timelines_owner_subject'),
    )
    op.create_table(
        'activity_log_timeline_items',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('timeline_id', sa.Integer, sa.ForeignKey('activity_log_timelines.id', ondelete='CASCADE'), nullable=False),
        sa.Column('activity_log_id', sa.Integer, sa.ForeignKey('activity_logs.id'), nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('timeline_id', 'position', name='uq_activity_log_timeline_items_position'),
    )
    op.create_index('ix_activity_log_timeline_items_timeline_id', 'activity_log_timeline_items', ['timeline_id'])

    # Per-owner tree lock rows
    op.create_table(
        'feature_tree_locks',
        sa.Column('owner_id', sa.String(64), primary_key=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )

    # Dashboard counters
    op.create_table(
        'dashboard_metrics',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('owner_id', sa.String(64), nullable=False),
        sa.Column('key', sa.String(100), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('value', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.UniqueConstraint('owner_id', 'key', name='uq_dashboard_metrics_owner_key'),
    )
    op.create_index('ix_dashboard_metrics_owner_id', 'dashboard_metrics', ['owner_id'])


def downgrade() -> None:
    op.drop_table('dashboard_metrics')
    op.drop_table('feature_tree_locks')
    op.drop_table('activity_log_timeline_items')
    op.drop_table('activity_log_timelines')
    op.drop_table('activity_logs')
    op.drop_table('features')

    if op.get_bind().dialect.name == 'postgresql':
        op.execute('DROP TYPE IF EXISTS audittopic')
