"""create_capacity_scenario_tables

Revision ID: 3f1c9a7e2b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7e2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _baseline_columns():
    return [
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('removed_version', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def _overlay_columns():
    return [
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('scenario_id', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('change_type', sa.String(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    ]


def upgrade() -> None:
    # Baseline plan records
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=True),
        sa.Column('aspiration_start', sa.Date(), nullable=True),
        sa.Column('aspiration_finish', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_baseline_columns(),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'project_phases_timeline',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('phase_id', sa.String(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_baseline_columns(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_project_phases_timeline_project_id', 'project_phases_timeline', ['project_id'])
    op.create_index('ix_project_phases_timeline_project_phase', 'project_phases_timeline', ['project_id', 'phase_id'])

    op.create_table(
        'project_assignments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('person_id', sa.String(), nullable=False),
        sa.Column('role_id', sa.String(), nullable=False),
        sa.Column('phase_id', sa.String(), nullable=True),
        sa.Column('allocation_percentage', sa.Float(), nullable=False),
        sa.Column('assignment_date_mode', sa.String(), nullable=False, server_default='project'),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_baseline_columns(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_project_assignments_project_id', 'project_assignments', ['project_id'])
    op.create_index('ix_project_assignments_person_id', 'project_assignments', ['person_id'])

    # Scenario hierarchy
    op.create_table(
        'scenarios',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('scenario_type', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('parent_scenario_id', sa.String(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('branch_point', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['parent_scenario_id'], ['scenarios.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_scenarios_parent_scenario_id', 'scenarios', ['parent_scenario_id'])

    # Overlays
    op.create_table(
        'scenario_project_assignments',
        *_overlay_columns(),
        sa.Column('base_assignment_id', sa.String(), nullable=True),
        sa.Column('project_id', sa.String(), nullable=True),
        sa.Column('person_id', sa.String(), nullable=True),
        sa.Column('role_id', sa.String(), nullable=True),
        sa.Column('phase_id', sa.String(), nullable=True),
        sa.Column('allocation_percentage', sa.Float(), nullable=True),
        sa.Column('assignment_date_mode', sa.String(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['scenario_id'], ['scenarios.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scenario_id', 'entity_id', 'version', name='uq_scenario_project_assignments_entity_version')
    )

    op.create_table(
        'scenario_project_phases',
        *_overlay_columns(),
        sa.Column('base_phase_timeline_id', sa.String(), nullable=True),
        sa.Column('project_id', sa.String(), nullable=True),
        sa.Column('phase_id', sa.String(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['scenario_id'], ['scenarios.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scenario_id', 'entity_id', 'version', name='uq_scenario_project_phases_entity_version')
    )

    op.create_table(
        'scenario_projects',
        *_overlay_columns(),
        sa.Column('project_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=True),
        sa.Column('aspiration_start', sa.Date(), nullable=True),
        sa.Column('aspiration_finish', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['scenario_id'], ['scenarios.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scenario_id', 'entity_id', 'version', name='uq_scenario_projects_entity_version')
    )

    for table in ('scenario_project_assignments', 'scenario_project_phases', 'scenario_projects'):
        op.create_index(f'ix_{table}_scenario_id', table, ['scenario_id'])
        op.create_index(f'ix_{table}_entity_id', table, ['entity_id'])

    # Merges
    op.create_table(
        'scenario_merges',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('source_scenario_id', sa.String(), nullable=False),
        sa.Column('target_scenario_id', sa.String(), nullable=False),
        sa.Column('common_ancestor_id', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='initiated'),
        sa.Column('resolve_conflicts_as', sa.String(), nullable=False, server_default='manual'),
        sa.Column('changes_applied', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conflicts_detected', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['source_scenario_id'], ['scenarios.id']),
        sa.ForeignKeyConstraint(['target_scenario_id'], ['scenarios.id']),
        sa.ForeignKeyConstraint(['common_ancestor_id'], ['scenarios.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_scenario_merges_source_scenario_id', 'scenario_merges', ['source_scenario_id'])
    op.create_index('ix_scenario_merges_target_scenario_id', 'scenario_merges', ['target_scenario_id'])

    op.create_table(
        'scenario_merge_conflicts',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('merge_id', sa.String(), nullable=False),
        sa.Column('source_scenario_id', sa.String(), nullable=False),
        sa.Column('target_scenario_id', sa.String(), nullable=False),
        sa.Column('conflict_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('source_data', postgresql.JSONB(), nullable=True),
        sa.Column('target_data', postgresql.JSONB(), nullable=True),
        sa.Column('resolution', sa.String(), nullable=False, server_default='pending'),
        sa.Column('resolved_data', postgresql.JSONB(), nullable=True),
        sa.Column('resolved_by', sa.String(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['merge_id'], ['scenario_merges.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['source_scenario_id'], ['scenarios.id']),
        sa.ForeignKeyConstraint(['target_scenario_id'], ['scenarios.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_scenario_merge_conflicts_merge_id', 'scenario_merge_conflicts', ['merge_id'])
    op.create_index('ix_scenario_merge_conflicts_source_scenario_id', 'scenario_merge_conflicts', ['source_scenario_id'])
    op.create_index('ix_scenario_merge_conflicts_target_scenario_id', 'scenario_merge_conflicts', ['target_scenario_id'])


def downgrade() -> None:
    op.drop_table('scenario_merge_conflicts')
    op.drop_table('scenario_merges')
    op.drop_table('scenario_projects')
    op.drop_table('scenario_project_phases')
    op.drop_table('scenario_project_assignments')
    op.drop_table('scenarios')
    op.drop_table('project_assignments')
    op.drop_table('project_phases_timeline')
    op.drop_table('projects')
