"""Initial TeamHub schema

Revision ID: a1f3c5e7b9d2
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates:
- users, teams, team_shares, refresh_tokens
- tasks, task_comments, task_history
- retrospectives, retrospective_shares
- schedules, schedule_teams
- documents, notifications, audit_logs
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1f3c5e7b9d2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


user_role = sa.Enum('OWNER', 'HEAD', 'LEAD', 'ACTOR', name='userrole')
user_status = sa.Enum('PENDING', 'ACTIVE', 'INACTIVE', name='userstatus')
visibility = sa.Enum('PRIVATE', 'TEAM', 'ALL', name='visibility')
task_status = sa.Enum('TODO', 'IN_PROGRESS', 'REVIEW', 'DONE', 'CANCELLED', name='taskstatus')
task_priority = sa.Enum('P0', 'P1', 'P2', 'P3', name='taskpriority')
retro_type = sa.Enum('DAILY', 'WEEKLY', 'MONTHLY', 'PROJECT', name='retrotype')
schedule_type = sa.Enum('ONCE', 'MEETING', 'REMINDER', 'REPORT', name='scheduletype')
notification_type = sa.Enum(
    'TASK_ASSIGNED', 'TASK_UPDATED', 'TASK_COMPLETED', 'TASK_COMMENT',
    'USER_APPROVED', 'USER_REJECTED', 'TEAM_INVITE', 'TEAM_REMOVED', 'SCHEDULE_REMINDER',
    name='notificationtype',
)
audit_event_type = sa.Enum(
    'USER_SIGNUP', 'USER_LOGIN', 'USER_LOGOUT', 'PASSWORD_CHANGED', 'REFRESH_TOKEN_REUSED',
    'USER_APPROVED', 'USER_REJECTED', 'USER_ROLE_CHANGED', 'USER_TEAM_CHANGED',
    'USER_DEACTIVATED', 'USER_ACTIVATED',
    'TEAM_SHARE_CREATED', 'TEAM_SHARE_UPDATED', 'TEAM_SHARE_REMOVED',
    name='auditeventtype',
)


def upgrade() -> None:
    # --- users (team FK added once teams exists) ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', user_role, nullable=False, server_default='ACTOR'),
        sa.Column('status', user_status, nullable=False, server_default='PENDING'),
        sa.Column('team_id', sa.String(), nullable=True),
        sa.Column('profile_image_url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_status', 'users', ['status'])
    op.create_index('ix_users_team_id', 'users', ['team_id'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    # --- teams ---
    op.create_table(
        'teams',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('owner_id', sa.String(), sa.ForeignKey('users.id', name='fk_teams_owner_id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_teams_name', 'teams', ['name'])
    op.create_foreign_key(
        'fk_users_team_id', 'users', 'teams', ['team_id'], ['id'], ondelete='SET NULL',
    )

    # --- team_shares ---
    op.create_table(
        'team_shares',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('from_team_id', sa.String(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('to_team_id', sa.String(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('share_tasks', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('share_schedules', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('from_team_id', 'to_team_id', name='uq_team_share_pair'),
    )
    op.create_index('ix_team_shares_from_team_id', 'team_shares', ['from_team_id'])
    op.create_index('ix_team_shares_to_team_id', 'team_shares', ['to_team_id'])

    # --- refresh_tokens ---
    op.create_table(
        'refresh_tokens',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token_hash', sa.String(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revoked_reason', sa.String(length=16), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refresh_tokens_user_id', 'refresh_tokens', ['user_id'])
    op.create_index('ix_refresh_tokens_token_hash', 'refresh_tokens', ['token_hash'], unique=True)

    # --- tasks ---
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', task_status, nullable=False, server_default='TODO'),
        sa.Column('priority', task_priority, nullable=False, server_default='P2'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('creator_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assignee_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('team_id', sa.String(), sa.ForeignKey('teams.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_creator_id', 'tasks', ['creator_id'])
    op.create_index('ix_tasks_assignee_id', 'tasks', ['assignee_id'])
    op.create_index('ix_tasks_team_id', 'tasks', ['team_id'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])
    op.create_index('idx_task_team_status', 'tasks', ['team_id', 'status'])

    # --- task_comments ---
    op.create_table(
        'task_comments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])

    # --- task_history ---
    op.create_table(
        'task_history',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('field_name', sa.String(), nullable=False),
        sa.Column('old_value', sa.Text(), nullable=True),
        sa.Column('new_value', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_history_task_id', 'task_history', ['task_id'])

    # --- retrospectives ---
    op.create_table(
        'retrospectives',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', retro_type, nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_draft', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('visibility', visibility, nullable=False, server_default='PRIVATE'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_retrospectives_user_id', 'retrospectives', ['user_id'])

    # --- retrospective_shares ---
    op.create_table(
        'retrospective_shares',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('retrospective_id', sa.String(), sa.ForeignKey('retrospectives.id', ondelete='CASCADE'), nullable=False),
        sa.Column('shared_with_user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=True),
        sa.Column('shared_with_team_id', sa.String(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('retrospective_id', 'shared_with_user_id', name='uq_retro_share_user'),
        sa.UniqueConstraint('retrospective_id', 'shared_with_team_id', name='uq_retro_share_team'),
    )
    op.create_index('ix_retrospective_shares_retrospective_id', 'retrospective_shares', ['retrospective_id'])
    op.create_index('ix_retrospective_shares_shared_with_user_id', 'retrospective_shares', ['shared_with_user_id'])
    op.create_index('ix_retrospective_shares_shared_with_team_id', 'retrospective_shares', ['shared_with_team_id'])

    # --- schedules ---
    op.create_table(
        'schedules',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('type', schedule_type, nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('cron_expression', sa.String(), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('creator_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_schedules_next_run_at', 'schedules', ['next_run_at'])
    op.create_index('ix_schedules_creator_id', 'schedules', ['creator_id'])

    # --- schedule_teams ---
    op.create_table(
        'schedule_teams',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('schedule_id', sa.String(), sa.ForeignKey('schedules.id', ondelete='CASCADE'), nullable=False),
        sa.Column('team_id', sa.String(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('schedule_id', 'team_id', name='uq_schedule_team'),
    )
    op.create_index('ix_schedule_teams_schedule_id', 'schedule_teams', ['schedule_id'])
    op.create_index('ix_schedule_teams_team_id', 'schedule_teams', ['team_id'])

    # --- documents ---
    op.create_table(
        'documents',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('team_id', sa.String(), sa.ForeignKey('teams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('creator_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_documents_team_id', 'documents', ['team_id'])
    op.create_index('ix_documents_creator_id', 'documents', ['creator_id'])
    op.create_index('ix_documents_created_at', 'documents', ['created_at'])

    # --- notifications ---
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', notification_type, nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])
    op.create_index('idx_notification_user_read', 'notifications', ['user_id', 'read_at'])

    # --- audit_logs (actor_id is not an FK) ---
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('event_type', audit_event_type, nullable=False),
        sa.Column('actor_id', sa.String(), nullable=True),
        sa.Column('entity_type', sa.String(), nullable=True),
        sa.Column('entity_id', sa.String(), nullable=True),
        sa.Column('old_data', sa.JSON(), nullable=True),
        sa.Column('new_data', sa.JSON(), nullable=True),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_event_type', 'audit_logs', ['event_type'])
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('notifications')
    op.drop_table('documents')
    op.drop_table('schedule_teams')
    op.drop_table('schedules')
    op.drop_table('retrospective_shares')
    op.drop_table('retrospectives')
    op.drop_table('task_history')
    op.drop_table('task_comments')
    op.drop_table('tasks')
    op.drop_table('refresh_tokens')
    op.drop_table('team_shares')
    op.drop_constraint('fk_users_team_id', 'users', type_='foreignkey')
    op.drop_table('teams')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in (audit_event_type, notification_type, schedule_type, retro_type,
                 task_priority, task_status, visibility, user_status, user_role):
        enum.drop(bind, checkfirst=True)
