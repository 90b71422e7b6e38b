# models.py — Database models for the TeamHub backoffice
# - UUID string primary keys everywhere
# - 4-tier role hierarchy (owner, head, lead, actor)
# - Principal status lifecycle (pending -> active -> inactive)
# - Hashed refresh-token rows for rotation / revocation
# - Shareable resources: tasks, retrospectives, schedules, documents
# - Team-to-team share edges, notifications, audit trail

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(dt):
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    OWNER = "OWNER"
    HEAD = "HEAD"
    LEAD = "LEAD"
    ACTOR = "ACTOR"


class UserStatus(str, PyEnum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class Visibility(str, PyEnum):
    PRIVATE = "PRIVATE"
    TEAM = "TEAM"
    ALL = "ALL"


class TaskStatus(str, PyEnum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


class TaskPriority(str, PyEnum):
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class RetroType(str, PyEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    PROJECT = "PROJECT"


class ScheduleType(str, PyEnum):
    ONCE = "ONCE"
    MEETING = "MEETING"
    REMINDER = "REMINDER"
    REPORT = "REPORT"


class NotificationType(str, PyEnum):
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_COMMENT = "TASK_COMMENT"
    USER_APPROVED = "USER_APPROVED"
    USER_REJECTED = "USER_REJECTED"
    TEAM_INVITE = "TEAM_INVITE"
    TEAM_REMOVED = "TEAM_REMOVED"
    SCHEDULE_REMINDER = "SCHEDULE_REMINDER"


class AuditEventType(str, PyEnum):
    # Auth events
    USER_SIGNUP = "auth.user.signup"
    USER_LOGIN = "auth.user.login"
    USER_LOGOUT = "auth.user.logout"
    PASSWORD_CHANGED = "auth.password.changed"
    REFRESH_TOKEN_REUSED = "auth.token.reused"
    # Admin events
    USER_APPROVED = "admin.user.approved"
    USER_REJECTED = "admin.user.rejected"
    USER_ROLE_CHANGED = "admin.user.role_changed"
    USER_TEAM_CHANGED = "admin.user.team_changed"
    USER_DEACTIVATED = "admin.user.deactivated"
    USER_ACTIVATED = "admin.user.activated"
    # Team events
    TEAM_SHARE_CREATED = "team.share.created"
    TEAM_SHARE_UPDATED = "team.share.updated"
    TEAM_SHARE_REMOVED = "team.share.removed"


# ============================================================
# USERS & TEAMS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.ACTOR, nullable=False, index=True)
    status = Column(SQLEnum(UserStatus), default=UserStatus.PENDING, nullable=False, index=True)
    team_id = Column(String, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True)
    profile_image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    team = relationship("Team", back_populates="members", foreign_keys=[team_id])
    refresh_tokens = relationship("RefreshToken", back_populates="user")


class Team(Base):
    __tablename__ = "teams"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    owner_id = Column(String, ForeignKey("users.id", use_alter=True, name="fk_teams_owner_id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    members = relationship("User", back_populates="team", foreign_keys="User.team_id")
    owner = relationship("User", foreign_keys=[owner_id])


class TeamShare(Base):
    """Directed grant: `to_team` may read `from_team`'s tasks and/or schedules."""
    __tablename__ = "team_shares"

    id = Column(String, primary_key=True, default=new_uuid)
    from_team_id = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    to_team_id = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    share_tasks = Column(Boolean, default=False, nullable=False)
    share_schedules = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    from_team = relationship("Team", foreign_keys=[from_team_id])
    to_team = relationship("Team", foreign_keys=[to_team_id])

    __table_args__ = (
        UniqueConstraint("from_team_id", "to_team_id", name="uq_team_share_pair"),
    )


# ============================================================
# REFRESH TOKENS
# ============================================================

TOKEN_ROTATED = "ROTATED"
TOKEN_REVOKED = "REVOKED"


class RefreshToken(Base):
    """Stored refresh token. Only the SHA-256 of the raw token is kept."""
    __tablename__ = "refresh_tokens"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String, unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_reason = Column(String(16), nullable=True)  # TOKEN_ROTATED | TOKEN_REVOKED
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="refresh_tokens")

    @property
    def state(self) -> str:
        """ISSUED -> {ROTATED, REVOKED, EXPIRED}; all three are terminal."""
        if self.is_revoked:
            return TOKEN_ROTATED if self.revoked_reason == TOKEN_ROTATED else TOKEN_REVOKED
        if as_utc(self.expires_at) <= utcnow():
            return "EXPIRED"
        return "ISSUED"


# ============================================================
# TASKS
# ============================================================

class Task(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SQLEnum(TaskStatus), default=TaskStatus.TODO, nullable=False, index=True)
    priority = Column(SQLEnum(TaskPriority), default=TaskPriority.P2, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    creator_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    assignee_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    team_id = Column(String, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    creator = relationship("User", foreign_keys=[creator_id])
    assignee = relationship("User", foreign_keys=[assignee_id])
    team = relationship("Team")
    comments = relationship(
        "TaskComment", back_populates="task",
        order_by="TaskComment.created_at", cascade="all, delete-orphan",
    )
    history = relationship(
        "TaskHistory", back_populates="task",
        order_by="TaskHistory.created_at.desc()", cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_task_team_status", "team_id", "status"),
    )


class TaskComment(Base):
    __tablename__ = "task_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="comments")
    user = relationship("User")


class TaskHistory(Base):
    __tablename__ = "task_history"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    field_name = Column(String, nullable=False)  # "created", "status", "assignee_id", ...
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="history")
    user = relationship("User")


# ============================================================
# RETROSPECTIVES
# ============================================================

class Retrospective(Base):
    __tablename__ = "retrospectives"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(RetroType), nullable=False)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    is_draft = Column(Boolean, default=True, nullable=False)
    visibility = Column(SQLEnum(Visibility), default=Visibility.PRIVATE, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User")
    shares = relationship("RetrospectiveShare", back_populates="retrospective", cascade="all, delete-orphan")


class RetrospectiveShare(Base):
    """Explicit grant of read access to one user or one team."""
    __tablename__ = "retrospective_shares"

    id = Column(String, primary_key=True, default=new_uuid)
    retrospective_id = Column(String, ForeignKey("retrospectives.id", ondelete="CASCADE"), nullable=False, index=True)
    shared_with_user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    shared_with_team_id = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    retrospective = relationship("Retrospective", back_populates="shares")

    __table_args__ = (
        UniqueConstraint("retrospective_id", "shared_with_user_id", name="uq_retro_share_user"),
        UniqueConstraint("retrospective_id", "shared_with_team_id", name="uq_retro_share_team"),
    )


# ============================================================
# SCHEDULES
# ============================================================

class Schedule(Base):
    __tablename__ = "schedules"

    id = Column(String, primary_key=True, default=new_uuid)
    type = Column(SQLEnum(ScheduleType), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    cron_expression = Column(String, nullable=True)  # stored verbatim, not evaluated here
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    next_run_at = Column(DateTime(timezone=True), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    creator_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    creator = relationship("User")
    team_links = relationship("ScheduleTeam", back_populates="schedule", cascade="all, delete-orphan")


class ScheduleTeam(Base):
    __tablename__ = "schedule_teams"

    id = Column(String, primary_key=True, default=new_uuid)
    schedule_id = Column(String, ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False, index=True)
    team_id = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)

    schedule = relationship("Schedule", back_populates="team_links")

    __table_args__ = (
        UniqueConstraint("schedule_id", "team_id", name="uq_schedule_team"),
    )


# ============================================================
# DOCUMENTS
# ============================================================

class Document(Base):
    __tablename__ = "documents"

    id = Column(String, primary_key=True, default=new_uuid)
    team_id = Column(String, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    creator_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    tags = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    creator = relationship("User")
    team = relationship("Team")


# ============================================================
# NOTIFICATIONS
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(NotificationType), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, default=dict)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_notification_user_read", "user_id", "read_at"),
    )


# ============================================================
# AUDIT TRAIL
# ============================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    event_type = Column(SQLEnum(AuditEventType), nullable=False, index=True)
    actor_id = Column(String, nullable=True, index=True)  # not an FK: survives user deletion
    entity_type = Column(String, nullable=True)
    entity_id = Column(String, nullable=True, index=True)
    old_data = Column(JSON, nullable=True)
    new_data = Column(JSON, nullable=True)
    request_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
