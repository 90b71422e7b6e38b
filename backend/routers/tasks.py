# routers/tasks.py — Team tasks with comments, history and share-aware access
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_route
from database import get_db_session
from errors import AuthorizationError, NotFoundError
from models import Task, TaskComment, TaskHistory, TaskPriority, TaskStatus, Team, User
from notifications import (
    notify_task_assigned, notify_task_comment, notify_task_completed, notify_task_updated,
)
from principals import CurrentUser
from schemas import CamelModel
from team_shares import ensure_read_access, granting_team_ids
from visibility import TASK_POLICY, AccessMode, ResourceFacts, ensure_access

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])
logger = logging.getLogger("teamhub.tasks")


# ============================================================
# SCHEMAS
# ============================================================

class TaskCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=10000)
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.P2
    due_date: Optional[datetime] = None
    assignee_id: Optional[str] = None
    team_id: Optional[str] = None


class TaskUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=10000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    assignee_id: Optional[str] = None


class CommentCreate(CamelModel):
    content: str = Field(..., min_length=1, max_length=2000)


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def _val(v) -> Optional[str]:
    if v is None:
        return None
    return v.value if hasattr(v, "value") else str(v)


def task_to_out(t: Task) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "status": _val(t.status),
        "priority": _val(t.priority),
        "dueDate": _ts(t.due_date),
        "creatorId": t.creator_id,
        "assigneeId": t.assignee_id,
        "teamId": t.team_id,
        "createdAt": _ts(t.created_at),
        "updatedAt": _ts(t.updated_at),
    }


def _comment_out(c: TaskComment) -> dict:
    return {
        "id": c.id,
        "taskId": c.task_id,
        "userId": c.user_id,
        "content": c.content,
        "createdAt": _ts(c.created_at),
    }


def _history_out(h: TaskHistory) -> dict:
    return {
        "id": h.id,
        "userId": h.user_id,
        "fieldName": h.field_name,
        "oldValue": h.old_value,
        "newValue": h.new_value,
        "createdAt": _ts(h.created_at),
    }


def task_facts(task: Task) -> ResourceFacts:
    return ResourceFacts(
        owner_id=task.creator_id,
        assignee_id=task.assignee_id,
        team_ids=frozenset({task.team_id}) if task.team_id else frozenset(),
    )


async def _get_task(db: AsyncSession, task_id: str) -> Task:
    task = await db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task")
    return task


async def _ensure_user_exists(db: AsyncSession, user_id: Optional[str]) -> None:
    if user_id and await db.get(User, user_id) is None:
        raise NotFoundError("User")


def _record_history(db: AsyncSession, task_id: str, user_id: str, field_name: str,
                    old_value: Optional[str] = None, new_value: Optional[str] = None) -> None:
    db.add(TaskHistory(
        task_id=task_id, user_id=user_id, field_name=field_name,
        old_value=old_value, new_value=new_value,
    ))


async def _visible_tasks_clause(db: AsyncSession, user: CurrentUser):
    """WHERE clause for tasks the user may read, or None for the top role."""
    if user.is_owner:
        return None
    conditions = [Task.creator_id == user.id, Task.assignee_id == user.id]
    if user.team_id:
        conditions.append(Task.team_id == user.team_id)
    grants = await granting_team_ids(db, user.team_id, "share_tasks")
    if grants:
        conditions.append(Task.team_id.in_(grants))
    return or_(*conditions)


# ============================================================
# TASK CRUD
# ============================================================

@router.post("", status_code=201)
async def create_task(
    body: TaskCreate,
    user: CurrentUser = Depends(require_route("tasks.create")),
    db: AsyncSession = Depends(get_db_session),
):
    await _ensure_user_exists(db, body.assignee_id)
    team_id = body.team_id or user.team_id
    if body.team_id and await db.get(Team, body.team_id) is None:
        raise NotFoundError("Team")

    task = Task(
        title=body.title,
        description=body.description,
        status=body.status,
        priority=body.priority,
        due_date=body.due_date,
        creator_id=user.id,
        assignee_id=body.assignee_id,
        team_id=team_id,
    )
    db.add(task)
    await db.flush()
    _record_history(db, task.id, user.id, "created")
    await db.commit()
    await db.refresh(task)

    if task.assignee_id and task.assignee_id != user.id:
        await notify_task_assigned(db, task.assignee_id, task.id, task.title, user.name)

    logger.info("Task created: %s by %s", task.id, user.id)
    return task_to_out(task)


@router.get("")
async def list_tasks(
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    assignee_id: Optional[str] = Query(None, alias="assigneeId"),
    team_id: Optional[str] = Query(None, alias="teamId"),
    search: Optional[str] = Query(None, max_length=200),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(require_route("tasks.list")),
    db: AsyncSession = Depends(get_db_session),
):
    """Tasks the caller can read: created, assigned, own team, shared to own team."""
    filters = []
    visible = await _visible_tasks_clause(db, user)
    if visible is not None:
        filters.append(visible)
    if status:
        filters.append(Task.status == status)
    if priority:
        filters.append(Task.priority == priority)
    if assignee_id:
        filters.append(Task.assignee_id == assignee_id)
    if team_id:
        filters.append(Task.team_id == team_id)
    if search:
        pattern = f"%{search}%"
        filters.append(or_(Task.title.ilike(pattern), Task.description.ilike(pattern)))

    query = select(Task).where(*filters).order_by(Task.created_at.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    total = (await db.execute(select(func.count(Task.id)).where(*filters))).scalar() or 0
    return {"data": [task_to_out(t) for t in result.scalars().all()], "total": total}


@router.get("/my")
async def my_tasks(
    user: CurrentUser = Depends(require_route("tasks.my")),
    db: AsyncSession = Depends(get_db_session),
):
    """Tasks assigned to the caller"""
    result = await db.execute(
        select(Task).where(Task.assignee_id == user.id).order_by(Task.due_date.asc(), Task.created_at.desc())
    )
    return [task_to_out(t) for t in result.scalars().all()]


@router.get("/created")
async def created_tasks(
    user: CurrentUser = Depends(require_route("tasks.created")),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        select(Task).where(Task.creator_id == user.id).order_by(Task.created_at.desc())
    )
    return [task_to_out(t) for t in result.scalars().all()]


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(require_route("tasks.read")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    await ensure_read_access(db, TASK_POLICY, task_facts(task), user)
    return task_to_out(task)


@router.patch("/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdate,
    user: CurrentUser = Depends(require_route("tasks.update")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    ensure_access(TASK_POLICY, task_facts(task), user, AccessMode.WRITE)

    sent = body.model_fields_set
    if "assignee_id" in sent:
        await _ensure_user_exists(db, body.assignee_id)

    old_creator_id, old_assignee_id = task.creator_id, task.assignee_id
    changes = []
    for field in ("title", "description", "status", "priority", "due_date", "assignee_id"):
        if field not in sent:
            continue
        new_value = getattr(body, field)
        if new_value is None and field in ("title", "status", "priority"):
            continue
        old_value = getattr(task, field)
        if _val(old_value) == _val(new_value):
            continue
        changes.append((field, _val(old_value), _val(new_value)))
        setattr(task, field, new_value)

    for field, old_value, new_value in changes:
        _record_history(db, task.id, user.id, field, old_value, new_value)
    await db.commit()
    await db.refresh(task)

    # Notifications: new assignee, completion to creator, generic update to the rest.
    targets = set()
    if old_creator_id != user.id:
        targets.add(old_creator_id)
    if old_assignee_id and old_assignee_id != user.id:
        targets.add(old_assignee_id)
    for field, _, new_value in changes:
        if field == "assignee_id" and new_value and new_value != user.id:
            await notify_task_assigned(db, new_value, task.id, task.title, user.name)
            targets.discard(new_value)
        if field == "status" and new_value == TaskStatus.DONE.value and old_creator_id != user.id:
            await notify_task_completed(db, old_creator_id, task.id, task.title, user.name)
            targets.discard(old_creator_id)
    if changes:
        fields = ", ".join(c[0] for c in changes)
        for target in targets:
            await notify_task_updated(db, target, task.id, task.title, user.name, fields)

    return task_to_out(task)


@router.delete("/{task_id}", status_code=204)
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(require_route("tasks.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    ensure_access(TASK_POLICY, task_facts(task), user, AccessMode.DELETE)
    await db.delete(task)
    await db.commit()
    logger.info("Task deleted: %s by %s", task_id, user.id)


# ============================================================
# COMMENTS
# ============================================================

@router.get("/{task_id}/comments")
async def list_comments(
    task_id: str,
    user: CurrentUser = Depends(require_route("tasks.comments.list")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    await ensure_read_access(db, TASK_POLICY, task_facts(task), user)
    result = await db.execute(
        select(TaskComment).where(TaskComment.task_id == task_id).order_by(TaskComment.created_at.asc())
    )
    return [_comment_out(c) for c in result.scalars().all()]


@router.post("/{task_id}/comments", status_code=201)
async def add_comment(
    task_id: str,
    body: CommentCreate,
    user: CurrentUser = Depends(require_route("tasks.comments.add")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    await ensure_read_access(db, TASK_POLICY, task_facts(task), user)

    comment = TaskComment(task_id=task.id, user_id=user.id, content=body.content)
    db.add(comment)
    await db.commit()
    await db.refresh(comment)

    preview = body.content if len(body.content) <= 50 else body.content[:50] + "..."
    for target in {task.creator_id, task.assignee_id} - {None, user.id}:
        await notify_task_comment(db, target, task.id, task.title, user.name, preview)
    return _comment_out(comment)


@router.delete("/{task_id}/comments/{comment_id}", status_code=204)
async def delete_comment(
    task_id: str,
    comment_id: str,
    user: CurrentUser = Depends(require_route("tasks.comments.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    """Comment author, task creator or the top role may delete a comment."""
    task = await _get_task(db, task_id)
    comment = await db.get(TaskComment, comment_id)
    if comment is None or comment.task_id != task.id:
        raise NotFoundError("Comment")
    if user.id not in (comment.user_id, task.creator_id) and not user.is_owner:
        raise AuthorizationError("Not allowed to delete this comment")
    await db.delete(comment)
    await db.commit()


# ============================================================
# HISTORY
# ============================================================

@router.get("/{task_id}/history")
async def task_history(
    task_id: str,
    user: CurrentUser = Depends(require_route("tasks.history")),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    await ensure_read_access(db, TASK_POLICY, task_facts(task), user)
    result = await db.execute(
        select(TaskHistory).where(TaskHistory.task_id == task_id).order_by(TaskHistory.created_at.desc())
    )
    return [_history_out(h) for h in result.scalars().all()]
