# routers/schedules.py — Meetings, reminders and reports linked to one or more teams
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field, model_validator
from sqlalchemy import select, func, or_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_route
from database import get_db_session
from errors import AuthorizationError, NotFoundError
from models import Schedule, ScheduleTeam, ScheduleType, Team, utcnow
from principals import CurrentUser
from schemas import CamelModel
from team_shares import ensure_read_access, granting_team_ids
from visibility import SCHEDULE_POLICY, AccessMode, ResourceFacts, ensure_access

router = APIRouter(prefix="/api/v1/schedules", tags=["Schedules"])
logger = logging.getLogger("teamhub.schedules")


# ============================================================
# SCHEMAS
# ============================================================

class ScheduleCreate(CamelModel):
    type: ScheduleType
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    cron_expression: Optional[str] = Field(None, max_length=100)
    scheduled_at: Optional[datetime] = None
    team_ids: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def needs_timing(self):
        if not self.cron_expression and not self.scheduled_at:
            raise ValueError("cronExpression or scheduledAt is required")
        return self


class ScheduleUpdate(CamelModel):
    type: Optional[ScheduleType] = None
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    cron_expression: Optional[str] = Field(None, max_length=100)
    scheduled_at: Optional[datetime] = None
    team_ids: Optional[List[str]] = None
    is_active: Optional[bool] = None


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def schedule_to_out(s: Schedule, team_ids: Iterable[str] = ()) -> dict:
    return {
        "id": s.id,
        "type": s.type.value,
        "title": s.title,
        "description": s.description,
        "cronExpression": s.cron_expression,
        "scheduledAt": _ts(s.scheduled_at),
        "nextRunAt": _ts(s.next_run_at),
        "isActive": s.is_active,
        "creatorId": s.creator_id,
        "teamIds": sorted(team_ids),
        "createdAt": _ts(s.created_at),
        "updatedAt": _ts(s.updated_at),
    }


async def linked_team_ids(db: AsyncSession, schedule_ids: List[str]) -> Dict[str, List[str]]:
    """schedule_id -> team ids, in one query."""
    links: Dict[str, List[str]] = {sid: [] for sid in schedule_ids}
    if not schedule_ids:
        return links
    result = await db.execute(
        select(ScheduleTeam.schedule_id, ScheduleTeam.team_id)
        .where(ScheduleTeam.schedule_id.in_(schedule_ids))
    )
    for schedule_id, team_id in result.all():
        links[schedule_id].append(team_id)
    return links


async def schedules_out(db: AsyncSession, schedules: List[Schedule]) -> List[dict]:
    links = await linked_team_ids(db, [s.id for s in schedules])
    return [schedule_to_out(s, links[s.id]) for s in schedules]


def schedule_facts(schedule: Schedule, team_ids: Iterable[str]) -> ResourceFacts:
    return ResourceFacts(owner_id=schedule.creator_id, team_ids=frozenset(team_ids))


async def _get_schedule(db: AsyncSession, schedule_id: str):
    schedule = await db.get(Schedule, schedule_id)
    if schedule is None:
        raise NotFoundError("Schedule")
    links = await linked_team_ids(db, [schedule.id])
    return schedule, links[schedule.id]


async def _validate_teams(db: AsyncSession, team_ids: Iterable[str]) -> List[str]:
    unique = list(dict.fromkeys(team_ids))
    if unique:
        result = await db.execute(select(Team.id).where(Team.id.in_(unique)))
        if len(set(result.scalars().all())) != len(unique):
            raise NotFoundError("Team")
    return unique


async def _replace_links(db: AsyncSession, schedule_id: str, team_ids: List[str]) -> None:
    await db.execute(delete(ScheduleTeam).where(ScheduleTeam.schedule_id == schedule_id))
    for team_id in team_ids:
        db.add(ScheduleTeam(schedule_id=schedule_id, team_id=team_id))


async def _visible_schedules_clause(db: AsyncSession, user: CurrentUser):
    if user.is_owner:
        return None
    readable_teams = set(await granting_team_ids(db, user.team_id, "share_schedules"))
    if user.team_id:
        readable_teams.add(user.team_id)
    conditions = [Schedule.creator_id == user.id]
    if readable_teams:
        conditions.append(Schedule.id.in_(
            select(ScheduleTeam.schedule_id).where(ScheduleTeam.team_id.in_(readable_teams))
        ))
    return or_(*conditions)


# ============================================================
# CRUD
# ============================================================

@router.post("", status_code=201)
async def create_schedule(
    body: ScheduleCreate,
    user: CurrentUser = Depends(require_route("schedules.create")),
    db: AsyncSession = Depends(get_db_session),
):
    team_ids = await _validate_teams(db, body.team_ids or ([user.team_id] if user.team_id else []))

    schedule = Schedule(
        type=body.type,
        title=body.title,
        description=body.description,
        cron_expression=body.cron_expression,
        scheduled_at=body.scheduled_at,
        next_run_at=body.scheduled_at,
        creator_id=user.id,
    )
    db.add(schedule)
    await db.flush()
    for team_id in team_ids:
        db.add(ScheduleTeam(schedule_id=schedule.id, team_id=team_id))
    await db.commit()
    await db.refresh(schedule)

    logger.info("Schedule created: %s by %s", schedule.id, user.id)
    return schedule_to_out(schedule, team_ids)


@router.get("")
async def list_schedules(
    type: Optional[ScheduleType] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(require_route("schedules.list")),
    db: AsyncSession = Depends(get_db_session),
):
    filters = []
    visible = await _visible_schedules_clause(db, user)
    if visible is not None:
        filters.append(visible)
    if type:
        filters.append(Schedule.type == type)
    if is_active is not None:
        filters.append(Schedule.is_active.is_(is_active))

    result = await db.execute(
        select(Schedule).where(*filters).order_by(Schedule.created_at.desc()).offset(offset).limit(limit)
    )
    total = (await db.execute(select(func.count(Schedule.id)).where(*filters))).scalar() or 0
    return {"data": await schedules_out(db, list(result.scalars().all())), "total": total}


@router.get("/my")
async def my_schedules(
    user: CurrentUser = Depends(require_route("schedules.my")),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        select(Schedule).where(Schedule.creator_id == user.id).order_by(Schedule.created_at.desc())
    )
    return await schedules_out(db, list(result.scalars().all()))


@router.get("/upcoming")
async def upcoming_schedules(
    limit: int = Query(default=10, ge=1, le=100),
    user: CurrentUser = Depends(require_route("schedules.upcoming")),
    db: AsyncSession = Depends(get_db_session),
):
    """Active schedules the caller can read whose next run is in the future."""
    filters = [Schedule.is_active.is_(True), Schedule.next_run_at >= utcnow()]
    visible = await _visible_schedules_clause(db, user)
    if visible is not None:
        filters.append(visible)
    result = await db.execute(
        select(Schedule).where(*filters).order_by(Schedule.next_run_at.asc()).limit(limit)
    )
    return await schedules_out(db, list(result.scalars().all()))


@router.get("/team/{team_id}")
async def team_schedules(
    team_id: str,
    user: CurrentUser = Depends(require_route("schedules.team")),
    db: AsyncSession = Depends(get_db_session),
):
    if await db.get(Team, team_id) is None:
        raise NotFoundError("Team")
    if not user.is_owner and user.team_id != team_id:
        raise AuthorizationError("Not a member of this team")
    result = await db.execute(
        select(Schedule)
        .where(Schedule.id.in_(select(ScheduleTeam.schedule_id).where(ScheduleTeam.team_id == team_id)))
        .order_by(Schedule.created_at.desc())
    )
    return await schedules_out(db, list(result.scalars().all()))


@router.get("/{schedule_id}")
async def get_schedule(
    schedule_id: str,
    user: CurrentUser = Depends(require_route("schedules.read")),
    db: AsyncSession = Depends(get_db_session),
):
    schedule, team_ids = await _get_schedule(db, schedule_id)
    await ensure_read_access(db, SCHEDULE_POLICY, schedule_facts(schedule, team_ids), user)
    return schedule_to_out(schedule, team_ids)


@router.patch("/{schedule_id}")
async def update_schedule(
    schedule_id: str,
    body: ScheduleUpdate,
    user: CurrentUser = Depends(require_route("schedules.update")),
    db: AsyncSession = Depends(get_db_session),
):
    schedule, team_ids = await _get_schedule(db, schedule_id)
    ensure_access(SCHEDULE_POLICY, schedule_facts(schedule, team_ids), user, AccessMode.WRITE)

    sent = body.model_fields_set
    for field in ("type", "title", "is_active"):
        value = getattr(body, field)
        if field in sent and value is not None:
            setattr(schedule, field, value)
    for field in ("description", "cron_expression"):
        if field in sent:
            setattr(schedule, field, getattr(body, field))
    if "scheduled_at" in sent:
        schedule.scheduled_at = body.scheduled_at
        schedule.next_run_at = body.scheduled_at
    if body.team_ids is not None:
        team_ids = await _validate_teams(db, body.team_ids)
        await _replace_links(db, schedule.id, team_ids)

    await db.commit()
    await db.refresh(schedule)
    return schedule_to_out(schedule, team_ids)


@router.delete("/{schedule_id}", status_code=204)
async def delete_schedule(
    schedule_id: str,
    user: CurrentUser = Depends(require_route("schedules.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    schedule, team_ids = await _get_schedule(db, schedule_id)
    ensure_access(SCHEDULE_POLICY, schedule_facts(schedule, team_ids), user, AccessMode.DELETE)
    await db.delete(schedule)
    await db.commit()
    logger.info("Schedule deleted: %s by %s", schedule_id, user.id)


@router.post("/{schedule_id}/toggle")
async def toggle_schedule(
    schedule_id: str,
    user: CurrentUser = Depends(require_route("schedules.toggle")),
    db: AsyncSession = Depends(get_db_session),
):
    schedule, team_ids = await _get_schedule(db, schedule_id)
    ensure_access(SCHEDULE_POLICY, schedule_facts(schedule, team_ids), user, AccessMode.WRITE)
    schedule.is_active = not schedule.is_active
    await db.commit()
    await db.refresh(schedule)
    return schedule_to_out(schedule, team_ids)
