# routers/teams.py — Teams, membership and team-to-team shares
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy import select, func, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_route
from database import get_db_session
from errors import AuthorizationError, ConflictError, NotFoundError
from models import Document, NotificationType, Schedule, ScheduleTeam, Task, Team, TeamShare, User
from notifications import notify
from principals import CurrentUser, get_user_by_id, user_to_out
from routers.admin import ensure_not_leaving_owned_team, member_count
from routers.schedules import schedules_out
from routers.tasks import task_to_out
from schemas import CamelModel
import team_shares

router = APIRouter(prefix="/api/v1/teams", tags=["Teams"])
logger = logging.getLogger("teamhub.teams")

SHARED_LISTING_LIMIT = 50


# ============================================================
# SCHEMAS
# ============================================================

class TeamCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    owner_id: Optional[str] = None


class TeamUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    owner_id: Optional[str] = None


class MemberAdd(CamelModel):
    user_id: str


class ShareCreate(CamelModel):
    to_team_id: str
    share_tasks: bool = False
    share_schedules: bool = False


class ShareUpdate(CamelModel):
    share_tasks: Optional[bool] = None
    share_schedules: Optional[bool] = None


# ============================================================
# HELPERS
# ============================================================

def _team_out(team: Team, member_count: Optional[int] = None) -> dict:
    out = {
        "id": team.id,
        "name": team.name,
        "description": team.description,
        "ownerId": team.owner_id,
        "createdAt": team.created_at.isoformat() if team.created_at else None,
        "updatedAt": team.updated_at.isoformat() if team.updated_at else None,
    }
    if member_count is not None:
        out["memberCount"] = member_count
    return out


async def _get_team(db: AsyncSession, team_id: str) -> Team:
    team = await db.get(Team, team_id)
    if team is None:
        raise NotFoundError("Team")
    return team


async def _get_user(db: AsyncSession, user_id: str) -> User:
    target = await get_user_by_id(db, user_id)
    if target is None:
        raise NotFoundError("User")
    return target


def _ensure_manages_team(user: CurrentUser, team_id: str) -> None:
    """HEAD manages membership of their own team only; OWNER manages any team."""
    if not user.is_owner and user.team_id != team_id:
        raise AuthorizationError("You can only manage members of your own team")


def _ensure_member_or_owner(user: CurrentUser, team_id: str) -> None:
    if not user.is_owner and user.team_id != team_id:
        raise AuthorizationError("Not a member of this team")


# ============================================================
# TEAM CRUD
# ============================================================

@router.post("", status_code=201)
async def create_team(
    body: TeamCreate,
    user: CurrentUser = Depends(require_route("teams.create")),
    db: AsyncSession = Depends(get_db_session),
):
    # The owner joins the new team, so they must not belong to another one yet.
    owner = await _get_user(db, body.owner_id or user.id)
    if owner.team_id is not None:
        raise ConflictError("Team owner already belongs to a team; pass a teamless ownerId")

    team = Team(name=body.name, description=body.description, owner_id=owner.id)
    db.add(team)
    await db.flush()
    owner.team_id = team.id

    await db.commit()
    await db.refresh(team)
    logger.info("Team created: %s by %s", team.id, user.id)
    return _team_out(team, await member_count(db, team.id))


@router.get("")
async def list_teams(
    user: CurrentUser = Depends(require_route("teams.list")),
    db: AsyncSession = Depends(get_db_session),
):
    counts = (
        select(User.team_id, func.count(User.id).label("member_count"))
        .where(User.team_id.is_not(None))
        .group_by(User.team_id)
        .subquery()
    )
    result = await db.execute(
        select(Team, func.coalesce(counts.c.member_count, 0))
        .outerjoin(counts, counts.c.team_id == Team.id)
        .order_by(Team.name.asc())
    )
    return [_team_out(team, count) for team, count in result.all()]


@router.get("/my-team")
async def my_team(
    user: CurrentUser = Depends(require_route("teams.my")),
    db: AsyncSession = Depends(get_db_session),
):
    if not user.team_id:
        raise NotFoundError("Team", "You are not a member of any team")
    team = await _get_team(db, user.team_id)
    return _team_out(team, await member_count(db, team.id))


@router.get("/{team_id}")
async def get_team(
    team_id: str,
    user: CurrentUser = Depends(require_route("teams.read")),
    db: AsyncSession = Depends(get_db_session),
):
    team = await _get_team(db, team_id)
    return _team_out(team, await member_count(db, team.id))


@router.patch("/{team_id}")
async def update_team(
    team_id: str,
    body: TeamUpdate,
    user: CurrentUser = Depends(require_route("teams.update")),
    db: AsyncSession = Depends(get_db_session),
):
    team = await _get_team(db, team_id)
    if body.name is not None:
        team.name = body.name
    if "description" in body.model_fields_set:
        team.description = body.description
    if body.owner_id and body.owner_id != team.owner_id:
        new_owner = await _get_user(db, body.owner_id)
        if new_owner.team_id is None:
            new_owner.team_id = team.id
        elif new_owner.team_id != team.id:
            raise ConflictError("The new owner must be a member of this team")
        team.owner_id = new_owner.id

    await db.commit()
    await db.refresh(team)
    return _team_out(team, await member_count(db, team.id))


@router.delete("/{team_id}", status_code=204)
async def delete_team(
    team_id: str,
    user: CurrentUser = Depends(require_route("teams.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    team = await _get_team(db, team_id)
    if await member_count(db, team.id) > 0:
        raise ConflictError("Team still has members; move or remove them first")
    # Mirrors the ON DELETE CASCADE foreign keys for backends that do not enforce them.
    await db.execute(delete(TeamShare).where(or_(TeamShare.from_team_id == team.id, TeamShare.to_team_id == team.id)))
    await db.execute(delete(ScheduleTeam).where(ScheduleTeam.team_id == team.id))
    await db.execute(delete(Document).where(Document.team_id == team.id))
    await db.delete(team)
    await db.commit()
    logger.info("Team deleted: %s by %s", team_id, user.id)


# ============================================================
# MEMBERS
# ============================================================

@router.get("/{team_id}/members")
async def list_members(
    team_id: str,
    user: CurrentUser = Depends(require_route("teams.members.list")),
    db: AsyncSession = Depends(get_db_session),
):
    await _get_team(db, team_id)
    result = await db.execute(select(User).where(User.team_id == team_id).order_by(User.name.asc()))
    return [user_to_out(u) for u in result.scalars().all()]


@router.post("/{team_id}/members", status_code=201)
async def add_member(
    team_id: str,
    body: MemberAdd,
    user: CurrentUser = Depends(require_route("teams.members.add")),
    db: AsyncSession = Depends(get_db_session),
):
    team = await _get_team(db, team_id)
    _ensure_manages_team(user, team.id)
    target = await _get_user(db, body.user_id)
    if target.team_id == team.id:
        raise ConflictError("User is already a member of this team")
    await ensure_not_leaving_owned_team(db, target, team.id)

    target.team_id = team.id
    await db.commit()
    await db.refresh(target)

    await notify(db, target.id, NotificationType.TEAM_INVITE, "Added to team",
                 f"You were added to team \"{team.name}\"", {"teamId": team.id})
    logger.info("User %s added to team %s by %s", target.id, team.id, user.id)
    return user_to_out(target)


@router.delete("/{team_id}/members/{user_id}", status_code=204)
async def remove_member(
    team_id: str,
    user_id: str,
    user: CurrentUser = Depends(require_route("teams.members.remove")),
    db: AsyncSession = Depends(get_db_session),
):
    team = await _get_team(db, team_id)
    _ensure_manages_team(user, team.id)
    target = await _get_user(db, user_id)
    if target.team_id != team.id:
        raise ConflictError("User is not a member of this team")
    if team.owner_id == target.id and await member_count(db, team.id) > 1:
        raise AuthorizationError("The team owner cannot be removed while other members remain")

    target.team_id = None
    await db.commit()

    await notify(db, target.id, NotificationType.TEAM_REMOVED, "Removed from team",
                 f"You were removed from team \"{team.name}\"", {"teamId": team.id})
    logger.info("User %s removed from team %s by %s", target.id, team.id, user.id)


@router.patch("/{team_id}/members/{user_id}/transfer/{to_team_id}")
async def transfer_member(
    team_id: str,
    user_id: str,
    to_team_id: str,
    user: CurrentUser = Depends(require_route("teams.members.transfer")),
    db: AsyncSession = Depends(get_db_session),
):
    await _get_team(db, team_id)
    to_team = await _get_team(db, to_team_id)
    target = await _get_user(db, user_id)
    if target.team_id != team_id:
        raise ConflictError("User is not a member of this team")
    await ensure_not_leaving_owned_team(db, target, to_team.id)

    target.team_id = to_team.id
    await db.commit()
    await db.refresh(target)
    return user_to_out(target)


# ============================================================
# TEAM SHARES
# ============================================================

@router.get("/{team_id}/shares")
async def list_team_shares(
    team_id: str,
    user: CurrentUser = Depends(require_route("teams.shares.list")),
    db: AsyncSession = Depends(get_db_session),
):
    return await team_shares.list_shares(db, team_id)


@router.post("/{team_id}/shares", status_code=201)
async def create_team_share(
    team_id: str,
    body: ShareCreate,
    user: CurrentUser = Depends(require_route("teams.shares.create")),
    db: AsyncSession = Depends(get_db_session),
):
    share = await team_shares.create_share(
        db, user, team_id, body.to_team_id,
        share_tasks=body.share_tasks, share_schedules=body.share_schedules,
    )
    return team_shares.share_to_out(share)


@router.patch("/shares/{share_id}")
async def update_team_share(
    share_id: str,
    body: ShareUpdate,
    user: CurrentUser = Depends(require_route("teams.shares.update")),
    db: AsyncSession = Depends(get_db_session),
):
    share = await team_shares.update_share(
        db, user, share_id, share_tasks=body.share_tasks, share_schedules=body.share_schedules,
    )
    return team_shares.share_to_out(share)


@router.delete("/shares/{share_id}", status_code=204)
async def delete_team_share(
    share_id: str,
    user: CurrentUser = Depends(require_route("teams.shares.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    await team_shares.remove_share(db, user, share_id)


@router.get("/{team_id}/shared-tasks")
async def shared_tasks(
    team_id: str,
    user: CurrentUser = Depends(require_route("teams.shared_tasks")),
    db: AsyncSession = Depends(get_db_session),
):
    """Tasks of teams that share their tasks with this team."""
    await _get_team(db, team_id)
    _ensure_member_or_owner(user, team_id)
    grants = await team_shares.granting_team_ids(db, team_id, "share_tasks")
    if not grants:
        return []
    result = await db.execute(
        select(Task).where(Task.team_id.in_(grants))
        .order_by(Task.created_at.desc()).limit(SHARED_LISTING_LIMIT)
    )
    return [task_to_out(t) for t in result.scalars().all()]


@router.get("/{team_id}/shared-schedules")
async def shared_schedules(
    team_id: str,
    user: CurrentUser = Depends(require_route("teams.shared_schedules")),
    db: AsyncSession = Depends(get_db_session),
):
    await _get_team(db, team_id)
    _ensure_member_or_owner(user, team_id)
    grants = await team_shares.granting_team_ids(db, team_id, "share_schedules")
    if not grants:
        return []
    result = await db.execute(
        select(Schedule)
        .where(Schedule.id.in_(select(ScheduleTeam.schedule_id).where(ScheduleTeam.team_id.in_(grants))))
        .order_by(Schedule.created_at.desc()).limit(SHARED_LISTING_LIMIT)
    )
    return await schedules_out(db, list(result.scalars().all()))
