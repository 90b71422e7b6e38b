# routers/retrospectives.py — Personal retrospectives with visibility, drafts and explicit shares
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field, model_validator
from sqlalchemy import select, func, and_, or_, delete
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_route
from database import get_db_session
from errors import NotFoundError, ValidationError
from models import Retrospective, RetrospectiveShare, RetroType, Team, User, Visibility
from principals import CurrentUser
from schemas import CamelModel
from visibility import RETROSPECTIVE_POLICY, AccessMode, ResourceFacts, ensure_access

router = APIRouter(prefix="/api/v1/retrospectives", tags=["Retrospectives"])
logger = logging.getLogger("teamhub.retrospectives")


# ============================================================
# SCHEMAS
# ============================================================

class RetroCreate(CamelModel):
    type: RetroType
    title: Optional[str] = Field(None, max_length=200)
    content: str = Field(..., min_length=1, max_length=10000)
    period_start: datetime
    period_end: datetime
    is_draft: bool = True
    visibility: Visibility = Visibility.PRIVATE

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end < self.period_start:
            raise ValueError("periodEnd must not be before periodStart")
        return self


class RetroUpdate(CamelModel):
    title: Optional[str] = Field(None, max_length=200)
    content: Optional[str] = Field(None, min_length=1, max_length=10000)
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    is_draft: Optional[bool] = None
    visibility: Optional[Visibility] = None


class ShareRequest(CamelModel):
    user_ids: List[str] = Field(default_factory=list)
    team_ids: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def at_least_one(self):
        if not self.user_ids and not self.team_ids:
            raise ValueError("userIds or teamIds is required")
        return self


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def _share_out(s: RetrospectiveShare) -> dict:
    return {
        "id": s.id,
        "sharedWithUserId": s.shared_with_user_id,
        "sharedWithTeamId": s.shared_with_team_id,
        "createdAt": _ts(s.created_at),
    }


def _retro_out(r: Retrospective, shares: Optional[List[RetrospectiveShare]] = None) -> dict:
    out = {
        "id": r.id,
        "userId": r.user_id,
        "type": r.type.value,
        "title": r.title,
        "content": r.content,
        "periodStart": _ts(r.period_start),
        "periodEnd": _ts(r.period_end),
        "isDraft": r.is_draft,
        "visibility": r.visibility.value,
        "createdAt": _ts(r.created_at),
        "updatedAt": _ts(r.updated_at),
    }
    if shares is not None:
        out["shares"] = [_share_out(s) for s in shares]
    return out


def _default_title(retro_type: RetroType, start: datetime, end: datetime) -> str:
    return f"{retro_type.value.title()} retrospective {start:%Y-%m-%d} ~ {end:%Y-%m-%d}"


async def _get_retro(db: AsyncSession, retro_id: str) -> Retrospective:
    retro = await db.get(Retrospective, retro_id)
    if retro is None:
        raise NotFoundError("Retrospective")
    return retro


async def _load_shares(db: AsyncSession, retro_id: str) -> List[RetrospectiveShare]:
    result = await db.execute(
        select(RetrospectiveShare)
        .where(RetrospectiveShare.retrospective_id == retro_id)
        .order_by(RetrospectiveShare.created_at.asc())
    )
    return list(result.scalars().all())


async def retro_facts(db: AsyncSession, retro: Retrospective,
                      shares: Optional[List[RetrospectiveShare]] = None) -> ResourceFacts:
    owner = await db.get(User, retro.user_id)
    if shares is None:
        shares = await _load_shares(db, retro.id)
    return ResourceFacts(
        owner_id=retro.user_id,
        owner_team_id=owner.team_id if owner else None,
        visibility=retro.visibility,
        is_draft=retro.is_draft,
        shared_user_ids=frozenset(s.shared_with_user_id for s in shares if s.shared_with_user_id),
        shared_team_ids=frozenset(s.shared_with_team_id for s in shares if s.shared_with_team_id),
    )


def _shared_with_clause(user: CurrentUser):
    targets = [RetrospectiveShare.shared_with_user_id == user.id]
    if user.team_id:
        targets.append(RetrospectiveShare.shared_with_team_id == user.team_id)
    return Retrospective.id.in_(select(RetrospectiveShare.retrospective_id).where(or_(*targets)))


def _visible_retros_clause(user: CurrentUser):
    """Listing counterpart of the resolver's read rules, or None for the top role."""
    if user.is_owner:
        return None
    published = [Retrospective.visibility == Visibility.ALL, _shared_with_clause(user)]
    if user.team_id:
        published.append(and_(
            Retrospective.visibility == Visibility.TEAM,
            Retrospective.user_id.in_(select(User.id).where(User.team_id == user.team_id)),
        ))
    return or_(
        Retrospective.user_id == user.id,
        and_(Retrospective.is_draft.is_(False), or_(*published)),
    )


async def _validate_share_targets(db: AsyncSession, body: ShareRequest) -> None:
    for user_id in set(body.user_ids):
        if await db.get(User, user_id) is None:
            raise NotFoundError("User")
    for team_id in set(body.team_ids):
        if await db.get(Team, team_id) is None:
            raise NotFoundError("Team")


def _add_shares(db: AsyncSession, retro: Retrospective, body: ShareRequest,
                existing: List[RetrospectiveShare]) -> None:
    have_users = {s.shared_with_user_id for s in existing if s.shared_with_user_id}
    have_teams = {s.shared_with_team_id for s in existing if s.shared_with_team_id}
    for user_id in dict.fromkeys(body.user_ids):
        if user_id not in have_users and user_id != retro.user_id:
            db.add(RetrospectiveShare(retrospective_id=retro.id, shared_with_user_id=user_id))
    for team_id in dict.fromkeys(body.team_ids):
        if team_id not in have_teams:
            db.add(RetrospectiveShare(retrospective_id=retro.id, shared_with_team_id=team_id))


# ============================================================
# CRUD
# ============================================================

@router.post("", status_code=201)
async def create_retrospective(
    body: RetroCreate,
    user: CurrentUser = Depends(require_route("retrospectives.create")),
    db: AsyncSession = Depends(get_db_session),
):
    retro = Retrospective(
        user_id=user.id,
        type=body.type,
        title=body.title or _default_title(body.type, body.period_start, body.period_end),
        content=body.content,
        period_start=body.period_start,
        period_end=body.period_end,
        is_draft=body.is_draft,
        visibility=body.visibility,
    )
    db.add(retro)
    await db.commit()
    await db.refresh(retro)
    logger.info("Retrospective created: %s by %s", retro.id, user.id)
    return _retro_out(retro, [])


@router.get("")
async def list_retrospectives(
    type: Optional[RetroType] = None,
    visibility: Optional[Visibility] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(require_route("retrospectives.list")),
    db: AsyncSession = Depends(get_db_session),
):
    filters = []
    visible = _visible_retros_clause(user)
    if visible is not None:
        filters.append(visible)
    if type:
        filters.append(Retrospective.type == type)
    if visibility:
        filters.append(Retrospective.visibility == visibility)

    result = await db.execute(
        select(Retrospective).where(*filters)
        .order_by(Retrospective.period_start.desc()).offset(offset).limit(limit)
    )
    total = (await db.execute(select(func.count(Retrospective.id)).where(*filters))).scalar() or 0
    return {"data": [_retro_out(r) for r in result.scalars().all()], "total": total}


@router.get("/my")
async def my_retrospectives(
    is_draft: Optional[bool] = Query(None, alias="isDraft"),
    user: CurrentUser = Depends(require_route("retrospectives.my")),
    db: AsyncSession = Depends(get_db_session),
):
    query = select(Retrospective).where(Retrospective.user_id == user.id)
    if is_draft is not None:
        query = query.where(Retrospective.is_draft.is_(is_draft))
    result = await db.execute(query.order_by(Retrospective.period_start.desc()))
    return [_retro_out(r) for r in result.scalars().all()]


@router.get("/shared-with-me")
async def shared_with_me(
    user: CurrentUser = Depends(require_route("retrospectives.shared_with_me")),
    db: AsyncSession = Depends(get_db_session),
):
    """Published retrospectives explicitly shared with the caller or their team."""
    result = await db.execute(
        select(Retrospective)
        .where(
            _shared_with_clause(user),
            Retrospective.user_id != user.id,
            Retrospective.is_draft.is_(False),
        )
        .order_by(Retrospective.period_start.desc())
    )
    return [_retro_out(r) for r in result.scalars().all()]


@router.get("/{retro_id}")
async def get_retrospective(
    retro_id: str,
    user: CurrentUser = Depends(require_route("retrospectives.read")),
    db: AsyncSession = Depends(get_db_session),
):
    retro = await _get_retro(db, retro_id)
    shares = await _load_shares(db, retro.id)
    ensure_access(RETROSPECTIVE_POLICY, await retro_facts(db, retro, shares), user, AccessMode.READ)
    # Only the author sees who it is shared with.
    return _retro_out(retro, shares if user.id == retro.user_id else None)


@router.patch("/{retro_id}")
async def update_retrospective(
    retro_id: str,
    body: RetroUpdate,
    user: CurrentUser = Depends(require_route("retrospectives.update")),
    db: AsyncSession = Depends(get_db_session),
):
    retro = await _get_retro(db, retro_id)
    ensure_access(RETROSPECTIVE_POLICY, await retro_facts(db, retro), user, AccessMode.WRITE)

    for field in ("title", "content", "period_start", "period_end", "is_draft", "visibility"):
        value = getattr(body, field)
        if value is not None:
            setattr(retro, field, value)
    if retro.period_end < retro.period_start:
        raise ValidationError("periodEnd must not be before periodStart")

    await db.commit()
    await db.refresh(retro)
    return _retro_out(retro)


@router.delete("/{retro_id}", status_code=204)
async def delete_retrospective(
    retro_id: str,
    user: CurrentUser = Depends(require_route("retrospectives.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    """The author, or the top role, may delete. The top role still cannot edit."""
    retro = await _get_retro(db, retro_id)
    ensure_access(RETROSPECTIVE_POLICY, await retro_facts(db, retro), user, AccessMode.DELETE)
    await db.delete(retro)
    await db.commit()
    logger.info("Retrospective deleted: %s by %s", retro_id, user.id)


@router.post("/{retro_id}/publish")
async def publish_retrospective(
    retro_id: str,
    user: CurrentUser = Depends(require_route("retrospectives.publish")),
    db: AsyncSession = Depends(get_db_session),
):
    retro = await _get_retro(db, retro_id)
    ensure_access(RETROSPECTIVE_POLICY, await retro_facts(db, retro), user, AccessMode.WRITE)
    retro.is_draft = False
    await db.commit()
    await db.refresh(retro)
    return _retro_out(retro)


# ============================================================
# SHARES
# ============================================================

@router.post("/{retro_id}/share")
async def replace_shares(
    retro_id: str,
    body: ShareRequest,
    user: CurrentUser = Depends(require_route("retrospectives.share")),
    db: AsyncSession = Depends(get_db_session),
):
    """Replace every grant with the given users and teams."""
    retro = await _get_retro(db, retro_id)
    ensure_access(RETROSPECTIVE_POLICY, await retro_facts(db, retro), user, AccessMode.WRITE)
    await _validate_share_targets(db, body)

    await db.execute(delete(RetrospectiveShare).where(RetrospectiveShare.retrospective_id == retro.id))
    _add_shares(db, retro, body, [])
    await db.commit()

    logger.info("Retrospective shares replaced: %s by %s", retro.id, user.id)
    return _retro_out(retro, await _load_shares(db, retro.id))


@router.post("/{retro_id}/shares")
async def add_shares(
    retro_id: str,
    body: ShareRequest,
    user: CurrentUser = Depends(require_route("retrospectives.shares.add")),
    db: AsyncSession = Depends(get_db_session),
):
    retro = await _get_retro(db, retro_id)
    shares = await _load_shares(db, retro.id)
    ensure_access(RETROSPECTIVE_POLICY, await retro_facts(db, retro, shares), user, AccessMode.WRITE)
    await _validate_share_targets(db, body)

    _add_shares(db, retro, body, shares)
    await db.commit()
    return _retro_out(retro, await _load_shares(db, retro.id))


@router.delete("/{retro_id}/shares/{share_id}", status_code=204)
async def remove_share(
    retro_id: str,
    share_id: str,
    user: CurrentUser = Depends(require_route("retrospectives.shares.remove")),
    db: AsyncSession = Depends(get_db_session),
):
    retro = await _get_retro(db, retro_id)
    ensure_access(RETROSPECTIVE_POLICY, await retro_facts(db, retro), user, AccessMode.WRITE)
    share = await db.get(RetrospectiveShare, share_id)
    if share is None or share.retrospective_id != retro.id:
        raise NotFoundError("Share")
    await db.delete(share)
    await db.commit()
