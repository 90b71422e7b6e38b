# team_shares.py — Directed team-to-team read grants
#
# An edge (from_team -> to_team) lets members of `to_team` read the tasks
# and/or schedules of `from_team`. Edges only ever add access; they never
# narrow what `from_team` itself can see.

import logging
from typing import FrozenSet, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from audit import record_audit
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from models import AuditEventType, Team, TeamShare, UserRole
from principals import CurrentUser
from roles import is_top_role, satisfies
from visibility import AccessMode, EntityPolicy, ResourceFacts, ensure_access, explain_access

logger = logging.getLogger("teamhub.teams")

SHARE_FEATURES = ("share_tasks", "share_schedules")


async def granting_team_ids(db: AsyncSession, to_team_id: Optional[str], feature: str) -> FrozenSet[str]:
    """Teams whose edge to `to_team_id` has `feature` switched on."""
    if feature not in SHARE_FEATURES:
        raise ValueError(f"Unknown share feature: {feature}")
    if not to_team_id:
        return frozenset()
    column = getattr(TeamShare, feature)
    result = await db.execute(
        select(TeamShare.from_team_id).where(TeamShare.to_team_id == to_team_id, column.is_(True))
    )
    return frozenset(result.scalars().all())


def share_to_out(share: TeamShare, teams: Optional[dict] = None) -> dict:
    teams = teams or {}
    return {
        "id": share.id,
        "fromTeamId": share.from_team_id,
        "toTeamId": share.to_team_id,
        "fromTeamName": teams.get(share.from_team_id),
        "toTeamName": teams.get(share.to_team_id),
        "shareTasks": share.share_tasks,
        "shareSchedules": share.share_schedules,
        "createdAt": share.created_at.isoformat() if share.created_at else None,
    }


def ensure_can_manage(principal: CurrentUser, from_team_id: str) -> None:
    """HEAD or above, and either the top role or a member of the granting team."""
    if not satisfies(principal.role, UserRole.HEAD):
        raise AuthorizationError("Only HEAD or above can manage team shares")
    if not is_top_role(principal.role) and principal.team_id != from_team_id:
        raise AuthorizationError("Only members of the sharing team can manage its shares")


async def _get_team(db: AsyncSession, team_id: str) -> Team:
    team = await db.get(Team, team_id)
    if team is None:
        raise NotFoundError("Team")
    return team


async def _get_share(db: AsyncSession, share_id: str) -> TeamShare:
    share = await db.get(TeamShare, share_id)
    if share is None:
        raise NotFoundError("Team share")
    return share


async def create_share(
    db: AsyncSession,
    principal: CurrentUser,
    from_team_id: str,
    to_team_id: str,
    share_tasks: bool = False,
    share_schedules: bool = False,
) -> TeamShare:
    from_team = await _get_team(db, from_team_id)
    to_team = await _get_team(db, to_team_id)
    ensure_can_manage(principal, from_team.id)
    if from_team.id == to_team.id:
        raise ValidationError("A team cannot share with itself")

    existing = await db.execute(
        select(TeamShare).where(TeamShare.from_team_id == from_team.id, TeamShare.to_team_id == to_team.id)
    )
    if existing.scalar_one_or_none():
        raise ConflictError("A share between these teams already exists")

    share = TeamShare(
        from_team_id=from_team.id,
        to_team_id=to_team.id,
        share_tasks=share_tasks,
        share_schedules=share_schedules,
    )
    db.add(share)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race with a concurrent create for the same pair.
        await db.rollback()
        raise ConflictError("A share between these teams already exists")

    record_audit(
        db, AuditEventType.TEAM_SHARE_CREATED, actor_id=principal.id,
        entity_type="team_share", entity_id=share.id,
        new_data={"from": from_team.id, "to": to_team.id,
                  "shareTasks": share_tasks, "shareSchedules": share_schedules},
    )
    await db.commit()
    await db.refresh(share)
    logger.info("Team share created: %s -> %s by %s", from_team.id, to_team.id, principal.id)
    return share


async def update_share(
    db: AsyncSession,
    principal: CurrentUser,
    share_id: str,
    share_tasks: Optional[bool] = None,
    share_schedules: Optional[bool] = None,
) -> TeamShare:
    share = await _get_share(db, share_id)
    ensure_can_manage(principal, share.from_team_id)

    old = {"shareTasks": share.share_tasks, "shareSchedules": share.share_schedules}
    if share_tasks is not None:
        share.share_tasks = share_tasks
    if share_schedules is not None:
        share.share_schedules = share_schedules

    record_audit(
        db, AuditEventType.TEAM_SHARE_UPDATED, actor_id=principal.id,
        entity_type="team_share", entity_id=share.id, old_data=old,
        new_data={"shareTasks": share.share_tasks, "shareSchedules": share.share_schedules},
    )
    await db.commit()
    await db.refresh(share)
    return share


async def remove_share(db: AsyncSession, principal: CurrentUser, share_id: str) -> None:
    share = await _get_share(db, share_id)
    ensure_can_manage(principal, share.from_team_id)

    record_audit(
        db, AuditEventType.TEAM_SHARE_REMOVED, actor_id=principal.id,
        entity_type="team_share", entity_id=share.id,
        old_data={"from": share.from_team_id, "to": share.to_team_id},
    )
    await db.delete(share)
    await db.commit()
    logger.info("Team share removed: %s -> %s by %s", share.from_team_id, share.to_team_id, principal.id)


async def list_shares(db: AsyncSession, team_id: str) -> dict:
    await _get_team(db, team_id)
    result = await db.execute(
        select(TeamShare).where((TeamShare.from_team_id == team_id) | (TeamShare.to_team_id == team_id))
    )
    shares = result.scalars().all()

    team_ids = {s.from_team_id for s in shares} | {s.to_team_id for s in shares}
    names = {}
    if team_ids:
        rows = await db.execute(select(Team.id, Team.name).where(Team.id.in_(team_ids)))
        names = dict(rows.all())

    return {
        "sharingTo": [share_to_out(s, names) for s in shares if s.from_team_id == team_id],
        "receivingFrom": [share_to_out(s, names) for s in shares if s.to_team_id == team_id],
    }


async def ensure_read_access(
    db: AsyncSession, policy: EntityPolicy, facts: ResourceFacts, principal: CurrentUser,
) -> str:
    """Resolver read check, loading TeamShare grants only when the cheap rules deny."""
    rule = explain_access(policy, facts, principal, AccessMode.READ)
    if rule is not None:
        return rule
    grants = frozenset()
    if policy.share_flag:
        grants = await granting_team_ids(db, principal.team_id, policy.share_flag)
    return ensure_access(policy, facts, principal, AccessMode.READ, grants)
