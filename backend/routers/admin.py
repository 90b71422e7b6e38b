# routers/admin.py — Account approval and user administration (OWNER only)
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from audit import record_audit
from auth import AuthService, require_route
from database import get_db_session
from errors import ConflictError, NotFoundError, ValidationError
from models import AuditEventType, AuditLog, NotificationType, Team, User, UserRole, UserStatus
from notifications import notify
from principals import CurrentUser, get_user_by_id, user_to_out
from schemas import CamelModel

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])
logger = logging.getLogger("teamhub.admin")


# --- Schemas ---

class ApproveRequest(CamelModel):
    role: UserRole = UserRole.ACTOR
    team_id: Optional[str] = None


class RejectRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=500)


class RoleChange(CamelModel):
    role: UserRole


class TeamChange(CamelModel):
    team_id: Optional[str] = None


# --- Helpers ---

async def _get_target(db: AsyncSession, user_id: str) -> User:
    target = await get_user_by_id(db, user_id)
    if target is None:
        raise NotFoundError("User")
    return target


async def _ensure_team_exists(db: AsyncSession, team_id: Optional[str]) -> None:
    if team_id and await db.get(Team, team_id) is None:
        raise NotFoundError("Team")


async def ensure_not_leaving_owned_team(db: AsyncSession, target: User, new_team_id: Optional[str]) -> None:
    """A team's owner stays one of its members.

    The only way out is leaving as the last member (new_team_id None), which
    empties the team so it can be deleted.
    """
    if not target.team_id or target.team_id == new_team_id:
        return
    current = await db.get(Team, target.team_id)
    if current is None or current.owner_id != target.id:
        return
    if new_team_id is None and await member_count(db, current.id) == 1:
        return
    raise ConflictError("User owns their current team; transfer ownership first")


async def member_count(db: AsyncSession, team_id: str) -> int:
    return (await db.execute(select(func.count(User.id)).where(User.team_id == team_id))).scalar() or 0


def _audit_out(entry: AuditLog) -> dict:
    return {
        "id": entry.id,
        "eventType": entry.event_type.value,
        "actorId": entry.actor_id,
        "entityType": entry.entity_type,
        "entityId": entry.entity_id,
        "oldData": entry.old_data,
        "newData": entry.new_data,
        "requestId": entry.request_id,
        "createdAt": entry.created_at.isoformat() if entry.created_at else None,
    }


# ============================================================
# LISTINGS
# ============================================================

@router.get("/users")
async def list_users(
    status: Optional[UserStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: CurrentUser = Depends(require_route("admin.users.list")),
    db: AsyncSession = Depends(get_db_session),
):
    query = select(User)
    count_query = select(func.count(User.id))
    if status is not None:
        query = query.where(User.status == status)
        count_query = count_query.where(User.status == status)
    result = await db.execute(query.order_by(User.created_at.desc()).offset(offset).limit(limit))
    total = (await db.execute(count_query)).scalar() or 0
    return {"data": [user_to_out(u) for u in result.scalars().all()], "total": total}


@router.get("/users/pending")
async def list_pending_users(
    admin: CurrentUser = Depends(require_route("admin.users.pending")),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        select(User).where(User.status == UserStatus.PENDING).order_by(User.created_at.asc())
    )
    return [user_to_out(u) for u in result.scalars().all()]


@router.get("/audit-logs")
async def list_audit_logs(
    event_type: Optional[AuditEventType] = Query(None, alias="eventType"),
    entity_id: Optional[str] = Query(None, alias="entityId"),
    limit: int = Query(default=100, ge=1, le=500),
    admin: CurrentUser = Depends(require_route("admin.audit.list")),
    db: AsyncSession = Depends(get_db_session),
):
    query = select(AuditLog)
    if event_type is not None:
        query = query.where(AuditLog.event_type == event_type)
    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)
    result = await db.execute(query.order_by(AuditLog.created_at.desc()).limit(limit))
    return [_audit_out(e) for e in result.scalars().all()]


# ============================================================
# APPROVAL
# ============================================================

@router.post("/users/{user_id}/approve")
async def approve_user(
    user_id: str,
    body: ApproveRequest,
    admin: CurrentUser = Depends(require_route("admin.users.approve")),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_target(db, user_id)
    if target.status != UserStatus.PENDING:
        raise ValidationError("Only pending users can be approved")
    await _ensure_team_exists(db, body.team_id)
    await ensure_not_leaving_owned_team(db, target, body.team_id)

    target.status = UserStatus.ACTIVE
    target.role = body.role
    target.team_id = body.team_id
    record_audit(
        db, AuditEventType.USER_APPROVED, actor_id=admin.id, entity_type="user", entity_id=target.id,
        old_data={"status": UserStatus.PENDING.value},
        new_data={"status": UserStatus.ACTIVE.value, "role": body.role.value, "teamId": body.team_id},
    )
    await db.commit()
    await db.refresh(target)

    await notify(db, target.id, NotificationType.USER_APPROVED, "Account approved",
                 "Your account has been approved. You can now log in.")
    logger.info("User approved: %s as %s by %s", target.id, body.role.value, admin.id)
    return user_to_out(target)


@router.post("/users/{user_id}/reject")
async def reject_user(
    user_id: str,
    body: RejectRequest,
    admin: CurrentUser = Depends(require_route("admin.users.reject")),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_target(db, user_id)
    if target.status != UserStatus.PENDING:
        raise ValidationError("Only pending users can be rejected")

    target.status = UserStatus.INACTIVE
    await AuthService.revoke_all_for_user(db, target.id)
    record_audit(
        db, AuditEventType.USER_REJECTED, actor_id=admin.id, entity_type="user", entity_id=target.id,
        old_data={"status": UserStatus.PENDING.value},
        new_data={"status": UserStatus.INACTIVE.value, "reason": body.reason},
    )
    await db.commit()
    await db.refresh(target)

    message = "Your signup request was rejected."
    if body.reason:
        message = f"{message} Reason: {body.reason}"
    await notify(db, target.id, NotificationType.USER_REJECTED, "Account rejected", message)
    logger.info("User rejected: %s by %s", target.id, admin.id)
    return user_to_out(target)


# ============================================================
# ROLE / TEAM / STATUS
# ============================================================

@router.patch("/users/{user_id}/role")
async def change_role(
    user_id: str,
    body: RoleChange,
    admin: CurrentUser = Depends(require_route("admin.users.role")),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_target(db, user_id)
    old_role = target.role
    target.role = body.role
    record_audit(
        db, AuditEventType.USER_ROLE_CHANGED, actor_id=admin.id, entity_type="user", entity_id=target.id,
        old_data={"role": UserRole(old_role).value}, new_data={"role": body.role.value},
    )
    await db.commit()
    await db.refresh(target)
    logger.info("User role changed: %s %s -> %s", target.id, UserRole(old_role).value, body.role.value)
    return user_to_out(target)


@router.patch("/users/{user_id}/team")
async def change_team(
    user_id: str,
    body: TeamChange,
    admin: CurrentUser = Depends(require_route("admin.users.team")),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_target(db, user_id)
    await _ensure_team_exists(db, body.team_id)
    await ensure_not_leaving_owned_team(db, target, body.team_id)

    old_team_id = target.team_id
    target.team_id = body.team_id
    record_audit(
        db, AuditEventType.USER_TEAM_CHANGED, actor_id=admin.id, entity_type="user", entity_id=target.id,
        old_data={"teamId": old_team_id}, new_data={"teamId": body.team_id},
    )
    await db.commit()
    await db.refresh(target)
    return user_to_out(target)


@router.post("/users/{user_id}/deactivate")
async def deactivate_user(
    user_id: str,
    admin: CurrentUser = Depends(require_route("admin.users.deactivate")),
    db: AsyncSession = Depends(get_db_session),
):
    """Deactivate and end every session of the user."""
    target = await _get_target(db, user_id)
    target.status = UserStatus.INACTIVE
    revoked = await AuthService.revoke_all_for_user(db, target.id)
    record_audit(
        db, AuditEventType.USER_DEACTIVATED, actor_id=admin.id, entity_type="user", entity_id=target.id,
        new_data={"status": UserStatus.INACTIVE.value, "revokedTokens": revoked},
    )
    await db.commit()
    await db.refresh(target)
    logger.info("User deactivated: %s (%d sessions revoked)", target.id, revoked)
    return user_to_out(target)


@router.post("/users/{user_id}/activate")
async def activate_user(
    user_id: str,
    admin: CurrentUser = Depends(require_route("admin.users.activate")),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_target(db, user_id)
    target.status = UserStatus.ACTIVE
    record_audit(
        db, AuditEventType.USER_ACTIVATED, actor_id=admin.id, entity_type="user", entity_id=target.id,
        new_data={"status": UserStatus.ACTIVE.value},
    )
    await db.commit()
    await db.refresh(target)
    return user_to_out(target)
