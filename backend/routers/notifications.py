# routers/notifications.py — The caller's own notification inbox
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_route
from database import get_db_session
from errors import NotFoundError
from models import Notification, utcnow
from notifications import notification_to_out
from principals import CurrentUser

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


async def _get_own(db: AsyncSession, notification_id: str, user: CurrentUser) -> Notification:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user.id,
        )
    )
    notif = result.scalar_one_or_none()
    if notif is None:
        raise NotFoundError("Notification")
    return notif


# ============================================================
# LIST
# ============================================================

@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(require_route("notifications.list")),
    db: AsyncSession = Depends(get_db_session),
):
    filters = [Notification.user_id == user.id]
    if unread_only:
        filters.append(Notification.read_at.is_(None))
    result = await db.execute(
        select(Notification).where(*filters)
        .order_by(Notification.created_at.desc()).offset(offset).limit(limit)
    )
    total = (await db.execute(select(func.count(Notification.id)).where(*filters))).scalar() or 0
    return {"data": [notification_to_out(n) for n in result.scalars().all()], "total": total}


@router.get("/unread-count")
async def unread_count(
    user: CurrentUser = Depends(require_route("notifications.unread_count")),
    db: AsyncSession = Depends(get_db_session),
):
    count = (await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user.id,
            Notification.read_at.is_(None),
        )
    )).scalar() or 0
    return {"count": count}


# ============================================================
# MARK READ
# ============================================================

@router.patch("/read-all")
async def mark_all_read(
    user: CurrentUser = Depends(require_route("notifications.read_all")),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.read_at.is_(None))
        .values(read_at=utcnow())
    )
    await db.commit()
    return {"marked": result.rowcount}


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user: CurrentUser = Depends(require_route("notifications.read")),
    db: AsyncSession = Depends(get_db_session),
):
    notif = await _get_own(db, notification_id, user)
    if notif.read_at is None:
        notif.read_at = utcnow()
        await db.commit()
        await db.refresh(notif)
    return notification_to_out(notif)


# ============================================================
# DELETE
# ============================================================

@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: str,
    user: CurrentUser = Depends(require_route("notifications.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    notif = await _get_own(db, notification_id, user)
    await db.delete(notif)
    await db.commit()


@router.delete("")
async def delete_all_notifications(
    user: CurrentUser = Depends(require_route("notifications.delete_all")),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(delete(Notification).where(Notification.user_id == user.id))
    await db.commit()
    return {"deleted": result.rowcount}
