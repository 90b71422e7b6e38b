# routers/users.py — Profile, password and team roster endpoints
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from audit import record_audit
from auth import AuthService, check_password_policy, require_route
from database import get_db_session
from errors import AuthenticationError, ErrorCode, NotFoundError
from models import AuditEventType, Team, User
from principals import CurrentUser, get_user_by_id, user_to_out
from schemas import CamelModel

router = APIRouter(prefix="/api/v1/users", tags=["Users"])
logger = logging.getLogger("teamhub.users")


# --- Schemas ---

class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    profile_image_url: Optional[str] = Field(None, max_length=500)


class PasswordChange(CamelModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return check_password_policy(v)


# --- Helpers ---

async def _load_self(db: AsyncSession, user: CurrentUser) -> User:
    user_obj = await get_user_by_id(db, user.id)
    if user_obj is None:
        raise NotFoundError("User")
    return user_obj


# --- Endpoints ---

@router.get("/me")
async def get_me(
    user: CurrentUser = Depends(require_route("users.me.read")),
    db: AsyncSession = Depends(get_db_session),
):
    return user_to_out(await _load_self(db, user))


@router.patch("/me")
async def update_me(
    body: ProfileUpdate,
    user: CurrentUser = Depends(require_route("users.me.update")),
    db: AsyncSession = Depends(get_db_session),
):
    user_obj = await _load_self(db, user)
    if body.name is not None:
        user_obj.name = body.name
    if body.profile_image_url is not None:
        user_obj.profile_image_url = body.profile_image_url
    await db.commit()
    await db.refresh(user_obj)
    return user_to_out(user_obj)


@router.post("/me/change-password")
async def change_password(
    body: PasswordChange,
    user: CurrentUser = Depends(require_route("users.me.change_password")),
    db: AsyncSession = Depends(get_db_session),
):
    """Change password; every refresh token of the user is revoked."""
    user_obj = await _load_self(db, user)
    if not AuthService.verify_password(body.current_password, user_obj.password_hash):
        raise AuthenticationError("Current password is incorrect", code=ErrorCode.INVALID_CREDENTIALS)

    user_obj.password_hash = AuthService.hash_password(body.new_password)
    revoked = await AuthService.revoke_all_for_user(db, user_obj.id)
    record_audit(db, AuditEventType.PASSWORD_CHANGED, actor_id=user.id, entity_type="user", entity_id=user.id)
    await db.commit()

    logger.info("Password changed for user %s (%d sessions revoked)", user.id, revoked)
    return {"message": "Password changed. Please log in again."}


@router.get("/team/{team_id}")
async def list_team_members(
    team_id: str,
    user: CurrentUser = Depends(require_route("users.team.list")),
    db: AsyncSession = Depends(get_db_session),
):
    if await db.get(Team, team_id) is None:
        raise NotFoundError("Team")
    result = await db.execute(select(User).where(User.team_id == team_id).order_by(User.name.asc()))
    return [user_to_out(u) for u in result.scalars().all()]


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    user: CurrentUser = Depends(require_route("users.read")),
    db: AsyncSession = Depends(get_db_session),
):
    user_obj = await get_user_by_id(db, user_id)
    if user_obj is None:
        raise NotFoundError("User")
    return user_to_out(user_obj)
