# principals.py — Read-only principal lookups and the typed principal view
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import User, UserRole, UserStatus


class CurrentUser(BaseModel):
    """The authenticated principal, passed explicitly into every handler."""
    id: str
    email: str
    name: str
    role: UserRole
    status: UserStatus
    team_id: Optional[str] = None

    @property
    def is_owner(self) -> bool:
        return self.role == UserRole.OWNER


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


def principal_view(user: User) -> CurrentUser:
    return CurrentUser(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        status=user.status,
        team_id=user.team_id,
    )


def user_to_out(user: User) -> dict:
    """Public JSON shape of a user. Never includes the password hash."""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
        "status": user.status.value if isinstance(user.status, UserStatus) else user.status,
        "teamId": user.team_id,
        "profileImageUrl": user.profile_image_url,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }
