# auth.py — Credentials, sessions and the request guard for TeamHub
# Features:
# - bcrypt password hashing (cost 10)
# - Short-lived access JWT + long-lived refresh JWT with separate secrets
# - Refresh tokens stored only as SHA-256 hashes, rotated one-shot
# - Principal re-read on every request (role/status changes apply at once)
# - Route-level role checks driven by roles.ROUTE_PERMISSIONS

import hashlib
import logging
import os
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from audit import record_audit
from database import get_db_session
from errors import AuthenticationError, ConflictError, ErrorCode, AuthorizationError
from logging_system import get_current_context
from models import (
    User, RefreshToken, AuditEventType, UserRole, UserStatus,
    TOKEN_REVOKED, TOKEN_ROTATED, new_uuid, utcnow, as_utc,
)
from principals import CurrentUser, get_user_by_email, get_user_by_id, principal_view
from roles import mark_bound, required_roles, satisfies_any

logger = logging.getLogger("teamhub.auth")

# ============================================================
# CONFIGURATION
# ============================================================

_INSECURE_SECRETS = {"", "change-me", "change-this-to-a-secure-random-key-in-production"}


def _load_secret(env_name: str) -> str:
    value = os.getenv(env_name, "")
    if value in _INSECURE_SECRETS:
        logger.warning(
            "%s not set or insecure. Generated ephemeral key. Set %s in production!",
            env_name, env_name,
        )
        return secrets.token_urlsafe(64)
    return value


SECRET_KEY = _load_secret("JWT_SECRET_KEY")
REFRESH_SECRET_KEY = _load_secret("JWT_REFRESH_SECRET_KEY")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
BCRYPT_ROUNDS = 10

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"
REFRESH_COOKIE_PATH = "/api/v1/auth"

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-zA-Z])(?=.*\d)(?=.*[@$!%*?&])")

security = HTTPBearer(auto_error=False)


def check_password_policy(password: str) -> str:
    """8-50 chars with a letter, a digit and one of @$!%*?&. Raises ValueError."""
    if not 8 <= len(password) <= 50:
        raise ValueError("Password must be between 8 and 50 characters")
    if not PASSWORD_PATTERN.match(password):
        raise ValueError("Password must contain a letter, a digit and one of @$!%*?&")
    return password


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class SignupRequest(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(..., min_length=2, max_length=50)

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_policy(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.lower()


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Signup, login, refresh rotation, logout and principal resolution"""

    # Compared against on unknown emails so both failure paths cost one bcrypt check.
    _dummy_hash: Optional[str] = None

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def hash_token(raw_token: str) -> str:
        return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()

    @staticmethod
    def _create_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta, key: str) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + expires_delta,
            "iat": now,
            "type": token_type,
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, key, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
        claims = {
            "sub": user.id,
            "email": user.email,
            "name": user.name,
            "role": UserRole(user.role).value,
            "status": UserStatus(user.status).value,
            "teamId": user.team_id,
        }
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        return AuthService._create_token(claims, "access", delta, SECRET_KEY)

    @staticmethod
    def create_refresh_token(user_id: str, token_id: str, expires_delta: Optional[timedelta] = None) -> str:
        delta = expires_delta or timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS)
        return AuthService._create_token({"sub": user_id, "tokenId": token_id}, "refresh", delta, REFRESH_SECRET_KEY)

    @staticmethod
    def _decode(token: str, key: str, token_type: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, key, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise AuthenticationError(code=ErrorCode.TOKEN_EXPIRED)
        except JWTError:
            raise AuthenticationError(code=ErrorCode.INVALID_TOKEN)
        if payload.get("type") != token_type or not payload.get("sub"):
            raise AuthenticationError(code=ErrorCode.INVALID_TOKEN)
        return payload

    @staticmethod
    def decode_access_token(token: str) -> Dict[str, Any]:
        return AuthService._decode(token, SECRET_KEY, "access")

    @staticmethod
    def decode_refresh_token(token: str) -> Dict[str, Any]:
        payload = AuthService._decode(token, REFRESH_SECRET_KEY, "refresh")
        if not payload.get("tokenId"):
            raise AuthenticationError(code=ErrorCode.INVALID_TOKEN)
        return payload

    @staticmethod
    def check_status(user: User) -> None:
        """Only ACTIVE principals may hold a session."""
        if user.status == UserStatus.PENDING:
            raise AuthenticationError(code=ErrorCode.USER_PENDING)
        if user.status != UserStatus.ACTIVE:
            raise AuthenticationError(code=ErrorCode.USER_INACTIVE)

    @staticmethod
    def issue_token_pair(db: AsyncSession, user: User) -> Tuple[str, str]:
        """Stage a new refresh row and return (access, refresh). The caller commits."""
        row = RefreshToken(
            id=new_uuid(),
            user_id=user.id,
            expires_at=utcnow() + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS),
            is_revoked=False,
        )
        raw_refresh = AuthService.create_refresh_token(user.id, row.id)
        row.token_hash = AuthService.hash_token(raw_refresh)
        db.add(row)
        return AuthService.create_access_token(user), raw_refresh

    @staticmethod
    async def signup(data: SignupRequest, db: AsyncSession) -> User:
        if await get_user_by_email(db, data.email):
            raise ConflictError("Email already registered")

        user = User(
            email=data.email,
            name=data.name,
            password_hash=AuthService.hash_password(data.password),
            role=UserRole.ACTOR,
            status=UserStatus.PENDING,
        )
        db.add(user)
        await db.flush()
        record_audit(db, AuditEventType.USER_SIGNUP, actor_id=user.id, entity_type="user", entity_id=user.id)
        await db.commit()
        await db.refresh(user)

        logger.info("User signed up: %s (pending approval)", user.id)
        return user

    @staticmethod
    async def login(data: LoginRequest, db: AsyncSession) -> Tuple[User, str, str]:
        user = await get_user_by_email(db, data.email)

        if user is None:
            if AuthService._dummy_hash is None:
                AuthService._dummy_hash = AuthService.hash_password(secrets.token_urlsafe(16))
            AuthService.verify_password(data.password, AuthService._dummy_hash)
            raise AuthenticationError(code=ErrorCode.INVALID_CREDENTIALS)

        if not AuthService.verify_password(data.password, user.password_hash):
            raise AuthenticationError(code=ErrorCode.INVALID_CREDENTIALS)

        # Status is only revealed to someone who knows the password.
        AuthService.check_status(user)

        access_token, refresh_token = AuthService.issue_token_pair(db, user)
        record_audit(db, AuditEventType.USER_LOGIN, actor_id=user.id, entity_type="user", entity_id=user.id)
        await db.commit()

        logger.info("User logged in: %s", user.id)
        return user, access_token, refresh_token

    @staticmethod
    async def refresh(raw_token: str, db: AsyncSession) -> Tuple[User, str, str]:
        """Rotate a refresh token. Exactly one caller can rotate a given token."""
        claims = AuthService.decode_refresh_token(raw_token)
        token_id = claims["tokenId"]

        row = await db.get(RefreshToken, token_id)
        if row is None or row.user_id != claims["sub"] or row.token_hash != AuthService.hash_token(raw_token):
            raise AuthenticationError(code=ErrorCode.INVALID_TOKEN)
        if row.is_revoked:
            # Only a rotated token coming back counts as a replay.
            if row.revoked_reason == TOKEN_ROTATED:
                logger.warning("Rotated refresh token presented again for user %s", row.user_id)
                record_audit(db, AuditEventType.REFRESH_TOKEN_REUSED, actor_id=row.user_id,
                             entity_type="refresh_token", entity_id=row.id)
                await db.commit()
            raise AuthenticationError(code=ErrorCode.INVALID_TOKEN)
        if as_utc(row.expires_at) <= utcnow():
            raise AuthenticationError(code=ErrorCode.TOKEN_EXPIRED)

        # Compare-and-swap: only the first concurrent caller flips the flag.
        if not await AuthService.revoke_if_active(db, token_id):
            await db.rollback()
            raise AuthenticationError(code=ErrorCode.INVALID_TOKEN)

        user = await get_user_by_id(db, claims["sub"])
        if user is None:
            await db.commit()
            raise AuthenticationError(code=ErrorCode.UNAUTHORIZED)
        if user.status != UserStatus.ACTIVE:
            await db.commit()
            AuthService.check_status(user)

        access_token, refresh_token = AuthService.issue_token_pair(db, user)
        await db.commit()

        logger.info("Refresh token rotated for user %s", user.id)
        return user, access_token, refresh_token

    @staticmethod
    async def revoke_if_active(db: AsyncSession, token_id: str) -> bool:
        result = await db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == token_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True, revoked_reason=TOKEN_ROTATED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def logout(user_id: str, raw_token: Optional[str], db: AsyncSession) -> None:
        """Revoke the caller's presented refresh token, if any. Always succeeds."""
        if raw_token:
            await db.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.token_hash == AuthService.hash_token(raw_token),
                    RefreshToken.user_id == user_id,
                    RefreshToken.is_revoked.is_(False),
                )
                .values(is_revoked=True, revoked_reason=TOKEN_REVOKED)
                .execution_options(synchronize_session=False)
            )
        record_audit(db, AuditEventType.USER_LOGOUT, actor_id=user_id, entity_type="user", entity_id=user_id)
        await db.commit()
        logger.info("User logged out: %s", user_id)

    @staticmethod
    async def revoke_all_for_user(db: AsyncSession, user_id: str) -> int:
        """Stage revocation of every live refresh token of a user. The caller commits."""
        result = await db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True, revoked_reason=TOKEN_REVOKED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def resolve_principal(claims: Dict[str, Any], db: AsyncSession) -> CurrentUser:
        user = await get_user_by_id(db, claims.get("sub", ""))
        if user is None:
            raise AuthenticationError(code=ErrorCode.UNAUTHORIZED)
        AuthService.check_status(user)
        return principal_view(user)


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def extract_access_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(ACCESS_COOKIE)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    token = extract_access_token(request, credentials)
    if not token:
        raise AuthenticationError(code=ErrorCode.UNAUTHORIZED)

    claims = AuthService.decode_access_token(token)
    principal = await AuthService.resolve_principal(claims, db)

    ctx = get_current_context()
    if ctx is not None:
        ctx.user_id = principal.id
    return principal


def require_route(route_id: str):
    """Dependency factory: authenticate, then check the route's role set."""
    roles = required_roles(route_id)
    mark_bound(route_id)

    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not satisfies_any(user.role, roles):
            logger.info("Route %s denied for role %s", route_id, user.role.value)
            raise AuthorizationError("Insufficient role privileges")
        return user
    return _check
