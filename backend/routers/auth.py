# routers/auth.py — Authentication endpoints with cookie-borne, rotating sessions
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, SignupRequest, LoginRequest, require_route,
    ACCESS_COOKIE, REFRESH_COOKIE, REFRESH_COOKIE_PATH,
    ACCESS_TOKEN_EXPIRE_MINUTES, REFRESH_TOKEN_EXPIRE_DAYS, ENVIRONMENT,
)
from database import get_db_session
from errors import AuthenticationError, ErrorCode
from principals import CurrentUser, get_user_by_id, user_to_out

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _cookie_options() -> dict:
    production = ENVIRONMENT == "production"
    return {
        "httponly": True,
        "secure": production,
        "samesite": "strict" if production else "lax",
    }


def _set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    """Both tokens travel only as HTTP-only cookies, never in a JSON body."""
    options = _cookie_options()
    response.set_cookie(
        ACCESS_COOKIE, access_token,
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60, path="/", **options,
    )
    response.set_cookie(
        REFRESH_COOKIE, refresh_token,
        max_age=REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60, path=REFRESH_COOKIE_PATH, **options,
    )


def _clear_auth_cookies(response: Response) -> None:
    options = _cookie_options()
    response.delete_cookie(ACCESS_COOKIE, path="/", **options)
    response.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH, **options)


@router.post("/signup", status_code=201)
async def signup(
    body: SignupRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a new account. It stays PENDING until an OWNER approves it."""
    user = await AuthService.signup(body, db)
    return {"user": user_to_out(user), "message": "Signup complete. Waiting for approval."}


@router.post("/login")
async def login(
    body: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive the session cookies"""
    user, access_token, refresh_token = await AuthService.login(body, db)
    _set_auth_cookies(response, access_token, refresh_token)
    return {"user": user_to_out(user)}


@router.post("/refresh")
async def refresh(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
):
    """Rotate the refresh cookie into a fresh token pair"""
    raw_token = request.cookies.get(REFRESH_COOKIE)
    if not raw_token:
        raise AuthenticationError(code=ErrorCode.UNAUTHORIZED)
    user, access_token, refresh_token = await AuthService.refresh(raw_token, db)
    _set_auth_cookies(response, access_token, refresh_token)
    return {"user": user_to_out(user)}


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    user: CurrentUser = Depends(require_route("auth.logout")),
    db: AsyncSession = Depends(get_db_session),
):
    """Revoke the presented refresh token and clear both cookies"""
    await AuthService.logout(user.id, request.cookies.get(REFRESH_COOKIE), db)
    _clear_auth_cookies(response)
    return {"status": "logged_out"}


@router.get("/me")
async def me(
    user: CurrentUser = Depends(require_route("auth.me")),
    db: AsyncSession = Depends(get_db_session),
):
    """Get current authenticated user information"""
    user_obj = await get_user_by_id(db, user.id)
    return user_to_out(user_obj)
