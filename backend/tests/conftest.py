# tests/conftest.py — Shared test fixtures
import os
import uuid
from typing import Optional

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-access-secret-key-for-unit-tests-only-32+"
os.environ["JWT_REFRESH_SECRET_KEY"] = "test-refresh-secret-key-for-unit-tests-only-32+"
os.environ["ENVIRONMENT"] = "test"

from models import Base, Team, User, UserRole, UserStatus  # noqa: E402
from auth import AuthService  # noqa: E402
from database import get_db_session  # noqa: E402
from main import app  # noqa: E402

PASSWORD = "Passw0rd!"
PASSWORD_HASH = AuthService.hash_password(PASSWORD)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============================================================
# FACTORIES
# ============================================================

async def make_user(
    db: AsyncSession,
    role: UserRole = UserRole.ACTOR,
    status: UserStatus = UserStatus.ACTIVE,
    team: Optional[Team] = None,
    email: Optional[str] = None,
    name: Optional[str] = None,
) -> User:
    suffix = uuid.uuid4().hex[:8]
    user = User(
        id=str(uuid.uuid4()),
        email=email or f"{role.value.lower()}-{suffix}@teamhub.dev",
        name=name or f"{role.value.title()} {suffix}",
        password_hash=PASSWORD_HASH,
        role=role,
        status=status,
        team_id=team.id if team else None,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_team(db: AsyncSession, owner: User, name: Optional[str] = None, join: bool = True) -> Team:
    """Create a team owned by `owner`; the owner joins it unless `join` is False."""
    team = Team(id=str(uuid.uuid4()), name=name or f"Team {uuid.uuid4().hex[:6]}", owner_id=owner.id)
    db.add(team)
    await db.flush()
    if join:
        owner.team_id = team.id
    await db.commit()
    await db.refresh(team)
    await db.refresh(owner)
    return team


def get_auth_headers(user: User) -> dict:
    """Bearer header with a freshly minted access token for `user`"""
    token = AuthService.create_access_token(user)
    return {"Authorization": f"Bearer {token}"}


def get_cookie(response, name: str) -> Optional[str]:
    """Value of a Set-Cookie header on `response`, or None."""
    for header in response.headers.get_list("set-cookie"):
        pair = header.split(";", 1)[0]
        key, _, value = pair.partition("=")
        if key.strip() == name:
            return value.strip().strip('"')
    return None


# ============================================================
# PRINCIPALS & TEAMS
# ============================================================

@pytest_asyncio.fixture
async def owner_user(db_session):
    return await make_user(db_session, UserRole.OWNER, email="owner@teamhub.dev", name="Olive Owner")


@pytest_asyncio.fixture
async def alpha_head(db_session, owner_user):
    head = await make_user(db_session, UserRole.HEAD, email="head.alpha@teamhub.dev", name="Alex Head")
    return head


@pytest_asyncio.fixture
async def alpha_team(db_session, alpha_head):
    return await make_team(db_session, alpha_head, name="Alpha")


@pytest_asyncio.fixture
async def beta_head(db_session, owner_user):
    return await make_user(db_session, UserRole.HEAD, email="head.beta@teamhub.dev", name="Bea Head")


@pytest_asyncio.fixture
async def beta_team(db_session, beta_head):
    return await make_team(db_session, beta_head, name="Beta")


@pytest_asyncio.fixture
async def alpha_lead(db_session, alpha_team):
    return await make_user(db_session, UserRole.LEAD, team=alpha_team, email="lead.alpha@teamhub.dev")


@pytest_asyncio.fixture
async def alpha_actor(db_session, alpha_team):
    return await make_user(db_session, UserRole.ACTOR, team=alpha_team, email="actor.alpha@teamhub.dev")


@pytest_asyncio.fixture
async def beta_actor(db_session, beta_team):
    return await make_user(db_session, UserRole.ACTOR, team=beta_team, email="actor.beta@teamhub.dev")


@pytest_asyncio.fixture
async def loner(db_session):
    """Active ACTOR without a team"""
    return await make_user(db_session, UserRole.ACTOR, email="loner@teamhub.dev")


@pytest_asyncio.fixture
async def pending_user(db_session):
    return await make_user(db_session, status=UserStatus.PENDING, email="pending@teamhub.dev")


@pytest_asyncio.fixture
async def inactive_user(db_session):
    return await make_user(db_session, status=UserStatus.INACTIVE, email="inactive@teamhub.dev")
