# tests/conftest.py — Shared test fixtures
import os
import uuid

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

from models import Base, User, Organisation, Team, TeamMember, TeamRole, UserRole
from auth import AuthService
from database import get_db_session
from retro_service import RetroService, RetroConfig
from template_catalog import seed_built_ins
from main import app

LIKED = "4ls-liked"
LEARNED = "4ls-learned"


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
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    """Session used to build fixtures"""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def service(session_factory):
    """Engine bound to its own session, so rollbacks never expire fixture objects"""
    async with session_factory() as session:
        yield RetroService(session)


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    """HTTP test client with overridden DB dependency"""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(db, org, email, display_name, role=UserRole.USER) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        display_name=display_name,
        organisation_id=org.id,
        role=role,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_org(db_session):
    """Create a test organisation"""
    org = Organisation(id=str(uuid.uuid4()), name="Test Organisation", slug="test-org")
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest_asyncio.fixture
async def other_org(db_session):
    org = Organisation(id=str(uuid.uuid4()), name="Other Organisation", slug="other-org")
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


@pytest_asyncio.fixture
async def lead_user(db_session, test_org):
    """Team lead"""
    return await _make_user(db_session, test_org, "lead@retroboard.dev", "Lena Lead")


@pytest_asyncio.fixture
async def test_user(db_session, test_org):
    """Plain team member"""
    return await _make_user(db_session, test_org, "testuser@retroboard.dev", "Test User")


@pytest_asyncio.fixture
async def second_user(db_session, test_org):
    return await _make_user(db_session, test_org, "second@retroboard.dev", "Second User")


@pytest_asyncio.fixture
async def outsider(db_session, test_org):
    """Same organisation, not on the team"""
    return await _make_user(db_session, test_org, "outsider@retroboard.dev", "Out Sider")


@pytest_asyncio.fixture
async def admin_user(db_session, test_org):
    """Organisation admin, not on the team"""
    return await _make_user(db_session, test_org, "admin@retroboard.dev", "Admin User", UserRole.ORG_ADMIN)


@pytest_asyncio.fixture
async def test_team(db_session, test_org, lead_user, test_user, second_user):
    team = Team(id=str(uuid.uuid4()), organisation_id=test_org.id, name="Platform Team")
    db_session.add(team)
    db_session.add_all([
        TeamMember(team_id=team.id, user_id=lead_user.id, role=TeamRole.LEAD),
        TeamMember(team_id=team.id, user_id=test_user.id, role=TeamRole.MEMBER),
        TeamMember(team_id=team.id, user_id=second_user.id, role=TeamRole.MEMBER),
    ])
    await db_session.commit()
    await db_session.refresh(team)
    return team


@pytest_asyncio.fixture
async def built_in_templates(db_session):
    await seed_built_ins(db_session)


@pytest_asyncio.fixture
async def make_retro(session_factory, test_team, lead_user, built_in_templates):
    """Factory: create a 4Ls retro owned by the team lead and return its id"""
    async def _make(template_id="template-4ls", creator=None, **config) -> str:
        config.setdefault("name", "Sprint 42 Retro")
        async with session_factory() as session:
            retro = await RetroService(session).create_retro(
                test_team.id, template_id, RetroConfig(**config), (creator or lead_user).id,
            )
            return retro.id
    return _make


async def advance_to(service: RetroService, retro_id: str, caller_id: str, status: str, start: str = "draft") -> None:
    """Drive a retro forward one phase at a time from `start` up to `status`"""
    order = ["draft", "active", "voting", "discussing", "completed"]
    steps = {
        "active": service.start_retro,
        "voting": service.move_to_voting,
        "discussing": service.move_to_discussion,
        "completed": service.complete_retro,
    }
    for phase in order[order.index(start) + 1:order.index(status) + 1]:
        await steps[phase](retro_id, caller_id)


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user.id,
        "email": user.email,
        "organisation_id": user.organisation_id,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}
