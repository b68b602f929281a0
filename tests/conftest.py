"""
Shared pytest fixtures for the sitedata test suite.

Provides:
    - engine: file-backed SQLite (aiosqlite) engine with all tables, per test
    - session_factory / session: async sessions bound to that engine
    - client: httpx AsyncClient talking to the FastAPI app, with the
      database dependency pointed at the test engine
    - company / site: a pre-created company and site without a schema
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker

import sitedata.db.models  # noqa: F401  (registers the tables)
from sitedata.db.postgres import Base, build_engine, get_pg_session
from sitedata.main import app
from tests.factories import make_company, make_site


@pytest.fixture
async def engine(tmp_path):
    # A file, not :memory:, so concurrent sessions get separate connections.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'sitedata.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def _get_test_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_pg_session] = _get_test_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def company(session):
    return await make_company(session)


@pytest.fixture
async def site(session, company):
    return await make_site(session, company)
