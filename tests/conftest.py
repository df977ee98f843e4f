import asyncio
import os
import tempfile
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

# Configure the environment BEFORE any app imports; settings are read once.
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="dployr-test-"))
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_TEST_ROOT / 'dployr.db'}"
os.environ["USERS_PATH"] = str(_TEST_ROOT / "users")
os.environ["HOST_USERS_PATH"] = "/opt/dployr/users"
os.environ["SECRETS_ENCRYPTION_KEY"] = "QLUJktsTSfZEbST4R-37XmQ0tCkiVCBXZN2Zt053w8g="
os.environ.pop("REDIS_URL", None)
os.environ.pop("NOTIFICATION_WEBHOOK_URL", None)

from app.db import Base, get_engine  # noqa: E402
from app.models import DeployLog, Project, ProjectWebhook  # noqa: E402, F401

_test_engine = get_engine()
Base.metadata.create_all(_test_engine)

TestSessionLocal = sessionmaker(bind=_test_engine, autoflush=False, autocommit=False)


class SyncASGIClient:
    """Drive the ASGI app in-process; each request runs on its own event loop."""

    def __init__(self, app):
        self._app = app

    async def _request(self, method: str, url: str, **kwargs):
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=self._app, raise_app_exceptions=False),
            base_url="http://testserver",
        ) as client:
            return await client.request(method, url, **kwargs)

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)


class FakeCoordinator:
    """Records dispatched deploys instead of running them."""

    def __init__(self):
        self.dispatched = []

    def dispatch(self, target, trigger, commit_hash=None):
        self.dispatched.append((target, trigger, commit_hash))

    def active_runs(self):
        return []


@pytest.fixture(scope="session")
def engine():
    return _test_engine


@pytest.fixture()
def db_session(engine):
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_path():
    return os.environ["USERS_PATH"]


@pytest.fixture()
def project(db_session):
    from app.services.project_service import ProjectService

    proj = ProjectService(db_session).create_project("alice", f"shop-{uuid.uuid4().hex[:8]}")
    db_session.commit()
    db_session.refresh(proj)
    return proj


@pytest.fixture()
def webhook(db_session, project):
    """A registered webhook; returns ``(row, plaintext_secret)``."""
    from app.services.project_service import ProjectService

    row, secret = ProjectService(db_session).create_webhook(project.project_id, branch="main")
    db_session.commit()
    db_session.refresh(row)
    return row, secret


@pytest.fixture(autouse=True)
def _reset_rate_limiters():
    from app.rate_limit import webhook_limiter

    webhook_limiter.reset()
    yield
    webhook_limiter.reset()


@pytest.fixture()
def coordinator():
    return FakeCoordinator()


@pytest.fixture()
def client(db_session, coordinator):
    """Test client with the DB dependency and deploy coordinator swapped out."""
    from app.api.deps import get_db
    from app.main import app

    def override_get_db():
        return db_session

    app.dependency_overrides[get_db] = override_get_db

    @asynccontextmanager
    async def _test_lifespan(_app):
        yield

    original_lifespan = app.router.lifespan_context
    app.router.lifespan_context = _test_lifespan
    app.state.deploy_coordinator = coordinator
    try:
        yield SyncASGIClient(app)
    finally:
        app.state.deploy_coordinator = None
        app.router.lifespan_context = original_lifespan
        app.dependency_overrides.clear()
