"""
Test fixtures - in-memory SQLite database, recording email sender,
dispatcher/workflow and an HTTP client acting as a chosen user
"""
import threading

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from taskboard.config import get_settings
from taskboard.database import Base, get_db
from taskboard.exceptions import NotificationDeliveryError
from taskboard.main import app
from taskboard.api.deps import get_dispatcher
from taskboard.models import User, UserRole
from taskboard.services.notifications import NotificationDispatcher
from taskboard.services.task_workflow import TaskWorkflow


class RecordingEmailSender:
    """Collects sends instead of talking to SMTP"""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)
        self._lock = threading.Lock()

    def send_email(self, address, subject, body):
        if address in self.fail_for:
            raise NotificationDeliveryError(address, ConnectionRefusedError("smtp down"))
        with self._lock:
            self.sent.append({"to": address, "subject": subject, "body": body})
        return True

    def recipients(self):
        return sorted(m["to"] for m in self.sent)


@pytest_asyncio.fixture()
async def db_session():
    """Create a fresh in-memory SQLite database for each test"""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture()
async def seed_data(db_session):
    """Directory: one admin, one creator, three staff users and an outsider"""
    admin = User(username="admin", email="admin@example.com", role=UserRole.ADMIN, is_active=True)
    creator = User(username="cem", email="cem@example.com", role=UserRole.CREATOR, is_active=True)
    u1 = User(username="ayse", email="ayse@example.com", role=UserRole.USER, is_active=True)
    u2 = User(username="mehmet", email="mehmet@example.com", role=UserRole.USER, is_active=True)
    u3 = User(username="zeynep", email=None, role=UserRole.USER, is_active=True)
    outsider = User(username="outsider", email="out@example.com", role=UserRole.USER, is_active=True)

    db_session.add_all([admin, creator, u1, u2, u3, outsider])
    await db_session.commit()
    for u in (admin, creator, u1, u2, u3, outsider):
        await db_session.refresh(u)

    return {"admin": admin, "creator": creator, "u1": u1, "u2": u2, "u3": u3, "outsider": outsider}


@pytest.fixture()
def email_sender():
    return RecordingEmailSender()


@pytest.fixture()
def sender_factory():
    return RecordingEmailSender


@pytest.fixture()
def dispatcher(email_sender):
    return NotificationDispatcher(email_sender=email_sender)


@pytest.fixture()
def workflow(dispatcher):
    return TaskWorkflow(dispatcher)


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    """Keep stored attachments inside the test's temp dir"""
    path = tmp_path / "uploads"
    monkeypatch.setattr(get_settings(), "UPLOAD_DIR", str(path))
    return path


@pytest_asyncio.fixture()
async def make_client(db_session, dispatcher):
    """Factory for httpx clients acting as a given user"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    clients = []

    async def _make(user=None):
        transport = ASGITransport(app=app)
        ac = AsyncClient(transport=transport, base_url="http://test", follow_redirects=True)
        if user is not None:
            ac.headers["X-User-Id"] = str(user.id)
        clients.append(ac)
        return ac

    yield _make

    for ac in clients:
        await ac.aclose()
    app.dependency_overrides.clear()
