import os
import tempfile
from datetime import datetime, timezone

# The package reads its configuration at import time
_TEST_DIR = tempfile.mkdtemp(prefix="slot_swapper_tests_")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TEST_DIR, "test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-slot-swapper-suite")

import pytest
from fastapi.testclient import TestClient

from slot_swapper.commands import CommandAPI
from slot_swapper.data_models import SlotStatus
from slot_swapper.database import database, engine, metadata, utcnow
from slot_swapper.models import users


def at(hour, minute=0, day=2):
    return datetime(2026, 11, day, hour, minute, tzinfo=timezone.utc)


class RecordingNotifier:
    """Stands in for the websocket fan-out and remembers what would have been pushed."""

    def __init__(self):
        self.broadcasts = []
        self.direct = []

    async def broadcast_all(self, event_name, payload):
        self.broadcasts.append((event_name, payload))

    async def notify_user(self, user_id, event_name, payload):
        self.direct.append((user_id, event_name, payload))

    def direct_names(self, user_id):
        return [name for uid, name, _ in self.direct if uid == user_id]


@pytest.fixture
async def db():
    metadata.create_all(bind=engine)
    await database.connect()
    yield database
    await database.disconnect()
    metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def api(db, notifier):
    return CommandAPI(notifier=notifier, db=db)


@pytest.fixture
def make_user(db):
    async def _make_user(name):
        return await db.execute(users.insert().values(
            name=name,
            email=f"{name.lower()}@acme.io",
            hashed_password="not-a-real-hash",
            created_at=utcnow(),
        ))
    return _make_user


@pytest.fixture
def swappable_slot(api):
    async def _swappable_slot(owner_id, title, start, end):
        event = await api.create_slot(owner_id, title, start, end)
        return await api.set_swap_eligibility(owner_id, event.id, SlotStatus.SWAPPABLE)
    return _swappable_slot


@pytest.fixture
def client():
    from slot_swapper.main import app
    with TestClient(app) as test_client:
        yield test_client
    metadata.drop_all(bind=engine)
