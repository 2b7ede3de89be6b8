import json

from conftest import at
from slot_swapper.data_models import SlotStatus
from slot_swapper.notifications import EVENT_CREATED, SWAP_REQUEST_RECEIVED, NotificationFanout
from slot_swapper.schemas import Event


class FakeWebSocket:
    def __init__(self, broken=False):
        self.accepted = False
        self.broken = broken
        self.received = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, message):
        if self.broken:
            raise RuntimeError("connection reset")
        self.received.append(json.loads(message))


async def connected(fanout, user_id=None, broken=False):
    websocket = FakeWebSocket(broken=broken)
    await fanout.connect(websocket)
    if user_id is not None:
        fanout.join(user_id, websocket)
    return websocket


async def test_broadcast_reaches_every_connection():
    fanout = NotificationFanout()
    anonymous = await connected(fanout)
    alice = await connected(fanout, user_id=1)

    await fanout.broadcast_all(EVENT_CREATED, {"eventId": 7})

    assert anonymous.accepted
    assert anonymous.received == alice.received == [{"type": EVENT_CREATED, "data": {"eventId": 7}}]


async def test_notify_user_only_reaches_that_users_channel():
    fanout = NotificationFanout()
    alice_laptop = await connected(fanout, user_id=1)
    alice_phone = await connected(fanout, user_id=1)
    bob = await connected(fanout, user_id=2)

    await fanout.notify_user(1, SWAP_REQUEST_RECEIVED, {"message": "hi"})
    await fanout.notify_user(3, SWAP_REQUEST_RECEIVED, {"message": "nobody home"})

    assert len(alice_laptop.received) == len(alice_phone.received) == 1
    assert bob.received == []


async def test_failed_send_drops_connection_and_keeps_delivering():
    fanout = NotificationFanout()
    broken = await connected(fanout, user_id=1, broken=True)
    healthy = await connected(fanout, user_id=1)

    await fanout.notify_user(1, SWAP_REQUEST_RECEIVED, {"message": "hi"})
    await fanout.broadcast_all(EVENT_CREATED, {"eventId": 1})

    assert [m["type"] for m in healthy.received] == [SWAP_REQUEST_RECEIVED, EVENT_CREATED]
    assert broken not in fanout.active_connections
    assert fanout.user_channels[1] == [healthy]


async def test_disconnect_forgets_channels():
    fanout = NotificationFanout()
    websocket = await connected(fanout, user_id=5)

    fanout.disconnect(websocket)
    fanout.disconnect(websocket)

    assert fanout.active_connections == []
    assert 5 not in fanout.user_channels


async def test_payload_models_are_encoded():
    fanout = NotificationFanout()
    websocket = await connected(fanout)
    event = Event(
        id=1, user_id=2, title="Standup", start_time=at(9), end_time=at(9, 30),
        status=SlotStatus.SWAPPABLE, created_at=at(8), updated_at=at(8),
    )

    await fanout.broadcast_all(EVENT_CREATED, {"event": event, "userId": 2})

    data = websocket.received[0]["data"]
    assert data["event"]["status"] == "SWAPPABLE"
    assert data["event"]["start_time"].startswith("2026-11-02T09:00:00")
