import asyncio

import pytest

from conftest import FakeClient, settle
from identity import derive
from room import RoomNotConnectedError
from room_hub import RoomHub

SECRET = "hub secret"


@pytest.mark.asyncio
async def test_concurrent_joins_share_one_room():
    hub = RoomHub(client_factory=FakeClient)

    first, second = await asyncio.gather(hub.join(SECRET, timeout=1), hub.join(SECRET, timeout=1))

    assert first is second
    assert first.connected
    assert list(hub.rooms) == [derive(SECRET).room_id]
    assert len(hub.client.subscriptions) == 1


@pytest.mark.asyncio
async def test_waiting_joiner_sees_failed_connect():
    hub = RoomHub(client_factory=lambda: FakeClient(fail_subscribe=True))

    results = await asyncio.gather(
        hub.join(SECRET, timeout=1), hub.join(SECRET, timeout=1), return_exceptions=True
    )

    assert all(isinstance(r, ConnectionError) for r in results)
    assert hub.rooms == {}


@pytest.mark.asyncio
async def test_timed_out_join_is_discarded_and_can_retry():
    client = FakeClient(auto_eose=False)
    hub = RoomHub(client_factory=lambda: client)

    with pytest.raises(asyncio.TimeoutError):
        await hub.join(SECRET, timeout=0.05)
    assert hub.rooms == {}
    assert client.subscriptions[0].closed

    client.auto_eose = True
    room = await hub.join(SECRET, timeout=1)
    assert room.connected
    assert hub.get(room.id) is room


@pytest.mark.asyncio
async def test_joiner_waiting_on_abandoned_room_fails():
    client = FakeClient(auto_eose=False)
    hub = RoomHub(client_factory=lambda: client)

    first = asyncio.ensure_future(hub.join(SECRET, timeout=1))
    await settle()
    second = asyncio.ensure_future(hub.join(SECRET, timeout=1))
    await settle()

    hub.leave(derive(SECRET).room_id)

    with pytest.raises(RoomNotConnectedError):
        await first
    with pytest.raises(RoomNotConnectedError):
        await second
    assert hub.rooms == {}
