import asyncio
import json

from cardroom.api.sse.hub import CONNECTED_FRAME, KEEPALIVE_FRAME, RoomHub, format_frame


def test_format_frame() -> None:
    frame = format_frame("player_join", {"player_id": "p1", "player_name": "Alice"})
    assert frame.startswith("event: player_join\ndata: ")
    assert frame.endswith("\n\n")
    data = frame.split("data: ", 1)[1].strip()
    assert json.loads(data) == {"player_id": "p1", "player_name": "Alice"}


def test_broadcast_reaches_only_room_subscribers() -> None:
    async def scenario() -> None:
        hub = RoomHub(queue_size=8, keepalive_seconds=5)
        a = hub.subscribe("room-a")
        b = hub.subscribe("room-b")
        assert await a.__anext__() == CONNECTED_FRAME
        assert await b.__anext__() == CONNECTED_FRAME

        delivered = await hub.broadcast("room-a", "message", {"content": "hi"})
        assert delivered == 1
        assert await a.__anext__() == format_frame("message", {"content": "hi"})

        await hub.broadcast("room-a", "message", {"n": 1})
        await hub.broadcast("room-a", "message", {"n": 2})
        assert await a.__anext__() == format_frame("message", {"n": 1})
        assert await a.__anext__() == format_frame("message", {"n": 2})

        await a.aclose()
        await b.aclose()
        assert hub.subscriber_count("room-a") == 0

    asyncio.run(scenario())


def test_broadcast_without_subscribers_is_noop() -> None:
    async def scenario() -> None:
        hub = RoomHub()
        assert await hub.broadcast("nobody", "message", {"content": "hi"}) == 0

    asyncio.run(scenario())


def test_keepalive_when_idle() -> None:
    async def scenario() -> None:
        hub = RoomHub(keepalive_seconds=0.01)
        stream = hub.subscribe("room")
        assert await stream.__anext__() == CONNECTED_FRAME
        assert await stream.__anext__() == KEEPALIVE_FRAME
        await stream.aclose()

    asyncio.run(scenario())


def test_slow_subscriber_is_dropped() -> None:
    async def scenario() -> None:
        hub = RoomHub(queue_size=2, keepalive_seconds=5)
        slow = hub.subscribe("room")
        fast = hub.subscribe("room")
        await slow.__anext__()
        await fast.__anext__()

        await hub.broadcast("room", "message", {"n": 1})
        assert await fast.__anext__() == format_frame("message", {"n": 1})
        await hub.broadcast("room", "message", {"n": 2})
        assert await fast.__anext__() == format_frame("message", {"n": 2})

        # slow never read: its queue is full now and it gets cut off
        delivered = await hub.broadcast("room", "message", {"n": 3})
        assert delivered == 1
        assert hub.subscriber_count("room") == 1
        assert await fast.__anext__() == format_frame("message", {"n": 3})

        await fast.aclose()
        await slow.aclose()

    asyncio.run(scenario())


def test_close_all_ends_streams() -> None:
    async def scenario() -> None:
        hub = RoomHub(keepalive_seconds=5)
        stream = hub.subscribe("room")
        await stream.__anext__()
        await hub.close_all()
        frames = [frame async for frame in stream]
        assert frames == []
        assert hub.subscriber_count("room") == 0

    asyncio.run(scenario())


def test_closed_subscriber_is_removed() -> None:
    async def scenario() -> None:
        hub = RoomHub()
        subscriber = hub.register("room")
        subscriber.closed = True
        assert await hub.broadcast("room", "message", {"content": "hi"}) == 0
        assert hub.subscriber_count("room") == 0

    asyncio.run(scenario())
