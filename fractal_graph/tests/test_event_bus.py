from __future__ import annotations

import asyncio

from fractal_graph.app.models.session import SessionEvent
from fractal_graph.app.services.event_bus import SessionEventBus


def test_subscribers_are_counted_per_session() -> None:
    async def scenario() -> None:
        bus = SessionEventBus()
        first = await bus.subscribe("s1")
        await bus.subscribe("s1")
        await bus.subscribe("s2")

        assert await bus.subscriber_count("s1") == 2
        assert await bus.subscriber_count("s2") == 1

        await bus.unsubscribe("s1", first)
        assert await bus.subscriber_count("s1") == 1
        assert await bus.subscriber_count("missing") == 0

    asyncio.run(scenario())


def test_publish_fans_out_to_session_subscribers_only() -> None:
    async def scenario() -> None:
        bus = SessionEventBus()
        watcher = await bus.subscribe("s1")
        bystander = await bus.subscribe("s2")

        await bus.publish(SessionEvent(session_id="s1", type="graph_changed"))

        assert watcher.get_nowait().type == "graph_changed"
        assert bystander.empty()

    asyncio.run(scenario())


def test_slow_subscriber_drops_oldest_event() -> None:
    async def scenario() -> None:
        bus = SessionEventBus(queue_size=2)
        queue = await bus.subscribe("s1")

        for revision in range(3):
            await bus.publish(SessionEvent(session_id="s1", type="graph_changed", payload={"revision": revision}))

        assert [queue.get_nowait().payload["revision"] for _ in range(2)] == [1, 2]

    asyncio.run(scenario())
