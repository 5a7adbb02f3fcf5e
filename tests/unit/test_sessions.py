import asyncio

import pytest

from ads_common.errors import ChannelClosedError
from ads_mcp.sessions import PING_FRAME, SessionRegistry, SessionState, sse_frame


class Ticker:
    """Keep-alive sleep that only returns when the test ticks it."""

    def __init__(self):
        self.intervals: list[float] = []
        self._ticks: asyncio.Queue = asyncio.Queue()

    async def sleep(self, seconds: float) -> None:
        self.intervals.append(seconds)
        await self._ticks.get()

    async def tick(self, n: int = 1) -> None:
        for _ in range(n):
            self._ticks.put_nowait(None)
        for _ in range(5):
            await asyncio.sleep(0)


async def _drain(session) -> list[str]:
    return [frame async for frame in session.channel.frames()]


def test_sse_frame_layout():
    assert sse_frame("/sse/message?sessionId=abc", event="endpoint") == (
        "event: endpoint\ndata: /sse/message?sessionId=abc\n\n"
    )
    assert sse_frame('{"a": 1}') == 'data: {"a": 1}\n\n'


@pytest.mark.asyncio
async def test_open_registers_unique_sessions():
    registry = SessionRegistry(sleep=Ticker().sleep)

    sessions = [registry.open() for _ in range(20)]

    assert len({s.id for s in sessions}) == 20
    assert len(registry) == 20
    assert all(registry.lookup(s.id) is s for s in sessions)
    assert registry.lookup("nope") is None
    assert registry.lookup(None) is None
    await registry.close_all()


@pytest.mark.asyncio
async def test_close_removes_session_and_stops_keep_alive():
    registry = SessionRegistry(sleep=Ticker().sleep)
    session = registry.open()
    task = session._keepalive

    assert registry.close(session.id) is True

    assert session.id not in registry
    assert registry.lookup(session.id) is None
    assert session.state is SessionState.CLOSED
    assert session.channel.closed
    await asyncio.gather(task, return_exceptions=True)
    assert task.cancelled()
    assert registry.close(session.id) is False


@pytest.mark.asyncio
async def test_keep_alive_sends_pings_on_interval():
    ticker = Ticker()
    registry = SessionRegistry(12.5, sleep=ticker.sleep)
    session = registry.open()
    await asyncio.sleep(0)

    await ticker.tick(2)
    registry.close(session.id)

    assert await _drain(session) == [PING_FRAME, PING_FRAME]
    assert ticker.intervals[:2] == [12.5, 12.5]


@pytest.mark.asyncio
async def test_messages_are_framed_in_send_order():
    registry = SessionRegistry(sleep=Ticker().sleep)
    session = registry.open()

    await session.send_event("/sse/message?sessionId=" + session.id, event="endpoint")
    await session.send_message({"jsonrpc": "2.0", "id": 1, "result": {}})
    registry.close(session.id)

    frames = await _drain(session)
    assert frames[0].startswith("event: endpoint\n")
    assert frames[1] == 'data: {"jsonrpc": "2.0", "id": 1, "result": {}}\n\n'


@pytest.mark.asyncio
async def test_failed_write_closes_session():
    registry = SessionRegistry(sleep=Ticker().sleep, channel_size=1)
    session = registry.open()

    await session.send_message({"id": 1})
    with pytest.raises(ChannelClosedError):
        await session.send_message({"id": 2})

    assert session.id not in registry
    assert session.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_failed_keep_alive_write_closes_session():
    ticker = Ticker()
    registry = SessionRegistry(sleep=ticker.sleep, channel_size=1)
    session = registry.open()
    task = session._keepalive
    await session.send_message({"id": 1})

    await ticker.tick()

    assert session.id not in registry
    assert task.done()


@pytest.mark.asyncio
async def test_send_after_close_fails():
    registry = SessionRegistry(sleep=Ticker().sleep)
    session = registry.open()
    registry.close(session.id)

    with pytest.raises(ChannelClosedError):
        await session.send_message({"id": 1})


@pytest.mark.asyncio
async def test_close_all_stops_every_keep_alive():
    registry = SessionRegistry(sleep=Ticker().sleep)
    sessions = [registry.open() for _ in range(3)]
    tasks = [s._keepalive for s in sessions]

    await registry.close_all()

    assert len(registry) == 0
    assert all(t.done() for t in tasks)
    assert all(s.state is SessionState.CLOSED for s in sessions)
