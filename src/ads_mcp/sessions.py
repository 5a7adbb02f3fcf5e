"""
Long-lived SSE sessions, one per connected client.

The registry is the only owner of sessions: `open()` creates one (with its
output channel and keep-alive task), `lookup()` resolves an id from an
inbound POST, and `close()` tears it down. A failed channel write closes the
session from whichever side noticed it, so keep-alive tasks never outlive
their session.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

from ads_common.errors import ChannelClosedError

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_S = 30.0
DEFAULT_CHANNEL_SIZE = 256
PING_FRAME = ": ping\n\n"


def sse_frame(data: str, *, event: str | None = None) -> str:
    lines = [f"event: {event}"] if event else []
    lines.extend(f"data: {line}" for line in data.splitlines() or [""])
    return "\n".join(lines) + "\n\n"


class QueueChannel:
    """Bounded in-memory channel drained by the streaming HTTP response.

    A client that stops reading fills the queue; the next write then fails
    instead of buffering without limit.
    """

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, frame: str) -> None:
        if self._closed:
            raise ChannelClosedError("channel is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as e:
            raise ChannelClosedError("channel is not draining") from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # reader sees `closed` once the backlog is consumed
            pass

    async def frames(self) -> AsyncIterator[str]:
        while True:
            if self._closed and self._queue.empty():
                return
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame


class SessionState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(eq=False)
class Session:
    id: str
    channel: QueueChannel
    state: SessionState = SessionState.OPEN
    created_at: float = field(default_factory=time.time)
    _keepalive: asyncio.Task | None = field(default=None, repr=False)
    _on_write_failure: Callable[[str], Any] | None = field(default=None, repr=False)

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    async def send(self, frame: str) -> None:
        if not self.is_open:
            raise ChannelClosedError(f"session {self.id} is {self.state.value}")
        try:
            self.channel.write(frame)
        except ChannelClosedError:
            if self._on_write_failure is not None:
                self._on_write_failure(self.id)
            raise

    async def send_event(self, data: str, *, event: str | None = None) -> None:
        await self.send(sse_frame(data, event=event))

    async def send_message(self, message: dict) -> None:
        await self.send_event(json.dumps(message, ensure_ascii=False, default=str))


class SessionRegistry:
    def __init__(
        self,
        keep_alive_interval: float = DEFAULT_KEEPALIVE_S,
        *,
        channel_size: int = DEFAULT_CHANNEL_SIZE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.keep_alive_interval = keep_alive_interval
        self.channel_size = channel_size
        self._sleep = sleep
        self._sessions: dict[str, Session] = {}

    def _new_id(self) -> str:
        sid = uuid.uuid4().hex
        while sid in self._sessions:
            sid = uuid.uuid4().hex
        return sid

    def open(self) -> Session:
        """Register a new session and start its keep-alive. Needs a running loop."""
        session = Session(
            id=self._new_id(),
            channel=QueueChannel(self.channel_size),
            _on_write_failure=self.close,
        )
        self._sessions[session.id] = session
        session._keepalive = asyncio.get_running_loop().create_task(
            self._keep_alive(session), name=f"keepalive-{session.id}"
        )
        logger.info("Created SSE session: %s", session.id)
        return session

    def lookup(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is None or not session.is_open:
            return None
        return session

    def close(self, session_id: str) -> bool:
        """Remove the session and stop its keep-alive. False if unknown."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        session.state = SessionState.CLOSING
        task = session._keepalive
        session._keepalive = None
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()
        session.channel.close()
        session.state = SessionState.CLOSED
        logger.info("Closed SSE session: %s", session_id)
        return True

    async def close_all(self) -> None:
        tasks = []
        for sid in list(self._sessions):
            task = self._sessions[sid]._keepalive
            self.close(sid)
            if task is not None:
                tasks.append(task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _keep_alive(self, session: Session) -> None:
        try:
            while session.is_open:
                await self._sleep(self.keep_alive_interval)
                await session.send(PING_FRAME)
        except ChannelClosedError:
            logger.info("Keep-alive write failed for session %s; session removed", session.id)
            self.close(session.id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
