"""CDP WebSocket session: one connection per tab, many commands in flight.

    session = await CDPSession.open("ws://127.0.0.1:9222/devtools/page/<id>")
    result = await session.call("Runtime.evaluate", {"expression": "1+1"})
    await session.close()

Frames with an ``id`` are responses and go to the CommandCorrelator. Frames
without one are protocol events and go to listeners registered with ``on()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from chromews.errors import CDPConnectionError, CDPTimeout, ProtocolError

logger = logging.getLogger(__name__)

# Chrome rejects ids that don't fit in a signed 32-bit int.
MAX_COMMAND_ID = 2**31 - 1

EventHandler = Callable[[dict], Any]


@dataclass
class PendingCommand:
    """A command written to the socket whose response hasn't arrived yet."""

    id: int
    method: str
    params: dict
    future: asyncio.Future = field(repr=False)


class CommandCorrelator:
    """Hands out command ids and matches responses back to their callers.

    Ids come from a per-connection counter starting at 1. An id is never
    handed out again while a command holding it is still pending.
    """

    def __init__(self) -> None:
        self._last_id = 0
        self._pending: dict[int, PendingCommand] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def _next_id(self) -> int:
        while True:
            self._last_id += 1
            if self._last_id > MAX_COMMAND_ID:
                self._last_id = 1
            if self._last_id not in self._pending:
                return self._last_id

    def register(self, method: str, params: dict) -> PendingCommand:
        """Allocate an id and start tracking a command."""
        loop = asyncio.get_running_loop()
        pending = PendingCommand(self._next_id(), method, params, loop.create_future())
        self._pending[pending.id] = pending
        return pending

    def get(self, msg_id: int) -> PendingCommand | None:
        return self._pending.get(msg_id)

    def resolve(self, msg: dict) -> bool:
        """Settle the pending command a response belongs to.

        The entry stays registered until the caller collects it with
        ``discard``. Returns False when nobody is waiting for that id anymore
        (the caller timed out); the response is dropped.
        """
        pending = self._pending.get(msg.get("id"))
        if pending is None:
            logger.debug("Dropping response for unknown or expired id %s", msg.get("id"))
            return False
        if pending.future.done():
            return False
        if "error" in msg:
            pending.future.set_exception(
                ProtocolError.from_response(pending.method, msg["error"])
            )
        else:
            pending.future.set_result(msg.get("result", {}))
        return True

    def discard(self, msg_id: int) -> None:
        """Forget a command. A response that shows up later is ignored."""
        self._pending.pop(msg_id, None)

    def fail_all(self, reason: str) -> None:
        """Reject every unanswered command, e.g. because the socket closed.

        Entries stay registered so a later ``response()`` still finds them.
        """
        for cmd in self._pending.values():
            if not cmd.future.done():
                cmd.future.set_exception(
                    CDPConnectionError(f"{cmd.method} aborted: {reason}")
                )


class CDPSession:
    """Asynchronous CDP WebSocket session for a single target.

    Use ``open()`` to connect. Multiple ``call()`` coroutines may run at once
    on the same session; each gets its own response.
    """

    def __init__(self, ws: ClientConnection, command_timeout: float = 30.0) -> None:
        self._ws = ws
        self.ws_url = ""
        self.command_timeout = command_timeout
        self._correlator = CommandCorrelator()
        self._listeners: dict[str, list[EventHandler]] = {}
        self._event_waiters: dict[str, list[asyncio.Future]] = {}
        self._closed = False
        self._reader = asyncio.create_task(self._read_loop())

    @classmethod
    async def open(cls, ws_url: str, command_timeout: float = 30.0) -> CDPSession:
        """Connect to a target's WebSocket debugger URL."""
        try:
            ws = await connect(
                ws_url,
                max_size=None,
                ping_interval=None,
                open_timeout=command_timeout,
            )
        except (OSError, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as e:
            raise CDPConnectionError(f"Cannot open {ws_url}: {e}") from e
        session = cls(ws, command_timeout=command_timeout)
        session.ws_url = ws_url
        logger.debug("Opened CDP session %s", ws_url)
        return session

    @property
    def is_alive(self) -> bool:
        return not self._closed and not self._reader.done()

    @property
    def pending_count(self) -> int:
        return len(self._correlator)

    # ── Outgoing ──

    async def _send(self, method: str, params: dict) -> PendingCommand:
        if not self.is_alive:
            raise CDPConnectionError(f"{method} aborted: connection closed")
        pending = self._correlator.register(method, params)
        frame = json.dumps({"id": pending.id, "method": method, "params": params})
        try:
            await self._ws.send(frame)
        except ConnectionClosed as e:
            self._correlator.discard(pending.id)
            raise CDPConnectionError(f"{method} aborted: {e}") from e
        logger.debug("→ %s #%d", method, pending.id)
        return pending

    async def send(self, method: str, params: dict | None = None) -> int:
        """Write a command and return its id without waiting for the response.

        The reply is held until it is collected with ``response(id)``.
        """
        pending = await self._send(method, params or {})
        return pending.id

    async def response(self, msg_id: int, timeout: float | None = None) -> dict:
        """Wait for the response to a command previously written with ``send``."""
        pending = self._correlator.get(msg_id)
        if pending is None:
            raise ProtocolError(f"No pending command with id {msg_id}")
        limit = self.command_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(pending.future, limit)
        except asyncio.TimeoutError:
            raise CDPTimeout(
                f"{pending.method} got no response within {limit * 1000:.0f}ms"
            ) from None
        finally:
            self._correlator.discard(msg_id)

    async def call(
        self, method: str, params: dict | None = None, *, timeout: float | None = None
    ) -> dict:
        """Send a CDP command and wait for its result.

        Raises:
            ProtocolError: the browser answered with an error object.
            CDPTimeout: no answer within ``timeout`` seconds.
            CDPConnectionError: the socket closed first.
        """
        msg_id = await self.send(method, params)
        return await self.response(msg_id, timeout)

    # ── Events ──

    def on(self, method: str, handler: EventHandler) -> None:
        """Call ``handler(params)`` for every ``method`` event."""
        self._listeners.setdefault(method, []).append(handler)

    def off(self, method: str, handler: EventHandler) -> None:
        handlers = self._listeners.get(method, [])
        if handler in handlers:
            handlers.remove(handler)

    def wait_for_event(self, method: str) -> asyncio.Future:
        """Future resolved with the params of the next ``method`` event.

        Arm it before sending the command that triggers the event.
        """
        future = asyncio.get_running_loop().create_future()
        self._event_waiters.setdefault(method, []).append(future)
        return future

    def _dispatch_event(self, method: str, params: dict) -> None:
        for future in self._event_waiters.pop(method, []):
            if not future.done():
                future.set_result(params)
        for handler in list(self._listeners.get(method, [])):
            try:
                handler(params)
            except Exception:
                logger.exception("Event handler for %s failed", method)

    # ── Incoming ──

    async def _read_loop(self) -> None:
        reason = "connection closed"
        try:
            async for raw in self._ws:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    logger.warning("Ignoring non-JSON frame from %s", self.ws_url)
                    continue
                if "id" in msg:
                    self._correlator.resolve(msg)
                elif "method" in msg:
                    self._dispatch_event(msg["method"], msg.get("params", {}))
        except ConnectionClosed as e:
            reason = f"connection closed ({e})"
        finally:
            self._correlator.fail_all(reason)
            self._fail_event_waiters(reason)
            logger.debug("CDP session %s reader stopped: %s", self.ws_url, reason)

    def _fail_event_waiters(self, reason: str) -> None:
        waiters, self._event_waiters = self._event_waiters, {}
        for method, futures in waiters.items():
            for future in futures:
                if not future.done():
                    future.set_exception(
                        CDPConnectionError(f"Waiting for {method} aborted: {reason}")
                    )

    async def close(self) -> None:
        """Close the socket and fail anything still waiting on it."""
        if self._closed:
            return
        self._closed = True
        await self._ws.close()
        await self._reader
        self._correlator.fail_all("connection closed")
        self._fail_event_waiters("connection closed")
        logger.debug("Closed CDP session %s", self.ws_url)

    def __repr__(self) -> str:
        return f"CDPSession(ws_url={self.ws_url!r}, pending={self.pending_count})"
