"""Shared fixtures: an in-process fake Chrome speaking the debugging protocol.

FakeChrome serves the /json/* HTTP endpoints and the per-target CDP
WebSockets from one websockets server. Tests script it by replacing entries
in ``chrome.handlers`` (method → handler) or by setting ``chrome.evaluate``.
"""

import asyncio
import base64
import inspect
import json
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable

import pytest
import pytest_asyncio
from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

NO_REPLY = object()
UNDEFINED = object()

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-data"


class CDPFailure(Exception):
    """Raise from a handler to answer with a CDP error object."""

    def __init__(self, message: str, code: int = -32000) -> None:
        self.code = code
        super().__init__(message)


class JSException:
    """Return from ``chrome.evaluate`` to simulate a thrown exception."""

    def __init__(self, description: str) -> None:
        self.description = description


@dataclass
class Call:
    target_id: str
    method: str
    params: dict
    id: int
    ws: ServerConnection = field(repr=False)


class FakeChrome:
    def __init__(self) -> None:
        self.targets: list[dict] = []
        self.calls: list[Call] = []
        self.connections: list[tuple[str, ServerConnection]] = []
        self.http_hits: list[str] = []
        # target id → event the WebSocket handshake waits for
        self.handshake_gates: dict[str, asyncio.Event] = {}
        self.evaluate: Callable[[str, str], Any] = self._default_evaluate
        self._next_target = 0
        self.server = None
        self.port = 0
        self.handlers: dict[str, Callable[[Call], Any]] = {
            "Page.enable": lambda call: {},
            "Page.navigate": self._page_navigate,
            "Page.getLayoutMetrics": lambda call: {
                "cssContentSize": {"x": 0, "y": 0, "width": 800, "height": 1200}
            },
            "Page.captureScreenshot": lambda call: {
                "data": base64.b64encode(PNG_BYTES).decode()
            },
            "Runtime.evaluate": self._runtime_evaluate,
            "Input.insertText": lambda call: {},
            "Input.dispatchKeyEvent": lambda call: {},
            "Target.createTarget": self._create_target,
            "Target.closeTarget": self._close_target,
        }

    # ── Lifecycle ──

    async def start(self) -> None:
        self.server = await serve(
            self._ws_handler, "127.0.0.1", 0, process_request=self._http
        )
        self.port = self.server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        self.server.close()
        await self.server.wait_closed()

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def add_tab(self, title: str = "", url: str = "about:blank", type: str = "page") -> str:
        self._next_target += 1
        target_id = f"TARGET{self._next_target}"
        self.targets.append({"id": target_id, "title": title, "url": url, "type": type})
        return target_id

    def ws_url(self, target_id: str) -> str:
        return f"ws://localhost:{self.port}/devtools/page/{target_id}"

    def calls_for(self, method: str) -> list[Call]:
        return [c for c in self.calls if c.method == method]

    # ── HTTP endpoints ──

    async def _http(self, connection, request):
        path = request.path
        if not path.startswith("/json"):
            gate = self.handshake_gates.get(path.rstrip("/").rsplit("/", 1)[-1])
            if gate is not None:
                await gate.wait()
            return None
        self.http_hits.append(path)
        if path == "/json/version":
            body = {
                "Browser": "FakeChrome/1.0",
                "webSocketDebuggerUrl": f"ws://localhost:{self.port}/devtools/browser/fake",
            }
        elif path in ("/json", "/json/list"):
            body = [dict(t, webSocketDebuggerUrl=self.ws_url(t["id"])) for t in self.targets]
        else:
            return connection.respond(HTTPStatus.NOT_FOUND, "not found\n")
        return connection.respond(HTTPStatus.OK, json.dumps(body))

    # ── WebSocket endpoint ──

    async def _ws_handler(self, ws: ServerConnection) -> None:
        target_id = ws.request.path.rstrip("/").rsplit("/", 1)[-1]
        self.connections.append((target_id, ws))
        try:
            async for raw in ws:
                msg = json.loads(raw)
                call = Call(target_id, msg["method"], msg.get("params", {}), msg["id"], ws)
                self.calls.append(call)
                asyncio.create_task(self._respond(call))
        except ConnectionClosed:
            pass

    async def _respond(self, call: Call) -> None:
        handler = self.handlers.get(call.method)
        try:
            if handler is None:
                raise CDPFailure(f"'{call.method}' wasn't found", code=-32601)
            result = handler(call)
            if inspect.isawaitable(result):
                result = await result
            if result is NO_REPLY:
                return
            reply = {"id": call.id, "result": result}
        except CDPFailure as e:
            reply = {"id": call.id, "error": {"code": e.code, "message": str(e)}}
        try:
            await call.ws.send(json.dumps(reply))
        except ConnectionClosed:
            pass

    async def emit(self, target_id: str, method: str, params: dict | None = None) -> None:
        for tid, ws in self.connections:
            if tid == target_id:
                try:
                    await ws.send(json.dumps({"method": method, "params": params or {}}))
                except ConnectionClosed:
                    pass

    async def emit_later(self, target_id: str, method: str, delay: float = 0.02) -> None:
        await asyncio.sleep(delay)
        await self.emit(target_id, method, {"timestamp": 1.0})

    # ── Default handlers ──

    def _target(self, target_id: str) -> dict | None:
        return next((t for t in self.targets if t["id"] == target_id), None)

    def _default_evaluate(self, target_id: str, expression: str) -> Any:
        if expression == "location.href":
            target = self._target(target_id)
            return target["url"] if target else None
        return None

    def _runtime_evaluate(self, call: Call) -> dict:
        value = self.evaluate(call.target_id, call.params["expression"])
        if isinstance(value, JSException):
            return {
                "result": {"type": "object", "subtype": "error"},
                "exceptionDetails": {
                    "text": "Uncaught",
                    "exception": {"description": value.description},
                },
            }
        if value is UNDEFINED:
            return {"result": {"type": "undefined"}}
        if value is None:
            return {"result": {"type": "object", "subtype": "null", "value": None}}
        kind = {str: "string", bool: "boolean", int: "number", float: "number"}.get(
            type(value), "object"
        )
        return {"result": {"type": kind, "value": value}}

    def _page_navigate(self, call: Call) -> dict:
        target = self._target(call.target_id)
        if target is not None:
            target["url"] = call.params["url"]
        asyncio.create_task(self.emit_later(call.target_id, "Page.loadEventFired"))
        return {"frameId": "FRAME", "loaderId": "LOADER"}

    def _create_target(self, call: Call) -> dict:
        target_id = self.add_tab(title="", url=call.params.get("url", "about:blank"))
        return {"targetId": target_id}

    async def _close_target(self, call: Call) -> dict:
        target = self._target(call.params["targetId"])
        if target is None:
            raise CDPFailure("No target with given id found")
        self.targets.remove(target)
        for tid, ws in self.connections:
            if tid == target["id"]:
                await ws.close()
        return {"success": True}


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the real ~/.chromews and CDP_URL."""
    monkeypatch.setenv("CHROMEWS_HOME", str(tmp_path / "chromews-home"))
    for var in ("CDP_URL", "CHROMEWS_COMMAND_TIMEOUT", "CHROMEWS_NAVIGATION_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)


@pytest_asyncio.fixture
async def chrome():
    fake = FakeChrome()
    await fake.start()
    yield fake
    await fake.stop()


@pytest.fixture
def closed_port() -> int:
    """A localhost port with nothing listening on it."""
    import socket

    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
