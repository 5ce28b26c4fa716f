"""Action router: high-level browser actions on top of CDP sessions.

This is the main module. Use Browser.perform() with an ActionRequest, or the
Browser.run() shorthand:

    from chromews import Browser

    async with Browser("http://127.0.0.1:9222") as b:
        await b.run("navigate", payload="https://example.com")
        print(await b.run("extract", payload="text"))
        await b.run("type", selector="#q", payload="hello\\n")

Every action validates its arguments before touching the network, then
resolves the tab fresh from the browser's listing and issues its commands
over that tab's shared session.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable

from chromews.config import get_settings
from chromews.errors import (
    CDPConnectionError,
    CDPTimeout,
    InvalidParameters,
    ProtocolError,
)
from chromews.js_expressions import (
    attr_js,
    click_js,
    element_rect_js,
    extract_html_js,
    extract_markdown_js,
    extract_text_js,
    focus_input_js,
    select_js,
    set_input_value_js,
)
from chromews.session import CDPSession
from chromews.tabs import Tab, TabRef, TabRegistry
from chromews.waiting import await_element, await_text

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5000
MAX_TIMEOUT = 60000
DEFAULT_EXTRACT_FORMAT = "markdown"


class Action(str, Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    TYPE = "type"
    EXTRACT = "extract"
    SCREENSHOT = "screenshot"
    EVAL = "eval"
    SELECT = "select"
    ATTR = "attr"
    AWAIT_ELEMENT = "await_element"
    AWAIT_TEXT = "await_text"
    LIST_TABS = "list_tabs"
    NEW_TAB = "new_tab"
    CLOSE_TAB = "close_tab"


# action → (selector required, payload kind, what the payload is)
# payload kinds: "text" = non-empty str, "values" = str or list[str],
# "format" = extract format, "optional" = optional str, None = unused
_RULES: dict[Action, tuple[bool, str | None, str]] = {
    Action.NAVIGATE: (False, "text", "URL"),
    Action.CLICK: (True, None, ""),
    Action.TYPE: (True, "text", "text"),
    Action.EXTRACT: (False, "format", "format"),
    Action.SCREENSHOT: (False, "text", "file path"),
    Action.EVAL: (False, "text", "JavaScript code"),
    Action.SELECT: (True, "values", "option value(s)"),
    Action.ATTR: (True, "text", "attribute name"),
    Action.AWAIT_ELEMENT: (True, None, ""),
    Action.AWAIT_TEXT: (False, "text", "text to wait for"),
    Action.LIST_TABS: (False, None, ""),
    Action.NEW_TAB: (False, "optional", "URL"),
    Action.CLOSE_TAB: (False, None, ""),
}

EXTRACT_FORMATS = {
    "markdown": extract_markdown_js,
    "text": extract_text_js,
    "html": extract_html_js,
}

_IMAGE_FORMATS = {".png": "png", ".jpg": "jpeg", ".jpeg": "jpeg", ".webp": "webp"}


@dataclass
class ActionRequest:
    """One action with its arguments.

    Args:
        action: Action name (or Action member).
        tab: Tab index from list_tabs, a target id, or a ws:// URL.
        selector: CSS selector, or XPath if it starts with ``/``.
        payload: Action-specific: URL, text, format, path, code, value(s)...
        timeout: Milliseconds for await_element/await_text (0–60000).
    """

    action: Action | str
    tab: TabRef = 0
    selector: str | None = None
    payload: str | list[str] | None = None
    timeout: int = DEFAULT_TIMEOUT

    def validate(self) -> ActionRequest:
        """Normalize fields in place. Raises InvalidParameters, never does I/O."""
        try:
            self.action = Action(str(getattr(self.action, "value", self.action)).lower())
        except ValueError:
            names = ", ".join(a.value for a in Action)
            raise InvalidParameters(f"Unknown action {self.action!r}. Use one of: {names}")
        name = self.action.value

        if isinstance(self.tab, bool) or not isinstance(self.tab, (int, str)):
            raise InvalidParameters(f"tab must be an index or a target id, got {self.tab!r}")
        if isinstance(self.tab, int) and self.tab < 0:
            raise InvalidParameters(f"tab index must be >= 0, got {self.tab}")
        if isinstance(self.tab, str) and not self.tab.strip():
            raise InvalidParameters("tab id must not be empty")

        if isinstance(self.timeout, bool) or not isinstance(self.timeout, int):
            raise InvalidParameters(f"timeout must be an integer (ms), got {self.timeout!r}")
        if not 0 <= self.timeout <= MAX_TIMEOUT:
            raise InvalidParameters(f"timeout must be between 0 and {MAX_TIMEOUT}ms, got {self.timeout}")

        needs_selector, payload_kind, what = _RULES[self.action]
        if self.selector is not None and not isinstance(self.selector, str):
            raise InvalidParameters(f"selector must be a string, got {self.selector!r}")
        if self.selector is not None and not self.selector.strip():
            self.selector = None
        if needs_selector and not self.selector:
            raise InvalidParameters(f"{name} requires selector")

        payload = self.payload
        if payload_kind == "text":
            if not isinstance(payload, str) or not payload:
                raise InvalidParameters(f"{name} requires payload with {what}")
        elif payload_kind == "values":
            if isinstance(payload, str):
                payload = [payload]
            if (
                not isinstance(payload, list)
                or not payload
                or not all(isinstance(v, str) for v in payload)
            ):
                raise InvalidParameters(f"{name} requires payload with {what}")
            self.payload = payload
        elif payload_kind == "format":
            fmt = DEFAULT_EXTRACT_FORMAT if payload in (None, "") else payload
            if not isinstance(fmt, str) or fmt.lower() not in EXTRACT_FORMATS:
                raise InvalidParameters(
                    f"extract payload must be one of: {', '.join(EXTRACT_FORMATS)}"
                )
            self.payload = fmt.lower()
        elif payload_kind == "optional":
            if payload is not None and not isinstance(payload, str):
                raise InvalidParameters(f"{name} payload must be a {what} string")
        return self


def normalize_url(url: str) -> str:
    """Add https:// to bare hostnames like ``example.com``."""
    url = url.strip()
    if "://" in url or url.startswith(("about:", "data:", "javascript:", "chrome:")):
        return url
    return "https://" + url


def stringify_remote_object(obj: dict) -> str:
    """Render a Runtime.RemoteObject as a plain string."""
    if "value" in obj:
        value = obj["value"]
        if isinstance(value, str):
            return value
        if value is None:
            return "null"
        return json.dumps(value, indent=2, ensure_ascii=False)
    if "unserializableValue" in obj:
        return obj["unserializableValue"]
    if obj.get("type") == "undefined":
        return "undefined"
    if obj.get("description"):
        return obj["description"]
    return json.dumps(obj)


class Browser:
    """High-level browser control via CDP.

    Holds the per-tab sessions and nothing else: actions share no state
    with each other. Several perform() calls may run concurrently; calls on
    different tabs proceed in parallel, calls on the same tab share one
    socket and are matched by command id.

    Args:
        cdp_url: CDP endpoint URL (default: http://127.0.0.1:9222).
                 Set CDP_URL env var or ~/.chromews/config.json to override.
        command_timeout: Milliseconds to wait for any single CDP response.
        navigation_timeout: Milliseconds navigate waits for the load event.
        poll_interval: Milliseconds between await_* polls.
    """

    def __init__(
        self,
        cdp_url: str | None = None,
        *,
        command_timeout: int | None = None,
        navigation_timeout: int | None = None,
        poll_interval: int | None = None,
    ) -> None:
        self.settings = get_settings(
            cdp_url=cdp_url,
            command_timeout=command_timeout,
            navigation_timeout=navigation_timeout,
            poll_interval=poll_interval,
        )
        self.cdp_url = self.settings.cdp_url
        self.registry = TabRegistry(
            self.cdp_url, command_timeout=self.settings.command_timeout / 1000
        )
        self._started = False

    async def __aenter__(self) -> Browser:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def ensure_started(self) -> None:
        """Check once that the debugging endpoint answers.

        Raises:
            BrowserNotRunning: nothing is listening on cdp_url.
        """
        if self._started:
            return
        await self.registry.fetch_json("/json/version")
        self._started = True

    async def close(self) -> None:
        """Close every open tab session."""
        await self.registry.close()

    # ── Entry points ──

    async def perform(self, request: ActionRequest) -> str:
        """Validate and execute one action, returning its result string."""
        request.validate()
        await self.ensure_started()
        handler = _HANDLERS[request.action]
        logger.debug("perform %s on tab %r", request.action.value, request.tab)
        return await handler(self, request)

    async def run(
        self,
        action: Action | str,
        tab: TabRef = 0,
        selector: str | None = None,
        payload: str | list[str] | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> str:
        """Shorthand for ``perform(ActionRequest(...))``."""
        return await self.perform(ActionRequest(action, tab, selector, payload, timeout))

    # ── Private helpers ──

    async def _with_session(self, tab: Tab, step: Callable[[CDPSession], Awaitable[Any]]) -> Any:
        """Run ``step`` on the tab's session, reconnecting once if the socket died."""
        try:
            return await step(await self.registry.session_for(tab))
        except CDPConnectionError as e:
            await self.registry.release(tab.id)
            logger.warning("Connection to tab %s lost (%s), reconnecting", tab.id, e)
        try:
            return await step(await self.registry.session_for(tab))
        except CDPConnectionError:
            await self.registry.release(tab.id)
            raise

    async def _call(
        self, tab: Tab, method: str, params: dict | None = None, *, timeout: float | None = None
    ) -> dict:
        """Send a command on the tab's session, reconnecting once if it died."""
        return await self._with_session(
            tab, lambda session: session.call(method, params, timeout=timeout)
        )

    async def _evaluate(self, tab: Tab, expression: str, *, await_promise: bool = False) -> Any:
        """Evaluate JS in the page and return the result value."""
        result = await self._call(
            tab,
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": await_promise},
        )
        exc = result.get("exceptionDetails")
        if exc:
            desc = exc.get("exception", {}).get("description", exc.get("text", ""))
            raise ProtocolError(f"JS Error: {desc}")
        return result.get("result", {}).get("value")

    async def _eval_json(self, tab: Tab, expression: str) -> dict:
        """Evaluate a js_expressions helper and unpack its JSON reply."""
        raw = await self._evaluate(tab, expression)
        info = json.loads(raw or "{}")
        if "error" in info:
            raise ProtocolError(info["error"])
        return info

    async def _press_enter(self, tab: Tab) -> None:
        key = {
            "key": "Enter",
            "code": "Enter",
            "windowsVirtualKeyCode": 13,
            "nativeVirtualKeyCode": 13,
        }
        await self._call(
            tab,
            "Input.dispatchKeyEvent",
            {"type": "keyDown", "text": "\r", "unmodifiedText": "\r", **key},
        )
        await self._call(tab, "Input.dispatchKeyEvent", {"type": "keyUp", **key})

    def _poll_evaluator(self, tab: Tab) -> Callable[[str], Awaitable[Any]]:
        async def evaluate(expression: str) -> Any:
            return await self._evaluate(tab, expression)

        return evaluate

    # ── Navigation ──

    async def _navigate(self, request: ActionRequest) -> str:
        url = normalize_url(request.payload)
        tab = await self.registry.resolve(request.tab)

        async def navigate(session: CDPSession) -> None:
            await session.call("Page.enable")
            loaded = session.wait_for_event("Page.loadEventFired")
            try:
                result = await session.call("Page.navigate", {"url": url})
                if result.get("errorText"):
                    raise ProtocolError(f"Navigation to {url} failed: {result['errorText']}")
                # Same-document navigations (fragment changes) have no loader and fire no load event.
                if result.get("loaderId"):
                    limit = self.settings.navigation_timeout / 1000
                    try:
                        await asyncio.wait_for(loaded, limit)
                    except asyncio.TimeoutError:
                        raise CDPTimeout(
                            f"{url} did not finish loading within {self.settings.navigation_timeout}ms"
                        ) from None
            finally:
                if not loaded.done():
                    loaded.cancel()
                elif not loaded.cancelled():
                    # Mark a socket-closed failure as retrieved.
                    loaded.exception()

        await self._with_session(tab, navigate)
        final_url = await self._evaluate(tab, "location.href")
        return f"Navigated to {final_url or url}"

    # ── Element interaction ──

    async def _click(self, request: ActionRequest) -> str:
        tab = await self.registry.resolve(request.tab)
        info = await self._eval_json(tab, click_js(request.selector))
        desc = f" {info['desc']}" if info.get("desc") else ""
        return f"Clicked: ({info.get('label', 'element')}){desc}"

    async def _type(self, request: ActionRequest) -> str:
        text = request.payload
        submit = text.endswith("\n")
        if submit:
            text = text[:-1]
        tab = await self.registry.resolve(request.tab)
        info = await self._eval_json(tab, focus_input_js(request.selector))
        if text:
            await self._call(tab, "Input.insertText", {"text": text})
        if not info.get("ce"):
            # Sync value for React/Vue
            await self._eval_json(tab, set_input_value_js(request.selector, text))
        if submit:
            await self._press_enter(tab)
            return f"Typed {len(text)} chars into {request.selector} and pressed Enter"
        return f"Typed {len(text)} chars into {request.selector}"

    async def _select(self, request: ActionRequest) -> str:
        tab = await self.registry.resolve(request.tab)
        info = await self._eval_json(tab, select_js(request.selector, request.payload))
        return f"Selected {', '.join(info.get('selected', []))} in {request.selector}"

    async def _attr(self, request: ActionRequest) -> str:
        tab = await self.registry.resolve(request.tab)
        info = await self._eval_json(tab, attr_js(request.selector, request.payload))
        value = info.get("value")
        return "null" if value is None else value

    # ── Content ──

    async def _extract(self, request: ActionRequest) -> str:
        tab = await self.registry.resolve(request.tab)
        js = EXTRACT_FORMATS[request.payload](request.selector)
        info = await self._eval_json(tab, js)
        return info.get("value", "")

    async def _screenshot(self, request: ActionRequest) -> str:
        path = Path(request.payload).expanduser()
        fmt = _IMAGE_FORMATS.get(path.suffix.lower(), "png")
        tab = await self.registry.resolve(request.tab)
        params: dict[str, Any] = {"format": fmt, "captureBeyondViewport": True}
        if request.selector:
            rect = await self._eval_json(tab, element_rect_js(request.selector))
            params["clip"] = {
                "x": rect["x"],
                "y": rect["y"],
                "width": rect["width"],
                "height": rect["height"],
                "scale": 1,
            }
        else:
            metrics = await self._call(tab, "Page.getLayoutMetrics")
            size = metrics.get("cssContentSize") or metrics.get("contentSize")
            if size:
                params["clip"] = {
                    "x": 0,
                    "y": 0,
                    "width": size["width"],
                    "height": size["height"],
                    "scale": 1,
                }
        result = await self._call(tab, "Page.captureScreenshot", params)
        data = base64.b64decode(result.get("data", ""))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return str(path)

    async def _eval(self, request: ActionRequest) -> str:
        tab = await self.registry.resolve(request.tab)
        result = await self._call(
            tab,
            "Runtime.evaluate",
            {"expression": request.payload, "returnByValue": True, "awaitPromise": True},
        )
        exc = result.get("exceptionDetails")
        if exc:
            desc = exc.get("exception", {}).get("description", exc.get("text", ""))
            raise ProtocolError(f"JS Error: {desc}")
        return stringify_remote_object(result.get("result", {}))

    # ── Waiting ──

    async def _await_element(self, request: ActionRequest) -> str:
        tab = await self.registry.resolve(request.tab)
        elapsed = await await_element(
            self._poll_evaluator(tab),
            request.selector,
            request.timeout,
            interval=self.settings.poll_interval / 1000,
        )
        return f"Found element {request.selector} after {elapsed}ms"

    async def _await_text(self, request: ActionRequest) -> str:
        tab = await self.registry.resolve(request.tab)
        elapsed = await await_text(
            self._poll_evaluator(tab),
            request.payload,
            request.timeout,
            interval=self.settings.poll_interval / 1000,
        )
        return f"Found text {request.payload!r} after {elapsed}ms"

    # ── Tab management ──

    async def _list_tabs(self, request: ActionRequest) -> str:
        tabs = await self.registry.list_targets()
        return json.dumps([t.to_dict() for t in tabs], indent=2, ensure_ascii=False)

    async def _new_tab(self, request: ActionRequest) -> str:
        url = normalize_url(request.payload) if request.payload else None
        tab = await self.registry.create_tab(url)
        return json.dumps(tab.to_dict(), indent=2, ensure_ascii=False)

    async def _close_tab(self, request: ActionRequest) -> str:
        tab = await self.registry.close_tab(request.tab)
        return f"Closed tab [{tab.index}]: {tab.title or tab.url or tab.id}"

    def __repr__(self) -> str:
        return f"Browser(cdp_url={self.cdp_url!r})"


_HANDLERS: dict[Action, Callable[[Browser, ActionRequest], Awaitable[str]]] = {
    Action.NAVIGATE: Browser._navigate,
    Action.CLICK: Browser._click,
    Action.TYPE: Browser._type,
    Action.EXTRACT: Browser._extract,
    Action.SCREENSHOT: Browser._screenshot,
    Action.EVAL: Browser._eval,
    Action.SELECT: Browser._select,
    Action.ATTR: Browser._attr,
    Action.AWAIT_ELEMENT: Browser._await_element,
    Action.AWAIT_TEXT: Browser._await_text,
    Action.LIST_TABS: Browser._list_tabs,
    Action.NEW_TAB: Browser._new_tab,
    Action.CLOSE_TAB: Browser._close_tab,
}
