"""Tab discovery and per-tab session pool.

Tab indices are positions in the browser's current /json/list output. They
are re-read on every resolve: closing tab 1 turns tab 2 into tab 1, so a
cached listing would quietly address the wrong page.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.error import URLError
from urllib.parse import urlparse
from urllib.request import urlopen

from chromews.errors import BrowserNotRunning, CDPError, ProtocolError, TargetNotFound
from chromews.session import CDPSession

logger = logging.getLogger(__name__)

TabRef = int | str


@dataclass
class Tab:
    """A browser tab as seen in one listing."""

    index: int
    id: str
    title: str
    url: str
    type: str = "page"
    ws_url: str = ""

    def __str__(self) -> str:
        return f"[{self.index}] {self.title or '(untitled)'} — {self.url}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "type": self.type,
        }


class TabRegistry:
    """Lists tabs, resolves tab references, and owns one session per tab.

    Args:
        cdp_url: HTTP debugging endpoint, e.g. http://127.0.0.1:9222.
        command_timeout: Seconds to wait for a CDP response.
    """

    def __init__(self, cdp_url: str, command_timeout: float = 30.0) -> None:
        self.cdp_url = cdp_url.rstrip("/")
        self.command_timeout = command_timeout
        self._netloc = urlparse(self.cdp_url).netloc or "127.0.0.1:9222"
        self._sessions: dict[str, CDPSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ── HTTP endpoint ──

    def _fetch_json_sync(self, path: str) -> Any:
        try:
            with urlopen(f"{self.cdp_url}{path}", timeout=self.command_timeout) as resp:
                return json.loads(resp.read())
        except (URLError, OSError):
            raise BrowserNotRunning(self.cdp_url)

    async def fetch_json(self, path: str) -> Any:
        """GET a JSON document from the CDP HTTP endpoint."""
        return await asyncio.to_thread(self._fetch_json_sync, path)

    def _ws_url_for(self, target: dict) -> str:
        ws_url = target.get("webSocketDebuggerUrl", "")
        if not ws_url:
            # Chrome omits the URL while another client is attached.
            return f"ws://{self._netloc}/devtools/page/{target['id']}"
        parsed = urlparse(ws_url)
        return parsed._replace(netloc=self._netloc).geturl()

    # ── Listing & resolution ──

    async def list_targets(self) -> list[Tab]:
        """List page targets in browser order. The position is the tab index."""
        targets = await self.fetch_json("/json/list")
        pages = [t for t in targets if t.get("type") == "page"]
        return [
            Tab(
                index=i,
                id=t["id"],
                title=t.get("title", ""),
                url=t.get("url", ""),
                type=t.get("type", "page"),
                ws_url=self._ws_url_for(t),
            )
            for i, t in enumerate(pages)
        ]

    async def resolve(self, tab_ref: TabRef) -> Tab:
        """Resolve a tab index, target id, or ws:// URL to a Tab.

        Indices and ids are checked against a fresh listing. A ws:// URL is
        taken as-is without listing.
        """
        if isinstance(tab_ref, str):
            ref = tab_ref.strip()
            if ref.isdigit():
                tab_ref = int(ref)
            elif ref.startswith(("ws://", "wss://")):
                target_id = urlparse(ref).path.rstrip("/").rsplit("/", 1)[-1]
                return Tab(index=-1, id=target_id or ref, title="", url="", ws_url=ref)
            else:
                for tab in await self.list_targets():
                    if tab.id == ref:
                        return tab
                raise TargetNotFound(
                    f"No tab with id {ref!r}.\nHint: run list_tabs to see open tabs."
                )

        tabs = await self.list_targets()
        if not tabs:
            raise TargetNotFound("No browser tabs open.\nHint: open one with new_tab.")
        if tab_ref < 0 or tab_ref >= len(tabs):
            raise TargetNotFound(
                f"Tab index {tab_ref} out of range (0–{len(tabs) - 1}).\n"
                f"Hint: run list_tabs to see available tabs."
            )
        return tabs[tab_ref]

    # ── Sessions ──

    async def session_for(self, tab: Tab) -> CDPSession:
        """Return the open session for a tab, connecting on first use.

        Opening a socket only blocks other callers for the same tab.
        """
        lock = self._locks.setdefault(tab.id, asyncio.Lock())
        async with lock:
            session = self._sessions.get(tab.id)
            if session is not None and session.is_alive:
                return session
            if session is not None:
                logger.debug("Dropping dead session for %s", tab.id)
                del self._sessions[tab.id]
            session = await CDPSession.open(tab.ws_url, command_timeout=self.command_timeout)
            self._sessions[tab.id] = session
            return session

    async def release(self, target_id: str) -> None:
        """Close and forget the session for a target, if any."""
        session = self._sessions.pop(target_id, None)
        if session is not None:
            await session.close()

    async def close(self) -> None:
        """Close every open session."""
        sessions, self._sessions = self._sessions, {}
        for session in sessions.values():
            await session.close()

    # ── Browser-level commands ──

    async def _browser_call(self, method: str, params: dict) -> dict:
        version = await self.fetch_json("/json/version")
        ws_url = version.get("webSocketDebuggerUrl", "")
        if not ws_url:
            raise CDPError("Browser did not expose webSocketDebuggerUrl")
        ws_url = urlparse(ws_url)._replace(netloc=self._netloc).geturl()
        cdp = await CDPSession.open(ws_url, command_timeout=self.command_timeout)
        try:
            return await cdp.call(method, params)
        finally:
            await cdp.close()

    async def create_tab(self, url: str | None = None) -> Tab:
        """Open a new tab, optionally loading ``url`` right away."""
        result = await self._browser_call(
            "Target.createTarget", {"url": url or "about:blank"}
        )
        target_id = result.get("targetId", "")
        logger.info("Opened tab %s", target_id)
        for tab in await self.list_targets():
            if tab.id == target_id:
                return tab
        return Tab(
            index=-1,
            id=target_id,
            title="",
            url=url or "about:blank",
            ws_url=f"ws://{self._netloc}/devtools/page/{target_id}",
        )

    async def close_tab(self, tab_ref: TabRef) -> Tab:
        """Close a tab and drop its session. Returns the tab that was closed."""
        tab = await self.resolve(tab_ref)
        await self.release(tab.id)
        result = await self._browser_call("Target.closeTarget", {"targetId": tab.id})
        if result.get("success") is False:
            raise ProtocolError(f"Browser refused to close tab {tab.id}")
        logger.info("Closed tab %s", tab.id)
        return tab
