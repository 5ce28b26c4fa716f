"""chromews — high-level Chrome control over the DevTools Protocol.

Connect to any Chrome/Chromium started with --remote-debugging-port and drive
it with a handful of actions instead of raw protocol messages.

Quick start:
    import asyncio
    from chromews import Browser

    async def main():
        async with Browser() as b:                      # localhost:9222
            await b.run("navigate", payload="https://example.com")
            await b.run("await_text", payload="Example Domain")
            print(await b.run("extract", payload="markdown"))

    asyncio.run(main())
"""

from chromews.core import Action, ActionRequest, Browser
from chromews.errors import (
    BrowserNotRunning,
    CDPConnectionError,
    CDPError,
    CDPTimeout,
    InvalidParameters,
    ProtocolError,
    TargetNotFound,
)
from chromews.session import CDPSession, CommandCorrelator
from chromews.tabs import Tab, TabRegistry

__version__ = "0.1.0"
__all__ = [
    "Action",
    "ActionRequest",
    "Browser",
    "BrowserNotRunning",
    "CDPConnectionError",
    "CDPError",
    "CDPSession",
    "CDPTimeout",
    "CommandCorrelator",
    "InvalidParameters",
    "ProtocolError",
    "Tab",
    "TabRegistry",
    "TargetNotFound",
]
