"""Error types raised by chromews.

Every error carries a ``kind`` so callers (the CLI, an agent loop) can tell
a bad argument from a dead browser without parsing messages.
"""

from __future__ import annotations

from typing import Any


class CDPError(Exception):
    """Base class for everything chromews raises."""

    kind = "Error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class InvalidParameters(CDPError):
    """Missing or malformed action arguments. Never reaches the browser."""

    kind = "InvalidParameters"


class TargetNotFound(CDPError):
    """A tab index or target id did not resolve to a live tab."""

    kind = "TargetNotFound"


class ProtocolError(CDPError):
    """The browser rejected a command, or page-side code reported a failure."""

    kind = "ProtocolError"

    def __init__(self, message: str, code: int | None = None) -> None:
        self.code = code
        super().__init__(message)

    @classmethod
    def from_response(cls, method: str, error: dict) -> ProtocolError:
        code = error.get("code")
        msg = error.get("message", str(error))
        if error.get("data"):
            msg = f"{msg} ({error['data']})"
        return cls(f"{method} failed: {msg}", code=code)


class CDPTimeout(CDPError):
    """A command or a wait ran past its deadline."""

    kind = "Timeout"


class CDPConnectionError(CDPError):
    """The WebSocket could not be opened, or died under a command."""

    kind = "ConnectionError"


class BrowserNotRunning(CDPConnectionError):
    """Raised when the CDP HTTP endpoint is unreachable."""

    def __init__(self, cdp_url: str) -> None:
        self.cdp_url = cdp_url
        port = cdp_url.rsplit(":", 1)[-1].split("/")[0]
        super().__init__(
            f"Cannot connect to browser at {cdp_url}\n\n"
            f"Make sure Chrome/Chromium is running with remote debugging enabled:\n"
            f"  chrome --remote-debugging-port={port}"
        )
