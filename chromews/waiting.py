"""Polling waits: re-evaluate a boolean expression until it holds.

A navigation in the middle of a wait just makes the next poll run against
the new document. Detection lags the condition by up to one poll interval.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from chromews.errors import CDPTimeout, ProtocolError
from chromews.js_expressions import element_present_js, text_present_js

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1  # seconds

Evaluate = Callable[[str], Awaitable[Any]]


async def await_predicate(
    evaluate: Evaluate,
    expression: str,
    timeout_ms: int,
    description: str,
    interval: float = POLL_INTERVAL,
) -> int:
    """Evaluate ``expression`` every ``interval`` seconds until it is truthy.

    Args:
        evaluate: Coroutine function running a read-only expression in the
            page and returning its value.
        expression: JS expression; side-effect free.
        timeout_ms: Give up after this many milliseconds.
        description: What is being waited for, used in the timeout message.

    Returns:
        Milliseconds elapsed until the predicate held.

    Raises:
        CDPTimeout: the predicate never held before the deadline.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    deadline = start + timeout_ms / 1000
    attempts = 0
    while True:
        attempts += 1
        remaining = max(deadline - loop.time(), interval)
        try:
            if await asyncio.wait_for(evaluate(expression), remaining):
                elapsed = int((loop.time() - start) * 1000)
                logger.debug("%s after %d polls (%dms)", description, attempts, elapsed)
                return elapsed
        except (ProtocolError, CDPTimeout, asyncio.TimeoutError) as e:
            # Usually "Execution context was destroyed" mid-navigation.
            logger.debug("Poll %d for %s failed: %s", attempts, description, e)
        now = loop.time()
        if now >= deadline:
            elapsed = int((now - start) * 1000)
            raise CDPTimeout(f"Timed out after {elapsed}ms waiting for {description}")
        await asyncio.sleep(min(interval, deadline - now))


async def await_element(
    evaluate: Evaluate, selector: str, timeout_ms: int, interval: float = POLL_INTERVAL
) -> int:
    """Wait until ``selector`` (CSS or XPath) matches an element."""
    return await await_predicate(
        evaluate, element_present_js(selector), timeout_ms, f"element {selector!r}", interval
    )


async def await_text(
    evaluate: Evaluate, text: str, timeout_ms: int, interval: float = POLL_INTERVAL
) -> int:
    """Wait until ``text`` appears in the page's visible text."""
    return await await_predicate(
        evaluate, text_present_js(text), timeout_ms, f"text {text!r}", interval
    )
