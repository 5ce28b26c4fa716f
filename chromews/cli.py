"""chromews CLI — drive a running Chrome from the terminal.

Usage:
    chromews <action> [payload...] [options]
    chromews --help

Examples:
    chromews list_tabs                          # See your open tabs
    chromews navigate example.com               # Go to a URL
    chromews click --selector "button.submit"   # Click something
    chromews type hello --selector "#q" --submit
    chromews extract text                       # Read the page
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys

from chromews.core import Action, ActionRequest, Browser, DEFAULT_TIMEOUT
from chromews.errors import BrowserNotRunning, CDPError, InvalidParameters

# ── Colors (disable with NO_COLOR env var) ──

_NO_COLOR = os.environ.get("NO_COLOR") or not sys.stdout.isatty()


def _dim(s: str) -> str:
    return s if _NO_COLOR else f"\033[2m{s}\033[0m"


def _bold(s: str) -> str:
    return s if _NO_COLOR else f"\033[1m{s}\033[0m"


def _cyan(s: str) -> str:
    return s if _NO_COLOR else f"\033[36m{s}\033[0m"


def _yellow(s: str) -> str:
    return s if _NO_COLOR else f"\033[33m{s}\033[0m"


def _red(s: str) -> str:
    return s if _NO_COLOR else f"\033[31m{s}\033[0m"


# ── Help text ──

COMMANDS_HELP = {
    "navigate": {
        "usage": "chromews navigate <url> [--tab N]",
        "desc": "Navigate a tab to a URL and wait for it to load. Adds https:// if missing.",
        "example": "  $ chromews navigate example.com\n  Navigated to https://example.com/",
    },
    "click": {
        "usage": "chromews click --selector <css|xpath>",
        "desc": "Click the first element matching the selector.",
        "example": "  $ chromews click -s \"button.submit\"\n  Clicked: (button) Submit",
        "hint": "Selectors starting with / are XPath: -s \"//a[text()='Next']\"",
    },
    "type": {
        "usage": "chromews type <text> --selector <css|xpath> [--submit]",
        "desc": (
            "Clear an input and type text into it.\n"
            "--submit presses Enter afterwards (same as a trailing newline)."
        ),
        "example": "  $ chromews type hello -s \"#q\" --submit\n  Typed 5 chars into #q and pressed Enter",
    },
    "extract": {
        "usage": "chromews extract [markdown|text|html] [--selector S]",
        "desc": "Get page or element content. Default format: markdown.",
        "example": (
            "  $ chromews extract text\n"
            "  Example Domain This domain is for use in illustrative examples ...\n\n"
            "  $ chromews extract html -s main   # Just the main element"
        ),
    },
    "screenshot": {
        "usage": "chromews screenshot <path> [--selector S]",
        "desc": (
            "Save a full-page screenshot, or just one element with --selector.\n"
            "Format follows the extension: .png (default), .jpg, .webp."
        ),
        "example": "  $ chromews screenshot /tmp/page.png\n  /tmp/page.png",
    },
    "eval": {
        "usage": "chromews eval <javascript>",
        "desc": "Run JavaScript in the page and print the result. Promises are awaited.",
        "example": "  $ chromews eval \"document.title\"\n  Example Domain",
    },
    "select": {
        "usage": "chromews select <value> [value...] --selector S",
        "desc": "Choose option(s) in a <select> by value or visible text.",
        "example": "  $ chromews select US -s \"select#country\"\n  Selected US in select#country",
    },
    "attr": {
        "usage": "chromews attr <name> --selector S",
        "desc": "Print an element's attribute value (null if absent).",
        "example": "  $ chromews attr href -s \"a\"\n  https://www.iana.org/domains/example",
    },
    "await_element": {
        "usage": "chromews await_element --selector S [--timeout MS]",
        "desc": "Wait until an element matching the selector exists (default 5000ms, max 60000).",
        "example": "  $ chromews await_element -s \".results\" --timeout 10000",
    },
    "await_text": {
        "usage": "chromews await_text <text> [--timeout MS]",
        "desc": "Wait until the text appears on the page.",
        "example": "  $ chromews await_text \"Success!\"",
    },
    "list_tabs": {
        "usage": "chromews list_tabs",
        "desc": "List open tabs as JSON: index, id, title, url, type.",
        "hint": "Indices shift when tabs close: after closing tab 1, tab 2 becomes tab 1.",
    },
    "new_tab": {
        "usage": "chromews new_tab [url]",
        "desc": "Open a new tab, optionally with a URL.",
    },
    "close_tab": {
        "usage": "chromews close_tab [--tab N]",
        "desc": "Close a tab (default: tab 0).",
        "example": "  $ chromews close_tab --tab 2",
    },
}

OPTIONS_HELP = """\
  -t, --tab N|ID        Tab index or target id (default: 0)
  -s, --selector S      CSS selector, or XPath if it starts with /
      --timeout MS      Wait timeout for await_* actions (default: 5000)
      --submit          type: press Enter after typing
      --cdp-url URL     CDP endpoint (default: $CDP_URL or http://127.0.0.1:9222)
      --json            Print errors as JSON
  -v, --verbose         Debug logging to stderr"""


def print_main_help() -> None:
    from chromews import __version__

    print(f"{_bold('chromews')} {__version__} — drive Chrome over the DevTools Protocol\n")
    print(f"{_bold('Usage:')} chromews <action> [payload...] [options]\n")
    print(_bold("Actions:"))
    for name, info in COMMANDS_HELP.items():
        print(f"  {_cyan(name.ljust(14))}{info['desc'].splitlines()[0]}")
    print(f"\n{_bold('Options:')}")
    print(OPTIONS_HELP)
    print()
    print(_dim("Run 'chromews <action> --help' for details on one action."))


def print_command_help(cmd: str) -> None:
    info = COMMANDS_HELP.get(cmd)
    if not info:
        print(_red(f"Unknown action: {cmd}"))
        print("Run 'chromews --help' to see all actions.")
        return
    print(f"{_bold('Usage:')} {info['usage']}\n")
    print(info["desc"])
    if info.get("example"):
        print(f"\n{_bold('Example:')}\n{info['example']}")
    if info.get("hint"):
        print(f"\n{_yellow('💡')} {info['hint']}")


# ── Argument parsing ──


def _take_value(args: list[str], i: int, flag: str) -> str:
    if i + 1 >= len(args):
        raise InvalidParameters(f"{flag} needs a value")
    return args[i + 1]


def parse_args(cmd: str, args: list[str]) -> tuple[ActionRequest, dict]:
    """Turn an action name and its arguments into an ActionRequest.

    Returns the request plus CLI-only options (cdp_url, verbose, json).
    """
    opts: dict = {"cdp_url": None, "verbose": False, "json": False}
    tab: int | str = 0
    selector = None
    timeout = DEFAULT_TIMEOUT
    submit = False
    words: list[str] = []

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-t", "--tab"):
            value = _take_value(args, i, arg)
            tab = int(value) if value.isdigit() else value
            i += 2
        elif arg in ("-s", "--selector"):
            selector = _take_value(args, i, arg)
            i += 2
        elif arg == "--timeout":
            value = _take_value(args, i, arg)
            try:
                timeout = int(value)
            except ValueError:
                raise InvalidParameters(f"--timeout must be an integer, got {value!r}")
            i += 2
        elif arg == "--cdp-url":
            opts["cdp_url"] = _take_value(args, i, arg)
            i += 2
        elif arg == "--submit":
            submit = True
            i += 1
        elif arg == "--json":
            opts["json"] = True
            i += 1
        elif arg in ("-v", "--verbose"):
            opts["verbose"] = True
            i += 1
        else:
            words.append(arg)
            i += 1

    payload: str | list[str] | None
    if cmd == Action.SELECT.value and len(words) > 1:
        payload = words
    else:
        payload = " ".join(words) if words else None
    if submit:
        payload = (payload or "") + "\n"

    request = ActionRequest(cmd, tab=tab, selector=selector, payload=payload, timeout=timeout)
    return request, opts


async def run_action(request: ActionRequest, cdp_url: str | None = None) -> str:
    """Perform one action against a fresh Browser handle."""
    async with Browser(cdp_url) as browser:
        return await browser.perform(request)


def main() -> None:
    """CLI entry point."""
    args = sys.argv[1:]

    if not args or args[0] in ("--help", "-h", "help"):
        print_main_help()
        return

    if args[0] in ("--version", "-V", "version"):
        from chromews import __version__
        print(f"chromews {__version__}")
        return

    cmd = args[0].lower().replace("-", "_")
    cmd_args = args[1:]

    if cmd_args and cmd_args[0] in ("--help", "-h"):
        print_command_help(cmd)
        return

    as_json = "--json" in cmd_args
    try:
        request, opts = parse_args(cmd, cmd_args)
        if opts["verbose"]:
            logging.basicConfig(
                level=logging.DEBUG,
                format="%(asctime)s %(name)s %(levelname)s %(message)s",
                stream=sys.stderr,
            )
        print(asyncio.run(run_action(request, opts["cdp_url"])))
    except BrowserNotRunning as e:
        if as_json:
            print(json.dumps(e.to_dict()))
        else:
            print(_red("✗ Browser not running\n"))
            print(str(e))
        sys.exit(1)
    except CDPError as e:
        if as_json:
            print(json.dumps(e.to_dict()))
        else:
            print(_red(f"✗ {e.kind}: {e.message}"))
            if isinstance(e, InvalidParameters) and cmd in COMMANDS_HELP:
                print(_dim(f"Usage: {COMMANDS_HELP[cmd]['usage']}"))
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
