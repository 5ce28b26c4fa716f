"""Tests for the chromews command line."""

import json
import sys

import pytest

from chromews.cli import main, parse_args, run_action
from chromews.core import Action
from chromews.errors import InvalidParameters


def run_cli(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["chromews", *argv])
    main()


# --- parse_args ---


def test_payload_words_are_joined():
    request, opts = parse_args("await_text", ["Welcome", "back", "--timeout", "9000"])
    assert request.payload == "Welcome back"
    assert request.timeout == 9000
    assert opts == {"cdp_url": None, "verbose": False, "json": False}


def test_tab_index_and_target_id():
    request, _ = parse_args("extract", ["-t", "2"])
    assert request.tab == 2
    request, _ = parse_args("extract", ["--tab", "A1B2C3"])
    assert request.tab == "A1B2C3"


def test_submit_appends_newline():
    request, _ = parse_args("type", ["hello", "-s", "#q", "--submit"])
    assert request.selector == "#q"
    assert request.payload == "hello\n"


def test_select_keeps_multiple_values_separate():
    request, _ = parse_args("select", ["red", "blue", "-s", "#colors"])
    assert request.payload == ["red", "blue"]
    request, _ = parse_args("select", ["red"])
    assert request.payload == "red"


def test_no_words_means_no_payload():
    request, _ = parse_args("list_tabs", [])
    assert request.payload is None
    assert request.tab == 0


def test_cli_only_options():
    _, opts = parse_args("list_tabs", ["--cdp-url", "http://h:9333", "--json", "-v"])
    assert opts == {"cdp_url": "http://h:9333", "verbose": True, "json": True}


@pytest.mark.parametrize(
    "args, message",
    [
        (["--timeout", "soon"], "--timeout must be an integer"),
        (["--selector"], "--selector needs a value"),
    ],
)
def test_bad_flags(args, message):
    with pytest.raises(InvalidParameters, match=message):
        parse_args("await_element", args)


# --- main ---


def test_main_help_lists_every_action(monkeypatch, capsys):
    run_cli(monkeypatch, "--help")
    out = capsys.readouterr().out
    for action in Action:
        assert action.value in out


def test_version(monkeypatch, capsys):
    from chromews import __version__

    run_cli(monkeypatch, "--version")
    assert capsys.readouterr().out.strip() == f"chromews {__version__}"


def test_command_help(monkeypatch, capsys):
    run_cli(monkeypatch, "click", "--help")
    out = capsys.readouterr().out
    assert "chromews click --selector" in out


def test_invalid_parameters_exit_with_usage(monkeypatch, capsys):
    with pytest.raises(SystemExit) as exc_info:
        run_cli(monkeypatch, "click")
    assert exc_info.value.code == 1
    out = capsys.readouterr().out
    assert "InvalidParameters: click requires selector" in out
    assert "Usage: chromews click" in out


def test_dashes_in_action_names_are_accepted(monkeypatch, capsys):
    with pytest.raises(SystemExit):
        run_cli(monkeypatch, "await-element")
    assert "await_element requires selector" in capsys.readouterr().out


def test_browser_not_running(monkeypatch, capsys, closed_port):
    with pytest.raises(SystemExit) as exc_info:
        run_cli(monkeypatch, "list_tabs", "--cdp-url", f"http://127.0.0.1:{closed_port}")
    assert exc_info.value.code == 1
    out = capsys.readouterr().out
    assert "Browser not running" in out
    assert f"--remote-debugging-port={closed_port}" in out


def test_errors_as_json(monkeypatch, capsys, closed_port):
    with pytest.raises(SystemExit):
        run_cli(monkeypatch, "list_tabs", "--json", "--cdp-url", f"http://127.0.0.1:{closed_port}")
    error = json.loads(capsys.readouterr().out)
    assert error["error"] == "ConnectionError"
    assert "Cannot connect to browser" in error["message"]


# --- run_action ---


@pytest.mark.asyncio
async def test_run_action_uses_cdp_url_from_environment(chrome, monkeypatch):
    chrome.add_tab("Only", "https://only.test/")
    monkeypatch.setenv("CDP_URL", chrome.url)
    request, _ = parse_args("list_tabs", [])

    listing = json.loads(await run_action(request))

    assert listing[0]["title"] == "Only"
