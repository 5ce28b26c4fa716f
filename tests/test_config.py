"""Tests for settings resolution."""

from chromews import config
from chromews.core import Browser


def test_defaults_without_file_or_env():
    settings = config.get_settings()
    assert settings == config.Settings()
    assert settings.cdp_url == "http://127.0.0.1:9222"
    assert settings.command_timeout == 30000


def test_config_file_overrides_defaults():
    config.save_config({"cdp_url": "http://10.0.0.5:9222/", "navigation_timeout": 45000})
    settings = config.get_settings()
    assert settings.cdp_url == "http://10.0.0.5:9222"
    assert settings.navigation_timeout == 45000


def test_env_overrides_file(monkeypatch):
    config.save_config({"cdp_url": "http://file:9222"})
    monkeypatch.setenv("CDP_URL", "http://env:9222")
    monkeypatch.setenv("CHROMEWS_COMMAND_TIMEOUT", "1500")
    settings = config.get_settings()
    assert settings.cdp_url == "http://env:9222"
    assert settings.command_timeout == 1500


def test_explicit_arguments_win(monkeypatch):
    monkeypatch.setenv("CDP_URL", "http://env:9222")
    settings = config.get_settings(cdp_url="http://arg:9222", poll_interval=None)
    assert settings.cdp_url == "http://arg:9222"
    assert settings.poll_interval == 100


def test_bad_values_fall_back_to_defaults(monkeypatch):
    config.save_config({"command_timeout": "soon", "poll_interval": 0, "unknown": 1})
    monkeypatch.setenv("CHROMEWS_NAVIGATION_TIMEOUT", "-5")
    settings = config.get_settings()
    assert settings.command_timeout == 30000
    assert settings.poll_interval == 100
    assert settings.navigation_timeout == 30000


def test_unreadable_config_is_ignored(caplog):
    path = config.config_file()
    path.parent.mkdir(parents=True)
    path.write_text("{not json")
    assert config.load_config() == {}
    assert "Ignoring unreadable config" in caplog.text


def test_config_dir_follows_chromews_home(tmp_path, monkeypatch):
    monkeypatch.setenv("CHROMEWS_HOME", str(tmp_path / "elsewhere"))
    assert config.config_file() == tmp_path / "elsewhere" / "config.json"


def test_browser_converts_timeouts_for_the_registry():
    browser = Browser("http://127.0.0.1:9333", command_timeout=2500)
    assert browser.cdp_url == "http://127.0.0.1:9333"
    assert browser.registry.command_timeout == 2.5
