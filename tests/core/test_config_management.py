# tests/core/test_config_management.py
import copy
import json

import pytest

from crawler.model import SnapshotSettings
from sitesnap.core.managers.config_manager import SETTINGS_ENV_VAR, ConfigManager
from sitesnap.core.utils.path_utils import PathUtils

# A small, predictable configuration for the tests
MOCK_SETTINGS_CONTENT = {
    "debug": {
        "level": "WARNING"
    },
    "session": {
        "concurrency": 6,
        "time_out": 12,
        "show_progress": True
    },
    "snapshot": {
        "origin": "https://example.com/",
        "sitemaps": ["https://example.com/page-sitemap.xml"],
        "static_prefix": "static/"
    }
}


@pytest.fixture
def config_env(tmp_path, monkeypatch):
    """
    Sets up an isolated environment for the ConfigManager:
    - a temporary package root holding a fake settings.json,
    - PathUtils monkeypatched to point there.
    The singleton's original configuration is restored afterwards.
    """
    package_root = tmp_path / "sitesnap"
    package_root.mkdir()
    (package_root / "settings.json").write_text(json.dumps(MOCK_SETTINGS_CONTENT))

    monkeypatch.setattr(PathUtils, 'get_app_package_root', lambda: package_root)
    monkeypatch.delenv(SETTINGS_ENV_VAR, raising=False)

    manager = ConfigManager()
    original = copy.deepcopy(manager.get_all())
    manager.reset()  # Force a reload from the fake file
    yield manager
    manager._config = original


def test_config_manager_is_singleton(config_env):
    assert ConfigManager() is config_env


def test_config_manager_load(config_env):
    """Test that the manager loads the configuration from disk."""
    config = config_env.get_all()
    assert config["debug"]["level"] == "WARNING"
    assert config["session"]["concurrency"] == 6


def test_config_manager_get_nested(config_env):
    assert config_env.get_nested("session.time_out") == 12
    assert config_env.get_nested("non.existent.key", "default") == "default"
    assert config_env.get_nested("debug.level.deeper", "default") == "default"


def test_config_manager_set_nested(config_env):
    """Test changing values in memory, including type casting."""
    config_env.set_nested("debug.level", "INFO")
    assert config_env.get_nested("debug.level") == "INFO"

    config_env.set_nested("new_feature.enabled", "True")
    assert config_env.get_nested("new_feature.enabled")

    # The original value is an int, so the string '20' must become an int.
    config_env.set_nested("session.concurrency", "20")
    assert config_env.get_nested("session.concurrency") == 20

    config_env.set_nested("session.show_progress", "false")
    assert config_env.get_nested("session.show_progress") is False


def test_config_manager_set_nested_refuses_non_dict_parent(config_env):
    assert config_env.set_nested("debug.level.sub", "x") is False
    assert config_env.get_nested("debug.level") == "WARNING"


def test_config_manager_reset(config_env):
    """Test that reset reloads the configuration from disk."""
    config_env.set_nested("debug.level", "DEBUG")
    config_env.reset()
    assert config_env.get_nested("debug.level") == "WARNING"


def test_config_manager_missing_file_gives_empty_config(config_env, tmp_path, monkeypatch):
    empty_root = tmp_path / "elsewhere"
    empty_root.mkdir()
    monkeypatch.setattr(PathUtils, 'get_app_package_root', lambda: empty_root)
    config_env.reset()
    assert config_env.get_all() == {}


def test_snapshot_settings_from_config(config_env):
    settings = SnapshotSettings.from_config(
        config_env.get_nested("snapshot"),
        config_env.get_nested("session"),
    )
    assert settings.origin == "https://example.com"
    assert settings.static_prefix == "/static"
    assert settings.concurrency == 6
    assert settings.timeout == 12
    assert settings.max_redirects == 10
    assert settings.reference_url == "https://example.com/"


def test_snapshot_settings_rejects_relative_origin():
    with pytest.raises(ValueError):
        SnapshotSettings(origin="example.com")


def test_settings_file_can_come_from_environment(config_env, tmp_path, monkeypatch):
    site_settings = tmp_path / "other-site.json"
    site_settings.write_text(json.dumps({"snapshot": {"origin": "https://other.example"}}))
    monkeypatch.setenv(SETTINGS_ENV_VAR, str(site_settings))

    config_env.reset()
    assert config_env.settings_path == site_settings
    assert config_env.get_nested("snapshot.origin") == "https://other.example"
    assert config_env.get_nested("debug.level") is None


def test_broken_settings_file_gives_empty_config(config_env, tmp_path, monkeypatch):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    monkeypatch.setenv(SETTINGS_ENV_VAR, str(broken))
    config_env.reset()
    assert config_env.get_all() == {}
