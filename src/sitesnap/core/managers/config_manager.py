# src/sitesnap/core/managers/config_manager.py
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from sitesnap.core.utils.path_utils import PathUtils

logger = logging.getLogger(__name__)

# Points the snapshot at a settings file outside the package (one file per site).
SETTINGS_ENV_VAR = "SITESNAP_SETTINGS"

_TRUE_STRINGS = ("1", "true", "yes", "on")


class ConfigManager:
    """
    Singleton holding the snapshot configuration.

    The bundled settings.json is used unless SITESNAP_SETTINGS names another
    file. Values can be changed in memory (run overrides); reset() rereads
    the file and drops them.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._config = {}
            cls._instance.reset()
        return cls._instance

    @property
    def settings_path(self) -> Path:
        override = os.environ.get(SETTINGS_ENV_VAR, "").strip()
        if override:
            return Path(override).expanduser()
        return PathUtils.get_app_package_root() / "settings.json"

    def get_all(self) -> Dict[str, Any]:
        return self._config

    def get_nested(self, key_path: str, default: Optional[Any] = None) -> Any:
        """'snapshot.extractor.header' style lookup; default when any level is missing or null."""
        value = self._config
        for key in key_path.split('.'):
            if not isinstance(value, dict):
                return default
            value = value.get(key)
        return default if value is None else value

    def set_nested(self, key_path: str, value: Any) -> bool:
        """
        Sets one value in memory. Strings are cast to the type of the value
        they replace, so 'session.concurrency=8' stays an int.
        Returns False when a parent on the path is not a section.
        """
        *parents, leaf = key_path.split('.')
        section = self._config
        for key in parents:
            section = section.setdefault(key, {})
            if not isinstance(section, dict):
                logger.error("Cannot set %s: '%s' is not a section.", key_path, key)
                return False

        section[leaf] = self._cast_like(section.get(leaf), value, key_path)
        logger.info("Configuration updated: %s = %s", key_path, section[leaf])
        return True

    @staticmethod
    def _cast_like(current: Any, value: Any, key_path: str) -> Any:
        if current is None or isinstance(current, (dict, list)) or not isinstance(value, str):
            return value
        if isinstance(current, bool):
            return value.strip().lower() in _TRUE_STRINGS
        try:
            return type(current)(value)
        except (ValueError, TypeError):
            logger.warning("Could not cast '%s' for %s to %s; keeping the string.",
                           value, key_path, type(current).__name__)
            return value

    def apply_overrides(self, overrides: Iterable[str]) -> int:
        """Applies 'dotted.key=value' pairs; returns how many were applied."""
        applied = 0
        for item in overrides:
            key, sep, value = item.partition("=")
            if not sep or not key.strip():
                logger.warning("Ignoring override %r (expected key=value).", item)
                continue
            if self.set_nested(key.strip(), value.strip()):
                applied += 1
        return applied

    def reset(self):
        """Rereads the settings file. A missing or broken file leaves an empty config."""
        config_path = self.settings_path
        if not config_path.is_file():
            logger.warning("Settings file not found at %s. Using empty config.", config_path)
            self._config = {}
            return
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                self._config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load %s: %s", config_path, e, exc_info=True)
            self._config = {}
            return
        logger.debug("Configuration loaded from %s.", config_path)


# The global singleton instance that the entire application will use.
config_manager = ConfigManager()
