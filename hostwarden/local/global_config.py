import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
import hostwarden.settings as default_settings

log = logging.getLogger(__name__)


class GlobalSync:
    """
    A singleton class that houses all application configuration.

    It follows a clear precedence:
    1. Base values from `settings.py`.
    2. Overrides from the environment / `.env` (handled by `python-dotenv` in settings.py).
    3. Overrides from `overrides.json` for settings in `MODIFIABLE_SETTINGS`.
    """

    def __init__(self, overrides_path: Optional[Path] = None) -> None:
        """
        Initializes the settings object by loading defaults and overrides.

        :param overrides_path: Optional path replacing the default `OVERRIDES_JSON_PATH`.
        """
        self._config: Dict[str, Any] = {}
        self._load_defaults()
        if overrides_path is not None:
            self._config["OVERRIDES_JSON_PATH"] = Path(overrides_path)
        self._load_overrides_from_file()

        # Initialize global variables not part of the main config dict
        self.start_time = None

    def get(self, item: str, default: Any = None) -> Any:
        """Provides dictionary-like access to settings with a default value."""
        return self._config.get(item, default)

    def __getattr__(self, name: str) -> Any:
        """Allows attribute access to settings, raising an AttributeError if not found."""
        if name.startswith("_"):
            raise AttributeError(name)
        if name in self._config:
            return self._config[name]
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")

    def _load_defaults(self) -> None:
        """Loads all uppercase attributes from settings.py as the baseline."""
        for key in dir(default_settings):
            if key.isupper():
                self._config[key] = getattr(default_settings, key)

    def _load_overrides_from_file(self) -> None:
        """
        Loads and applies settings from the `overrides.json` file.

        Only keys listed in `MODIFIABLE_SETTINGS` are applied.
        """
        overrides_path = Path(self._config["OVERRIDES_JSON_PATH"])
        if not overrides_path.exists():
            return

        try:
            with overrides_path.open('r') as f:
                overrides = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            log.error(f"Failed to load or parse overrides file '{overrides_path}': {e}")
            return

        if not isinstance(overrides, dict):
            log.error(f"Overrides file '{overrides_path}' must contain a JSON object. Ignoring.")
            return

        log.info(f"Loading runtime config overrides from {overrides_path}")
        modifiable = self._config.get("MODIFIABLE_SETTINGS", set())
        for key, value in overrides.items():
            if key not in modifiable:
                log.warning(f"Attempted to override non-modifiable setting '{key}'. Ignoring.")
                continue
            self._config[key] = value
            log.debug(f"Overridden setting: {key} = {value}")
        self._coerce_path_objects()

    def _coerce_path_objects(self) -> None:
        """Converts settings that should be Path objects from string to Path."""
        for key, value in self._config.items():
            default_value = getattr(default_settings, key, None)
            if isinstance(default_value, Path) and isinstance(value, str):
                self._config[key] = Path(value)

    def get_all_settings(self) -> Dict[str, Any]:
        """Returns the entire configuration dictionary."""
        return self._config

# A singleton instance to be imported by other modules
app_globals = GlobalSync()
