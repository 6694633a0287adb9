"""
Manages loading and creation of the optional INI configuration file.
"""

import configparser
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from livestream_dl.exceptions import ConfigurationError
from livestream_dl.models.config import CaptureConfig

log = logging.getLogger(__name__)

SECTION = "DEFAULT"


def default_config_path() -> Path:
    """`$XDG_CONFIG_HOME/livestream-dl/config.ini`, falling back to ~/.config."""
    base = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(base) / "livestream-dl" / "config.ini"


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> CaptureConfig:
        """
        Loads defaults from the INI file when it exists, applies CLI overrides,
        and validates the result.

        Args:
            cli_options: Options given on the command line. None values are ignored.

        Raises:
            ConfigurationError: If the file cannot be parsed or validation fails.
        """
        config_from_file: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e
            config_from_file = self._get_config_as_dict()
            log.debug(f"Loaded configuration defaults from {self.config_file_path}")

        if cli_options:
            config_from_file.update(
                {k: v for k, v in cli_options.items() if v is not None}
            )

        try:
            return CaptureConfig(**config_from_file)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the known keys of the DEFAULT section, converted to their field types."""
        section = self._parser[SECTION]
        values: dict[str, Any] = {}
        for key in CaptureConfig.get_ini_keys():
            if key not in section:
                continue
            annotation = CaptureConfig.model_fields[key].annotation
            try:
                if annotation is bool:
                    values[key] = section.getboolean(key)
                elif annotation is int:
                    values[key] = section.getint(key)
                elif annotation is float:
                    values[key] = section.getfloat(key)
                else:
                    values[key] = section.get(key) or None
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for '{key}' in config: {e}") from e

        unknown = set(section) - CaptureConfig.get_ini_keys()
        for key in sorted(unknown):
            log.warning(f"[yellow]Ignoring unknown config key '{key}'.[/yellow]")
        return values

    def save_new_config(self, settings: dict[str, Any] | None = None) -> None:
        """
        Writes a configuration file holding every INI key with its default
        value, or the value given in `settings`.
        """
        settings = settings or {}
        config = configparser.ConfigParser(interpolation=None)
        defaults = CaptureConfig()

        for key in sorted(CaptureConfig.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key, None))
            if isinstance(value, bool):
                config[SECTION][key] = "true" if value else "false"
            elif value is not None:
                config[SECTION][key] = str(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e
