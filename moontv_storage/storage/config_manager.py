"""
Loads the storage configuration from an optional INI file and the environment.

Precedence, lowest first: model defaults, the INI ``DEFAULT`` section,
environment variables, explicit options passed by the caller (CLI flags).
"""

import configparser
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from moontv_storage.exceptions import ConfigurationError
from moontv_storage.models.config import StorageConfig

log = logging.getLogger(__name__)

# Environment variable -> StorageConfig field. Later entries win, so the
# server-side STORAGE_TYPE overrides the public build-time variable.
ENV_OVERRIDES = {
    "NEXT_PUBLIC_STORAGE_TYPE": "storage_type",
    "STORAGE_TYPE": "storage_type",
    "REDIS_URL": "redis_url",
    "UPSTASH_URL": "upstash_url",
    "UPSTASH_TOKEN": "upstash_token",
    "SQLITE_PATH": "sqlite_path",
    "STORAGE_RETRY_ATTEMPTS": "retry_attempts",
    "STORAGE_RETRY_BASE_DELAY": "retry_base_delay",
}


class ConfigManager:
    """Handles all operations related to the storage INI config file."""

    def __init__(self, config_file_path: Path | None = None):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(
        self,
        cli_options: dict[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> StorageConfig:
        """
        Builds a validated StorageConfig.

        Args:
            cli_options: Options given on the command line; None values are ignored.
            environ: Environment to read overrides from. Defaults to os.environ.

        Raises:
            ConfigurationError: If the file cannot be parsed or validation fails.
        """
        settings: dict[str, Any] = {}

        if self.config_file_path is not None and self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(
                    f"Error parsing configuration file: {e}"
                ) from e

            if self._migrate_if_needed():
                log.info(
                    "[yellow]Configuration file was updated with new default values."
                    "[/yellow]"
                )
            settings.update(self._get_config_as_dict())
        elif self.config_file_path is not None:
            log.debug(
                f"No configuration file at '{self.config_file_path}'; "
                "using environment and defaults."
            )

        settings.update(env_overrides(os.environ if environ is None else environ))

        if cli_options:
            settings.update({k: v for k, v in cli_options.items() if v is not None})

        try:
            return StorageConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: Values to write; unspecified keys get the model defaults.
        """
        if self.config_file_path is None:
            raise ConfigurationError("No configuration file path was given.")

        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {}
        defaults = StorageConfig.model_construct()

        for key in sorted(StorageConfig.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key, None))
            if hasattr(value, "value"):
                value = value.value
            if value is not None:
                config["DEFAULT"][key] = str(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        values: dict[str, Any] = {}
        for key in (
            "storage_type",
            "redis_url",
            "upstash_url",
            "upstash_token",
            "sqlite_path",
        ):
            if key in section:
                values[key] = section.get(key)
        try:
            if "retry_attempts" in section:
                values["retry_attempts"] = section.getint("retry_attempts")
            for key in ("retry_base_delay", "retry_max_delay"):
                if key in section:
                    values[key] = section.getfloat(key)
        except ValueError as e:
            raise ConfigurationError(f"Invalid number in configuration file: {e}") from e
        return values

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = StorageConfig.model_construct()
        config_section = self._parser["DEFAULT"]
        needs_saving = False

        for key in sorted(StorageConfig.get_ini_keys()):
            if key in config_section:
                continue
            default_value = getattr(defaults, key)
            if hasattr(default_value, "value"):
                default_value = default_value.value
            config_section[key] = str(default_value)
            needs_saving = True
            log.debug(
                f"Migrating config: added missing key '{key}' with "
                f"value '{config_section[key]}'."
            )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collects the StorageConfig fields set through environment variables."""
    values: dict[str, Any] = {}
    for env_name, field in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is not None and value.strip():
            values[field] = value.strip()
    return values


def load_config_from_env(environ: Mapping[str, str] | None = None) -> StorageConfig:
    """Shortcut for a configuration built from defaults and the environment only."""
    return ConfigManager().load_config(environ=environ)
