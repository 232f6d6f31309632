"""Custom pydantic-settings source for pkcs11test configuration files.

Configuration layers read from YAML (in precedence order, highest first):
1. Suite config: PKCS11TEST_CONFIG_FILE, or pkcs11test.yaml in the
   current working directory
2. User config: ~/.config/pkcs11test/config.yaml (or PKCS11TEST_CONFIG_DIR)

Both files are optional. Settings are flat, so layers merge key by key.

Environment variables:
- PKCS11TEST_CONFIG_FILE: Explicit suite config file
- PKCS11TEST_CONFIG_DIR: Override user config directory
"""

import logging as _logging
import os as _os
import pathlib as _pathlib
import typing as _typing

import pydantic.fields as _pydantic_fields
import pydantic_settings as _pydantic_settings
import yaml as _yaml

ENV_CONFIG_FILE = "PKCS11TEST_CONFIG_FILE"
ENV_CONFIG_DIR = "PKCS11TEST_CONFIG_DIR"

DEFAULT_CONFIG_FILENAME = "pkcs11test.yaml"

_logger = _logging.getLogger(__name__)


class ConfigFileError(Exception):
    """Error loading or parsing a configuration file."""

    def __init__(self, path: _pathlib.Path, message: str) -> None:
        self.path = path
        super().__init__(f"Error in config file {path}: {message}")


def get_user_config_path() -> _pathlib.Path:
    """
    Get the path to the user config file.

    Respects PKCS11TEST_CONFIG_DIR if set, otherwise uses the XDG path.
    """
    config_dir_env = _os.environ.get(ENV_CONFIG_DIR)
    if config_dir_env:
        return _pathlib.Path(config_dir_env) / "config.yaml"
    return _pathlib.Path.home() / ".config" / "pkcs11test" / "config.yaml"


def get_suite_config_path() -> _pathlib.Path:
    """Get the path to the suite config file."""
    if config_file := _os.environ.get(ENV_CONFIG_FILE):
        return _pathlib.Path(config_file)
    return _pathlib.Path.cwd() / DEFAULT_CONFIG_FILENAME


def load_yaml_file(path: _pathlib.Path) -> dict[str, _typing.Any] | None:
    """
    Load a YAML config file.

    Returns:
        Parsed contents, or None if the file is empty.

    Raises:
        ConfigFileError: If the file cannot be read, is malformed YAML,
            or is not a mapping at the top level.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(path, f"cannot read file: {e}") from e

    try:
        parsed = _yaml.safe_load(content)
    except _yaml.YAMLError as e:
        raise ConfigFileError(path, f"invalid YAML: {e}") from e

    if parsed is None:
        return None

    if not isinstance(parsed, dict):
        raise ConfigFileError(
            path,
            f"config must be a YAML mapping (dict), got {type(parsed).__name__}",
        )

    return parsed


class YamlFileSettingsSource(_pydantic_settings.PydanticBaseSettingsSource):
    """
    Settings source that reads the user and suite YAML config files.

    An explicitly named suite file (PKCS11TEST_CONFIG_FILE or the
    suite_config_path argument) must exist. The default locations are
    skipped when absent.
    """

    def __init__(
        self,
        settings_cls: type[_pydantic_settings.BaseSettings],
        *,
        suite_config_path: _pathlib.Path | None = None,
        user_config_path: _pathlib.Path | None = None,
    ) -> None:
        super().__init__(settings_cls)
        self._suite_config_path = suite_config_path
        self._user_config_path = user_config_path
        self._data = self._load_layers()

    def _load_layers(self) -> dict[str, _typing.Any]:
        merged: dict[str, _typing.Any] = {}

        user_path = self._user_config_path or get_user_config_path()
        if user_path.exists():
            content = load_yaml_file(user_path)
            if content:
                merged.update(content)
                _logger.debug("Loaded user config from %s", user_path)

        explicit = self._suite_config_path is not None or bool(_os.environ.get(ENV_CONFIG_FILE))
        suite_path = self._suite_config_path or get_suite_config_path()
        if suite_path.exists():
            content = load_yaml_file(suite_path)
            if content:
                merged.update(content)
                _logger.debug("Loaded suite config from %s", suite_path)
        elif explicit:
            raise ConfigFileError(suite_path, "file not found")

        return merged

    def get_field_value(
        self,
        field: _pydantic_fields.FieldInfo,  # noqa: ARG002 - required by pydantic-settings interface
        field_name: str,
    ) -> tuple[_typing.Any, str, bool]:
        value = self._data.get(field_name)
        return value, field_name, isinstance(value, (dict, list))

    def __call__(self) -> dict[str, _typing.Any]:
        return dict(self._data)
