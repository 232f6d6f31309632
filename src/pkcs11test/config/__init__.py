"""
Configuration module for pkcs11test.

Uses pydantic-settings for environment variable and YAML file loading.
"""

from pkcs11test.config.settings import (
    HarnessSettings,
    get_settings,
    parse_token_flags,
    reset_settings,
)
from pkcs11test.config.sources import ConfigFileError

__all__ = [
    "ConfigFileError",
    "HarnessSettings",
    "get_settings",
    "parse_token_flags",
    "reset_settings",
]
