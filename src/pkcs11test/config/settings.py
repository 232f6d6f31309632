"""
Settings configuration using pydantic-settings.

Loads configuration from:
1. Constructor arguments (highest precedence)
2. Environment variables with PKCS11TEST_ prefix
3. .env file (PKCS11TEST_ENV_FILE, if set)
4. YAML config files (see sources.py)

The settings describe the token under test: which slot to use, the PINs for
each role, and the token's capability flags. They are loaded once before any
test runs and are immutable afterwards.
"""

import os as _os
import pathlib as _pathlib
import typing as _typing

import pydantic as _pydantic
import pydantic_settings as _pydantic_settings

import pkcs11test.config.sources as sources
import pkcs11test.constants as constants
import pkcs11test.describe as describe


def _get_env_file() -> str | None:
    """Return PKCS11TEST_ENV_FILE if it names an existing file."""
    if env_file := _os.environ.get("PKCS11TEST_ENV_FILE"):
        if _pathlib.Path(env_file).exists():
            return env_file
    return None


def parse_token_flags(value: _typing.Any) -> int:
    """
    Parse a token flag set from configuration.

    Accepts an int, a decimal or ``0x`` hex string, a ``|`` or ``,``
    separated string of flag names, or a list of names and ints. Names may
    omit the ``CKF_`` prefix.

    Raises:
        ValueError: On an unknown flag name or a negative value.
    """
    if isinstance(value, bool):
        raise ValueError("token_flags must be an integer or flag names, not a bool")

    if isinstance(value, int):
        items: list[_typing.Any] = [value]
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        items = [part for part in text.replace(",", "|").split("|") if part.strip()]
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ValueError(f"unsupported token_flags value: {value!r}")

    flags = 0
    for item in items:
        if isinstance(item, int) and not isinstance(item, bool):
            bit = item
        else:
            text = str(item).strip()
            try:
                bit = int(text, 0)
            except ValueError:
                try:
                    bit = describe.token_flag_value(text)
                except KeyError:
                    raise ValueError(f"unknown token flag: {text!r}") from None
        if bit < 0:
            raise ValueError(f"token flags cannot be negative: {bit}")
        flags |= bit
    return flags


class HarnessSettings(_pydantic_settings.BaseSettings):
    """
    Process-wide configuration for the token under test.

    All settings can be overridden via environment variables with the
    PKCS11TEST_ prefix, e.g. PKCS11TEST_SLOT_ID=1.

    Config precedence (highest to lowest):
    1. Constructor arguments
    2. Environment variables (PKCS11TEST_*)
    3. .env file
    4. Suite config (pkcs11test.yaml)
    5. User config (~/.config/pkcs11test/config.yaml)
    6. Field defaults
    """

    model_config = _pydantic_settings.SettingsConfigDict(
        env_prefix="PKCS11TEST_",
        env_file=_get_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[_pydantic_settings.BaseSettings],
        init_settings: _pydantic_settings.PydanticBaseSettingsSource,
        env_settings: _pydantic_settings.PydanticBaseSettingsSource,
        dotenv_settings: _pydantic_settings.PydanticBaseSettingsSource,
        file_secret_settings: _pydantic_settings.PydanticBaseSettingsSource,
    ) -> tuple[_pydantic_settings.PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            sources.YamlFileSettingsSource(settings_cls),
            file_secret_settings,
        )

    @classmethod
    def construct_without_dotenv(cls, **kwargs: _typing.Any) -> "HarnessSettings":
        """Create settings without loading any .env file (test isolation)."""
        return cls(_env_file=None, **kwargs)  # type: ignore[call-arg]

    slot_id: int = _pydantic.Field(default=0, ge=0, description="Slot holding the token under test")

    user_pin: str = _pydantic.Field(default="77777777", description="PIN for CKU_USER")

    so_pin: str = _pydantic.Field(default="99999999", description="PIN for CKU_SO")

    token_flags: int = _pydantic.Field(
        default=0,
        description="CK_TOKEN_INFO flags of the token under test",
    )

    functions: str | None = _pydantic.Field(
        default=None,
        description="'module:attribute' of the PKCS#11 function table or its factory",
    )

    library: str | None = _pydantic.Field(
        default=None,
        description="Path of the PKCS#11 module, for function table factories",
    )

    @_pydantic.field_validator("token_flags", mode="before")
    @classmethod
    def _parse_token_flags(cls, value: _typing.Any) -> int:
        return parse_token_flags(value)

    @property
    def login_required(self) -> bool:
        """Whether the token reports CKF_LOGIN_REQUIRED."""
        return bool(self.token_flags & constants.CKF_LOGIN_REQUIRED)

    def credential_for(self, user_type: int) -> bytes:
        """
        Return the configured PIN for a user type, as bytes.

        Raises:
            ValueError: For user types with no configured PIN.
        """
        if user_type == constants.CKU_USER:
            return self.user_pin.encode("utf-8")
        if user_type == constants.CKU_SO:
            return self.so_pin.encode("utf-8")
        raise ValueError(f"No PIN configured for {describe.user_type_name(user_type)}")

    def describe(self) -> str:
        """One-line summary for test session headers."""
        return (
            f"slot {self.slot_id}, "
            f"token flags {describe.token_flags_description(self.token_flags)}"
        )


_settings: HarnessSettings | None = None


def get_settings() -> HarnessSettings:
    """
    Load the settings on first use and return the same frozen object after.

    The enclosing harness owns this lifecycle: settings are read once, before
    any fixture runs, and never change for the rest of the process.
    """
    global _settings
    if _settings is None:
        _settings = HarnessSettings()
    return _settings


def reset_settings() -> None:
    """Forget the cached settings so the next get_settings() reloads."""
    global _settings
    _settings = None
