"""
Shared pytest fixtures for pkcs11test tests.

This file is automatically loaded by pytest. Fixtures defined here are
available to all test files without explicit imports.

The central piece is FakeToken: a recording stand-in for a PKCS#11
function table. Tests script its return values and then inspect the call
trace to check ordering and counts.
"""

import pathlib as _pathlib
import typing as _typing

import pytest as _pytest

import pkcs11test.config as config
import pkcs11test.constants as constants
import pkcs11test.functions as functions
import pkcs11test.status as status

pytest_plugins = ["pytester"]

# Environment keys that should be cleared for isolated tests
ENV_KEYS_TO_CLEAR = [
    "PKCS11TEST_SLOT_ID",
    "PKCS11TEST_USER_PIN",
    "PKCS11TEST_SO_PIN",
    "PKCS11TEST_TOKEN_FLAGS",
    "PKCS11TEST_FUNCTIONS",
    "PKCS11TEST_LIBRARY",
    "PKCS11TEST_CONFIG_FILE",
    "PKCS11TEST_ENV_FILE",
]

TEST_SLOT_ID = 3
TEST_USER_PIN = "1234"
TEST_SO_PIN = "5678"

# Handle a real module may leave behind after a failed C_OpenSession
GARBAGE_HANDLE = 0xDEAD


class FakeToken:
    """
    Recording PKCS#11 function table.

    Attributes:
        calls: (entry point, args) tuples in call order.
        results: Return value per entry point; CKR_OK when absent.
        slot_flags: Flags reported by get_slot_info.
        raise_on: Exception to raise per entry point, after recording.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[_typing.Any, ...]]] = []
        self.results: dict[str, int] = {}
        self.slot_flags = constants.CKF_TOKEN_PRESENT | constants.CKF_HW_SLOT
        self.raise_on: dict[str, Exception] = {}
        self._next_handle = 1

    def _call(self, name: str, *args: _typing.Any) -> int:
        self.calls.append((name, args))
        if name in self.raise_on:
            raise self.raise_on[name]
        return self.results.get(name, constants.CKR_OK)

    @property
    def names(self) -> list[str]:
        """Entry point names in call order."""
        return [name for name, _args in self.calls]

    def count(self, name: str) -> int:
        return self.names.count(name)

    def args_of(self, name: str) -> list[tuple[_typing.Any, ...]]:
        return [args for call_name, args in self.calls if call_name == name]

    def initialize(self, options: _typing.Any = None) -> int:
        return self._call("initialize", options)

    def finalize(self) -> int:
        return self._call("finalize")

    def get_slot_info(self, slot_id: int) -> tuple[int, functions.SlotInfo | None]:
        rv = self._call("get_slot_info", slot_id)
        if rv != constants.CKR_OK:
            return rv, None
        return rv, functions.SlotInfo(flags=self.slot_flags, slot_description="fake slot")

    def open_session(self, slot_id: int, flags: int) -> tuple[int, int]:
        rv = self._call("open_session", slot_id, flags)
        if rv != constants.CKR_OK:
            return rv, GARBAGE_HANDLE
        handle = self._next_handle
        self._next_handle += 1
        return rv, handle

    def close_session(self, handle: int) -> int:
        return self._call("close_session", handle)

    def login(self, handle: int, user_type: int, pin: bytes) -> int:
        return self._call("login", handle, user_type, pin)

    def logout(self, handle: int) -> int:
        return self._call("logout", handle)


@_pytest.fixture(autouse=True)
def isolated_config(
    tmp_path: _pathlib.Path,
    monkeypatch: _pytest.MonkeyPatch,
) -> _typing.Iterator[_pathlib.Path]:
    """
    Keep every test away from the developer's real configuration.

    Clears PKCS11TEST_* variables, points the user config dir at an empty
    temp directory, runs the test from tmp_path, and drops cached settings.
    """
    for key in ENV_KEYS_TO_CLEAR:
        monkeypatch.delenv(key, raising=False)
    user_dir = tmp_path / "user-config"
    user_dir.mkdir()
    monkeypatch.setenv("PKCS11TEST_CONFIG_DIR", str(user_dir))
    monkeypatch.chdir(tmp_path)
    config.reset_settings()
    yield tmp_path
    config.reset_settings()


@_pytest.fixture
def fake_token() -> FakeToken:
    """A fresh recording function table with every call succeeding."""
    return FakeToken()


@_pytest.fixture
def harness_settings() -> config.HarnessSettings:
    """Settings for a token without CKF_LOGIN_REQUIRED."""
    return config.HarnessSettings.construct_without_dotenv(
        slot_id=TEST_SLOT_ID,
        user_pin=TEST_USER_PIN,
        so_pin=TEST_SO_PIN,
    )


@_pytest.fixture
def login_required_settings() -> config.HarnessSettings:
    """Settings for a token that reports CKF_LOGIN_REQUIRED."""
    return config.HarnessSettings.construct_without_dotenv(
        slot_id=TEST_SLOT_ID,
        user_pin=TEST_USER_PIN,
        so_pin=TEST_SO_PIN,
        token_flags=constants.CKF_LOGIN_REQUIRED | constants.CKF_TOKEN_INITIALIZED,
    )


@_pytest.fixture
def recorder() -> status.Expectations:
    """An assertion recorder whose failures the test inspects itself."""
    return status.Expectations()


# =============================================================================
# Overrides of the pkcs11test plugin's collaborator fixtures
# =============================================================================


@_pytest.fixture
def pkcs11_settings(harness_settings: config.HarnessSettings) -> config.HarnessSettings:
    return harness_settings


@_pytest.fixture
def token_functions(fake_token: FakeToken) -> FakeToken:
    return fake_token
