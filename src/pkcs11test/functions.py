"""
The PKCS#11 function table consumed by the harness.

The harness never talks to a token directly. Every call goes through an
object satisfying TokenFunctions, injected by whoever runs the suite (a
binding around a real module, or a fake in unit tests).
"""

from __future__ import annotations

import dataclasses as _dataclasses
import importlib as _importlib
import logging as _logging
import typing as _typing

import pkcs11test.constants as constants

if _typing.TYPE_CHECKING:
    import pkcs11test.config.settings as settings_module

_logger = _logging.getLogger(__name__)


@_dataclasses.dataclass(frozen=True)
class SlotInfo:
    """The fields of CK_SLOT_INFO the harness looks at."""

    flags: int
    slot_description: str = ""
    manufacturer_id: str = ""
    hardware_version: tuple[int, int] = (0, 0)
    firmware_version: tuple[int, int] = (0, 0)

    @property
    def token_present(self) -> bool:
        return bool(self.flags & constants.CKF_TOKEN_PRESENT)


@_typing.runtime_checkable
class TokenFunctions(_typing.Protocol):
    """
    Entry points of a PKCS#11 module.

    Each method maps to one C_* function and returns the raw CK_RV. Calls
    that produce output return it alongside the CK_RV.
    """

    def initialize(self, options: _typing.Any = None) -> int:
        """C_Initialize. None means single-threaded use, no mutex callbacks."""
        ...

    def finalize(self) -> int:
        """C_Finalize."""
        ...

    def get_slot_info(self, slot_id: int) -> tuple[int, SlotInfo | None]:
        """C_GetSlotInfo."""
        ...

    def open_session(self, slot_id: int, flags: int) -> tuple[int, int]:
        """C_OpenSession, returning (rv, session handle)."""
        ...

    def close_session(self, handle: int) -> int:
        """C_CloseSession."""
        ...

    def login(self, handle: int, user_type: int, pin: bytes) -> int:
        """C_Login."""
        ...

    def logout(self, handle: int) -> int:
        """C_Logout."""
        ...


class FunctionTableError(Exception):
    """Raised when a function table cannot be loaded."""

    def __init__(self, target: str, message: str) -> None:
        self.target = target
        super().__init__(f"Cannot load PKCS#11 function table '{target}': {message}")


def load_functions(
    target: str,
    settings: settings_module.HarnessSettings | None = None,
) -> TokenFunctions:
    """
    Resolve a function table from a ``module:attribute`` string.

    The attribute may be a TokenFunctions instance, or a factory that is
    called with the settings and returns one.

    Args:
        target: Import target, e.g. ``mybinding.softhsm:functions``.
        settings: Passed to the factory, if the attribute is one.

    Returns:
        The function table.

    Raises:
        FunctionTableError: If the module or attribute is missing, or the
            result does not provide every entry point.
    """
    module_name, sep, attr_path = target.partition(":")
    if not sep or not module_name or not attr_path:
        raise FunctionTableError(target, "expected 'module:attribute'")

    try:
        obj: _typing.Any = _importlib.import_module(module_name)
    except ImportError as e:
        raise FunctionTableError(target, str(e)) from e

    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise FunctionTableError(target, f"no attribute '{part}'") from e

    # A class has the entry points as attributes too; treat it as a factory.
    if isinstance(obj, type) or not isinstance(obj, TokenFunctions):
        if not callable(obj):
            raise FunctionTableError(target, "not a function table or factory")
        _logger.debug("Calling function table factory %s", target)
        obj = obj(settings)

    if not isinstance(obj, TokenFunctions):
        raise FunctionTableError(target, f"{type(obj).__name__} is missing PKCS#11 entry points")

    return obj
