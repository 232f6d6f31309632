"""
Human-readable names for PKCS#11 codes.

Used only for diagnostic text: failure messages and log lines. Nothing here
affects control flow.
"""

import typing as _typing

import pkcs11test.constants as constants


def _collect(prefix: str) -> dict[int, str]:
    """Map values to names for every constant starting with prefix."""
    names: dict[int, str] = {}
    for name, value in vars(constants).items():
        if name.startswith(prefix) and isinstance(value, int):
            names.setdefault(value, name)
    return names


_RV_NAMES = _collect("CKR_")
_USER_TYPE_NAMES = _collect("CKU_")

SLOT_FLAGS: tuple[tuple[int, str], ...] = (
    (constants.CKF_TOKEN_PRESENT, "CKF_TOKEN_PRESENT"),
    (constants.CKF_REMOVABLE_DEVICE, "CKF_REMOVABLE_DEVICE"),
    (constants.CKF_HW_SLOT, "CKF_HW_SLOT"),
)

TOKEN_FLAGS: tuple[tuple[int, str], ...] = (
    (constants.CKF_RNG, "CKF_RNG"),
    (constants.CKF_WRITE_PROTECTED, "CKF_WRITE_PROTECTED"),
    (constants.CKF_LOGIN_REQUIRED, "CKF_LOGIN_REQUIRED"),
    (constants.CKF_USER_PIN_INITIALIZED, "CKF_USER_PIN_INITIALIZED"),
    (constants.CKF_RESTORE_KEY_NOT_NEEDED, "CKF_RESTORE_KEY_NOT_NEEDED"),
    (constants.CKF_CLOCK_ON_TOKEN, "CKF_CLOCK_ON_TOKEN"),
    (constants.CKF_PROTECTED_AUTHENTICATION_PATH, "CKF_PROTECTED_AUTHENTICATION_PATH"),
    (constants.CKF_DUAL_CRYPTO_OPERATIONS, "CKF_DUAL_CRYPTO_OPERATIONS"),
    (constants.CKF_TOKEN_INITIALIZED, "CKF_TOKEN_INITIALIZED"),
    (constants.CKF_SECONDARY_AUTHENTICATION, "CKF_SECONDARY_AUTHENTICATION"),
    (constants.CKF_USER_PIN_COUNT_LOW, "CKF_USER_PIN_COUNT_LOW"),
    (constants.CKF_USER_PIN_FINAL_TRY, "CKF_USER_PIN_FINAL_TRY"),
    (constants.CKF_USER_PIN_LOCKED, "CKF_USER_PIN_LOCKED"),
    (constants.CKF_USER_PIN_TO_BE_CHANGED, "CKF_USER_PIN_TO_BE_CHANGED"),
    (constants.CKF_SO_PIN_COUNT_LOW, "CKF_SO_PIN_COUNT_LOW"),
    (constants.CKF_SO_PIN_FINAL_TRY, "CKF_SO_PIN_FINAL_TRY"),
    (constants.CKF_SO_PIN_LOCKED, "CKF_SO_PIN_LOCKED"),
    (constants.CKF_SO_PIN_TO_BE_CHANGED, "CKF_SO_PIN_TO_BE_CHANGED"),
)

SESSION_FLAGS: tuple[tuple[int, str], ...] = (
    (constants.CKF_RW_SESSION, "CKF_RW_SESSION"),
    (constants.CKF_SERIAL_SESSION, "CKF_SERIAL_SESSION"),
)


def rv_name(rv: int) -> str:
    """Return the CKR_ name of a return value, or a hex rendering if unknown."""
    name = _RV_NAMES.get(rv)
    if name is not None:
        return name
    if rv & constants.CKR_VENDOR_DEFINED:
        return f"CKR_VENDOR_DEFINED+0x{rv & ~constants.CKR_VENDOR_DEFINED:X}"
    return f"CKR_UNKNOWN(0x{rv:08X})"


def user_type_name(user_type: int) -> str:
    """Return the CKU_ name of a user type."""
    return _USER_TYPE_NAMES.get(int(user_type), f"CKU_UNKNOWN({int(user_type)})")


def flags_names(flags: int, table: _typing.Iterable[tuple[int, str]]) -> list[str]:
    """Return the names of every bit in table that is set in flags."""
    return [name for bit, name in table if flags & bit]


def describe_flags(flags: int, table: _typing.Iterable[tuple[int, str]]) -> str:
    """
    Render a flag set as ``NAME|NAME``.

    Bits with no name in table are appended as a hex remainder.
    """
    table = tuple(table)
    parts = flags_names(flags, table)
    known = 0
    for bit, _name in table:
        known |= bit
    if remainder := flags & ~known:
        parts.append(f"0x{remainder:X}")
    return "|".join(parts) if parts else "0"


def slot_flags_description(flags: int) -> str:
    """Render CK_SLOT_INFO flags."""
    return describe_flags(flags, SLOT_FLAGS)


def token_flags_description(flags: int) -> str:
    """Render CK_TOKEN_INFO flags."""
    return describe_flags(flags, TOKEN_FLAGS)


def session_flags_description(flags: int) -> str:
    """Render C_OpenSession flags."""
    return describe_flags(flags, SESSION_FLAGS)


def token_flag_value(name: str) -> int:
    """
    Look up a token flag by name.

    Accepts the name with or without the ``CKF_`` prefix, in any case.

    Raises:
        KeyError: If the name is not a known token flag.
    """
    wanted = name.strip().upper()
    if not wanted.startswith("CKF_"):
        wanted = f"CKF_{wanted}"
    for bit, flag_name in TOKEN_FLAGS:
        if flag_name == wanted:
            return bit
    raise KeyError(name)
