"""
Configuration types for test contexts.

- AccessMode: read-only or read-write session
- UserType: which role logs in
- LoginPolicy: when a context logs in and out
- ContextSpec: one combination of the above, plus the named presets
"""

from __future__ import annotations

import dataclasses as _dataclasses
import enum as _enum

import pkcs11test.constants as constants
import pkcs11test.describe as describe


class AccessMode(_enum.Enum):
    """Access mode of a session."""

    READ_ONLY = "ro"
    READ_WRITE = "rw"

    @property
    def session_flags(self) -> int:
        """Flags passed to C_OpenSession."""
        if self is AccessMode.READ_WRITE:
            return constants.CKF_SERIAL_SESSION | constants.CKF_RW_SESSION
        return constants.CKF_SERIAL_SESSION


class UserType(_enum.IntEnum):
    """PKCS#11 user types a context can log in as."""

    SO = constants.CKU_SO
    USER = constants.CKU_USER

    def __str__(self) -> str:
        return describe.user_type_name(self.value)


class LoginPolicy(_enum.Enum):
    """When a context logs in (and, symmetrically, out)."""

    NONE = "none"
    """Never log in."""

    ALWAYS = "always"
    """Always log in and out."""

    IF_REQUIRED = "if_required"
    """Log in and out only if the token flags include CKF_LOGIN_REQUIRED."""

    def applies(self, token_flags: int) -> bool:
        """Whether a context with this policy logs in, given the token flags."""
        if self is LoginPolicy.ALWAYS:
            return True
        if self is LoginPolicy.IF_REQUIRED:
            return bool(token_flags & constants.CKF_LOGIN_REQUIRED)
        return False

    @property
    def checked(self) -> bool:
        """Whether login and logout status are recorded, not just logged."""
        return self is LoginPolicy.ALWAYS


@_dataclasses.dataclass(frozen=True)
class ContextSpec:
    """
    Which layers a test context brings up.

    Attributes:
        access_mode: Session access mode, or None for a library-only context.
        user_type: Role used when the login policy applies.
        login_policy: When to log in.
        credential: PIN override; None uses the configured PIN for user_type.
    """

    access_mode: AccessMode | None = None
    user_type: UserType = UserType.USER
    login_policy: LoginPolicy = LoginPolicy.NONE
    credential: bytes | None = None

    def __post_init__(self) -> None:
        if self.access_mode is None and self.login_policy is not LoginPolicy.NONE:
            raise ValueError("A login policy needs a session: set access_mode")

    @property
    def opens_session(self) -> bool:
        return self.access_mode is not None

    @classmethod
    def named(cls, name: str) -> ContextSpec:
        """
        Look up a preset by name, e.g. ``"rw_user_session"``.

        Raises:
            KeyError: If there is no such preset.
        """
        try:
            return PRESETS[name.lower()]
        except KeyError:
            known = ", ".join(sorted(PRESETS))
            raise KeyError(f"Unknown context preset '{name}' (known: {known})") from None


LIBRARY = ContextSpec()
READ_ONLY_SESSION = ContextSpec(access_mode=AccessMode.READ_ONLY)
READ_WRITE_SESSION = ContextSpec(access_mode=AccessMode.READ_WRITE)

# Always log in; only appropriate if the token requires login
RO_USER_SESSION = ContextSpec(AccessMode.READ_ONLY, UserType.USER, LoginPolicy.ALWAYS)
RW_USER_SESSION = ContextSpec(AccessMode.READ_WRITE, UserType.USER, LoginPolicy.ALWAYS)
RW_SO_SESSION = ContextSpec(AccessMode.READ_WRITE, UserType.SO, LoginPolicy.ALWAYS)

# Log in as the user only if the token flags say so
RO_EITHER_SESSION = ContextSpec(AccessMode.READ_ONLY, UserType.USER, LoginPolicy.IF_REQUIRED)
RW_EITHER_SESSION = ContextSpec(AccessMode.READ_WRITE, UserType.USER, LoginPolicy.IF_REQUIRED)

PRESETS: dict[str, ContextSpec] = {
    "library": LIBRARY,
    "ro_session": READ_ONLY_SESSION,
    "rw_session": READ_WRITE_SESSION,
    "ro_user_session": RO_USER_SESSION,
    "rw_user_session": RW_USER_SESSION,
    "rw_so_session": RW_SO_SESSION,
    "ro_either_session": RO_EITHER_SESSION,
    "rw_either_session": RW_EITHER_SESSION,
}


class ContextStateError(RuntimeError):
    """Raised when a guard is used out of order, e.g. acquired twice."""

    pass
