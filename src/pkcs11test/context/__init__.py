"""
Test contexts for PKCS#11 conformance tests.

Brings a token up to the state a test needs (library initialized, session
open, user logged in) and takes it back down in reverse order.
"""

from pkcs11test.context.library import LibraryGuard
from pkcs11test.context.login import LoginGuard
from pkcs11test.context.scoped import (
    ROSession,
    ROUserSession,
    RWSession,
    RWSOSession,
    RWUserSession,
    ScopedLoginSession,
    ScopedSession,
)
from pkcs11test.context.session import SessionGuard
from pkcs11test.context.token_context import TokenContext, build_context, open_context
from pkcs11test.context.types import (
    LIBRARY,
    PRESETS,
    READ_ONLY_SESSION,
    READ_WRITE_SESSION,
    RO_EITHER_SESSION,
    RO_USER_SESSION,
    RW_EITHER_SESSION,
    RW_SO_SESSION,
    RW_USER_SESSION,
    AccessMode,
    ContextSpec,
    ContextStateError,
    LoginPolicy,
    UserType,
)

__all__ = [
    "LIBRARY",
    "PRESETS",
    "READ_ONLY_SESSION",
    "READ_WRITE_SESSION",
    "RO_EITHER_SESSION",
    "RO_USER_SESSION",
    "RW_EITHER_SESSION",
    "RW_SO_SESSION",
    "RW_USER_SESSION",
    "AccessMode",
    "ContextSpec",
    "ContextStateError",
    "LibraryGuard",
    "LoginGuard",
    "LoginPolicy",
    "ROSession",
    "ROUserSession",
    "RWSOSession",
    "RWSession",
    "RWUserSession",
    "ScopedLoginSession",
    "ScopedSession",
    "SessionGuard",
    "TokenContext",
    "UserType",
    "build_context",
    "open_context",
]
