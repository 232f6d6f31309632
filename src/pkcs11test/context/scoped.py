"""
Scoped session guards for use inside a test body.

These are independent of a test's own context: they open an additional
session on construction of the with-block and close it on every exit path.

    with scoped.RWSession(fns, settings, expectations) as rw:
        with scoped.ROUserSession(fns, settings, expectations) as ro:
            ...

The preset classes fix the access mode (and role) at the type level.
"""

from __future__ import annotations

import logging as _logging
import types as _types
import typing as _typing

import pkcs11test.config.settings as settings_module
import pkcs11test.constants as constants
import pkcs11test.context.types as types
import pkcs11test.describe as describe
import pkcs11test.functions as functions
import pkcs11test.status as status

_logger = _logging.getLogger(__name__)


class ScopedSession:
    """
    An extra session, opened and closed with hard-checked status.

    Open and close are recorded as expectations. If the open fails, no
    close is issued.
    """

    access_mode: _typing.ClassVar[types.AccessMode | None] = None

    def __init__(
        self,
        fns: functions.TokenFunctions,
        settings: settings_module.HarnessSettings,
        expectations: status.Expectations,
        *,
        access_mode: types.AccessMode | None = None,
    ) -> None:
        mode = access_mode or type(self).access_mode
        if mode is None:
            raise ValueError(f"{type(self).__name__} needs an access_mode")
        self._fns = fns
        self._settings = settings
        self._expectations = expectations
        self._mode = mode
        self._handle = constants.INVALID_SESSION_HANDLE
        self._acquired = False

    @property
    def mode(self) -> types.AccessMode:
        return self._mode

    @property
    def handle(self) -> int:
        return self._handle

    @property
    def is_open(self) -> bool:
        return self._handle != constants.INVALID_SESSION_HANDLE

    def acquire(self) -> ScopedSession:
        if self._acquired:
            raise types.ContextStateError(f"{type(self).__name__} already acquired")
        self._acquired = True

        rv, handle = self._fns.open_session(self._settings.slot_id, self._mode.session_flags)
        if self._expectations.expect_ok(rv, "C_OpenSession"):
            self._handle = handle
        return self

    def release(self) -> list[status.Failure]:
        mark = self._expectations.mark()
        if self.is_open:
            handle = self._handle
            self._handle = constants.INVALID_SESSION_HANDLE
            self._expectations.expect_ok(self._fns.close_session(handle), "C_CloseSession")
        return self._expectations.since(mark)

    def __enter__(self) -> _typing.Self:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: _types.TracebackType | None,
    ) -> None:
        self.release()


class ScopedLoginSession(ScopedSession):
    """
    An extra session that also logs a role in.

    Login and logout are best-effort: failures are logged, never recorded.
    Only the session open and close are checked.
    """

    user_type: _typing.ClassVar[types.UserType | None] = None

    def __init__(
        self,
        fns: functions.TokenFunctions,
        settings: settings_module.HarnessSettings,
        expectations: status.Expectations,
        *,
        access_mode: types.AccessMode | None = None,
        user_type: types.UserType | None = None,
        credential: bytes | None = None,
    ) -> None:
        super().__init__(fns, settings, expectations, access_mode=access_mode)
        role = user_type if user_type is not None else type(self).user_type
        if role is None:
            raise ValueError(f"{type(self).__name__} needs a user_type")
        self._user_type = role
        self._credential = credential if credential is not None else settings.credential_for(role)
        self._logged_in = False
        self.login_status: status.ReturnValue | None = None

    @property
    def role(self) -> types.UserType:
        return self._user_type

    def acquire(self) -> ScopedLoginSession:
        super().acquire()
        if not self.is_open:
            return self

        self._logged_in = True
        rv = status.ReturnValue.of(self._fns.login(self._handle, int(self._user_type), self._credential))
        self.login_status = rv
        if not rv.ok:
            _logger.warning(
                "Failed to login as user type %s, error %s",
                describe.user_type_name(self._user_type),
                rv,
            )
        return self

    def release(self) -> list[status.Failure]:
        if self._logged_in:
            self._logged_in = False
            rv = status.ReturnValue.of(self._fns.logout(self._handle))
            if not rv.ok:
                _logger.debug("Best-effort logout of %s returned %s", self._user_type, rv)
        return super().release()


class ROSession(ScopedSession):
    access_mode = types.AccessMode.READ_ONLY


class RWSession(ScopedSession):
    access_mode = types.AccessMode.READ_WRITE


class ROUserSession(ScopedLoginSession):
    access_mode = types.AccessMode.READ_ONLY
    user_type = types.UserType.USER


class RWUserSession(ScopedLoginSession):
    access_mode = types.AccessMode.READ_WRITE
    user_type = types.UserType.USER


class RWSOSession(ScopedLoginSession):
    access_mode = types.AccessMode.READ_WRITE
    user_type = types.UserType.SO
