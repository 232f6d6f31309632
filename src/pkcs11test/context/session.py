"""
Session guard: C_OpenSession / C_CloseSession within an initialized library.
"""

from __future__ import annotations

import logging as _logging
import types as _types

import pkcs11test.config.settings as settings_module
import pkcs11test.constants as constants
import pkcs11test.context.types as types
import pkcs11test.describe as describe
import pkcs11test.functions as functions
import pkcs11test.status as status

_logger = _logging.getLogger(__name__)


class SessionGuard:
    """
    Owns one session on the configured slot.

    The stored handle is INVALID_SESSION_HANDLE until a successful open and
    again from the moment close starts. If open fails, release() issues no
    C_CloseSession at all.
    """

    def __init__(
        self,
        fns: functions.TokenFunctions,
        settings: settings_module.HarnessSettings,
        expectations: status.Expectations,
        access_mode: types.AccessMode,
    ) -> None:
        self._fns = fns
        self._settings = settings
        self._expectations = expectations
        self._access_mode = access_mode
        self._handle = constants.INVALID_SESSION_HANDLE
        self._acquired = False

    @property
    def access_mode(self) -> types.AccessMode:
        return self._access_mode

    @property
    def handle(self) -> int:
        """The session handle, or INVALID_SESSION_HANDLE if not open."""
        return self._handle

    @property
    def is_open(self) -> bool:
        return self._handle != constants.INVALID_SESSION_HANDLE

    def acquire(self) -> status.ReturnValue:
        """
        Check the slot has a token, then open the session.

        A missing token only produces a warning: C_OpenSession will report
        the problem itself.

        Returns:
            The C_OpenSession return value.
        """
        if self._acquired:
            raise types.ContextStateError("SessionGuard already acquired")
        self._acquired = True

        slot_id = self._settings.slot_id
        rv, slot_info = self._fns.get_slot_info(slot_id)
        self._expectations.expect_ok(rv, "C_GetSlotInfo")
        if slot_info is None or not slot_info.token_present:
            _logger.warning("Need to specify a slot ID that has a token present (slot %d)", slot_id)

        flags = self._access_mode.session_flags
        _logger.debug(
            "C_OpenSession slot=%d flags=%s",
            slot_id,
            describe.session_flags_description(flags),
        )
        rv, handle = self._fns.open_session(slot_id, flags)
        open_status = status.ReturnValue.of(rv)
        if self._expectations.expect_ok(open_status, "C_OpenSession"):
            self._handle = handle
        else:
            self._handle = constants.INVALID_SESSION_HANDLE
        return open_status

    def release(self) -> list[status.Failure]:
        """
        Close the session if it was opened.

        Returns:
            Failures recorded while releasing.
        """
        mark = self._expectations.mark()
        if self.is_open:
            handle = self._handle
            self._handle = constants.INVALID_SESSION_HANDLE
            _logger.debug("C_CloseSession handle=%d", handle)
            self._expectations.expect_ok(self._fns.close_session(handle), "C_CloseSession")
        return self._expectations.since(mark)

    def login(self, user_type: int, credential: bytes) -> status.ReturnValue:
        """
        Log in on this session.

        Failure is logged, not recorded: callers that need the login to
        succeed assert on the returned value themselves.
        """
        rv = status.ReturnValue.of(self._fns.login(self._handle, int(user_type), credential))
        if not rv.ok:
            _logger.warning(
                "Failed to login as user type %s, error %s",
                describe.user_type_name(user_type),
                rv,
            )
        return rv

    def logout(self) -> status.ReturnValue:
        """Log out of this session. The caller decides whether to assert."""
        return status.ReturnValue.of(self._fns.logout(self._handle))

    def __enter__(self) -> SessionGuard:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: _types.TracebackType | None,
    ) -> None:
        self.release()
