"""
Login guard: C_Login / C_Logout on a session owned by a SessionGuard.
"""

from __future__ import annotations

import logging as _logging
import types as _types

import pkcs11test.config.settings as settings_module
import pkcs11test.context.session as session_module
import pkcs11test.context.types as types
import pkcs11test.status as status

_logger = _logging.getLogger(__name__)


class LoginGuard:
    """
    Logs a role in on acquire() and out on release(), according to a policy.

    Whether this guard logs in is decided once, at construction, from the
    policy and the token flags. The same decision drives logout, so the two
    always balance. The status returned by C_Login never changes it.

    Under LoginPolicy.ALWAYS both C_Login and C_Logout are recorded as
    expectations. Under IF_REQUIRED they are only logged: some tokens
    reject them and the test still runs.
    """

    def __init__(
        self,
        session: session_module.SessionGuard,
        settings: settings_module.HarnessSettings,
        expectations: status.Expectations,
        user_type: types.UserType,
        policy: types.LoginPolicy,
        credential: bytes | None = None,
    ) -> None:
        self._session = session
        self._expectations = expectations
        self._user_type = user_type
        self._policy = policy
        self._credential = credential if credential is not None else settings.credential_for(user_type)
        self._applies = policy.applies(settings.token_flags)
        self._acquired = False
        self._logged_in = False
        self.login_status: status.ReturnValue | None = None

    @property
    def user_type(self) -> types.UserType:
        return self._user_type

    @property
    def applies(self) -> bool:
        """Whether the policy calls for a login on this token."""
        return self._applies

    @property
    def logged_in(self) -> bool:
        """Whether a login was issued and its logout is still pending."""
        return self._logged_in

    def acquire(self) -> status.ReturnValue | None:
        """
        Log in if the policy applies.

        Returns:
            The C_Login return value, or None if no login was issued.
        """
        if self._acquired:
            raise types.ContextStateError("LoginGuard already acquired")
        self._acquired = True

        if not self._applies:
            return None
        if not self._session.is_open:
            _logger.warning("Skipping login as %s: no open session", self._user_type)
            return None

        self._logged_in = True
        self.login_status = self._session.login(self._user_type, self._credential)
        if self._policy.checked:
            self._expectations.expect_ok(self.login_status, "C_Login")
        return self.login_status

    def release(self) -> list[status.Failure]:
        """
        Log out if acquire() logged in.

        Returns:
            Failures recorded while releasing.
        """
        mark = self._expectations.mark()
        if not self._logged_in:
            return []
        self._logged_in = False

        rv = self._session.logout()
        if self._policy.checked:
            self._expectations.expect_ok(rv, "C_Logout")
        elif not rv.ok:
            _logger.warning("Failed to logout user type %s, error %s", self._user_type, rv)
        return self._expectations.since(mark)

    def __enter__(self) -> LoginGuard:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: _types.TracebackType | None,
    ) -> None:
        self.release()
