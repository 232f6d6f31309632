"""
Composed test context.

A TokenContext is assembled from up to three guards, outermost first:

    LibraryGuard  ->  SessionGuard  ->  LoginGuard

acquire() brings them up in that order, release() takes them down in exact
reverse. Which guards are present is decided by a ContextSpec, not by a
class hierarchy.
"""

from __future__ import annotations

import contextlib as _contextlib
import logging as _logging
import types as _types
import typing as _typing

import pkcs11test.config.settings as settings_module
import pkcs11test.constants as constants
import pkcs11test.context.library as library
import pkcs11test.context.login as login
import pkcs11test.context.scoped as scoped
import pkcs11test.context.session as session_module
import pkcs11test.context.types as types
import pkcs11test.functions as functions
import pkcs11test.status as status

_logger = _logging.getLogger(__name__)


class _Guard(_typing.Protocol):
    def acquire(self) -> _typing.Any: ...

    def release(self) -> list[status.Failure]: ...


class TokenContext:
    """
    The environment one test runs in.

    Attributes:
        spec: The ContextSpec this context was built from.
        library: The library guard (always present).
        session: The session guard, if the spec opens a session.
        login: The login guard, if the spec has a login policy.
    """

    def __init__(
        self,
        spec: types.ContextSpec,
        fns: functions.TokenFunctions,
        settings: settings_module.HarnessSettings,
        expectations: status.Expectations,
        *,
        library_guard: library.LibraryGuard,
        session_guard: session_module.SessionGuard | None = None,
        login_guard: login.LoginGuard | None = None,
    ) -> None:
        if login_guard is not None and session_guard is None:
            raise ValueError("A login guard needs a session guard")
        self.spec = spec
        self.functions = fns
        self.settings = settings
        self.expectations = expectations
        self.library = library_guard
        self.session = session_guard
        self.login = login_guard
        self._acquired: list[_Guard] = []
        self._entered = False

    @property
    def guards(self) -> list[_Guard]:
        """The guards present, outermost first."""
        present: list[_Guard] = [self.library]
        if self.session is not None:
            present.append(self.session)
        if self.login is not None:
            present.append(self.login)
        return present

    @property
    def session_handle(self) -> int:
        """Handle of the context's session, or INVALID_SESSION_HANDLE."""
        if self.session is None:
            return constants.INVALID_SESSION_HANDLE
        return self.session.handle

    @property
    def slot_id(self) -> int:
        return self.settings.slot_id

    def acquire(self) -> TokenContext:
        """
        Bring up every guard, outermost first.

        Status mismatches are recorded and construction carries on. If a
        collaborator raises, whatever was already brought up is released
        before the exception propagates.
        """
        if self._entered:
            raise types.ContextStateError("TokenContext already acquired")
        self._entered = True

        for guard in self.guards:
            # Tracked before acquiring: a library whose initialize blew up
            # still gets its finalize.
            self._acquired.append(guard)
            try:
                guard.acquire()
            except Exception:
                _logger.debug("Setup raised in %s, releasing", type(guard).__name__)
                self.release()
                raise
        return self

    def release(self) -> list[status.Failure]:
        """
        Take down every acquired guard, innermost first.

        Every release is attempted. If any raised, the first exception is
        re-raised after the rest have run.

        Returns:
            Failures recorded during release, in the order they happened.
        """
        failures: list[status.Failure] = []
        first_error: Exception | None = None

        while self._acquired:
            guard = self._acquired.pop()
            try:
                failures.extend(guard.release())
            except Exception as e:
                _logger.warning("Release of %s raised: %s", type(guard).__name__, e)
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error
        return failures

    def open_session(self, access_mode: types.AccessMode) -> scoped.ScopedSession:
        """Create an additional scoped session sharing this context's collaborators."""
        return scoped.ScopedSession(
            self.functions,
            self.settings,
            self.expectations,
            access_mode=access_mode,
        )

    def open_login_session(
        self,
        access_mode: types.AccessMode,
        user_type: types.UserType,
        credential: bytes | None = None,
    ) -> scoped.ScopedLoginSession:
        """Create an additional scoped session that logs in as user_type."""
        return scoped.ScopedLoginSession(
            self.functions,
            self.settings,
            self.expectations,
            access_mode=access_mode,
            user_type=user_type,
            credential=credential,
        )

    def __enter__(self) -> TokenContext:
        return self.acquire()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: _types.TracebackType | None,
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"TokenContext(spec={self.spec!r}, session_handle={self.session_handle})"


def build_context(
    spec: types.ContextSpec,
    fns: functions.TokenFunctions,
    settings: settings_module.HarnessSettings,
    expectations: status.Expectations,
) -> TokenContext:
    """
    Assemble the guards a spec calls for, without acquiring them.

    Args:
        spec: Which layers to bring up.
        fns: The PKCS#11 function table.
        settings: Slot, PINs and token flags.
        expectations: Where status mismatches are recorded.
    """
    library_guard = library.LibraryGuard(fns, expectations)
    session_guard: session_module.SessionGuard | None = None
    login_guard: login.LoginGuard | None = None

    if spec.access_mode is not None:
        session_guard = session_module.SessionGuard(fns, settings, expectations, spec.access_mode)
        if spec.login_policy is not types.LoginPolicy.NONE:
            login_guard = login.LoginGuard(
                session_guard,
                settings,
                expectations,
                spec.user_type,
                spec.login_policy,
                spec.credential,
            )

    return TokenContext(
        spec,
        fns,
        settings,
        expectations,
        library_guard=library_guard,
        session_guard=session_guard,
        login_guard=login_guard,
    )


@_contextlib.contextmanager
def open_context(
    spec: types.ContextSpec | str,
    fns: functions.TokenFunctions,
    settings: settings_module.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[TokenContext]:
    """
    Build, acquire and (on every exit path) release a TokenContext.

    Usage:
        with open_context(types.RW_USER_SESSION, fns, settings, expectations) as ctx:
            fns.generate_key(ctx.session_handle, ...)
    """
    if isinstance(spec, str):
        spec = types.ContextSpec.named(spec)
    ctx = build_context(spec, fns, settings, expectations)
    ctx.acquire()
    try:
        yield ctx
    finally:
        ctx.release()
