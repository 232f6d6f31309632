"""
pytest integration for pkcs11test.

Registered through the ``pytest11`` entry point. Provides:

- pkcs11_settings: the frozen HarnessSettings for the run
- token_functions: the PKCS#11 function table (override in conftest.py, or
  set PKCS11TEST_FUNCTIONS=module:attribute)
- expectations: the per-test assertion recorder
- one fixture per context preset (ro_session, rw_user_session, ...)
- token_context: a context chosen by the ``token_context`` marker or by
  indirect parametrization

Context fixtures are released as soon as the test function returns, still
inside the call phase. Every mismatch recorded during setup, the test body
or release therefore fails the test itself, not its teardown.

Usage:
    def test_find_objects(rw_user_session):
        rv = rw_user_session.functions.find_objects_init(rw_user_session.session_handle, [])
        rw_user_session.expectations.expect_ok(rv, "C_FindObjectsInit")

    @pytest.mark.token_context("rw_so_session")
    def test_init_pin(token_context):
        ...
"""

from __future__ import annotations

import logging as _logging
import typing as _typing

import pytest as _pytest

import pkcs11test.config as config
import pkcs11test.context as context
import pkcs11test.functions as functions
import pkcs11test.status as status

_logger = _logging.getLogger(__name__)

MARKER_NAME = "token_context"


class ContextRun:
    """The recorder of one test and the contexts opened against it."""

    def __init__(self, expectations: status.Expectations) -> None:
        self.expectations = expectations
        self.contexts: list[context.TokenContext] = []
        self._reported = expectations.mark()

    def finish(self) -> list[status.Failure]:
        """
        Release every open context, newest first.

        Returns:
            Failures recorded since the previous finish().
        """
        while self.contexts:
            self.contexts.pop().release()
        failures = self.expectations.since(self._reported)
        self._reported = self.expectations.mark()
        return failures


RUN_KEY = _pytest.StashKey[ContextRun]()


def pytest_configure(config: _pytest.Config) -> None:
    """Register the token_context marker."""
    config.addinivalue_line(
        "markers",
        f"{MARKER_NAME}(spec): ContextSpec or preset name used by the token_context fixture",
    )


@_pytest.hookimpl(wrapper=True)
def pytest_runtest_call(item: _pytest.Item) -> _typing.Generator[None, object, object]:
    """Release the test's contexts before its outcome is decided."""
    run = item.stash.get(RUN_KEY, None)
    try:
        result = yield
    except BaseException as e:
        if run is not None:
            failures = run.finish()
            if failures:
                e.add_note(str(status.ExpectationFailedError(failures)))
        raise
    if run is not None:
        report_failures(run.finish())
    return result


def resolve_spec(value: context.ContextSpec | str | None) -> context.ContextSpec:
    """Turn a marker or parameter value into a ContextSpec (default: LIBRARY)."""
    if value is None:
        return context.LIBRARY
    if isinstance(value, context.ContextSpec):
        return value
    if isinstance(value, str):
        return context.ContextSpec.named(value)
    raise TypeError(f"Expected a ContextSpec or preset name, got {type(value).__name__}")


def report_failures(failures: _typing.Sequence[status.Failure]) -> None:
    """Fail the current test if any expectation failed."""
    if failures:
        _pytest.fail(str(status.ExpectationFailedError(failures)), pytrace=False)


def run_context(
    request: _pytest.FixtureRequest,
    spec: context.ContextSpec,
    fns: functions.TokenFunctions,
    settings: config.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[context.TokenContext]:
    """Fixture body shared by every context fixture."""
    run = request.node.stash.get(RUN_KEY, None)
    with context.open_context(spec, fns, settings, expectations) as ctx:
        if run is not None:
            run.contexts.append(ctx)
        yield ctx


# =============================================================================
# Collaborator fixtures
# =============================================================================


@_pytest.fixture(scope="session")
def pkcs11_settings() -> config.HarnessSettings:
    """Settings for the token under test, loaded once per run."""
    settings = config.get_settings()
    _logger.debug("Testing %s", settings.describe())
    return settings


@_pytest.fixture(scope="session")
def token_functions(pkcs11_settings: config.HarnessSettings) -> functions.TokenFunctions:
    """
    The PKCS#11 function table.

    Loaded from the ``functions`` setting. Suites that build the table
    themselves override this fixture in their conftest.py.
    """
    if not pkcs11_settings.functions:
        _pytest.fail(
            "No PKCS#11 function table configured: set PKCS11TEST_FUNCTIONS=module:attribute "
            "or override the token_functions fixture",
            pytrace=False,
        )
    try:
        return functions.load_functions(pkcs11_settings.functions, pkcs11_settings)
    except functions.FunctionTableError as e:
        _pytest.fail(str(e), pytrace=False)


@_pytest.fixture
def expectations(request: _pytest.FixtureRequest) -> _typing.Iterator[status.Expectations]:
    """
    Non-fatal assertion recorder for one test.

    Failures are normally reported at the end of the call phase. Anything
    left over (for example when setup raised and the test never ran) is
    reported at teardown.
    """
    recorder = status.Expectations()
    run = ContextRun(recorder)
    request.node.stash[RUN_KEY] = run
    yield recorder
    report_failures(run.finish())


# =============================================================================
# Context fixtures
# =============================================================================


@_pytest.fixture
def pkcs11_library(
    request: _pytest.FixtureRequest,
    token_functions: functions.TokenFunctions,
    pkcs11_settings: config.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[context.TokenContext]:
    """Library initialized, no session."""
    yield from run_context(
        request, context.LIBRARY, token_functions, pkcs11_settings, expectations
    )


@_pytest.fixture
def ro_session(
    request: _pytest.FixtureRequest,
    token_functions: functions.TokenFunctions,
    pkcs11_settings: config.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[context.TokenContext]:
    """Read-only session, not logged in."""
    yield from run_context(
        request, context.READ_ONLY_SESSION, token_functions, pkcs11_settings, expectations
    )


@_pytest.fixture
def rw_session(
    request: _pytest.FixtureRequest,
    token_functions: functions.TokenFunctions,
    pkcs11_settings: config.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[context.TokenContext]:
    """Read-write session, not logged in."""
    yield from run_context(
        request, context.READ_WRITE_SESSION, token_functions, pkcs11_settings, expectations
    )


@_pytest.fixture
def ro_user_session(
    request: _pytest.FixtureRequest,
    token_functions: functions.TokenFunctions,
    pkcs11_settings: config.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[context.TokenContext]:
    """Read-only session, logged in as the normal user."""
    yield from run_context(
        request, context.RO_USER_SESSION, token_functions, pkcs11_settings, expectations
    )


@_pytest.fixture
def rw_user_session(
    request: _pytest.FixtureRequest,
    token_functions: functions.TokenFunctions,
    pkcs11_settings: config.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[context.TokenContext]:
    """Read-write session, logged in as the normal user."""
    yield from run_context(
        request, context.RW_USER_SESSION, token_functions, pkcs11_settings, expectations
    )


@_pytest.fixture
def rw_so_session(
    request: _pytest.FixtureRequest,
    token_functions: functions.TokenFunctions,
    pkcs11_settings: config.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[context.TokenContext]:
    """Read-write session, logged in as the security officer."""
    yield from run_context(
        request, context.RW_SO_SESSION, token_functions, pkcs11_settings, expectations
    )


@_pytest.fixture
def ro_either_session(
    request: _pytest.FixtureRequest,
    token_functions: functions.TokenFunctions,
    pkcs11_settings: config.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[context.TokenContext]:
    """Read-only session, logged in as the user only if the token requires login."""
    yield from run_context(
        request, context.RO_EITHER_SESSION, token_functions, pkcs11_settings, expectations
    )


@_pytest.fixture
def rw_either_session(
    request: _pytest.FixtureRequest,
    token_functions: functions.TokenFunctions,
    pkcs11_settings: config.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[context.TokenContext]:
    """Read-write session, logged in as the user only if the token requires login."""
    yield from run_context(
        request, context.RW_EITHER_SESSION, token_functions, pkcs11_settings, expectations
    )


@_pytest.fixture
def token_context(
    request: _pytest.FixtureRequest,
    token_functions: functions.TokenFunctions,
    pkcs11_settings: config.HarnessSettings,
    expectations: status.Expectations,
) -> _typing.Iterator[context.TokenContext]:
    """
    Context selected per test.

    Precedence: indirect parameter, then the token_context marker, then
    a library-only context.
    """
    value = getattr(request, "param", None)
    if value is None:
        marker = request.node.get_closest_marker(MARKER_NAME)
        if marker is not None and marker.args:
            value = marker.args[0]
    spec = resolve_spec(value)
    yield from run_context(request, spec, token_functions, pkcs11_settings, expectations)
