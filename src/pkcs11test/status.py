"""
Status assertion layer.

Every collaborator call returns a CK_RV. The harness never raises on a
mismatch: it records a Failure in an Expectations object and carries on, so
that a broken setup step still lets cleanup and the test body run. The
enclosing harness reports what was recorded once every context has been
released, either through Expectations.check() or from the failure list.
"""

from __future__ import annotations

import dataclasses as _dataclasses
import logging as _logging
import typing as _typing

import pkcs11test.constants as constants
import pkcs11test.describe as describe

_logger = _logging.getLogger(__name__)


@_dataclasses.dataclass(frozen=True)
class ReturnValue:
    """A CK_RV that compares by value and renders by name."""

    code: int

    @classmethod
    def of(cls, value: ReturnValue | int) -> ReturnValue:
        """Wrap a raw code, passing existing ReturnValues through."""
        if isinstance(value, ReturnValue):
            return value
        return cls(int(value))

    @property
    def ok(self) -> bool:
        """Whether this is CKR_OK."""
        return self.code == constants.CKR_OK

    @property
    def name(self) -> str:
        return describe.rv_name(self.code)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ReturnValue):
            return self.code == other.code
        if isinstance(other, int) and not isinstance(other, bool):
            return self.code == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.code)

    def __str__(self) -> str:
        return self.name


OK = ReturnValue(constants.CKR_OK)


@_dataclasses.dataclass(frozen=True)
class Failure:
    """One expectation that did not hold."""

    operation: str
    expected: ReturnValue
    actual: ReturnValue

    def describe(self) -> str:
        """Render the failure for a test report."""
        label = self.operation or "call"
        return f"{label}: expected {self.expected}, got {self.actual}"

    def __str__(self) -> str:
        return self.describe()


class ExpectationFailedError(AssertionError):
    """Raised by Expectations.check() when any expectation failed."""

    def __init__(self, failures: _typing.Sequence[Failure]) -> None:
        self.failures = list(failures)
        lines = [f"{len(self.failures)} PKCS#11 expectation(s) failed:"]
        lines.extend(f"  {failure.describe()}" for failure in self.failures)
        super().__init__("\n".join(lines))


class Expectations:
    """
    Non-fatal assertion recorder.

    Works like gtest's EXPECT_* family: a mismatch is recorded and logged,
    the caller gets False back, and execution continues.

    Usage:
        expectations = Expectations()
        expectations.expect_ok(fns.initialize(None), "C_Initialize")
        ...
        expectations.check()  # raises if anything above mismatched
    """

    def __init__(self) -> None:
        self._failures: list[Failure] = []

    @property
    def failures(self) -> list[Failure]:
        """All failures recorded so far, oldest first."""
        return list(self._failures)

    @property
    def passed(self) -> bool:
        return not self._failures

    def expect_rv(
        self,
        expected: ReturnValue | int,
        actual: ReturnValue | int,
        operation: str = "",
    ) -> bool:
        """
        Check that actual equals expected.

        Args:
            expected: The return value the call should have produced.
            actual: The return value it did produce.
            operation: Name of the call, used in the failure message.

        Returns:
            True if the values match, False if a failure was recorded.
        """
        expected_rv = ReturnValue.of(expected)
        actual_rv = ReturnValue.of(actual)
        if expected_rv == actual_rv:
            return True

        failure = Failure(operation=operation, expected=expected_rv, actual=actual_rv)
        self._failures.append(failure)
        _logger.error("%s", failure.describe())
        return False

    def expect_ok(self, actual: ReturnValue | int, operation: str = "") -> bool:
        """Check that actual is CKR_OK."""
        return self.expect_rv(OK, actual, operation)

    def mark(self) -> int:
        """Return a position that since() can later slice from."""
        return len(self._failures)

    def since(self, mark: int) -> list[Failure]:
        """Return the failures recorded after mark was taken."""
        return self._failures[mark:]

    def check(self) -> None:
        """
        Raise if any expectation failed.

        Raises:
            ExpectationFailedError: Listing every recorded failure.
        """
        if self._failures:
            raise ExpectationFailedError(self._failures)
