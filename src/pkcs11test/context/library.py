"""
Library lifecycle guard: the C_Initialize / C_Finalize bracket.
"""

from __future__ import annotations

import logging as _logging
import types as _types

import pkcs11test.context.types as types
import pkcs11test.functions as functions
import pkcs11test.status as status

_logger = _logging.getLogger(__name__)


class LibraryGuard:
    """
    Owns the initialize/finalize bracket around a test body.

    A failed C_Initialize is recorded but does not stop release() from
    calling C_Finalize: the bracket is symmetric regardless of setup outcome.
    """

    def __init__(
        self,
        fns: functions.TokenFunctions,
        expectations: status.Expectations,
    ) -> None:
        self._fns = fns
        self._expectations = expectations
        self._acquired = False
        self._released = False
        self.init_status: status.ReturnValue | None = None

    @property
    def active(self) -> bool:
        """Whether initialize was attempted and finalize has not been."""
        return self._acquired and not self._released

    def acquire(self) -> status.ReturnValue:
        """Call C_Initialize for single-threaded use."""
        if self._acquired:
            raise types.ContextStateError("LibraryGuard already acquired")
        self._acquired = True

        _logger.debug("C_Initialize")
        # No mutex callbacks: only planning to use the library from one thread
        self.init_status = status.ReturnValue.of(self._fns.initialize(None))
        self._expectations.expect_ok(self.init_status, "C_Initialize")
        return self.init_status

    def release(self) -> list[status.Failure]:
        """
        Call C_Finalize.

        Returns:
            Failures recorded while releasing.
        """
        if not self._acquired or self._released:
            return []
        self._released = True

        mark = self._expectations.mark()
        _logger.debug("C_Finalize")
        self._expectations.expect_ok(self._fns.finalize(), "C_Finalize")
        return self._expectations.since(mark)

    def __enter__(self) -> LibraryGuard:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: _types.TracebackType | None,
    ) -> None:
        self.release()
