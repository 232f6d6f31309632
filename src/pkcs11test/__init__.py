"""
pkcs11test - PKCS#11 conformance test harness

Fixtures and scoped guards that bring a PKCS#11 token up to the state a
test needs, and take it back down in the right order.
"""

import importlib.metadata as _metadata

# Version is defined in pyproject.toml - read it and parse into tuple (primary representation)
_raw_version = _metadata.version("pkcs11test")
__version_info__: tuple[int, int, int] = tuple(int(x) for x in _raw_version.split(".")[:3])  # type: ignore[assignment]
__version__: str = ".".join(str(x) for x in __version_info__)

from pkcs11test.config import HarnessSettings, get_settings  # noqa: E402
from pkcs11test.context import ContextSpec, TokenContext, open_context  # noqa: E402
from pkcs11test.functions import SlotInfo, TokenFunctions  # noqa: E402
from pkcs11test.status import Expectations, ReturnValue  # noqa: E402

__all__ = [
    "__version__",
    "__version_info__",
    "ContextSpec",
    "Expectations",
    "HarnessSettings",
    "ReturnValue",
    "SlotInfo",
    "TokenContext",
    "TokenFunctions",
    "get_settings",
    "open_context",
]
