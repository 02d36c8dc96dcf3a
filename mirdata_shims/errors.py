"""
mirdata_shims/errors.py
═══════════════════════

Exception hierarchy for mirdata-shims.

The detectors themselves never raise on a well-formed CFG.  Errors come
only from the two boundaries where external input enters the package:

  MirShimsError (base)
  ├── MalformedCFGError     - a dump violates the CFG model contract
  └── SignatureConfigError  - a signature table file cannot be used
"""

from __future__ import annotations

from typing import Optional


class MirShimsError(Exception):
    """Base exception for all mirdata-shims errors."""
    pass


class MalformedCFGError(MirShimsError):
    """
    Raised when a function dump cannot be turned into a CFG.

    Attributes
    ----------
    function : name of the function being loaded, when known
    block    : id of the offending basic block, when known
    """

    def __init__(
        self,
        message: str,
        function: Optional[str] = None,
        block: Optional[int] = None,
    ) -> None:
        self.function = function
        self.block = block
        where = []
        if function:
            where.append(f"function '{function}'")
        if block is not None:
            where.append(f"bb{block}")
        if where:
            message = f"{', '.join(where)}: {message}"
        super().__init__(message)


class SignatureConfigError(MirShimsError):
    """Raised when a signature table file or text is malformed."""

    def __init__(self, message: str, source: str = "") -> None:
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


__all__ = [
    "MirShimsError",
    "MalformedCFGError",
    "SignatureConfigError",
]
