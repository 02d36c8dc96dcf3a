"""
mirdata_shims/diagnostics.py
════════════════════════════

Turns positive detector findings into CWE-tagged diagnostics.

Each detector kind maps to one :class:`DiagnosticRule` (error id,
severity, CWE, message).  A :class:`Diagnostic` serialises to a single
JSON line in the cppcheck addon shape, or to a GCC-style text line.
Rendering beyond that belongs to the surrounding tool.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Optional

from mirdata_shims.detectors import DetectorKind, Finding
from mirdata_shims.mir_model import EMPTY_SPAN, SourceSpan


class DiagnosticSeverity(Enum):
    """cppcheck-compatible severity levels."""
    ERROR = "error"
    WARNING = "warning"
    STYLE = "style"
    INFORMATION = "information"


class Confidence(Enum):
    """
    How certain we are that the diagnostic is a true positive.

    MEDIUM - ordering evidence correlates several facts
    LOW    - a dangerous API is referenced, nothing more
    """
    MEDIUM = auto()
    LOW = auto()


@dataclass(frozen=True)
class DiagnosticRule:
    error_id: str
    severity: DiagnosticSeverity
    cwe: int
    confidence: Confidence
    message: str


RULES: Dict[DetectorKind, DiagnosticRule] = {
    DetectorKind.REENTRANCY: DiagnosticRule(
        error_id="reentrancy",
        severity=DiagnosticSeverity.ERROR,
        cwe=841,
        confidence=Confidence.MEDIUM,
        message=(
            "Balance is updated after lamports are transferred out in "
            "'{function}'; update the ledger before the transfer"
        ),
    ),
    DetectorKind.BAD_RANDOMNESS: DiagnosticRule(
        error_id="badRandomness",
        severity=DiagnosticSeverity.WARNING,
        cwe=330,
        confidence=Confidence.LOW,
        message="'{function}' relies on a predictable randomness source",
    ),
    DetectorKind.TIME_MANIPULATION: DiagnosticRule(
        error_id="timeManipulation",
        severity=DiagnosticSeverity.WARNING,
        cwe=829,
        confidence=Confidence.LOW,
        message="'{function}' depends on the validator clock, which can be skewed",
    ),
    DetectorKind.NUMERICAL_PRECISION: DiagnosticRule(
        error_id="numericalPrecisionError",
        severity=DiagnosticSeverity.STYLE,
        cwe=1339,
        confidence=Confidence.LOW,
        message="'{function}' rounds a floating-point value; precision may be lost",
    ),
}


@dataclass(frozen=True)
class Diagnostic:
    """
    A single diagnostic finding.

    Attributes
    ----------
    error_id   : Unique identifier (e.g., "reentrancy")
    message    : Human-readable description
    severity   : DiagnosticSeverity
    location   : Span of the evidence
    confidence : Confidence level
    cwe        : CWE identifier (0 = none)
    detector   : Detector kind value that produced this
    function   : Name of the analysed function
    """
    error_id: str
    message: str
    severity: DiagnosticSeverity
    location: SourceSpan = EMPTY_SPAN
    confidence: Confidence = Confidence.LOW
    cwe: int = 0
    detector: str = ""
    function: str = ""

    def to_json(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "file": self.location.file,
            "linenr": self.location.line,
            "column": self.location.column,
            "lo": self.location.lo,
            "hi": self.location.hi,
            "severity": self.severity.value,
            "message": self.message,
            "errorId": self.error_id,
            "function": self.function,
        }
        if self.cwe:
            result["cwe"] = self.cwe
        return result

    def to_json_str(self) -> str:
        return json.dumps(self.to_json())

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message."""
        sev = self.severity.value
        return f"{self.location}: {sev}: {self.message} [{self.error_id}]"


def diagnose(finding: Finding, function: str = "") -> Optional[Diagnostic]:
    """Build the diagnostic for a positive finding, ``None`` otherwise."""
    if not finding.triggered:
        return None
    rule = RULES[finding.detector_kind]
    return Diagnostic(
        error_id=rule.error_id,
        message=rule.message.format(function=function or "<anonymous>"),
        severity=rule.severity,
        location=finding.span,
        confidence=rule.confidence,
        cwe=rule.cwe,
        detector=finding.detector_kind.value,
        function=function,
    )


__all__ = [
    "DiagnosticSeverity",
    "Confidence",
    "DiagnosticRule",
    "RULES",
    "Diagnostic",
    "diagnose",
]
