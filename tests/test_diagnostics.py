# tests/test_diagnostics.py
"""Tests for turning findings into diagnostics."""

import json

import pytest

from mirdata_shims.detectors import DetectorKind, Finding
from mirdata_shims.diagnostics import RULES, DiagnosticSeverity, diagnose
from mirdata_shims.mir_model import EMPTY_SPAN
from tests.builders import span


class TestDiagnose:
    """Test turning findings into diagnostics."""

    def test_negative_finding(self):
        assert diagnose(Finding(DetectorKind.REENTRANCY, False), "withdraw") is None

    def test_reentrancy(self):
        diag = diagnose(Finding(DetectorKind.REENTRANCY, True, span(6)), "withdraw")
        assert diag.error_id == "reentrancy"
        assert diag.severity is DiagnosticSeverity.ERROR
        assert diag.cwe == 841
        assert "'withdraw'" in diag.message
        assert diag.location == span(6)

    @pytest.mark.parametrize("kind", list(DetectorKind))
    def test_every_kind_has_rule(self, kind):
        diag = diagnose(Finding(kind, True, span(1)), "f")
        assert diag.error_id == RULES[kind].error_id
        assert diag.detector == kind.value
        assert diag.cwe > 0

    def test_anonymous_function(self):
        diag = diagnose(Finding(DetectorKind.BAD_RANDOMNESS, True, EMPTY_SPAN))
        assert "<anonymous>" in diag.message


class TestDiagnosticOutput:
    """Test the JSON and GCC renderings of a diagnostic."""

    def test_json(self):
        diag = diagnose(Finding(DetectorKind.TIME_MANIPULATION, True, span(4)), "f")
        payload = json.loads(diag.to_json_str())
        assert payload == {
            "file": "src/lib.rs",
            "linenr": 4,
            "column": 5,
            "lo": 400,
            "hi": 420,
            "severity": "warning",
            "message": diag.message,
            "errorId": "timeManipulation",
            "function": "f",
            "cwe": 829,
        }

    def test_gcc_format(self):
        diag = diagnose(Finding(DetectorKind.NUMERICAL_PRECISION, True, span(9)), "fee")
        assert diag.to_gcc_format() == (
            "src/lib.rs:9:5: style: 'fee' rounds a floating-point value; "
            "precision may be lost [numericalPrecisionError]"
        )
