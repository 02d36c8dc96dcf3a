"""
mirdata_shims/driver.py
═══════════════════════

Walks function CFGs and feeds the detectors.

  ┌──────────────────────────────────────────────────────────┐
  │                     CheckerRunner                        │
  │   for each FunctionBody in the Program:                  │
  │   ┌──────────────────────────────────────────────────┐   │
  │   │               FunctionVisitor                    │   │
  │   │  fresh detectors ─► visit blocks in id order ─►  │   │
  │   │  record hooks per statement / terminator ─►      │   │
  │   │  check() every detector ─► FunctionReport        │   │
  │   └──────────────────────────────────────────────────┘   │
  │   positive findings ─► Diagnostic                        │
  └──────────────────────────────────────────────────────────┘

Analysis is sequential and function-scoped: no detector outlives the
visit of the function it was created for.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from mirdata_shims.detectors import (
    ALL_DETECTORS,
    FLAG_DETECTORS,
    BlockItemObserved,
    CallObserved,
    Detector,
    DetectorKind,
    Finding,
    ReentrancyDetector,
)
from mirdata_shims.diagnostics import Diagnostic, DiagnosticSeverity, diagnose
from mirdata_shims.mir_model import (
    Assign,
    BasicBlockId,
    BlockItem,
    Call,
    CallExpr,
    FunctionBody,
    Program,
    load_program,
    referenced_paths,
)
from mirdata_shims.signatures import (
    SignatureTables,
    default_signatures,
    load_signatures,
)

logger = logging.getLogger(__name__)


@dataclass
class FunctionReport:
    """Every enabled detector's finding for one function."""

    function: str
    findings: List[Finding] = field(default_factory=list)

    def finding(self, kind: DetectorKind) -> Optional[Finding]:
        for f in self.findings:
            if f.detector_kind is kind:
                return f
        return None

    def triggered(self, kind: DetectorKind) -> bool:
        f = self.finding(kind)
        return f is not None and f.triggered

    @property
    def positive(self) -> List[Finding]:
        return [f for f in self.findings if f.triggered]

    def diagnostics(self) -> List[Diagnostic]:
        diags = []
        for f in self.positive:
            diag = diagnose(f, self.function)
            if diag is not None:
                diags.append(diag)
        return diags


class FunctionVisitor:
    """
    Visits one function CFG with a fresh set of detectors.

    Blocks are visited in increasing id order and, inside a block,
    statements before the terminator.  For each item:

      - the reentrancy detector records the item as block content;
      - calls are reported to it with their result place.  For a call
        lowered into an assignment, the result place is the assignment's
        destination, which only lives for that one statement's visit;
      - every referenced item path is matched against the flag detectors'
        signature tables.
    """

    def __init__(
        self,
        signatures: Optional[SignatureTables] = None,
        enabled: Optional[Iterable[DetectorKind]] = None,
    ) -> None:
        self.signatures = signatures or default_signatures()
        self.enabled = frozenset(enabled) if enabled is not None else ALL_DETECTORS

    def visit(self, body: FunctionBody) -> FunctionReport:
        reentrancy: Optional[ReentrancyDetector] = None
        if DetectorKind.REENTRANCY in self.enabled:
            reentrancy = ReentrancyDetector(self.signatures)
        flags = [
            cls() for kind, cls in FLAG_DETECTORS.items() if kind in self.enabled
        ]

        for block in body:
            for item in block.items():
                if reentrancy is not None:
                    self._record_reentrancy(reentrancy, block.id, item)
                if flags:
                    self._record_flags(flags, item)

        detectors: List[Detector] = []
        if reentrancy is not None:
            detectors.append(reentrancy)
        detectors.extend(flags)
        report = FunctionReport(body.name, [Finding.of(d) for d in detectors])
        if report.positive:
            logger.debug(
                "%s: %s", body.name,
                ", ".join(f.detector_kind.value for f in report.positive),
            )
        return report

    def _record_reentrancy(
        self,
        detector: ReentrancyDetector,
        block_id: BasicBlockId,
        item: BlockItem,
    ) -> None:
        detector.record(BlockItemObserved(block_id, item))
        if isinstance(item, Call):
            detector.record(
                CallObserved(block_id, item.callee, item.destination, item.span)
            )
        elif isinstance(item, Assign) and isinstance(item.source, CallExpr):
            assign_dest = item.destination
            detector.record(
                CallObserved(block_id, item.source.callee, assign_dest, item.span)
            )

    def _record_flags(self, flags: Sequence[Any], item: BlockItem) -> None:
        for path in referenced_paths(item):
            for detector in flags:
                if self.signatures.matches(detector.signature_table, path):
                    detector.record(item.span)


@dataclass
class CheckerRunResults:
    """
    Aggregate results from running the detectors over a program.

    Attributes
    ----------
    reports                 : One FunctionReport per analysed function
    diagnostics             : Diagnostics for every positive finding
    diagnostics_by_detector : Diagnostics grouped by detector kind value
    stats                   : Timing and counting statistics
    """
    reports: List[FunctionReport] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    diagnostics_by_detector: Dict[str, List[Diagnostic]] = field(
        default_factory=lambda: defaultdict(list)
    )
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def error_count(self) -> int:
        return sum(
            1 for d in self.diagnostics
            if d.severity == DiagnosticSeverity.ERROR
        )

    @property
    def warning_count(self) -> int:
        return sum(
            1 for d in self.diagnostics
            if d.severity == DiagnosticSeverity.WARNING
        )

    @property
    def total_count(self) -> int:
        return len(self.diagnostics)

    def report(self, function: str) -> Optional[FunctionReport]:
        for r in self.reports:
            if r.function == function:
                return r
        return None

    def by_severity(self, severity: DiagnosticSeverity) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == severity]

    def by_function(self, function: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.function == function]

    def by_cwe(self, cwe: int) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.cwe == cwe]

    def to_json_lines(self) -> str:
        return "\n".join(d.to_json_str() for d in self.diagnostics)

    def to_gcc_format(self) -> str:
        return "\n".join(d.to_gcc_format() for d in self.diagnostics)

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Analysed {len(self.reports)} functions: {self.total_count} "
            f"diagnostics ({self.error_count} errors, "
            f"{self.warning_count} warnings)",
        ]
        for kind in DetectorKind:
            count = len(self.diagnostics_by_detector.get(kind.value, []))
            if count:
                lines.append(f"  {kind.value}: {count} findings")
        elapsed = self.stats.get("elapsed_ms")
        if elapsed is not None:
            lines.append(f"  elapsed: {elapsed:.1f}ms")
        return "\n".join(lines)


class CheckerRunner:
    """
    Runs the detectors over every function of a Program.

    Usage
    -----
    >>> runner = CheckerRunner()
    >>> results = runner.run(program)
    >>> print(results.summary())

    >>> # Only the reentrancy detector, custom tables:
    >>> runner = CheckerRunner(signatures=tables,
    ...                        enabled=[DetectorKind.REENTRANCY])
    """

    def __init__(
        self,
        signatures: Optional[SignatureTables] = None,
        enabled: Optional[Iterable[DetectorKind]] = None,
    ) -> None:
        self.visitor = FunctionVisitor(signatures, enabled)

    @property
    def signatures(self) -> SignatureTables:
        return self.visitor.signatures

    def run_function(self, body: FunctionBody) -> FunctionReport:
        return self.visitor.visit(body)

    def run(self, program: Union[Program, Iterable[FunctionBody]]) -> CheckerRunResults:
        functions = program.functions if isinstance(program, Program) else list(program)
        results = CheckerRunResults()

        t0 = time.monotonic()
        for body in functions:
            report = self.visitor.visit(body)
            results.reports.append(report)
            for diag in report.diagnostics():
                results.diagnostics.append(diag)
                results.diagnostics_by_detector[diag.detector].append(diag)
        elapsed_ms = (time.monotonic() - t0) * 1000.0

        results.stats["functions"] = len(results.reports)
        results.stats["elapsed_ms"] = elapsed_ms
        logger.info(
            "Analysed %d functions, %d diagnostics in %.1fms",
            len(results.reports), results.total_count, elapsed_ms,
        )
        return results


def analyze_dump(
    dump_file: Union[str, Path],
    signatures_file: Optional[Union[str, Path]] = None,
    enabled: Optional[Iterable[DetectorKind]] = None,
) -> CheckerRunResults:
    """
    Load a JSON CFG dump and run the detectors over it.

    Parameters
    ----------
    dump_file       : Path to the JSON dump produced by the frontend
    signatures_file : Optional S-expression signature file
    enabled         : Detector kinds to run (None = all)
    """
    signatures = load_signatures(signatures_file) if signatures_file else None
    program = load_program(dump_file)
    return CheckerRunner(signatures, enabled).run(program)


__all__ = [
    "FunctionReport",
    "FunctionVisitor",
    "CheckerRunResults",
    "CheckerRunner",
    "analyze_dump",
]
