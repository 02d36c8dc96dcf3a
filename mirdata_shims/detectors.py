"""
mirdata_shims/detectors.py
══════════════════════════

Per-function vulnerability detectors.

Every detector satisfies the :class:`Detector` protocol::

    record(observation)   feed one fact seen during traversal
    check() -> bool       pure verdict over the recorded facts
    span()  -> SourceSpan where to point a positive finding

Detectors are created fresh for each function by the traversal driver and
dropped once ``check()`` has been consumed.  They never raise on a
well-formed CFG: missing evidence is a negative finding.

Reentrancy
──────────

The reentrancy detector looks for the checks-effects-interactions violation:

  1. **LOAD**     a balance-read call stores a user's balance into a place
  2. **TRANSFER** a value-transfer call moves lamports out of the contract
  3. **STORE**    the same place is written, or decremented under an
                  overflow-checked subtraction, in a block *after* the
                  last transfer

Block ids stand in for program order.  The "last" transfer is the transfer
in the block with the greatest id.

Flag detectors
──────────────

``BadRandomnessDetector``, ``TimeManipulationDetector`` and
``NumericalPrecisionDetector`` only answer "was an API from my signature
table referenced in this function?".  They are keyed to three distinct
tables: randomness-source, clock-source and rounding-function.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    ClassVar,
    Dict,
    List,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

from mirdata_shims.mir_model import (
    EMPTY_SPAN,
    Assert,
    Assign,
    BasicBlockId,
    BlockItem,
    CallExpr,
    Copy,
    Overflow,
    Place,
    SourceSpan,
    same_tracked_location,
)
from mirdata_shims.signatures import (
    CLOCK_SOURCE,
    RANDOMNESS_SOURCE,
    ROUNDING_FUNCTION,
    SignatureTables,
    default_signatures,
)

logger = logging.getLogger(__name__)


class DetectorKind(Enum):
    REENTRANCY = "reentrancy"
    BAD_RANDOMNESS = "bad-randomness"
    TIME_MANIPULATION = "time-manipulation"
    NUMERICAL_PRECISION = "numerical-precision"


@runtime_checkable
class Detector(Protocol):
    """The capability shared by every detector."""

    kind: ClassVar[DetectorKind]

    def record(self, observation: Any) -> None:
        ...

    def check(self) -> bool:
        ...

    def span(self) -> SourceSpan:
        ...


@dataclass(frozen=True)
class Finding:
    """One detector's verdict for one function."""

    detector_kind: DetectorKind
    triggered: bool
    span: SourceSpan = EMPTY_SPAN

    @classmethod
    def of(cls, detector: Detector) -> Finding:
        triggered = detector.check()
        return cls(
            detector_kind=detector.kind,
            triggered=triggered,
            span=detector.span() if triggered else EMPTY_SPAN,
        )


# ═════════════════════════════════════════════════════════════════════════
#  REENTRANCY
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BlockItemObserved:
    """A statement or terminator visited in ``block_id``."""
    block_id: BasicBlockId
    item: BlockItem


@dataclass(frozen=True)
class CallObserved:
    """A call to ``callee`` whose result is stored into ``destination``."""
    block_id: BasicBlockId
    callee: str
    destination: Optional[Place] = None
    span: SourceSpan = EMPTY_SPAN


class ReentrancyDetector:
    """
    Detects balance writes that happen after an external value transfer.

    State
    ─────
      blocks          : block id → every statement/terminator visited there
      transfers       : block id → callee of the value-transfer call in it
      tracked_balance : destination of the first balance-read call
      balance_span    : span of that balance-read call

    Usage
    ─────
    >>> det = ReentrancyDetector()
    >>> det.observe_call(3, "std::collections::HashMap::get_mut", Place(7))
    >>> det.tracked_balance
    Place(base=7, projection=())
    """

    kind: ClassVar[DetectorKind] = DetectorKind.REENTRANCY

    def __init__(self, signatures: Optional[SignatureTables] = None) -> None:
        self._signatures = signatures or default_signatures()
        self.blocks: Dict[BasicBlockId, List[BlockItem]] = {}
        self.transfers: Dict[BasicBlockId, str] = {}
        self.tracked_balance: Optional[Place] = None
        self.balance_span: SourceSpan = EMPTY_SPAN

    # ── recording hooks ──────────────────────────────────────────────

    def record(self, observation: Any) -> None:
        if isinstance(observation, BlockItemObserved):
            self.observe_block_content(observation.block_id, observation.item)
        elif isinstance(observation, CallObserved):
            self.observe_call(
                observation.block_id,
                observation.callee,
                observation.destination,
                observation.span,
            )

    def observe_block_content(self, block_id: BasicBlockId, item: BlockItem) -> None:
        self.blocks.setdefault(block_id, []).append(item)

    def observe_call(
        self,
        block_id: BasicBlockId,
        callee: str,
        destination: Optional[Place],
        span: SourceSpan = EMPTY_SPAN,
    ) -> None:
        # First balance read wins; later ones may be decoys.
        if (
            self.tracked_balance is None
            and destination is not None
            and self._signatures.balance_read.matches(callee)
        ):
            self.tracked_balance = destination
            self.balance_span = span
            logger.debug("Tracking balance in %s (bb%d)", destination, block_id)
        if self._signatures.value_transfer.matches(callee):
            self.transfers[block_id] = callee

    # ── verdict ──────────────────────────────────────────────────────

    @property
    def last_transfer_block(self) -> Optional[BasicBlockId]:
        return max(self.transfers) if self.transfers else None

    def check(self) -> bool:
        return self._find_violation() is not None

    def span(self) -> SourceSpan:
        violation = self._find_violation()
        if violation is None:
            return EMPTY_SPAN
        _, item = violation
        return self.balance_span.to(item.span)

    def _find_violation(self) -> Optional[Tuple[BasicBlockId, BlockItem]]:
        last_bb = self.last_transfer_block
        if last_bb is None:
            return None
        logger.debug(
            "Last transfer in bb%d, balance variable %s",
            last_bb, self.tracked_balance,
        )
        if self.tracked_balance is None:
            return None
        for bb in sorted(self.blocks):
            if bb <= last_bb:
                continue
            for item in self.blocks[bb]:
                if self._writes_balance(item):
                    logger.debug("Balance touched after transfer in bb%d", bb)
                    return bb, item
        return None

    def _writes_balance(self, item: BlockItem) -> bool:
        if isinstance(item, Assign):
            # an inline balance read is a read, not a write
            if isinstance(item.source, CallExpr) and (
                self._signatures.balance_read.matches(item.source.callee)
            ):
                return False
            return same_tracked_location(item.destination, self.tracked_balance)
        # balance -= amount
        if isinstance(item, Assert) and isinstance(item.kind, Overflow):
            left = item.kind.left
            if item.kind.is_subtraction and isinstance(left, Copy):
                return same_tracked_location(left.place, self.tracked_balance)
        return False

    def __repr__(self) -> str:
        return (
            f"<ReentrancyDetector blocks={len(self.blocks)} "
            f"transfers={sorted(self.transfers)} balance={self.tracked_balance}>"
        )


# ═════════════════════════════════════════════════════════════════════════
#  FLAG DETECTORS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class FlagState:
    triggered: bool = False
    span: SourceSpan = EMPTY_SPAN

    def mark(self, span: SourceSpan) -> None:
        if not self.triggered:
            self.triggered = True
            self.span = span


class BadRandomnessDetector:
    """Flags use of an on-chain randomness source (``rand`` crate APIs)."""

    kind: ClassVar[DetectorKind] = DetectorKind.BAD_RANDOMNESS
    signature_table: ClassVar[str] = RANDOMNESS_SOURCE

    def __init__(self) -> None:
        self.state = FlagState()

    def record(self, span: SourceSpan) -> None:
        self.state.mark(span)

    def check(self) -> bool:
        return self.state.triggered

    def span(self) -> SourceSpan:
        return self.state.span if self.state.triggered else EMPTY_SPAN


class TimeManipulationDetector:
    """Flags reads of the validator clock, e.g. ``Clock::get()``.

    Validators control the reported unix timestamp within a tolerance, so
    logic gated on it can be nudged.
    """

    kind: ClassVar[DetectorKind] = DetectorKind.TIME_MANIPULATION
    signature_table: ClassVar[str] = CLOCK_SOURCE

    def __init__(self) -> None:
        self.state = FlagState()

    def record(self, span: SourceSpan) -> None:
        self.state.mark(span)

    def check(self) -> bool:
        return self.state.triggered

    def span(self) -> SourceSpan:
        return self.state.span if self.state.triggered else EMPTY_SPAN


class NumericalPrecisionDetector:
    """Flags float rounding (``f64::round``) in token arithmetic."""

    kind: ClassVar[DetectorKind] = DetectorKind.NUMERICAL_PRECISION
    signature_table: ClassVar[str] = ROUNDING_FUNCTION

    def __init__(self) -> None:
        self.state = FlagState()

    def record(self, span: SourceSpan) -> None:
        self.state.mark(span)

    def check(self) -> bool:
        return self.state.triggered

    def span(self) -> SourceSpan:
        return self.state.span if self.state.triggered else EMPTY_SPAN


FLAG_DETECTORS = {
    DetectorKind.BAD_RANDOMNESS: BadRandomnessDetector,
    DetectorKind.TIME_MANIPULATION: TimeManipulationDetector,
    DetectorKind.NUMERICAL_PRECISION: NumericalPrecisionDetector,
}

ALL_DETECTORS = frozenset(DetectorKind)


__all__ = [
    "DetectorKind",
    "Detector",
    "Finding",
    "BlockItemObserved",
    "CallObserved",
    "ReentrancyDetector",
    "FlagState",
    "BadRandomnessDetector",
    "TimeManipulationDetector",
    "NumericalPrecisionDetector",
    "FLAG_DETECTORS",
    "ALL_DETECTORS",
]
