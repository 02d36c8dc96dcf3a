"""
mirdata_shims.mir_model
=======================

The control-flow graph model consumed by the detectors.

A frontend lowers each contract function into a :class:`FunctionBody`: a set
of :class:`BasicBlock` objects keyed by a totally ordered integer id.  Every
block holds an ordered list of statements and one terminator; every statement
and terminator carries a :class:`SourceSpan`.

Public API
----------
    SourceSpan              - byte/line range in the contract source
    Place                   - storage location (base local + projections)
    same_tracked_location   - the single place-identity rule used by detectors
    Copy / Move / Constant  - operands
    Use / BinaryOp / Ref / CallExpr              - rvalues
    Assign / StorageLive / StorageDead / Nop     - statements
    Goto / SwitchInt / Call / Assert / Return / Unreachable - terminators
    Overflow / BoundsCheck / DivisionByZero      - assert kinds
    BasicBlock, FunctionBody, Program
    load_program, program_from_dict, function_from_dict

Typical usage::

    from mirdata_shims.mir_model import load_program

    program = load_program("withdraw.mir.json")
    for body in program.functions:
        print(f"{body.name}: {len(body)} blocks")
        for block in body:
            print(f"  {block.label()}")

Implementation notes
--------------------
* Block ids are plain ``int`` values.  Detectors use their ordering as a
  proxy for program order; no dominance information is computed here.
* All model classes except :class:`BasicBlock` and :class:`FunctionBody` are
  frozen dataclasses, so statements can be shared freely between the CFG and
  detector state.
* The JSON loader validates the dump before any detector sees it.  A dump that
  violates the model raises :class:`MalformedCFGError`.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from mirdata_shims.errors import MalformedCFGError

BasicBlockId = int
VariableId = int


# ---------------------------------------------------------------------------
# Source spans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceSpan:
    """A range in contract source.  ``lo``/``hi`` are byte positions."""

    file: str = ""
    lo: int = 0
    hi: int = 0
    line: int = 0
    column: int = 0

    @property
    def is_empty(self) -> bool:
        return self.lo == 0 and self.hi == 0 and self.line == 0

    def to(self, other: SourceSpan) -> SourceSpan:
        """Return the smallest span covering both ``self`` and ``other``."""
        if other.is_empty:
            return self
        if self.is_empty:
            return other
        first = self if self.lo <= other.lo else other
        return SourceSpan(
            file=self.file or other.file,
            lo=min(self.lo, other.lo),
            hi=max(self.hi, other.hi),
            line=first.line,
            column=first.column,
        )

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


EMPTY_SPAN = SourceSpan()


# ---------------------------------------------------------------------------
# Places
# ---------------------------------------------------------------------------


class ProjectionKind(enum.Enum):
    DEREF = "deref"
    FIELD = "field"
    INDEX = "index"
    CONSTANT_INDEX = "constant_index"


@dataclass(frozen=True)
class ProjectionElem:
    """One step of a place projection.

    ``value`` is the field index for FIELD, the index local for INDEX and the
    offset for CONSTANT_INDEX.  It is unused for DEREF.
    """

    kind: ProjectionKind
    value: Optional[int] = None


DEREF = ProjectionElem(ProjectionKind.DEREF)


@dataclass(frozen=True)
class Place:
    """A storage location: a base local plus an optional projection path."""

    base: VariableId
    projection: Tuple[ProjectionElem, ...] = ()

    def project(self, elem: ProjectionElem) -> Place:
        return Place(self.base, self.projection + (elem,))

    def deref(self) -> Place:
        return self.project(DEREF)

    def __str__(self) -> str:
        text = f"_{self.base}"
        for elem in self.projection:
            if elem.kind is ProjectionKind.DEREF:
                text = f"(*{text})"
            elif elem.kind is ProjectionKind.FIELD:
                text = f"({text}.{elem.value})"
            elif elem.kind is ProjectionKind.INDEX:
                text = f"{text}[_{elem.value}]"
            else:
                text = f"{text}[{elem.value}]"
        return text


def same_tracked_location(a: Optional[Place], b: Optional[Place]) -> bool:
    """Whether two places denote the same tracked location.

    Only the base local is compared; field and index projections are ignored.
    This over-approximates: distinct fields of one struct are conflated.
    """
    if a is None or b is None:
        return False
    return a.base == b.base


# ---------------------------------------------------------------------------
# Operands and rvalues
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Copy:
    place: Place


@dataclass(frozen=True)
class Move:
    place: Place


@dataclass(frozen=True)
class Constant:
    """A constant operand.  ``path`` names the item a function/type constant
    refers to, e.g. ``solana_program::sysvar::clock::Clock::get``."""

    value: Any = None
    path: Optional[str] = None


Operand = Union[Copy, Move, Constant]


class BinOp(enum.Enum):
    ADD = "Add"
    SUB = "Sub"
    MUL = "Mul"
    DIV = "Div"
    REM = "Rem"
    SHL = "Shl"
    SHR = "Shr"
    BIT_AND = "BitAnd"
    BIT_OR = "BitOr"
    BIT_XOR = "BitXor"
    EQ = "Eq"
    NE = "Ne"
    LT = "Lt"
    LE = "Le"
    GT = "Gt"
    GE = "Ge"


@dataclass(frozen=True)
class Use:
    operand: Operand


@dataclass(frozen=True)
class BinaryOp:
    op: BinOp
    left: Operand
    right: Operand
    checked: bool = False


@dataclass(frozen=True)
class Ref:
    place: Place
    mutable: bool = False


@dataclass(frozen=True)
class CallExpr:
    """A call lowered inline into the source of an assignment."""

    callee: str
    args: Tuple[Operand, ...] = ()


Rvalue = Union[Use, BinaryOp, Ref, CallExpr]


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Assign:
    destination: Place
    source: Rvalue
    span: SourceSpan = EMPTY_SPAN


@dataclass(frozen=True)
class StorageLive:
    local: VariableId
    span: SourceSpan = EMPTY_SPAN


@dataclass(frozen=True)
class StorageDead:
    local: VariableId
    span: SourceSpan = EMPTY_SPAN


@dataclass(frozen=True)
class Nop:
    span: SourceSpan = EMPTY_SPAN


Statement = Union[Assign, StorageLive, StorageDead, Nop]


# ---------------------------------------------------------------------------
# Assert kinds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Overflow:
    """Runtime overflow guard around a checked binary operation."""

    op: BinOp
    left: Operand
    right: Operand

    @property
    def is_subtraction(self) -> bool:
        return self.op is BinOp.SUB


@dataclass(frozen=True)
class BoundsCheck:
    length: Operand
    index: Operand


@dataclass(frozen=True)
class DivisionByZero:
    operand: Operand


AssertKind = Union[Overflow, BoundsCheck, DivisionByZero]


def overflowing_subtract(left: Operand, right: Operand = Constant()) -> Overflow:
    """Shorthand for the ``left - right`` overflow guard."""
    return Overflow(BinOp.SUB, left, right)


# ---------------------------------------------------------------------------
# Terminators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Goto:
    target: BasicBlockId
    span: SourceSpan = EMPTY_SPAN

    def successors(self) -> Tuple[BasicBlockId, ...]:
        return (self.target,)


@dataclass(frozen=True)
class SwitchInt:
    discriminant: Operand
    targets: Tuple[Tuple[int, BasicBlockId], ...] = ()
    otherwise: Optional[BasicBlockId] = None
    span: SourceSpan = EMPTY_SPAN

    def successors(self) -> Tuple[BasicBlockId, ...]:
        succ = tuple(bb for _, bb in self.targets)
        if self.otherwise is not None:
            succ += (self.otherwise,)
        return succ


@dataclass(frozen=True)
class Call:
    callee: str
    args: Tuple[Operand, ...] = ()
    destination: Optional[Place] = None
    target: Optional[BasicBlockId] = None
    span: SourceSpan = EMPTY_SPAN

    def successors(self) -> Tuple[BasicBlockId, ...]:
        return (self.target,) if self.target is not None else ()


@dataclass(frozen=True)
class Assert:
    kind: AssertKind
    cond: Optional[Operand] = None
    expected: bool = True
    target: Optional[BasicBlockId] = None
    span: SourceSpan = EMPTY_SPAN

    def successors(self) -> Tuple[BasicBlockId, ...]:
        return (self.target,) if self.target is not None else ()


@dataclass(frozen=True)
class Return:
    span: SourceSpan = EMPTY_SPAN

    def successors(self) -> Tuple[BasicBlockId, ...]:
        return ()


@dataclass(frozen=True)
class Unreachable:
    span: SourceSpan = EMPTY_SPAN

    def successors(self) -> Tuple[BasicBlockId, ...]:
        return ()


Terminator = Union[Goto, SwitchInt, Call, Assert, Return, Unreachable]
BlockItem = Union[Statement, Terminator]


# ---------------------------------------------------------------------------
# Operand / path traversal helpers
# ---------------------------------------------------------------------------


def _rvalue_operands(rvalue: Rvalue) -> Iterator[Operand]:
    if isinstance(rvalue, Use):
        yield rvalue.operand
    elif isinstance(rvalue, BinaryOp):
        yield rvalue.left
        yield rvalue.right
    elif isinstance(rvalue, CallExpr):
        yield from rvalue.args


def item_operands(item: BlockItem) -> Iterator[Operand]:
    """Yield every operand a statement or terminator reads."""
    if isinstance(item, Assign):
        yield from _rvalue_operands(item.source)
    elif isinstance(item, Call):
        yield from item.args
    elif isinstance(item, SwitchInt):
        yield item.discriminant
    elif isinstance(item, Assert):
        if item.cond is not None:
            yield item.cond
        kind = item.kind
        if isinstance(kind, Overflow):
            yield kind.left
            yield kind.right
        elif isinstance(kind, BoundsCheck):
            yield kind.length
            yield kind.index
        elif isinstance(kind, DivisionByZero):
            yield kind.operand


def referenced_paths(item: BlockItem) -> Iterator[str]:
    """Yield every item path a statement or terminator references.

    This covers called functions (``Call`` terminators and inline
    ``CallExpr`` sources) and path-carrying constants among the operands.
    """
    if isinstance(item, Call):
        yield item.callee
    elif isinstance(item, Assign) and isinstance(item.source, CallExpr):
        yield item.source.callee
    for operand in item_operands(item):
        if isinstance(operand, Constant) and operand.path:
            yield operand.path


# ---------------------------------------------------------------------------
# Blocks, functions, programs
# ---------------------------------------------------------------------------


@dataclass
class BasicBlock:
    """A basic block: ordered statements followed by one terminator."""

    id: BasicBlockId
    statements: List[Statement] = field(default_factory=list)
    terminator: Optional[Terminator] = None

    def items(self) -> Iterator[BlockItem]:
        """Statements in order, then the terminator."""
        yield from self.statements
        if self.terminator is not None:
            yield self.terminator

    def successors(self) -> Tuple[BasicBlockId, ...]:
        if self.terminator is None:
            return ()
        return self.terminator.successors()

    def label(self) -> str:
        term = type(self.terminator).__name__ if self.terminator else "-"
        return f"bb{self.id} [{len(self.statements)} stmts, {term}]"


class FunctionBody:
    """The CFG of one function.

    Blocks are iterated in increasing id order, which is the order the
    traversal driver visits them in.
    """

    __slots__ = ("name", "span", "_blocks")

    def __init__(
        self,
        name: str,
        blocks: Iterable[BasicBlock] = (),
        span: SourceSpan = EMPTY_SPAN,
    ) -> None:
        self.name = name
        self.span = span
        self._blocks: Dict[BasicBlockId, BasicBlock] = {}
        for block in blocks:
            self.add_block(block)

    def add_block(self, block: BasicBlock) -> None:
        if block.id in self._blocks:
            raise MalformedCFGError(
                "duplicate basic block id", function=self.name, block=block.id
            )
        self._blocks[block.id] = block

    def block(self, block_id: BasicBlockId) -> Optional[BasicBlock]:
        return self._blocks.get(block_id)

    @property
    def block_ids(self) -> List[BasicBlockId]:
        return sorted(self._blocks)

    def successors(self, block_id: BasicBlockId) -> Tuple[BasicBlockId, ...]:
        block = self._blocks.get(block_id)
        return block.successors() if block is not None else ()

    def predecessors(self, block_id: BasicBlockId) -> List[BasicBlockId]:
        return [bid for bid in self.block_ids if block_id in self.successors(bid)]

    def validate(self) -> None:
        """Raise :class:`MalformedCFGError` on dangling successor ids."""
        for bid in self.block_ids:
            for succ in self.successors(bid):
                if succ not in self._blocks:
                    raise MalformedCFGError(
                        f"terminator targets unknown block bb{succ}",
                        function=self.name,
                        block=bid,
                    )

    def __iter__(self) -> Iterator[BasicBlock]:
        for bid in self.block_ids:
            yield self._blocks[bid]

    def __len__(self) -> int:
        return len(self._blocks)

    def __repr__(self) -> str:
        return f"FunctionBody(name={self.name!r}, nblocks={len(self)})"


@dataclass
class Program:
    """All function bodies lowered from one source file."""

    file: str = ""
    functions: List[FunctionBody] = field(default_factory=list)

    def function(self, name: str) -> Optional[FunctionBody]:
        for body in self.functions:
            if body.name == name:
                return body
        return None


# ---------------------------------------------------------------------------
# JSON dump loading
# ---------------------------------------------------------------------------


class _Loader:
    """Turns the JSON dump of one function into model objects."""

    def __init__(self, file: str, function: str) -> None:
        self.file = file
        self.function = function
        self.block: Optional[int] = None

    def fail(self, message: str) -> MalformedCFGError:
        return MalformedCFGError(message, function=self.function, block=self.block)

    def require(self, data: Mapping[str, Any], key: str, what: str) -> Any:
        if not isinstance(data, Mapping):
            raise self.fail(f"{what} must be an object, got {type(data).__name__}")
        if key not in data:
            raise self.fail(f"{what} is missing '{key}'")
        return data[key]

    def span(self, data: Any) -> SourceSpan:
        if data is None:
            raise self.fail("missing span")
        try:
            return SourceSpan(
                file=data.get("file", self.file),
                lo=int(data.get("lo", 0)),
                hi=int(data.get("hi", 0)),
                line=int(data.get("line", 0)),
                column=int(data.get("column", 0)),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise self.fail(f"bad span {data!r}") from exc

    def place(self, data: Any) -> Place:
        local = self.require(data, "local", "place")
        elems = []
        for raw in data.get("projection", ()):
            kind_name = self.require(raw, "kind", "projection")
            try:
                kind = ProjectionKind(kind_name)
            except ValueError as exc:
                raise self.fail(f"unknown projection kind {kind_name!r}") from exc
            if kind is ProjectionKind.DEREF:
                elems.append(DEREF)
            elif kind is ProjectionKind.FIELD:
                elems.append(ProjectionElem(kind, int(self.require(raw, "index", "field"))))
            elif kind is ProjectionKind.INDEX:
                elems.append(ProjectionElem(kind, int(self.require(raw, "local", "index"))))
            else:
                elems.append(ProjectionElem(kind, int(self.require(raw, "offset", "index"))))
        return Place(int(local), tuple(elems))

    def operand(self, data: Any) -> Operand:
        kind = self.require(data, "kind", "operand")
        if kind == "copy":
            return Copy(self.place(self.require(data, "place", "operand")))
        if kind == "move":
            return Move(self.place(self.require(data, "place", "operand")))
        if kind == "constant":
            return Constant(value=data.get("value"), path=data.get("path"))
        raise self.fail(f"unknown operand kind {kind!r}")

    def operands(self, data: Any) -> Tuple[Operand, ...]:
        return tuple(self.operand(arg) for arg in data or ())

    def binop(self, name: Any) -> BinOp:
        try:
            return BinOp(name)
        except ValueError as exc:
            raise self.fail(f"unknown binary operator {name!r}") from exc

    def rvalue(self, data: Any) -> Rvalue:
        kind = self.require(data, "kind", "rvalue")
        if kind == "Use":
            return Use(self.operand(self.require(data, "operand", "Use")))
        if kind in ("BinaryOp", "CheckedBinaryOp"):
            return BinaryOp(
                self.binop(self.require(data, "op", kind)),
                self.operand(self.require(data, "left", kind)),
                self.operand(self.require(data, "right", kind)),
                checked=kind == "CheckedBinaryOp" or bool(data.get("checked", False)),
            )
        if kind == "Ref":
            return Ref(
                self.place(self.require(data, "place", "Ref")),
                mutable=bool(data.get("mutable", False)),
            )
        if kind == "Call":
            return CallExpr(
                str(self.require(data, "callee", "Call")),
                self.operands(data.get("args")),
            )
        raise self.fail(f"unknown rvalue kind {kind!r}")

    def statement(self, data: Any) -> Statement:
        kind = self.require(data, "kind", "statement")
        span = self.span(self.require(data, "span", kind))
        if kind == "Assign":
            return Assign(
                self.place(self.require(data, "place", "Assign")),
                self.rvalue(self.require(data, "rvalue", "Assign")),
                span,
            )
        if kind == "StorageLive":
            return StorageLive(int(self.require(data, "local", kind)), span)
        if kind == "StorageDead":
            return StorageDead(int(self.require(data, "local", kind)), span)
        if kind == "Nop":
            return Nop(span)
        raise self.fail(f"unknown statement kind {kind!r}")

    def assert_kind(self, data: Any) -> AssertKind:
        kind = self.require(data, "kind", "assert message")
        if kind == "Overflow":
            return Overflow(
                self.binop(self.require(data, "op", kind)),
                self.operand(self.require(data, "left", kind)),
                self.operand(self.require(data, "right", kind)),
            )
        if kind == "BoundsCheck":
            return BoundsCheck(
                self.operand(self.require(data, "len", kind)),
                self.operand(self.require(data, "index", kind)),
            )
        if kind == "DivisionByZero":
            return DivisionByZero(self.operand(self.require(data, "operand", kind)))
        raise self.fail(f"unknown assert kind {kind!r}")

    def terminator(self, data: Any) -> Terminator:
        kind = self.require(data, "kind", "terminator")
        span = self.span(self.require(data, "span", kind))
        if kind == "Goto":
            return Goto(int(self.require(data, "target", kind)), span)
        if kind == "SwitchInt":
            targets = tuple(
                (int(value), int(bb)) for value, bb in data.get("targets", ())
            )
            otherwise = data.get("otherwise")
            return SwitchInt(
                self.operand(self.require(data, "discr", kind)),
                targets,
                int(otherwise) if otherwise is not None else None,
                span,
            )
        if kind == "Call":
            dest = data.get("destination")
            target = data.get("target")
            return Call(
                str(self.require(data, "callee", kind)),
                self.operands(data.get("args")),
                self.place(dest) if dest is not None else None,
                int(target) if target is not None else None,
                span,
            )
        if kind == "Assert":
            cond = data.get("cond")
            target = data.get("target")
            return Assert(
                self.assert_kind(self.require(data, "msg", kind)),
                self.operand(cond) if cond is not None else None,
                bool(data.get("expected", True)),
                int(target) if target is not None else None,
                span,
            )
        if kind == "Return":
            return Return(span)
        if kind == "Unreachable":
            return Unreachable(span)
        raise self.fail(f"unknown terminator kind {kind!r}")

    def block_from(self, data: Any) -> BasicBlock:
        self.block = None
        self.block = int(self.require(data, "id", "basic block"))
        statements = [self.statement(s) for s in data.get("statements", ())]
        raw_term = data.get("terminator")
        terminator = self.terminator(raw_term) if raw_term is not None else None
        block = BasicBlock(self.block, statements, terminator)
        self.block = None
        return block


def function_from_dict(data: Mapping[str, Any], file: str = "") -> FunctionBody:
    """Build and validate one :class:`FunctionBody` from its JSON form."""
    if not isinstance(data, Mapping) or "name" not in data:
        raise MalformedCFGError("function entry is missing 'name'")
    name = str(data["name"])
    loader = _Loader(file, name)
    raw_span = data.get("span")
    span = loader.span(raw_span) if raw_span is not None else EMPTY_SPAN
    body = FunctionBody(name, span=span)
    try:
        for raw_block in loader.require(data, "blocks", "function"):
            body.add_block(loader.block_from(raw_block))
    except (TypeError, ValueError) as exc:
        raise loader.fail(f"bad value: {exc}") from exc
    body.validate()
    return body


def program_from_dict(data: Mapping[str, Any]) -> Program:
    """Build a :class:`Program` from a decoded JSON dump."""
    if not isinstance(data, Mapping):
        raise MalformedCFGError("dump must be a JSON object")
    file = str(data.get("file", ""))
    raw_functions = data.get("functions", [])
    if not isinstance(raw_functions, list):
        raise MalformedCFGError(
            f"'functions' must be a list, got {type(raw_functions).__name__}"
        )
    functions = [function_from_dict(f, file) for f in raw_functions]
    return Program(file=file, functions=functions)


def load_program(path: Union[str, Path]) -> Program:
    """Read a JSON CFG dump from *path*."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise MalformedCFGError(f"{path}: cannot read dump: {exc}") from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedCFGError(f"{path}: invalid JSON: {exc}") from exc
    return program_from_dict(data)


__all__ = [
    "BasicBlockId",
    "VariableId",
    "SourceSpan",
    "EMPTY_SPAN",
    "ProjectionKind",
    "ProjectionElem",
    "DEREF",
    "Place",
    "same_tracked_location",
    "Copy",
    "Move",
    "Constant",
    "Operand",
    "BinOp",
    "Use",
    "BinaryOp",
    "Ref",
    "CallExpr",
    "Rvalue",
    "Assign",
    "StorageLive",
    "StorageDead",
    "Nop",
    "Statement",
    "Overflow",
    "BoundsCheck",
    "DivisionByZero",
    "AssertKind",
    "overflowing_subtract",
    "Goto",
    "SwitchInt",
    "Call",
    "Assert",
    "Return",
    "Unreachable",
    "Terminator",
    "BlockItem",
    "item_operands",
    "referenced_paths",
    "BasicBlock",
    "FunctionBody",
    "Program",
    "function_from_dict",
    "program_from_dict",
    "load_program",
]
