"""
signatures.py - Signature tables for dangerous contract APIs
============================================================

Five named sets of fully-qualified callable names tell the detectors which
calls matter:

    balance-read        reads a user's recorded balance into a local
    value-transfer      moves lamports in or out of an account
    randomness-source   on-chain "random" number sources
    clock-source        validator clock access
    rounding-function   float rounding

Tables are configuration, not code.  The defaults below are written in the
same S-expression format that users load from files, and are parsed with the
``sexpdata`` library::

    (signatures
      (extends default)
      (value-transfer "my_program::vault::pay_out"))

``(extends default)`` merges the file into the defaults; without it the file
replaces them.

Callee paths are normalised before matching: turbofish generic arguments are
dropped (``HashMap::<K, V, S>::get_mut`` → ``HashMap::get_mut``) while
``<impl T>`` segments are kept (``std::f64::<impl f64>::round``).

Depends on:
    - sexpdata          (S-expression parsing)
"""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Union,
)

import sexpdata

from mirdata_shims.errors import SignatureConfigError

logger = logging.getLogger(__name__)


BALANCE_READ = "balance-read"
VALUE_TRANSFER = "value-transfer"
RANDOMNESS_SOURCE = "randomness-source"
CLOCK_SOURCE = "clock-source"
ROUNDING_FUNCTION = "rounding-function"

TABLE_NAMES = (
    BALANCE_READ,
    VALUE_TRANSFER,
    RANDOMNESS_SOURCE,
    CLOCK_SOURCE,
    ROUNDING_FUNCTION,
)

DEFAULT_SIGNATURES_SEXP = """
(signatures
  (balance-read
    "std::collections::HashMap::get_mut")
  (value-transfer
    "solana_program::account_info::AccountInfo::try_borrow_mut_lamports")
  (randomness-source
    "rand::random"
    "rand::thread_rng"
    "rand::Rng::gen"
    "rand::Rng::gen_range")
  (clock-source
    "solana_program::sysvar::clock::Clock::get"
    "solana_program::clock::Clock::get")
  (rounding-function
    "std::f64::<impl f64>::round"
    "std::f32::<impl f32>::round"))
"""


# ===================================================================
#  PART 1 - CALLEE PATH NORMALISATION
# ===================================================================

def _generic_end(path: str, start: int) -> int:
    """Index just past the ``>`` matching the ``<`` at *start*."""
    depth = 0
    i = start
    while i < len(path):
        ch = path[i]
        if ch == "<":
            depth += 1
        elif ch == ">" and path[i - 1] != "-":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return len(path)


def normalize_path(path: str) -> str:
    """Strip generic argument lists from a callee path.

    >>> normalize_path("std::collections::HashMap::<K, V, S>::get_mut")
    'std::collections::HashMap::get_mut'
    >>> normalize_path("std::f64::<impl f64>::round")
    'std::f64::<impl f64>::round'
    """
    out: List[str] = []
    i = 0
    while i < len(path):
        ch = path[i]
        if ch == "<":
            if path.startswith("impl ", i + 1):
                end = _generic_end(path, i)
                out.append(path[i:end])
                i = end
                continue
            prev = "".join(out[-2:])
            if prev == "::":
                del out[-2:]
                i = _generic_end(path, i)
                continue
            if out and (out[-1].isalnum() or out[-1] == "_"):
                i = _generic_end(path, i)
                continue
        out.append(ch)
        i += 1
    return "".join(out).strip()


# ===================================================================
#  PART 2 - TABLES
# ===================================================================

class SignatureTable:
    """An immutable set of normalised callee paths."""

    __slots__ = ("name", "_entries")

    def __init__(self, name: str, entries: Iterable[str] = ()) -> None:
        self.name = name
        self._entries: FrozenSet[str] = frozenset(
            normalize_path(e) for e in entries
        )

    @property
    def entries(self) -> FrozenSet[str]:
        return self._entries

    def matches(self, callee: str) -> bool:
        return normalize_path(callee) in self._entries

    def __contains__(self, callee: object) -> bool:
        return isinstance(callee, str) and self.matches(callee)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"<SignatureTable '{self.name}' ({len(self)} entries)>"


class SignatureTables:
    """
    The five signature tables consumed by the detectors.

    Usage
    -----
    >>> tables = SignatureTables({"value-transfer": ["vault::pay_out"]})
    >>> tables.matches("value-transfer", "vault::pay_out")
    True
    >>> len(tables.table("balance-read"))
    0
    """

    def __init__(self, tables: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        tables = tables or {}
        unknown = sorted(set(tables) - set(TABLE_NAMES))
        if unknown:
            raise SignatureConfigError(
                f"unknown signature table(s): {', '.join(unknown)}"
            )
        self._tables: Dict[str, SignatureTable] = {
            name: SignatureTable(name, tables.get(name, ()))
            for name in TABLE_NAMES
        }

    @classmethod
    def default(cls) -> SignatureTables:
        return default_signatures()

    def table(self, name: str) -> SignatureTable:
        try:
            return self._tables[name]
        except KeyError:
            raise SignatureConfigError(f"unknown signature table: {name}") from None

    def matches(self, name: str, callee: str) -> bool:
        return self.table(name).matches(callee)

    def merged(self, other: SignatureTables) -> SignatureTables:
        """Union of ``self`` and ``other``, table by table."""
        return SignatureTables({
            name: set(self._tables[name].entries) | set(other._tables[name].entries)
            for name in TABLE_NAMES
        })

    @property
    def balance_read(self) -> SignatureTable:
        return self._tables[BALANCE_READ]

    @property
    def value_transfer(self) -> SignatureTable:
        return self._tables[VALUE_TRANSFER]

    @property
    def randomness_source(self) -> SignatureTable:
        return self._tables[RANDOMNESS_SOURCE]

    @property
    def clock_source(self) -> SignatureTable:
        return self._tables[CLOCK_SOURCE]

    @property
    def rounding_function(self) -> SignatureTable:
        return self._tables[ROUNDING_FUNCTION]

    def as_dict(self) -> Dict[str, List[str]]:
        return {name: list(self._tables[name]) for name in TABLE_NAMES}

    def __repr__(self) -> str:
        sizes = ", ".join(f"{n}={len(t)}" for n, t in self._tables.items())
        return f"SignatureTables({sizes})"


# ===================================================================
#  PART 3 - S-EXPRESSION CONFIGURATION
# ===================================================================

def _normalise(obj: Any) -> Any:
    """Recursively turn sexpdata output into plain Python values."""
    if isinstance(obj, list):
        return [_normalise(x) for x in obj]
    if isinstance(obj, sexpdata.Symbol):
        value = getattr(obj, "value", None)
        return str(value()) if callable(value) else str(obj)
    if isinstance(obj, str):
        return str(obj)
    return obj


def _parse_sexp_many(text: str, source: str) -> List[Any]:
    # sexpdata does not parse a stream of forms; wrap it in a list.
    # The newline keeps a trailing ; comment from eating the close paren.
    try:
        parsed = sexpdata.loads(f"({text}\n)")
    except Exception as exc:
        raise SignatureConfigError(
            f"failed to parse S-expression: {exc}", source
        ) from exc
    if not isinstance(parsed, list):
        raise SignatureConfigError("expected a (signatures ...) form", source)
    return parsed


def parse_signatures(text: str, source: str = "<string>") -> SignatureTables:
    """Parse a ``(signatures ...)`` form into tables.

    Raises
    ------
    SignatureConfigError
        On malformed S-expressions, unknown table names, or entries that are
        not non-empty strings.
    """
    forms = _parse_sexp_many(text, source)
    if (
        len(forms) != 1
        or not isinstance(forms[0], list)
        or not forms[0]
        or _normalise(forms[0][0]) != "signatures"
    ):
        raise SignatureConfigError(
            "expected exactly one (signatures ...) form", source
        )

    extends_default = False
    tables: Dict[str, List[str]] = {}
    for index, clause in enumerate(forms[0][1:]):
        if not isinstance(clause, list) or not clause:
            raise SignatureConfigError(f"bad clause {clause!r}", source)
        head = _normalise(clause[0])
        if head == "extends":
            if index != 0 or _normalise(clause[1:]) != ["default"]:
                raise SignatureConfigError(
                    "(extends default) must be the first clause", source
                )
            extends_default = True
            continue
        if head not in TABLE_NAMES:
            raise SignatureConfigError(f"unknown signature table: {head}", source)
        for entry in clause[1:]:
            # bare symbols are not callee paths, only quoted strings are
            if isinstance(entry, sexpdata.Symbol):
                raise SignatureConfigError(
                    f"{head}: entries must be quoted strings, got symbol {_normalise(entry)}",
                    source,
                )
            entry = _normalise(entry)
            if not isinstance(entry, str) or not entry.strip():
                raise SignatureConfigError(
                    f"{head}: entries must be callee path strings, got {entry!r}",
                    source,
                )
            tables.setdefault(head, []).append(entry)

    result = SignatureTables(tables)
    if extends_default:
        result = default_signatures().merged(result)
    logger.debug("Loaded signatures from %s: %r", source, result)
    return result


def load_signatures(path: Union[str, Path]) -> SignatureTables:
    """Read a signature table file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SignatureConfigError(f"cannot read file: {exc}", str(path)) from exc
    return parse_signatures(text, source=str(path))


@functools.lru_cache(maxsize=None)
def default_signatures() -> SignatureTables:
    """The built-in tables for Solana programs."""
    return parse_signatures(DEFAULT_SIGNATURES_SEXP, source="<default>")


__all__ = [
    "BALANCE_READ",
    "VALUE_TRANSFER",
    "RANDOMNESS_SOURCE",
    "CLOCK_SOURCE",
    "ROUNDING_FUNCTION",
    "TABLE_NAMES",
    "DEFAULT_SIGNATURES_SEXP",
    "normalize_path",
    "SignatureTable",
    "SignatureTables",
    "parse_signatures",
    "load_signatures",
    "default_signatures",
]
