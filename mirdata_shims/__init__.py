"""
mirdata_shims - Vulnerability Detectors for Contract CFG Dumps
==============================================================

This package scans the control-flow graphs of compiled smart-contract
functions (Solana programs lowered to MIR-like basic blocks) for known
dangerous patterns before deployment.

Core modules
------------
errors
    Exception hierarchy for malformed dumps and signature configuration.
mir_model
    CFG model: spans, places, statements, terminators, blocks, functions,
    and the JSON dump loader.
signatures
    Signature tables of dangerous callee paths, loaded from S-expressions.
detectors
    The reentrancy detector and the bad-randomness, time-manipulation and
    numerical-precision flag detectors.
diagnostics
    CWE-tagged diagnostics for positive findings.
driver
    Traversal driver running fresh detectors over each function.

Quick start
-----------
>>> from mirdata_shims import CheckerRunner, load_program
>>> results = CheckerRunner().run(load_program("vault.mir.json"))
>>> print(results.summary())

Package layout
--------------
::

    mirdata_shims/
    ├── __init__.py            ← this file
    ├── errors.py
    ├── mir_model.py
    ├── signatures.py
    ├── detectors.py
    ├── diagnostics.py
    └── driver.py
"""

from __future__ import annotations

import importlib
import sys
from typing import TYPE_CHECKING, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__author__ = "mirdata-shims contributors"
__license__ = "MIT"
__all__: List[str] = []          # populated below

# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "MirShimsError",
        "MalformedCFGError",
        "SignatureConfigError",
    ],
    "mir_model": [
        "SourceSpan",
        "EMPTY_SPAN",
        "Place",
        "same_tracked_location",
        "BasicBlock",
        "FunctionBody",
        "Program",
        "load_program",
        "program_from_dict",
    ],
    "signatures": [
        "SignatureTables",
        "parse_signatures",
        "load_signatures",
        "default_signatures",
    ],
    "detectors": [
        "DetectorKind",
        "Detector",
        "Finding",
        "ReentrancyDetector",
        "BadRandomnessDetector",
        "TimeManipulationDetector",
        "NumericalPrecisionDetector",
    ],
    "diagnostics": [
        "Diagnostic",
        "DiagnosticSeverity",
    ],
    "driver": [
        "FunctionVisitor",
        "FunctionReport",
        "CheckerRunner",
        "CheckerRunResults",
        "analyze_dump",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace.

    The submodule itself is bound too, so both
    ``mirdata_shims.detectors.ReentrancyDetector`` and
    ``mirdata_shims.ReentrancyDetector`` work.
    """
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"mirdata_shims: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        if not hasattr(mod, name):
            raise AttributeError(
                f"mirdata_shims.{module_rel_name} does not export '{name}'"
            )
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)

    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


def list_submodules() -> List[str]:
    """Return the names of all submodules in the package."""
    return sorted(_CORE_MODULES)


__all__ += ["list_submodules", "__version__"]

# ---------------------------------------------------------------------------
# TYPE_CHECKING block - gives IDEs full visibility without runtime cost
# ---------------------------------------------------------------------------

if TYPE_CHECKING:
    from .errors import (
        MirShimsError as MirShimsError,
        MalformedCFGError as MalformedCFGError,
        SignatureConfigError as SignatureConfigError,
    )
    from .mir_model import (
        SourceSpan as SourceSpan,
        EMPTY_SPAN as EMPTY_SPAN,
        Place as Place,
        same_tracked_location as same_tracked_location,
        BasicBlock as BasicBlock,
        FunctionBody as FunctionBody,
        Program as Program,
        load_program as load_program,
        program_from_dict as program_from_dict,
    )
    from .signatures import (
        SignatureTables as SignatureTables,
        parse_signatures as parse_signatures,
        load_signatures as load_signatures,
        default_signatures as default_signatures,
    )
    from .detectors import (
        DetectorKind as DetectorKind,
        Detector as Detector,
        Finding as Finding,
        ReentrancyDetector as ReentrancyDetector,
        BadRandomnessDetector as BadRandomnessDetector,
        TimeManipulationDetector as TimeManipulationDetector,
        NumericalPrecisionDetector as NumericalPrecisionDetector,
    )
    from .diagnostics import (
        Diagnostic as Diagnostic,
        DiagnosticSeverity as DiagnosticSeverity,
    )
    from .driver import (
        FunctionVisitor as FunctionVisitor,
        FunctionReport as FunctionReport,
        CheckerRunner as CheckerRunner,
        CheckerRunResults as CheckerRunResults,
        analyze_dump as analyze_dump,
    )
