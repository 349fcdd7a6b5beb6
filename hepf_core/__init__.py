"""
hepf_core - lock, path, taint and dependency-chain analyses
===========================================================

Analysis passes over a small program model (functions made of basic
blocks of instructions), built from a textual IR.

Core modules
------------
program_model
    Module / Function / Block / Instruction / Value and the builder.
ir_parser
    Textual IR front end (parsimonious grammar) and printer.
call_classifier
    Call-name classification rules and canonical value identity.
dataflow_engine
    Lattice and forward worklist fixpoint solver.
lock_state
    May-held lock sets per block; critical-section summary.
path_analysis
    Bounded entry-to-exit path enumeration.
lock_balance, taint_analysis, dependency_graph
    Per-path analyzers: lock depth, tainted fan-out, dependency chains.
passes
    The pass registry used by the CLI.

Quick start
-----------
>>> from hepf_core import parse_module, run_pass
>>> module = parse_module('''
... define @f(%m) {
... entry:
...   call @mutex_lock(%m)
...   call @mutex_unlock(%m)
...   ret
... }
... ''')
>>> run_pass("critical-section", module).summary["critical_instructions"]
1
"""

from __future__ import annotations

import logging
from typing import List

__version__ = "0.4.0"

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

from .call_classifier import CallKind, canonicalize, classify, explain  # noqa: E402
from .config import AnalysisConfig, load_config  # noqa: E402
from .dependency_graph import (  # noqa: E402
    DepAnswer,
    DependencyGraphBuilder,
    analyze_dependency_chains,
    critical_path_length,
)
from .errors import (  # noqa: E402
    ConfigError,
    HepfError,
    IRParseError,
    ModelError,
    UnknownPassError,
)
from .ir_parser import format_module, parse_file, parse_function, parse_module  # noqa: E402
from .lock_balance import track_lock_depth  # noqa: E402
from .lock_state import (  # noqa: E402
    LockPolicy,
    LockStateSolver,
    lock_states_at,
    summarize_critical_sections,
)
from .passes import PASS_REGISTRY, run_pass  # noqa: E402
from .path_analysis import PathEnumerator  # noqa: E402
from .program_model import Block, Function, FunctionBuilder, Instruction, Module, Value  # noqa: E402
from .taint_analysis import propagate_taint, tainted_fan_out  # noqa: E402

__all__: List[str] = [
    "AnalysisConfig",
    "Block",
    "CallKind",
    "ConfigError",
    "DepAnswer",
    "DependencyGraphBuilder",
    "Function",
    "FunctionBuilder",
    "HepfError",
    "IRParseError",
    "Instruction",
    "LockPolicy",
    "LockStateSolver",
    "ModelError",
    "Module",
    "PASS_REGISTRY",
    "PathEnumerator",
    "UnknownPassError",
    "Value",
    "analyze_dependency_chains",
    "canonicalize",
    "classify",
    "critical_path_length",
    "explain",
    "format_module",
    "load_config",
    "lock_states_at",
    "parse_file",
    "parse_function",
    "parse_module",
    "propagate_taint",
    "run_pass",
    "summarize_critical_sections",
    "tainted_fan_out",
    "track_lock_depth",
]
