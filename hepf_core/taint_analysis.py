"""
hepf_core/taint_analysis.py
═══════════════════════════

Per-path taint propagation and tainted interprocedural fan-out.

Every formal parameter of the function is a taint seed.  Walking the
instructions of one path in order:

    ┌────────────────────┬──────────────────────────────────────────────┐
    │ instruction        │ result tainted iff                           │
    ├────────────────────┼──────────────────────────────────────────────┤
    │ load               │ the address is tainted                       │
    │ store              │ (no result)                                  │
    │ call input-source  │ always                                       │
    │ call (other)       │ any argument is tainted (indirect included)  │
    │ phi                │ any incoming value is tainted                │
    │ anything else      │ any operand is tainted                       │
    └────────────────────┴──────────────────────────────────────────────┘

The *tainted fan-out* of a path is the number of distinct direct callees
that receive at least one tainted argument, plus one for every indirect
call occurrence that does.  Intrinsics (``llvm.*``) never count.

Each path gets a fresh taint set; nothing is shared between paths.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Sequence, Set

from .call_classifier import DEFAULT_TABLE, ClassificationTable
from .path_analysis import EnumerationResult, Path
from .program_model import Function, InstKind, Instruction, Value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaintConfig:
    """
    Knobs for taint propagation.

    Attributes:
        table: classification rules; its input-source list decides which
            calls create taint
        seed_parameters: whether formal parameters start tainted
    """
    table: ClassificationTable = DEFAULT_TABLE
    seed_parameters: bool = True


DEFAULT_TAINT_CONFIG = TaintConfig()


@dataclass(frozen=True)
class PathTaint:
    """Taint state at the end of one path."""
    path: Path
    tainted: FrozenSet[Value]

    def is_tainted(self, value: Value) -> bool:
        return value in self.tainted


def _result_tainted(
    inst: Instruction,
    tainted: Set[Value],
    config: TaintConfig,
) -> bool:
    if inst.kind is InstKind.LOAD:
        return inst.operands[0] in tainted
    if inst.kind is InstKind.CALL:
        if inst.callee is not None and config.table.is_input_source(inst.callee):
            return True
        return any(arg in tainted for arg in inst.arguments)
    return any(op in tainted for op in inst.operands)


def propagate_taint(
    function: Function,
    path: Sequence[int],
    config: TaintConfig = DEFAULT_TAINT_CONFIG,
) -> PathTaint:
    tainted: Set[Value] = set(function.params) if config.seed_parameters else set()
    for index in path:
        for inst in function.blocks[index].instructions:
            if inst.result is None:
                continue
            if _result_tainted(inst, tainted, config):
                tainted.add(inst.result)
    return PathTaint(tuple(path), frozenset(tainted))


def tainted_fan_out(
    function: Function,
    path: Sequence[int],
    taint: PathTaint,
) -> int:
    callees: Set[str] = set()
    indirect = 0
    for index in path:
        for inst in function.blocks[index].instructions:
            if not inst.is_call or inst.is_intrinsic:
                continue
            if not any(arg in taint.tainted for arg in inst.arguments):
                continue
            if inst.is_indirect_call:
                indirect += 1
            else:
                callees.add(inst.callee)
    return len(callees) + indirect


# ---------------------------------------------------------------------------
#  Aggregation over an enumeration
# ---------------------------------------------------------------------------

@dataclass
class FanOutSummary:
    function: str
    per_path: List[int] = field(default_factory=list)
    paths: List[Path] = field(default_factory=list)
    reached_limit: bool = False

    @property
    def path_count(self) -> int:
        return len(self.per_path)

    @property
    def max_fan_out(self) -> int:
        return max(self.per_path, default=0)

    @property
    def mean_fan_out(self) -> float:
        if not self.per_path:
            return 0.0
        return sum(self.per_path) / len(self.per_path)


def analyze_fan_out(
    function: Function,
    paths: Iterable[Path],
    config: TaintConfig = DEFAULT_TAINT_CONFIG,
    *,
    reached_limit: bool = False,
) -> FanOutSummary:
    summary = FanOutSummary(function.name, reached_limit=reached_limit)
    for path in paths:
        taint = propagate_taint(function, path, config)
        summary.paths.append(tuple(path))
        summary.per_path.append(tainted_fan_out(function, path, taint))
    logger.debug("@%s: tainted fan-out max=%d over %d paths",
                 function.name, summary.max_fan_out, summary.path_count)
    return summary


def analyze_enumeration(
    enumeration: EnumerationResult,
    config: Optional[TaintConfig] = None,
) -> FanOutSummary:
    return analyze_fan_out(
        enumeration.function, enumeration.paths,
        config or DEFAULT_TAINT_CONFIG,
        reached_limit=enumeration.reached_limit,
    )
