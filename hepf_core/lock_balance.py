"""
hepf_core/lock_balance.py
═════════════════════════

Per-path critical-section depth.

Walks the instructions of one enumerated path and keeps a single integer
depth: +1 for a direct call in ``SIMPLE_LOCK_TABLE.acquire``, -1 for one in
``SIMPLE_LOCK_TABLE.release``.  A nonzero final depth marks the path as
unbalanced.

The counter is scalar, so lock identity is ignored: ``acquire A; release
B`` is balanced.  Indirect calls never change the depth.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from .call_classifier import SIMPLE_LOCK_TABLE, SimpleLockTable
from .path_analysis import EnumerationResult, Path
from .program_model import Function


@dataclass(frozen=True)
class PathLockBalance:
    """Outcome for one path.

    ``min_depth`` is the lowest depth seen while walking; a negative value
    means a release happened with nothing held.
    """
    path: Path
    final_depth: int
    min_depth: int
    max_depth: int

    @property
    def balanced(self) -> bool:
        return self.final_depth == 0


def track_lock_depth(
    function: Function,
    path: Sequence[int],
    table: SimpleLockTable = SIMPLE_LOCK_TABLE,
) -> PathLockBalance:
    depth = min_depth = max_depth = 0
    for index in path:
        for inst in function.blocks[index].instructions:
            if not inst.is_call or inst.is_indirect_call:
                continue
            delta = table.delta(inst.callee)
            if not delta:
                continue
            depth += delta
            min_depth = min(min_depth, depth)
            max_depth = max(max_depth, depth)
    return PathLockBalance(tuple(path), depth, min_depth, max_depth)


@dataclass
class LockBalanceSummary:
    function: str
    results: List[PathLockBalance] = field(default_factory=list)
    reached_limit: bool = False

    @property
    def path_count(self) -> int:
        return len(self.results)

    @property
    def unbalanced(self) -> List[PathLockBalance]:
        return [r for r in self.results if not r.balanced]

    @property
    def max_final_depth(self) -> Optional[int]:
        if not self.results:
            return None
        return max(r.final_depth for r in self.results)


def check_paths(
    function: Function,
    paths: Iterable[Path],
    table: SimpleLockTable = SIMPLE_LOCK_TABLE,
    *,
    reached_limit: bool = False,
) -> LockBalanceSummary:
    summary = LockBalanceSummary(function.name, reached_limit=reached_limit)
    for path in paths:
        summary.results.append(track_lock_depth(function, path, table))
    return summary


def check_enumeration(
    enumeration: EnumerationResult,
    table: SimpleLockTable = SIMPLE_LOCK_TABLE,
) -> LockBalanceSummary:
    return check_paths(enumeration.function, enumeration.paths, table,
                       reached_limit=enumeration.reached_limit)
