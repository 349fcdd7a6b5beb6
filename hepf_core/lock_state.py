"""
hepf_core/lock_state.py
═══════════════════════

May-held lock sets at every block of a function.

The analysis is a forward may-analysis over the powerset lattice of
canonical lock values, solved with :class:`~hepf_core.dataflow_engine.ForwardSolver`:

    entry(B) = ⋃ exit(P) for P in preds(B)        (entry block: ∅)
    exit(B)  = transfer(entry(B), instructions of B)

Per-call transfer (``S`` = current set, ``L = canonicalize(arg0)``)::

    indirect call (any arguments)     →  policy: ∅ (CLEAR) or S (PRESERVE)
    no args / arg0 is null or undef   →  S
    intrinsic (llvm.*)                →  S
    ACQUIRE                           →  S ∪ {L}
    RELEASE                           →  S − {L}
    TRY_ACQUIRE                       →  policy: S (IGNORE) or S ∪ {L} (ACQUIRE)
    anything else                     →  S

Besides the solver this module provides per-instruction replay
(:func:`lock_states_at`) and the per-function critical-section summary
(:func:`summarize_critical_sections`).
"""

from __future__ import annotations

import enum
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from .call_classifier import (
    DEFAULT_TABLE,
    CallKind,
    ClassificationTable,
    canonicalize,
)
from .dataflow_engine import DEFAULT_MAX_ITERATIONS, ForwardSolver, PowersetLattice
from .program_model import Block, Function, Instruction, Value

logger = logging.getLogger(__name__)

LockSet = FrozenSet[Value]

EMPTY: LockSet = frozenset()


# ═══════════════════════════════════════════════════════════════════════════
#  Policies
# ═══════════════════════════════════════════════════════════════════════════

class TryAcquirePolicy(enum.Enum):
    IGNORE = "ignore"
    ACQUIRE = "acquire"


class IndirectCallPolicy(enum.Enum):
    CLEAR = "clear"
    PRESERVE = "preserve"


@dataclass(frozen=True)
class LockPolicy:
    """How the solver treats calls whose effect on locks is uncertain."""
    try_acquire: TryAcquirePolicy = TryAcquirePolicy.IGNORE
    indirect_call: IndirectCallPolicy = IndirectCallPolicy.CLEAR

    @classmethod
    def preset(cls, number: int) -> "LockPolicy":
        """Numbered presets::

            0  try-acquire ACQUIRE, indirect CLEAR
            1  try-acquire ACQUIRE, indirect PRESERVE
            2  try-acquire IGNORE,  indirect CLEAR    (the default)
        """
        try:
            try_acquire, indirect = _PRESETS[number]
        except KeyError:
            raise ValueError(
                f"unknown lock policy preset {number!r} "
                f"(expected one of {sorted(_PRESETS)})") from None
        return cls(try_acquire, indirect)


_PRESETS: Dict[int, Tuple[TryAcquirePolicy, IndirectCallPolicy]] = {
    0: (TryAcquirePolicy.ACQUIRE, IndirectCallPolicy.CLEAR),
    1: (TryAcquirePolicy.ACQUIRE, IndirectCallPolicy.PRESERVE),
    2: (TryAcquirePolicy.IGNORE, IndirectCallPolicy.CLEAR),
}


# ═══════════════════════════════════════════════════════════════════════════
#  Transfer
# ═══════════════════════════════════════════════════════════════════════════

def transfer_instruction(
    inst: Instruction,
    held: LockSet,
    policy: LockPolicy = LockPolicy(),
    table: ClassificationTable = DEFAULT_TABLE,
) -> LockSet:
    """Return the held-lock set after ``inst`` given ``held`` before it."""
    if not inst.is_call:
        return held
    if inst.is_indirect_call:
        if policy.indirect_call is IndirectCallPolicy.CLEAR:
            return EMPTY
        return held

    args = inst.arguments
    if not args or args[0].is_null_or_undef:
        return held
    if inst.is_intrinsic:
        return held

    kind = table.classify(inst.callee)
    if kind is CallKind.ACQUIRE:
        return held | {canonicalize(args[0])}
    if kind is CallKind.RELEASE:
        return held - {canonicalize(args[0])}
    if kind is CallKind.TRY_ACQUIRE:
        if policy.try_acquire is TryAcquirePolicy.ACQUIRE:
            return held | {canonicalize(args[0])}
        return held
    return held


def transfer_block(
    block: Block,
    held: LockSet,
    policy: LockPolicy = LockPolicy(),
    table: ClassificationTable = DEFAULT_TABLE,
) -> LockSet:
    for inst in block.instructions:
        held = transfer_instruction(inst, held, policy, table)
    return held


# ═══════════════════════════════════════════════════════════════════════════
#  Solver
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class LockStateResult:
    """Held-lock sets for one function.

    ``facts_in[b]`` is the set held on entry to block ``b``,
    ``facts_out[b]`` the set held after its last instruction.
    """
    function: Function
    facts_in: Dict[Block, LockSet] = field(default_factory=dict)
    facts_out: Dict[Block, LockSet] = field(default_factory=dict)
    iterations: int = 0
    converged: bool = True

    def held_on_entry(self, block_name: str) -> LockSet:
        return self.facts_in[self.function.block(block_name)]

    def held_on_exit(self, block_name: str) -> LockSet:
        return self.facts_out[self.function.block(block_name)]


class LockStateSolver:
    """Compute :class:`LockStateResult` for a function.

    Parameters
    ----------
    policy : LockPolicy
        Treatment of try-acquire and indirect calls.
    max_iterations : int
        Worklist pop ceiling.
    table : ClassificationTable
        Call-name rules.
    """

    def __init__(
        self,
        policy: LockPolicy = LockPolicy(),
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        table: ClassificationTable = DEFAULT_TABLE,
    ) -> None:
        self.policy = policy
        self.max_iterations = max_iterations
        self.table = table

    def _transfer(self, block: Block, held: LockSet) -> LockSet:
        return transfer_block(block, held, self.policy, self.table)

    def solve(self, function: Function) -> LockStateResult:
        if not function.blocks:
            logger.info("@%s has no blocks; nothing to solve", function.name)
            return LockStateResult(function)

        result = ForwardSolver(
            function,
            PowersetLattice(),
            self._transfer,
            entry_value=EMPTY,
            max_iterations=self.max_iterations,
        ).solve()
        return LockStateResult(
            function=function,
            facts_in=dict(result.facts_in),
            facts_out=dict(result.facts_out),
            iterations=result.iterations,
            converged=result.converged,
        )


def lock_states_at(
    function: Function,
    result: LockStateResult,
    policy: LockPolicy = LockPolicy(),
    table: ClassificationTable = DEFAULT_TABLE,
) -> Dict[Instruction, LockSet]:
    """Replay each block from its entry set and return the set held
    immediately *before* every instruction."""
    states: Dict[Instruction, LockSet] = {}
    for block in function.blocks:
        held = result.facts_in.get(block, EMPTY)
        for inst in block.instructions:
            states[inst] = held
            held = transfer_instruction(inst, held, policy, table)
    return states


# ═══════════════════════════════════════════════════════════════════════════
#  Critical-section summary
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class CriticalSectionSummary:
    """Per-function critical-section statistics.

    ``lock_usage`` maps each lock's printed name to the number of
    instructions executed while it is (possibly) held.
    """
    function: str
    block_count: int = 0
    instruction_count: int = 0
    critical_instructions: int = 0
    max_depth: int = 0
    lock_usage: Dict[str, int] = field(default_factory=dict)

    @property
    def has_nested_locks(self) -> bool:
        return self.max_depth > 1

    @property
    def percentage(self) -> float:
        if not self.instruction_count:
            return 0.0
        return 100.0 * self.critical_instructions / self.instruction_count

    @property
    def has_critical_sections(self) -> bool:
        return self.critical_instructions > 0 or bool(self.lock_usage)


def summarize_critical_sections(
    function: Function,
    result: LockStateResult,
    policy: LockPolicy = LockPolicy(),
    table: ClassificationTable = DEFAULT_TABLE,
) -> CriticalSectionSummary:
    """Count instructions executed under at least one held lock."""
    summary = CriticalSectionSummary(
        function=function.name,
        block_count=len(function.blocks),
        instruction_count=function.instruction_count,
    )
    usage: Counter = Counter()
    for held in lock_states_at(function, result, policy, table).values():
        if not held:
            continue
        summary.critical_instructions += 1
        summary.max_depth = max(summary.max_depth, len(held))
        for lock in held:
            usage[lock.name] += 1
    summary.lock_usage = dict(sorted(usage.items()))
    return summary


def top_functions(
    summaries: List[CriticalSectionSummary],
    limit: int = 10,
) -> List[Tuple[str, int]]:
    """Functions ranked by critical-section size, largest first."""
    ranked = [
        (s.function, s.critical_instructions)
        for s in summaries if s.has_critical_sections
    ]
    ranked.sort(key=lambda item: (-item[1], item[0]))
    return ranked[:limit]


def format_lock_set(locks: Optional[LockSet]) -> str:
    if not locks:
        return "{}"
    return "{" + ", ".join(sorted(v.name for v in locks)) + "}"
