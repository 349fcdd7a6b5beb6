"""
hepf_core/dataflow_engine.py
════════════════════════════

A small lattice-based forward dataflow framework over
:class:`~hepf_core.program_model.Function` blocks.

Theory
------
A forward may-analysis is defined by:

1.  A **lattice** ``(L, ⊑, ⊥, ⊔)``.
2.  A **transfer function** ``f : Block × L → L``.
3.  An **entry value** pinned on the entry block.

Every block's entry fact is the join of its predecessors' exit facts.
The engine iterates until no block's facts change, or until the
iteration ceiling is hit, in which case the best-effort facts are
returned with ``converged = False``.

Worklist discipline
-------------------
FIFO over blocks, seeded with every block in index order; a block is
never queued twice at the same time.  A block whose freshly merged
entry fact equals its stored one is skipped, but only after it has
been evaluated once, so every block (the entry included) gets an exit
fact on the first sweep.

Public API
----------
    Lattice             - abstract base for lattice definitions
    PowersetLattice     - ``(2^U, ⊆, ∅, ∪)``, values are frozensets
    DataflowResult      - facts_in / facts_out / iterations / converged
    ForwardSolver       - worklist fixpoint engine
    run_forward_analysis - convenience function

Usage example
-------------
::

    from hepf_core.dataflow_engine import PowersetLattice, run_forward_analysis

    def transfer(block, fact_in):
        out = set(fact_in)
        for inst in block.instructions:
            if inst.result is not None:
                out.add(inst.result)
        return frozenset(out)

    result = run_forward_analysis(function, PowersetLattice(), transfer)
    for block, fact in result.items_in():
        print(block.name, sorted(v.name for v in fact))
"""

from __future__ import annotations

import abc
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    FrozenSet,
    Generic,
    Iterable,
    Optional,
    Set,
    Tuple,
    TypeVar,
)

from .program_model import Block, Function

logger = logging.getLogger(__name__)

L = TypeVar("L")          # Lattice value type

DEFAULT_MAX_ITERATIONS = 10_000


# ===========================================================================
# LATTICE - ABSTRACT BASE
# ===========================================================================

class Lattice(abc.ABC, Generic[L]):
    """Abstract base class for a dataflow lattice.

    A lattice must provide ``bottom()``, ``join(a, b)`` and ``leq(a, b)``.
    Values must be immutable; the engine stores them without copying.
    """

    @abc.abstractmethod
    def bottom(self) -> L:
        """Return the least element ⊥."""
        ...

    @abc.abstractmethod
    def join(self, a: L, b: L) -> L:
        """Return the least upper bound ``a ⊔ b``."""
        ...

    @abc.abstractmethod
    def leq(self, a: L, b: L) -> bool:
        """Return ``True`` iff ``a ⊑ b``."""
        ...

    def eq(self, a: L, b: L) -> bool:
        """Equality: ``a = b`` iff ``a ⊑ b`` and ``b ⊑ a``."""
        return self.leq(a, b) and self.leq(b, a)

    def join_all(self, values: Iterable[L]) -> L:
        """Join a sequence of values."""
        result = self.bottom()
        for v in values:
            result = self.join(result, v)
        return result


class PowersetLattice(Lattice[FrozenSet]):
    """Powerset lattice: ``(2^U, ⊆, ∅, ∪)``."""

    def bottom(self) -> FrozenSet:
        return frozenset()

    def join(self, a: FrozenSet, b: FrozenSet) -> FrozenSet:
        return a | b

    def leq(self, a: FrozenSet, b: FrozenSet) -> bool:
        return a <= b

    def eq(self, a: FrozenSet, b: FrozenSet) -> bool:
        return a == b


# ===========================================================================
# RESULT CONTAINER
# ===========================================================================

@dataclass
class DataflowResult(Generic[L]):
    """Container for dataflow analysis results.

    Attributes
    ----------
    facts_in : dict
        Map from Block → entry fact.
    facts_out : dict
        Map from Block → exit fact.
    iterations : int
        Number of worklist pops performed.
    converged : bool
        Whether the analysis reached a fixpoint (vs. hitting the limit).
    elapsed_seconds : float
        Wall-clock time.
    """
    facts_in: Dict[Block, L] = field(default_factory=dict)
    facts_out: Dict[Block, L] = field(default_factory=dict)
    iterations: int = 0
    converged: bool = False
    elapsed_seconds: float = 0.0

    def fact_at(self, block: Block, *, before: bool = True) -> Optional[L]:
        """Return the entry (``before=True``) or exit fact of ``block``."""
        if before:
            return self.facts_in.get(block)
        return self.facts_out.get(block)

    def items_in(self) -> Iterable[Tuple[Block, L]]:
        """Iterate over ``(block, fact_in)`` pairs."""
        return self.facts_in.items()

    def items_out(self) -> Iterable[Tuple[Block, L]]:
        """Iterate over ``(block, fact_out)`` pairs."""
        return self.facts_out.items()


# ===========================================================================
# FORWARD SOLVER
# ===========================================================================

TransferFunction = Callable[[Block, Any], Any]


class ForwardSolver(Generic[L]):
    """Fixpoint engine for forward intraprocedural dataflow analysis.

    Parameters
    ----------
    function : Function
        The function whose blocks are analysed.
    lattice : Lattice[L]
        The dataflow lattice.
    transfer : callable(block, L) → L
        The block transfer function.  Must be monotone and pure.
    entry_value : L, optional
        Fact pinned on the entry block.  Defaults to ``lattice.bottom()``.
    max_iterations : int
        Ceiling on worklist pops.
    """

    def __init__(
        self,
        function: Function,
        lattice: Lattice[L],
        transfer: TransferFunction,
        entry_value: Optional[L] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self.function = function
        self.lattice = lattice
        self.transfer = transfer
        self.entry_value = (
            entry_value if entry_value is not None else lattice.bottom()
        )
        self.max_iterations = max_iterations

    def solve(self) -> DataflowResult[L]:
        """Run the analysis to fixpoint.

        Returns
        -------
        DataflowResult[L]
        """
        t0 = time.monotonic()
        blocks = self.function.blocks
        entry = self.function.entry

        bot = self.lattice.bottom()
        facts_in: Dict[Block, L] = {b: bot for b in blocks}
        facts_out: Dict[Block, L] = {b: bot for b in blocks}
        if entry is not None:
            facts_in[entry] = self.entry_value

        worklist: Deque[Block] = deque(blocks)
        in_worklist: Set[int] = {b.index for b in blocks}
        evaluated: Set[int] = set()

        iterations = 0
        while worklist:
            if iterations >= self.max_iterations:
                logger.warning(
                    "dataflow on @%s did not converge after %d iterations; "
                    "returning best-effort facts",
                    self.function.name, iterations,
                )
                break

            block = worklist.popleft()
            in_worklist.discard(block.index)
            iterations += 1

            if block is entry:
                merged = self.entry_value
            else:
                merged = self.lattice.join_all(
                    facts_out[p] for p in block.predecessors)

            if block.index in evaluated and self.lattice.eq(merged, facts_in[block]):
                continue
            evaluated.add(block.index)
            facts_in[block] = merged

            new_out = self.transfer(block, merged)
            if self.lattice.eq(new_out, facts_out[block]):
                continue
            facts_out[block] = new_out

            for succ in block.successors:
                if succ.index not in in_worklist:
                    worklist.append(succ)
                    in_worklist.add(succ.index)

        converged = not worklist
        elapsed = time.monotonic() - t0
        logger.debug("dataflow on @%s: %d iterations, converged=%s",
                     self.function.name, iterations, converged)
        return DataflowResult(
            facts_in=facts_in,
            facts_out=facts_out,
            iterations=iterations,
            converged=converged,
            elapsed_seconds=elapsed,
        )


def run_forward_analysis(
    function: Function,
    lattice: Lattice[L],
    transfer: TransferFunction,
    *,
    entry_value: Optional[L] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> DataflowResult[L]:
    """Convenience wrapper around :class:`ForwardSolver`."""
    return ForwardSolver(
        function, lattice, transfer,
        entry_value=entry_value,
        max_iterations=max_iterations,
    ).solve()
