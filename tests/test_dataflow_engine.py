# tests/test_dataflow_engine.py
"""Tests for the generic lattice and forward worklist solver."""

from hepf_core.dataflow_engine import PowersetLattice, run_forward_analysis
from tests.helpers import chain, diamond, self_loop


def _visited(block, fact_in):
    return fact_in | {block.name}


class TestPowersetLattice:

    def test_operations(self):
        lat = PowersetLattice()
        a, b = frozenset({1}), frozenset({1, 2})
        assert lat.bottom() == frozenset()
        assert lat.join(a, b) == b
        assert lat.leq(a, b) and not lat.leq(b, a)
        assert lat.join_all([a, frozenset({3})]) == frozenset({1, 3})
        assert lat.eq(a, frozenset({1}))


class TestForwardSolver:

    def test_chain_accumulates(self):
        fn = chain(3)
        result = run_forward_analysis(fn, PowersetLattice(), _visited)
        assert result.converged
        assert result.fact_at(fn.blocks[2], before=False) == {"b0", "b1", "b2"}
        assert result.fact_at(fn.blocks[0]) == frozenset()

    def test_diamond_join(self):
        fn = diamond()
        result = run_forward_analysis(fn, PowersetLattice(), _visited)
        assert result.facts_in[fn.blocks[3]] == {"entry", "left", "right"}

    def test_loop_reaches_fixpoint(self):
        fn = self_loop()
        result = run_forward_analysis(fn, PowersetLattice(), _visited)
        assert result.converged
        assert result.facts_in[fn.blocks[1]] == {"entry", "loop"}

    def test_entry_value_is_pinned(self):
        fn = self_loop()
        result = run_forward_analysis(
            fn, PowersetLattice(), _visited, entry_value=frozenset({"seed"}))
        assert result.facts_in[fn.blocks[0]] == {"seed"}
        assert "seed" in result.facts_out[fn.blocks[2]]
