# tests/test_taint_analysis.py
"""Tests for per-path taint propagation and tainted fan-out."""

from hepf_core.call_classifier import ClassificationTable
from hepf_core.path_analysis import enumerate_paths
from hepf_core.program_model import FunctionBuilder
from hepf_core.taint_analysis import (
    TaintConfig,
    analyze_enumeration,
    analyze_fan_out,
    propagate_taint,
    tainted_fan_out,
)
from tests.helpers import diamond


def _source_then_sink():
    fb = FunctionBuilder("f")
    entry = fb.block("entry")
    fb.call(entry, "read", [], "%x")
    fb.call(entry, "foo", ["%x"], "%r")
    fb.ret(entry)
    return fb.finish()


class TestPropagation:

    def test_input_source_result_flows_to_call(self):
        fn = _source_then_sink()
        taint = propagate_taint(fn, (0,))
        assert taint.is_tainted(fn.entry.instructions[0].result)
        assert taint.is_tainted(fn.entry.instructions[1].result)
        assert tainted_fan_out(fn, (0,), taint) == 1

    def test_parameters_seed_taint(self):
        fb = FunctionBuilder("f", ["p"])
        entry = fb.block("entry")
        fb.load(entry, "%p", "%v")
        fb.op(entry, "add", ["%v", 1], "%w")
        fb.call(entry, "sink", ["%w"])
        fb.ret(entry)
        fn = fb.finish()
        taint = propagate_taint(fn, (0,))
        assert {v.name for v in taint.tainted} == {"%p", "%v", "%w"}
        assert tainted_fan_out(fn, (0,), taint) == 1

    def test_parameter_seeding_can_be_disabled(self):
        fb = FunctionBuilder("f", ["p"])
        entry = fb.block("entry")
        fb.call(entry, "sink", ["%p"])
        fb.ret(entry)
        fn = fb.finish()
        config = TaintConfig(seed_parameters=False)
        taint = propagate_taint(fn, (0,), config)
        assert taint.tainted == frozenset()
        assert tainted_fan_out(fn, (0,), taint) == 0

    def test_untainted_load_address(self):
        fb = FunctionBuilder("f")
        entry = fb.block("entry")
        fb.load(entry, "@g", "%v")
        fb.call(entry, "sink", ["%v"])
        fb.ret(entry)
        fn = fb.finish()
        taint = propagate_taint(fn, (0,))
        assert not taint.tainted
        assert tainted_fan_out(fn, (0,), taint) == 0

    def test_phi_taint(self):
        fb = FunctionBuilder("f", ["a", "c"])
        entry = fb.block("entry")
        other = fb.block("other")
        join = fb.block("join")
        fb.br(entry, ["other", "join"], condition="%c")
        fb.br(other, ["join"])
        fb.phi(join, [("%a", "entry"), (0, "other")], "%v")
        fb.ret(join, "%v")
        fn = fb.finish()
        taint = propagate_taint(fn, (0, 2))
        assert taint.is_tainted(fn.block("join").instructions[0].result)

    def test_custom_input_sources(self):
        fb = FunctionBuilder("f")
        entry = fb.block("entry")
        fb.call(entry, "next_packet", [], "%x")
        fb.call(entry, "handle", ["%x"])
        fb.ret(entry)
        fn = fb.finish()
        config = TaintConfig(table=ClassificationTable(input_sources=("packet",)))
        taint = propagate_taint(fn, (0,), config)
        assert tainted_fan_out(fn, (0,), taint) == 1


class TestFanOut:

    def test_repeated_direct_callee_counts_once(self):
        fb = FunctionBuilder("f", ["p"])
        entry = fb.block("entry")
        fb.call(entry, "sink", ["%p"])
        fb.call(entry, "sink", ["%p"])
        fb.call(entry, "other", ["%p", 1])
        fb.ret(entry)
        fn = fb.finish()
        assert tainted_fan_out(fn, (0,), propagate_taint(fn, (0,))) == 2

    def test_indirect_calls_count_per_occurrence(self):
        fb = FunctionBuilder("f", ["p", "fp"])
        entry = fb.block("entry")
        fb.call(entry, "%fp", ["%p"])
        fb.call(entry, "%fp", ["%p"])
        fb.ret(entry)
        fn = fb.finish()
        assert tainted_fan_out(fn, (0,), propagate_taint(fn, (0,))) == 2

    def test_intrinsics_never_count(self):
        fb = FunctionBuilder("f", ["p"])
        entry = fb.block("entry")
        fb.call(entry, "llvm.memcpy", ["%p", "%p"])
        fb.ret(entry)
        fn = fb.finish()
        assert tainted_fan_out(fn, (0,), propagate_taint(fn, (0,))) == 0

    def test_summary_over_paths(self):
        fn = diamond(left_calls=[("sink", ["%a"]), ("other", ["%b"])],
                     right_calls=[("sink", [1])])
        summary = analyze_enumeration(enumerate_paths(fn))
        assert summary.per_path == [2, 0]
        assert summary.max_fan_out == 2
        assert summary.mean_fan_out == 1.0
        assert not summary.reached_limit

    def test_paths_do_not_share_taint(self):
        fn = _source_then_sink()
        summary = analyze_fan_out(fn, [(0,), (0,)])
        assert summary.per_path == [1, 1]

    def test_empty_summary(self):
        summary = analyze_fan_out(diamond(), [])
        assert summary.max_fan_out == 0
        assert summary.mean_fan_out == 0.0
