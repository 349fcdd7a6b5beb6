# tests/test_path_enumerator.py
"""Tests for bounded entry-to-exit path enumeration."""

import logging

from hepf_core.path_analysis import (
    PathEnumerator,
    enumerate_paths,
    format_path,
    path_blocks,
    path_instructions,
)
from hepf_core.program_model import FunctionBuilder
from tests.helpers import chain, diamond, empty_function, self_loop


class TestAcyclic:

    def test_chain_has_one_path(self):
        result = enumerate_paths(chain(4))
        assert result.paths == [(0, 1, 2, 3)]
        assert not result.reached_limit

    def test_single_block(self):
        result = enumerate_paths(chain(1))
        assert result.paths == [(0,)]

    def test_diamond_in_successor_order(self):
        result = enumerate_paths(diamond())
        assert result.paths == [(0, 1, 3), (0, 2, 3)]
        assert result.block_names(result.paths[1]) == ["entry", "right", "join"]

    def test_every_path_starts_at_entry_and_ends_at_exit(self):
        fn = diamond()
        for path in enumerate_paths(fn):
            assert path[0] == fn.entry.index
            assert fn.blocks[path[-1]].is_exit

    def test_duplicate_edges_give_duplicate_paths(self):
        fb = FunctionBuilder("f", ["c"])
        entry = fb.block("entry")
        out = fb.block("out")
        fb.br(entry, ["out", "out"], condition="%c")
        fb.ret(out)
        assert enumerate_paths(fb.finish()).paths == [(0, 1), (0, 1)]

    def test_no_blocks(self):
        result = enumerate_paths(empty_function())
        assert result.paths == []
        assert not result.reached_limit

    def test_dead_end_block_is_an_exit(self):
        fb = FunctionBuilder("f", ["c"])
        entry = fb.block("entry")
        stop = fb.block("stop")
        out = fb.block("out")
        fb.br(entry, ["stop", "out"], condition="%c")
        fb.unreachable(stop)
        fb.ret(out)
        assert enumerate_paths(fb.finish()).paths == [(0, 1), (0, 2)]

    def test_long_chain_does_not_recurse(self):
        fn = chain(5000)
        result = enumerate_paths(fn)
        assert len(result) == 1
        assert len(result.paths[0]) == 5000


class TestLoops:

    def test_self_loop_unrolled_deepest_first(self):
        result = PathEnumerator(max_loop_iterations=2).enumerate(self_loop())
        assert result.paths == [
            (0, 1, 1, 1, 2),
            (0, 1, 1, 2),
            (0, 1, 2),
        ]

    def test_no_repeats_allowed(self):
        result = PathEnumerator(max_loop_iterations=0).enumerate(self_loop())
        assert result.paths == [(0, 1, 2)]

    def test_block_visit_bound_holds(self):
        k = 3
        result = PathEnumerator(max_loop_iterations=k).enumerate(self_loop())
        for path in result:
            assert max(path.count(i) for i in set(path)) <= k + 1


class TestPathLimit:

    def test_limit_hit(self, caplog):
        with caplog.at_level(logging.WARNING, logger="hepf_core"):
            result = PathEnumerator(max_paths=2, max_loop_iterations=2).enumerate(
                self_loop())
        assert len(result) == 2
        assert result.reached_limit
        assert any("path limit" in r.getMessage() for r in caplog.records)

    def test_limit_equal_to_path_count_is_not_reached(self):
        result = PathEnumerator(max_paths=3, max_loop_iterations=2).enumerate(
            self_loop())
        assert len(result) == 3
        assert not result.reached_limit

    def test_enumeration_is_repeatable(self):
        enumerator = PathEnumerator(max_paths=5)
        fn = diamond()
        assert enumerator.enumerate(fn).paths == enumerator.enumerate(fn).paths


class TestPathHelpers:

    def test_helpers(self):
        fn = self_loop()
        path = (0, 1, 1, 2)
        assert [b.name for b in path_blocks(fn, path)] == ["entry", "loop", "loop", "exit"]
        # the loop block's branch appears twice
        assert len(path_instructions(fn, path)) == 4
        assert format_path(fn, path) == "entry -> loop -> loop -> exit"
