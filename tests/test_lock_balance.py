# tests/test_lock_balance.py
"""Tests for the per-path critical-depth tracker."""

from hepf_core.lock_balance import check_enumeration, check_paths, track_lock_depth
from hepf_core.path_analysis import enumerate_paths
from hepf_core.program_model import FunctionBuilder
from tests.helpers import diamond, straight_line


class TestTrackLockDepth:

    def test_balanced_path(self):
        fn = straight_line([("mutex_lock", ["%m"]), ("mutex_unlock", ["%m"])])
        result = track_lock_depth(fn, (0,))
        assert result.final_depth == 0
        assert result.max_depth == 1
        assert result.balanced

    def test_lock_identity_is_ignored(self):
        fn = straight_line([("spin_lock", ["%a"]), ("spin_unlock", ["%b"])],
                           params=("a", "b"))
        assert track_lock_depth(fn, (0,)).balanced

    def test_release_without_acquire_goes_negative(self):
        fn = straight_line([("mutex_unlock", ["%m"])])
        result = track_lock_depth(fn, (0,))
        assert result.final_depth == -1
        assert result.min_depth == -1
        assert not result.balanced

    def test_only_exact_names_count(self):
        fn = straight_line([("mtx_lock", ["%m"]), ("pthread_mutex_trylock", ["%m"]),
                            ("my_lock_helper", ["%m"])])
        assert track_lock_depth(fn, (0,)).final_depth == 0

    def test_release_lock_is_a_release_here(self):
        fn = straight_line([("acquire_lock", ["%m"]), ("release_lock", ["%m"])])
        assert track_lock_depth(fn, (0,)).balanced

    def test_indirect_calls_do_not_count(self):
        fb = FunctionBuilder("f", ["m", "fp"])
        entry = fb.block("entry")
        fb.call(entry, "mutex_lock", ["%m"])
        fb.call(entry, "%fp", ["%m"])
        fb.ret(entry)
        assert track_lock_depth(fb.finish(), (0,)).final_depth == 1

    def test_repeated_block_counts_twice(self):
        fb = FunctionBuilder("f", ["m", "c"])
        entry = fb.block("entry")
        loop = fb.block("loop")
        out = fb.block("out")
        fb.br(entry, ["loop"])
        fb.call(loop, "mutex_lock", ["%m"])
        fb.br(loop, ["loop", "out"], condition="%c")
        fb.ret(out)
        assert track_lock_depth(fb.finish(), (0, 1, 1, 2)).final_depth == 2


class TestSummaries:

    def test_unbalanced_branch(self):
        fn = diamond(left_calls=[("mutex_lock", ["%a"])])
        summary = check_enumeration(enumerate_paths(fn))
        assert summary.path_count == 2
        assert [r.path for r in summary.unbalanced] == [(0, 1, 3)]
        assert summary.max_final_depth == 1

    def test_empty_path_set(self):
        summary = check_paths(diamond(), [])
        assert summary.path_count == 0
        assert summary.max_final_depth is None
        assert summary.unbalanced == []

    def test_limit_flag_carried(self):
        fn = diamond()
        summary = check_paths(fn, [(0, 1, 3)], reached_limit=True)
        assert summary.reached_limit
