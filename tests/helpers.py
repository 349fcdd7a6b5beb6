# tests/helpers.py
"""
Small program-model builders shared by the test modules.

Each helper returns a finished :class:`Function`; block order is the
order written here, so block indices are predictable.
"""

from hepf_core.program_model import Function, FunctionBuilder


def straight_line(calls, params=("m",), name="straight"):
    """One block: each ``(callee, args)`` call in order, then ``ret``."""
    fb = FunctionBuilder(name, params)
    entry = fb.block("entry")
    for callee, args in calls:
        fb.call(entry, callee, args)
    fb.ret(entry)
    return fb.finish()


def chain(n, name="chain"):
    """``b0 -> b1 -> ... -> b{n-1}``, no branching."""
    fb = FunctionBuilder(name)
    blocks = [fb.block(f"b{i}") for i in range(n)]
    for i, block in enumerate(blocks[:-1]):
        fb.br(block, [f"b{i + 1}"])
    fb.ret(blocks[-1])
    return fb.finish()


def diamond(left_calls=(), right_calls=(), params=("a", "b", "c"), name="diamond"):
    """``entry -> {left, right} -> join``.  Indices: 0 entry, 1 left,
    2 right, 3 join."""
    fb = FunctionBuilder(name, params)
    entry = fb.block("entry")
    left = fb.block("left")
    right = fb.block("right")
    join = fb.block("join")
    fb.br(entry, ["left", "right"], condition="%c")
    for callee, args in left_calls:
        fb.call(left, callee, args)
    fb.br(left, ["join"])
    for callee, args in right_calls:
        fb.call(right, callee, args)
    fb.br(right, ["join"])
    fb.ret(join)
    return fb.finish()


def self_loop(name="loop"):
    """``entry -> loop``, ``loop -> {loop, exit}``.  Indices 0, 1, 2."""
    fb = FunctionBuilder(name)
    entry = fb.block("entry")
    loop = fb.block("loop")
    exit_ = fb.block("exit")
    fb.br(entry, ["loop"])
    fb.br(loop, ["loop", "exit"])
    fb.ret(exit_)
    return fb.finish()


def empty_function(name="empty"):
    return Function(name)


def lock_names(locks):
    """Printed names of a lock set, sorted."""
    return sorted(v.name for v in locks)
