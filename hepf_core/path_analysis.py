"""
hepf_core/path_analysis.py
══════════════════════════

Bounded enumeration of entry-to-exit block paths.

A *path* is a tuple of block indices starting at the entry block and
ending at a block with no successors.  Two caps keep enumeration finite:

  max_paths            – stop once this many paths are recorded and
                         report ``reached_limit``
  max_loop_iterations  – a block may be entered at most
                         ``max_loop_iterations + 1`` times on one path

Entering a block ``b``::

    len(paths) >= max_paths           → reached_limit, stop
    visits[b] > max_loop_iterations   → drop this branch
    push b, visits[b] += 1
    no successors                     → record path
    else for each successor s:
        len(paths) >= max_paths       → reached_limit, stop
        enter s
    pop b, visits[b] -= 1

The walk is an iterative DFS over integer indices with an explicit
frame stack, so deep or heavily unrolled functions never hit the
interpreter's recursion limit.  Paths come out in successor order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Sequence, Tuple

from .program_model import Block, Function, Instruction

logger = logging.getLogger(__name__)

Path = Tuple[int, ...]

DEFAULT_MAX_PATHS = 10_000
DEFAULT_MAX_LOOP_ITERATIONS = 2


@dataclass
class EnumerationResult:
    """Paths through one function.

    Attributes
    ----------
    function : Function
    paths : list of tuple of int
        Block-index sequences, in discovery order.
    reached_limit : bool
        ``True`` iff enumeration stopped because ``max_paths`` was hit.
    """
    function: Function
    paths: List[Path] = field(default_factory=list)
    reached_limit: bool = False

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self) -> Iterator[Path]:
        return iter(self.paths)

    def block_names(self, path: Path) -> List[str]:
        return [self.function.blocks[i].name for i in path]


class PathEnumerator:
    """Enumerate block paths of a function up to the configured caps."""

    def __init__(
        self,
        max_paths: int = DEFAULT_MAX_PATHS,
        max_loop_iterations: int = DEFAULT_MAX_LOOP_ITERATIONS,
    ) -> None:
        self.max_paths = max_paths
        self.max_loop_iterations = max_loop_iterations

    def enumerate(self, function: Function) -> EnumerationResult:
        result = EnumerationResult(function)
        entry = function.entry
        if entry is None:
            logger.info("@%s has no blocks; no paths to enumerate", function.name)
            return result

        succs: List[List[int]] = [
            [s.index for s in block.successors] for block in function.blocks
        ]
        visits: List[int] = [0] * len(function.blocks)
        current: List[int] = []
        paths = result.paths
        # Frames: [block index, position of the next successor to try]
        stack: List[List[int]] = []

        def enter(index: int) -> None:
            if len(paths) >= self.max_paths:
                result.reached_limit = True
                return
            if visits[index] > self.max_loop_iterations:
                return
            current.append(index)
            visits[index] += 1
            if not succs[index]:
                paths.append(tuple(current))
                current.pop()
                visits[index] -= 1
                return
            stack.append([index, 0])

        enter(entry.index)
        while stack:
            frame = stack[-1]
            index, pos = frame
            if pos >= len(succs[index]):
                stack.pop()
                current.pop()
                visits[index] -= 1
                continue
            if len(paths) >= self.max_paths:
                result.reached_limit = True
                break
            frame[1] = pos + 1
            enter(succs[index][pos])

        if result.reached_limit:
            logger.warning(
                "@%s: path limit of %d reached; path list is truncated",
                function.name, self.max_paths,
            )
        logger.debug("@%s: %d paths enumerated", function.name, len(paths))
        return result


def enumerate_paths(
    function: Function,
    max_paths: int = DEFAULT_MAX_PATHS,
    max_loop_iterations: int = DEFAULT_MAX_LOOP_ITERATIONS,
) -> EnumerationResult:
    return PathEnumerator(max_paths, max_loop_iterations).enumerate(function)


# ---------------------------------------------------------------------------
#  Path helpers shared by the path analyzers
# ---------------------------------------------------------------------------

def path_blocks(function: Function, path: Sequence[int]) -> List[Block]:
    return [function.blocks[i] for i in path]


def path_instructions(function: Function, path: Sequence[int]) -> List[Instruction]:
    """Instruction occurrences along ``path``; a block visited twice
    contributes its instructions twice."""
    out: List[Instruction] = []
    for i in path:
        out.extend(function.blocks[i].instructions)
    return out


def format_path(function: Function, path: Sequence[int]) -> str:
    return " -> ".join(function.blocks[i].name for i in path)
