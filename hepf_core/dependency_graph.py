"""
hepf_core/dependency_graph.py
═════════════════════════════

Per-path dependency graphs and their longest dependency chain.

For one enumerated path the nodes are the path's *instruction
occurrences* (a block visited twice contributes its instructions twice),
numbered by position.  Edges always point from an earlier position to a
later one:

    ┌─────────────────────────────────────────────────────────────────┐
    │  Dependency Kinds                                               │
    │    DATA        - producer → later user of its result            │
    │    MEMORY      - earlier → later memory access (see below)      │
    │    CONTROL     - block terminator → first instruction of the    │
    │                  next block on the path                         │
    │    ALLOCATION  - *alloc / free call → every later load / store  │
    └─────────────────────────────────────────────────────────────────┘

Memory edges between two loads/stores ``i`` before ``j``:

    same block, oracle given  →  edge iff oracle(i, j) is DepAnswer.YES
    otherwise                 →  edge unless both are loads

The *critical path length* is the number of nodes on the longest chain
of edges, so a graph with no edges scores 1 per node and an empty path
scores 0.

Usage example::

    from hepf_core.dependency_graph import DependencyGraphBuilder

    graph = DependencyGraphBuilder().build(function, path)
    print(graph.critical_path_length())
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .path_analysis import EnumerationResult, Path
from .program_model import Function, InstKind, Instruction

logger = logging.getLogger(__name__)


class DepKind(Enum):
    DATA = auto()
    MEMORY = auto()
    CONTROL = auto()
    ALLOCATION = auto()


class DepAnswer(Enum):
    """Answer of a dependence oracle for a same-block pair."""
    YES = auto()
    NO = auto()
    UNKNOWN = auto()


DependenceOracle = Callable[[Instruction, Instruction], Optional[DepAnswer]]

ALLOCATION_MARKERS: Tuple[str, ...] = ("alloc", "free", "realloc", "malloc")


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 - GRAPH
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class DepEdge:
    """A dependency edge between two node positions."""
    source: int
    target: int
    kind: DepKind

    def __repr__(self) -> str:
        return f"DepEdge({self.source}→{self.target} {self.kind.name})"


class DependencyGraph:
    """
    Dependency graph over the instruction occurrences of one path.

    Nodes are integer positions ``0 .. len(nodes) - 1``; ``nodes[i]`` is
    the instruction at that position.  Construction is done via
    ``DependencyGraphBuilder.build(function, path)``.
    """

    def __init__(self, nodes: Sequence[Instruction] = ()) -> None:
        self.nodes: List[Instruction] = list(nodes)
        self._edges: List[DepEdge] = []
        self._edge_set: Set[Tuple[int, int, DepKind]] = set()
        self._succs: List[List[int]] = [[] for _ in self.nodes]

    # ── Construction ──────────────────────────────────────────────────

    def add_edge(self, source: int, target: int, kind: DepKind) -> bool:
        """Add an edge; return ``False`` if it already existed."""
        key = (source, target, kind)
        if key in self._edge_set:
            return False
        self._edge_set.add(key)
        self._edges.append(DepEdge(source, target, kind))
        if target not in self._succs[source]:
            self._succs[source].append(target)
        return True

    # ── Queries ───────────────────────────────────────────────────────

    @property
    def edges(self) -> List[DepEdge]:
        return list(self._edges)

    def edges_of_kind(self, kind: DepKind) -> List[DepEdge]:
        return [e for e in self._edges if e.kind is kind]

    def successors(self, node: int) -> List[int]:
        return list(self._succs[node])

    def has_edge(self, source: int, target: int,
                 kind: Optional[DepKind] = None) -> bool:
        if kind is not None:
            return (source, target, kind) in self._edge_set
        return target in self._succs[source]

    def __len__(self) -> int:
        return len(self.nodes)

    # ── Longest chain ─────────────────────────────────────────────────

    def longest_chain_from(
        self,
        root: int,
        memo: Optional[Dict[int, int]] = None,
    ) -> int:
        """Number of nodes on the longest edge chain starting at ``root``.

        Memoised DFS with an explicit stack.  A successor that is still
        on the stack contributes 0, so a cycle cannot recurse forever.
        """
        if memo is None:
            memo = {}
        if root in memo:
            return memo[root]

        on_stack: Set[int] = {root}
        best: Dict[int, int] = {root: 0}
        stack: List[List[int]] = [[root, 0]]
        while stack:
            frame = stack[-1]
            node, pos = frame
            succs = self._succs[node]
            if pos < len(succs):
                frame[1] = pos + 1
                child = succs[pos]
                if child in memo:
                    best[node] = max(best[node], memo[child])
                elif child in on_stack:
                    continue
                else:
                    on_stack.add(child)
                    best[child] = 0
                    stack.append([child, 0])
                continue
            stack.pop()
            on_stack.discard(node)
            memo[node] = best.pop(node) + 1
            if stack:
                parent = stack[-1][0]
                best[parent] = max(best[parent], memo[node])
        return memo[root]

    def critical_path_length(self) -> int:
        memo: Dict[int, int] = {}
        longest = 0
        for node in range(len(self.nodes)):
            longest = max(longest, self.longest_chain_from(node, memo))
        return longest

    # ── Reporting ─────────────────────────────────────────────────────

    def summary(self) -> Dict[str, int]:
        counts = Counter(e.kind.name.lower() for e in self._edges)
        out = {"nodes": len(self.nodes), "edges": len(self._edges)}
        for kind in DepKind:
            out[kind.name.lower()] = counts.get(kind.name.lower(), 0)
        return out

    def to_dot(self, name: str = "deps") -> str:
        from .ir_parser import format_instruction

        lines = [f"digraph {name} {{", "  node [shape=box, fontname=monospace];"]
        for i, inst in enumerate(self.nodes):
            text = format_instruction(inst).replace('"', '\\"')
            lines.append(f'  n{i} [label="{i}: {text}"];')
        styles = {
            DepKind.DATA: "solid",
            DepKind.MEMORY: "dashed",
            DepKind.CONTROL: "dotted",
            DepKind.ALLOCATION: "bold",
        }
        for e in self._edges:
            lines.append(
                f"  n{e.source} -> n{e.target} "
                f'[style={styles[e.kind]}, label="{e.kind.name.lower()}"];')
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"<DependencyGraph nodes={len(self.nodes)} edges={len(self._edges)}>"


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 - BUILDER
# ═══════════════════════════════════════════════════════════════════════════


def _is_allocation_call(inst: Instruction) -> bool:
    if inst.kind is not InstKind.CALL or inst.callee is None:
        return False
    return any(marker in inst.callee for marker in ALLOCATION_MARKERS)


def _uses(inst: Instruction) -> Tuple:
    if inst.callee_value is not None:
        return inst.operands + (inst.callee_value,)
    return inst.operands


class DependencyGraphBuilder:
    """Build a :class:`DependencyGraph` for one path.

    Parameters
    ----------
    oracle : callable(earlier, later) → DepAnswer, optional
        Consulted for memory pairs inside one block.  Anything other
        than ``DepAnswer.YES`` means "no dependence".
    """

    def __init__(self, oracle: Optional[DependenceOracle] = None) -> None:
        self.oracle = oracle

    def build(self, function: Function, path: Sequence[int]) -> DependencyGraph:
        nodes: List[Instruction] = []
        block_starts: List[Tuple[int, int]] = []   # (position, block index)
        for index in path:
            block = function.blocks[index]
            block_starts.append((len(nodes), index))
            nodes.extend(block.instructions)

        graph = DependencyGraph(nodes)
        self._add_data_edges(graph)
        self._add_memory_edges(graph)
        self._add_control_edges(graph, function, block_starts)
        self._add_allocation_edges(graph)
        return graph

    # ----- edge families --------------------------------------------------

    @staticmethod
    def _add_data_edges(graph: DependencyGraph) -> None:
        last_position: Dict[int, int] = {}
        for pos, inst in enumerate(graph.nodes):
            for value in _uses(inst):
                producer = value.definition
                if producer is None:
                    continue
                source = last_position.get(id(producer))
                if source is not None:
                    graph.add_edge(source, pos, DepKind.DATA)
            last_position[id(inst)] = pos

    def _add_memory_edges(self, graph: DependencyGraph) -> None:
        accesses = [(pos, inst) for pos, inst in enumerate(graph.nodes)
                    if inst.touches_memory]
        for a, (i, earlier) in enumerate(accesses):
            for j, later in accesses[a + 1:]:
                if self.oracle is not None and earlier.block is later.block:
                    dependent = self.oracle(earlier, later) is DepAnswer.YES
                else:
                    dependent = not (earlier.kind is InstKind.LOAD
                                     and later.kind is InstKind.LOAD)
                if dependent:
                    graph.add_edge(i, j, DepKind.MEMORY)

    @staticmethod
    def _add_control_edges(
        graph: DependencyGraph,
        function: Function,
        block_starts: List[Tuple[int, int]],
    ) -> None:
        previous_terminator: Optional[int] = None
        for start, index in block_starts:
            block = function.blocks[index]
            if previous_terminator is not None and block.instructions:
                graph.add_edge(previous_terminator, start, DepKind.CONTROL)
            if block.terminator is not None:
                previous_terminator = start + len(block.instructions) - 1
            else:
                previous_terminator = None

    @staticmethod
    def _add_allocation_edges(graph: DependencyGraph) -> None:
        for i, inst in enumerate(graph.nodes):
            if not _is_allocation_call(inst):
                continue
            for j in range(i + 1, len(graph.nodes)):
                if graph.nodes[j].touches_memory:
                    graph.add_edge(i, j, DepKind.ALLOCATION)


def critical_path_length(
    function: Function,
    path: Sequence[int],
    oracle: Optional[DependenceOracle] = None,
) -> int:
    return DependencyGraphBuilder(oracle).build(function, path).critical_path_length()


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 - AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class PathChain:
    path: Path
    length: int
    nodes: int
    edges: int


@dataclass
class DependencyChainSummary:
    function: str
    chains: List[PathChain] = field(default_factory=list)
    reached_limit: bool = False

    @property
    def path_count(self) -> int:
        return len(self.chains)

    @property
    def max_length(self) -> int:
        return max((c.length for c in self.chains), default=0)

    @property
    def mean_length(self) -> float:
        if not self.chains:
            return 0.0
        return sum(c.length for c in self.chains) / len(self.chains)


def analyze_dependency_chains(
    function: Function,
    paths: Iterable[Path],
    oracle: Optional[DependenceOracle] = None,
    *,
    reached_limit: bool = False,
) -> DependencyChainSummary:
    builder = DependencyGraphBuilder(oracle)
    summary = DependencyChainSummary(function.name, reached_limit=reached_limit)
    for path in paths:
        graph = builder.build(function, path)
        summary.chains.append(PathChain(
            path=tuple(path),
            length=graph.critical_path_length(),
            nodes=len(graph),
            edges=len(graph.edges),
        ))
    logger.debug("@%s: longest dependency chain %d over %d paths",
                 function.name, summary.max_length, summary.path_count)
    return summary


def analyze_enumeration(
    enumeration: EnumerationResult,
    oracle: Optional[DependenceOracle] = None,
) -> DependencyChainSummary:
    return analyze_dependency_chains(
        enumeration.function, enumeration.paths, oracle,
        reached_limit=enumeration.reached_limit,
    )
