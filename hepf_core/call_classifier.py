"""
hepf_core/call_classifier.py
════════════════════════════

Name-based classification of call targets.

    classify(name) → CallKind     first matching rule wins
    explain(name)  → Match        which rule fired, and why
    canonicalize(v) → Value       strip casts / constant offsets

Rule order of :data:`DEFAULT_TABLE`::

    1  exact     ACQUIRE_NAMES                        → ACQUIRE
    2  substring "lock", not "unlock", not "trylock"  → ACQUIRE
    3  exact     RELEASE_NAMES, or "unlock"/"release" → RELEASE
    4  exact     TRY_ACQUIRE_NAMES, or "trylock"/"try_lock"
                                                      → TRY_ACQUIRE
    5  exact/substring INPUT_SOURCE_NAMES             → INPUT_SOURCE
    6  optional secondary matcher
    7  otherwise                                      → UNKNOWN

Rule 2 runs before rules 3 and 4, so ``release_lock`` and ``try_lock``
are both classified ACQUIRE.  :func:`explain` makes that visible.

The critical-depth tracker deliberately uses the smaller exact-match
:data:`SIMPLE_LOCK_TABLE` instead; the two rule sets disagree on names
such as ``mtx_lock`` and are kept separate.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional, Tuple

from .program_model import Value, ValueKind


class CallKind(enum.Enum):
    ACQUIRE = "acquire"
    RELEASE = "release"
    TRY_ACQUIRE = "try-acquire"
    INPUT_SOURCE = "input-source"
    UNKNOWN = "unknown"


ACQUIRE_NAMES: FrozenSet[str] = frozenset({
    "mutex_lock", "spin_lock", "pthread_mutex_lock",
    "mtx_lock", "_lock_acquire", "acquire_lock",
})

RELEASE_NAMES: FrozenSet[str] = frozenset({
    "mutex_unlock", "spin_unlock", "pthread_mutex_unlock",
    "mtx_unlock", "_lock_release", "release_lock",
})

TRY_ACQUIRE_NAMES: FrozenSet[str] = frozenset({
    "pthread_mutex_trylock", "mutex_trylock", "spin_trylock",
})

INPUT_SOURCE_NAMES: Tuple[str, ...] = (
    "read", "recv", "get", "scan", "input", "fread", "getchar", "fgets",
)

CAST_OPCODES: FrozenSet[str] = frozenset({
    "cast", "bitcast", "addrspacecast", "ptrtoint", "inttoptr",
    "zext", "sext", "trunc",
})

OFFSET_OPCODES: FrozenSet[str] = frozenset({"offset", "gep", "getelementptr"})


@dataclass(frozen=True)
class Match:
    """Result of :func:`explain`.

    ``rule`` is a short stable identifier (``"acquire-exact"``,
    ``"acquire-substring"``, ...), ``detail`` the name or substring that
    matched.
    """
    kind: CallKind
    rule: str
    detail: str = ""


SecondaryMatcher = Callable[[str], Optional[CallKind]]


@dataclass(frozen=True)
class ClassificationTable:
    """Exact-name tables plus substring rules, evaluated in fixed order.

    ``secondary`` is consulted after every built-in rule and before
    falling back to UNKNOWN; returning ``None`` means "no opinion".
    """
    acquire: FrozenSet[str] = ACQUIRE_NAMES
    release: FrozenSet[str] = RELEASE_NAMES
    try_acquire: FrozenSet[str] = TRY_ACQUIRE_NAMES
    input_sources: Tuple[str, ...] = INPUT_SOURCE_NAMES
    secondary: Optional[SecondaryMatcher] = None

    def explain(self, name: str) -> Match:
        if name in self.acquire:
            return Match(CallKind.ACQUIRE, "acquire-exact", name)
        if "lock" in name and "unlock" not in name and "trylock" not in name:
            return Match(CallKind.ACQUIRE, "acquire-substring", "lock")

        if name in self.release:
            return Match(CallKind.RELEASE, "release-exact", name)
        for needle in ("unlock", "release"):
            if needle in name:
                return Match(CallKind.RELEASE, "release-substring", needle)

        if name in self.try_acquire:
            return Match(CallKind.TRY_ACQUIRE, "try-acquire-exact", name)
        for needle in ("trylock", "try_lock"):
            if needle in name:
                return Match(CallKind.TRY_ACQUIRE, "try-acquire-substring", needle)

        for source in self.input_sources:
            if name == source:
                return Match(CallKind.INPUT_SOURCE, "input-exact", source)
        for source in self.input_sources:
            if source in name:
                return Match(CallKind.INPUT_SOURCE, "input-substring", source)

        if self.secondary is not None:
            kind = self.secondary(name)
            if kind is not None:
                return Match(kind, "secondary", name)

        return Match(CallKind.UNKNOWN, "unknown", "")

    def classify(self, name: str) -> CallKind:
        return self.explain(name).kind

    def is_input_source(self, name: str) -> bool:
        """Substring membership in the input-source set, independent of
        rule order (``fread_lock`` is still an input source here)."""
        return any(source in name for source in self.input_sources)


DEFAULT_TABLE = ClassificationTable()


def classify(name: str, table: ClassificationTable = DEFAULT_TABLE) -> CallKind:
    return table.classify(name)


def explain(name: str, table: ClassificationTable = DEFAULT_TABLE) -> Match:
    return table.explain(name)


# ---------------------------------------------------------------------------
#  Exact-match table used by the per-path depth tracker
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SimpleLockTable:
    acquire: FrozenSet[str]
    release: FrozenSet[str]

    def delta(self, name: str) -> int:
        """+1 for an acquire, -1 for a release, 0 otherwise."""
        if name in self.acquire:
            return 1
        if name in self.release:
            return -1
        return 0


SIMPLE_LOCK_TABLE = SimpleLockTable(
    acquire=frozenset({"mutex_lock", "spin_lock", "pthread_mutex_lock",
                       "acquire_lock"}),
    release=frozenset({"mutex_unlock", "spin_unlock", "pthread_mutex_unlock",
                       "release_lock"}),
)


# ---------------------------------------------------------------------------
#  Canonical value identity
# ---------------------------------------------------------------------------

def canonicalize(value: Value) -> Value:
    """Return the base of ``value`` after stripping casts and
    constant-offset address computations.

    An ``offset`` whose indices are not all constants is an opaque value
    and is returned unchanged.
    """
    seen = set()
    while value.kind is ValueKind.INSTRUCTION and value.definition is not None:
        if id(value) in seen:
            break
        seen.add(id(value))
        inst = value.definition
        if not inst.operands:
            break
        if inst.opcode in CAST_OPCODES:
            value = inst.operands[0]
        elif inst.opcode in OFFSET_OPCODES and all(
                op.is_constant for op in inst.operands[1:]):
            value = inst.operands[0]
        else:
            break
    return value
