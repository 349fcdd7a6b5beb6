"""
hepf_core/passes.py
═══════════════════

Analysis passes and the explicit pass registry.

    ┌────────────────────────┬──────────────────────────────────────────┐
    │ name                   │ per-function result                      │
    ├────────────────────────┼──────────────────────────────────────────┤
    │ critical-section       │ CriticalSectionReport                    │
    │ path-enumerator        │ EnumerationReport                        │
    │ path-critical-section  │ LockBalanceReport                        │
    │ path-fan-out           │ FanOutReport                             │
    │ path-max-path          │ MaxPathReport                            │
    └────────────────────────┴──────────────────────────────────────────┘

Every pass builds a fresh result per call; a pass instance holds only
its configuration.  ``Pass.run_module`` skips declarations and empty
functions and adds a module-level summary.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Type

from .config import AnalysisConfig
from .dependency_graph import (
    DependenceOracle,
    DependencyChainSummary,
    analyze_dependency_chains,
)
from .errors import UnknownPassError
from .lock_balance import LockBalanceSummary, check_enumeration
from .lock_state import (
    CriticalSectionSummary,
    LockStateResult,
    LockStateSolver,
    summarize_critical_sections,
    top_functions,
)
from .path_analysis import EnumerationResult, PathEnumerator
from .program_model import Function, Module
from .taint_analysis import FanOutSummary, analyze_enumeration as analyze_fan_out

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 - PER-FUNCTION REPORTS
# ═════════════════════════════════════════════════════════════════════════

class FunctionReport:
    """Common interface of every per-function result."""

    function: Function

    @property
    def has_findings(self) -> bool:
        return False


@dataclass
class CriticalSectionReport(FunctionReport):
    function: Function
    lock_states: LockStateResult
    summary: CriticalSectionSummary

    @property
    def has_findings(self) -> bool:
        return self.summary.has_nested_locks


@dataclass
class EnumerationReport(FunctionReport):
    function: Function
    enumeration: EnumerationResult
    max_paths: int
    max_loop_iterations: int


@dataclass
class LockBalanceReport(FunctionReport):
    function: Function
    balance: LockBalanceSummary

    @property
    def has_findings(self) -> bool:
        return bool(self.balance.unbalanced)


@dataclass
class FanOutReport(FunctionReport):
    function: Function
    fan_out: FanOutSummary


@dataclass
class MaxPathReport(FunctionReport):
    function: Function
    chains: DependencyChainSummary


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 - MODULE REPORT
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class ModuleReport:
    """Results of one pass over every defined function of a module."""
    pass_name: str
    module_name: str
    config: AnalysisConfig
    functions: List[FunctionReport] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_findings(self) -> bool:
        return any(r.has_findings for r in self.functions)


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 - PASSES
# ═════════════════════════════════════════════════════════════════════════

class Pass(ABC):
    """
    Base class for analysis passes.

    Subclass Contract
    ─────────────────
      - Override ``name`` and ``description``
      - Implement ``run(function)`` returning a fresh report
      - Optionally override ``summarize(reports)`` for module totals
    """

    name: ClassVar[str] = "base-pass"
    description: ClassVar[str] = ""

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config or AnalysisConfig()

    @abstractmethod
    def run(self, function: Function) -> FunctionReport:
        ...

    def summarize(self, reports: List[FunctionReport]) -> Dict[str, Any]:
        return {}

    def run_module(self, module: Module) -> ModuleReport:
        report = ModuleReport(self.name, module.name, self.config)
        for function in module:
            if function.is_declaration or not function.blocks:
                report.skipped.append(function.name)
                continue
            logger.debug("%s: analysing @%s", self.name, function.name)
            report.functions.append(self.run(function))
        report.summary = {
            "functions_analyzed": len(report.functions),
            "functions_skipped": len(report.skipped),
        }
        report.summary.update(self.summarize(report.functions))
        logger.info("%s: %d functions analysed, %d skipped",
                    self.name, len(report.functions), len(report.skipped))
        return report

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} '{self.name}'>"


class CriticalSectionPass(Pass):
    name: ClassVar[str] = "critical-section"
    description: ClassVar[str] = "Held-lock sets per block and critical-section statistics"

    def run(self, function: Function) -> CriticalSectionReport:
        policy = self.config.lock_policy
        solver = LockStateSolver(policy, self.config.max_iterations)
        states = solver.solve(function)
        summary = summarize_critical_sections(function, states, policy)
        return CriticalSectionReport(function, states, summary)

    def summarize(self, reports: List[FunctionReport]) -> Dict[str, Any]:
        summaries = [r.summary for r in reports]
        total = sum(s.instruction_count for s in summaries)
        critical = sum(s.critical_instructions for s in summaries)
        return {
            "total_instructions": total,
            "critical_instructions": critical,
            "critical_percentage": (100.0 * critical / total) if total else 0.0,
            "functions_with_critical_sections":
                sum(1 for s in summaries if s.has_critical_sections),
            "top_functions": top_functions(summaries, 10),
        }


class _PathPass(Pass):
    """Shared enumeration step of the path-level passes."""

    def _enumerate_paths(self, function: Function) -> EnumerationResult:
        max_paths, max_loops = self.config.path_limits(self.name)
        return PathEnumerator(max_paths, max_loops).enumerate(function)


class PathEnumeratorPass(_PathPass):
    name: ClassVar[str] = "path-enumerator"
    description: ClassVar[str] = "List bounded entry-to-exit block paths"

    def run(self, function: Function) -> EnumerationReport:
        max_paths, max_loops = self.config.path_limits(self.name)
        enumeration = self._enumerate_paths(function)
        return EnumerationReport(function, enumeration, max_paths, max_loops)

    def summarize(self, reports: List[FunctionReport]) -> Dict[str, Any]:
        return {
            "total_paths": sum(len(r.enumeration) for r in reports),
            "functions_at_limit": [
                r.function.name for r in reports if r.enumeration.reached_limit],
        }


class PathCriticalSectionPass(_PathPass):
    name: ClassVar[str] = "path-critical-section"
    description: ClassVar[str] = "Per-path lock depth and imbalance"

    def run(self, function: Function) -> LockBalanceReport:
        return LockBalanceReport(function, check_enumeration(self._enumerate_paths(function)))

    def summarize(self, reports: List[FunctionReport]) -> Dict[str, Any]:
        return {
            "total_paths": sum(r.balance.path_count for r in reports),
            "unbalanced_paths": sum(len(r.balance.unbalanced) for r in reports),
            "functions_with_imbalance": [
                r.function.name for r in reports if r.balance.unbalanced],
        }


class PathFanOutPass(_PathPass):
    name: ClassVar[str] = "path-fan-out"
    description: ClassVar[str] = "Per-path tainted interprocedural fan-out"

    def run(self, function: Function) -> FanOutReport:
        return FanOutReport(function, analyze_fan_out(self._enumerate_paths(function)))

    def summarize(self, reports: List[FunctionReport]) -> Dict[str, Any]:
        per_path = [n for r in reports for n in r.fan_out.per_path]
        return {
            "total_paths": len(per_path),
            "max_fan_out": max(per_path, default=0),
            "mean_fan_out": (sum(per_path) / len(per_path)) if per_path else 0.0,
        }


class PathMaxPathPass(_PathPass):
    name: ClassVar[str] = "path-max-path"
    description: ClassVar[str] = "Per-path longest dependency chain"

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        oracle: Optional[DependenceOracle] = None,
    ) -> None:
        super().__init__(config)
        self.oracle = oracle

    def run(self, function: Function) -> MaxPathReport:
        enumeration = self._enumerate_paths(function)
        chains = analyze_dependency_chains(
            function, enumeration.paths, self.oracle,
            reached_limit=enumeration.reached_limit)
        return MaxPathReport(function, chains)

    def summarize(self, reports: List[FunctionReport]) -> Dict[str, Any]:
        lengths = [c.length for r in reports for c in r.chains.chains]
        return {
            "total_paths": len(lengths),
            "max_critical_path": max(lengths, default=0),
            "mean_critical_path": (sum(lengths) / len(lengths)) if lengths else 0.0,
        }


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 - PASS REGISTRY
# ═════════════════════════════════════════════════════════════════════════

class PassRegistry:
    """
    Explicit name → pass-class table.

    Usage
    -----
    >>> registry = PassRegistry()
    >>> registry.register(CriticalSectionPass)
    >>> registry.create("critical-section", AnalysisConfig())
    <CriticalSectionPass 'critical-section'>
    """

    def __init__(self) -> None:
        self._passes: Dict[str, Type[Pass]] = {}

    def register(self, pass_cls: Type[Pass]) -> None:
        self._passes[pass_cls.name] = pass_cls

    def get(self, name: str) -> Type[Pass]:
        try:
            return self._passes[name]
        except KeyError:
            raise UnknownPassError(name, self._passes) from None

    def create(self, name: str, config: Optional[AnalysisConfig] = None,
               **kwargs: Any) -> Pass:
        return self.get(name)(config, **kwargs)

    def __contains__(self, name: str) -> bool:
        return name in self._passes

    def __iter__(self):
        return iter(self._passes.values())

    @property
    def names(self) -> List[str]:
        return sorted(self._passes)


PASS_REGISTRY = PassRegistry()
PASS_REGISTRY.register(CriticalSectionPass)
PASS_REGISTRY.register(PathEnumeratorPass)
PASS_REGISTRY.register(PathCriticalSectionPass)
PASS_REGISTRY.register(PathFanOutPass)
PASS_REGISTRY.register(PathMaxPathPass)


def run_pass(
    name: str,
    module: Module,
    config: Optional[AnalysisConfig] = None,
) -> ModuleReport:
    """Look up ``name`` in :data:`PASS_REGISTRY` and run it over ``module``."""
    return PASS_REGISTRY.create(name, config).run_module(module)
