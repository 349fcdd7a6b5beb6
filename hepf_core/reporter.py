"""
hepf_core/reporter.py
═════════════════════

Rendering of :class:`~hepf_core.passes.ModuleReport` objects.

Output formats
──────────────
  • Text : human-readable, optionally coloured with termcolor
  • JSON : stable machine-readable structure (``report_to_dict``)

Usage
─────
    from hepf_core.passes import run_pass
    from hepf_core.reporter import render

    report = run_pass("critical-section", module)
    print(render(report, "text", color=True))
"""

from __future__ import annotations

import enum
import json
from typing import Any, Callable, Dict, List, Optional

from termcolor import colored

from .lock_state import format_lock_set
from .passes import (
    CriticalSectionReport,
    EnumerationReport,
    FanOutReport,
    FunctionReport,
    LockBalanceReport,
    MaxPathReport,
    ModuleReport,
)
from .path_analysis import format_path


# ═════════════════════════════════════════════════════════════════════════
#  SEVERITY ENUM
# ═════════════════════════════════════════════════════════════════════════

class Severity(enum.Enum):
    """
    Message levels in text output.

    Each carries:
      • label - the prefix printed before the message
      • color - termcolor colour name
    """

    WARNING = ("WARNING", "yellow")
    NOTE = ("note", "cyan")
    OK = ("ok", "green")

    def __init__(self, label: str, color: str) -> None:
        self.label = label
        self.color = color


# ═════════════════════════════════════════════════════════════════════════
#  JSON
# ═════════════════════════════════════════════════════════════════════════

def _path_names(report: FunctionReport, path) -> List[str]:
    return [report.function.blocks[i].name for i in path]


def _function_to_dict(report: FunctionReport, detail_limit: int) -> Dict[str, Any]:
    fn = report.function
    out: Dict[str, Any] = {
        "function": fn.name,
        "blocks": len(fn.blocks),
        "instructions": fn.instruction_count,
    }
    if isinstance(report, CriticalSectionReport):
        s = report.summary
        out.update({
            "critical_instructions": s.critical_instructions,
            "critical_percentage": round(s.percentage, 2),
            "nested_locks": s.has_nested_locks,
            "max_depth": s.max_depth,
            "lock_usage": dict(s.lock_usage),
            "converged": report.lock_states.converged,
            "iterations": report.lock_states.iterations,
            "lock_states": {
                b.name: {
                    "in": sorted(v.name for v in report.lock_states.facts_in.get(b, ())),
                    "out": sorted(v.name for v in report.lock_states.facts_out.get(b, ())),
                }
                for b in fn.blocks
            },
        })
    elif isinstance(report, EnumerationReport):
        e = report.enumeration
        out.update({
            "path_count": len(e),
            "reached_limit": e.reached_limit,
            "max_paths": report.max_paths,
            "max_loop_iterations": report.max_loop_iterations,
            "paths": [_path_names(report, p) for p in e.paths[:detail_limit]],
        })
    elif isinstance(report, LockBalanceReport):
        b = report.balance
        out.update({
            "path_count": b.path_count,
            "reached_limit": b.reached_limit,
            "unbalanced_paths": len(b.unbalanced),
            "paths": [
                {"path": _path_names(report, r.path), "final_depth": r.final_depth,
                 "min_depth": r.min_depth, "balanced": r.balanced}
                for r in b.results[:detail_limit]
            ],
        })
    elif isinstance(report, FanOutReport):
        f = report.fan_out
        out.update({
            "path_count": f.path_count,
            "reached_limit": f.reached_limit,
            "max_fan_out": f.max_fan_out,
            "mean_fan_out": round(f.mean_fan_out, 2),
            "paths": [
                {"path": _path_names(report, p), "fan_out": n}
                for p, n in list(zip(f.paths, f.per_path))[:detail_limit]
            ],
        })
    elif isinstance(report, MaxPathReport):
        c = report.chains
        out.update({
            "path_count": c.path_count,
            "reached_limit": c.reached_limit,
            "max_critical_path": c.max_length,
            "mean_critical_path": round(c.mean_length, 2),
            "paths": [
                {"path": _path_names(report, ch.path), "length": ch.length,
                 "nodes": ch.nodes, "edges": ch.edges}
                for ch in c.chains[:detail_limit]
            ],
        })
    return out


def report_to_dict(report: ModuleReport) -> Dict[str, Any]:
    limit = report.config.path_detail_limit
    summary = dict(report.summary)
    if "critical_percentage" in summary:
        summary["critical_percentage"] = round(summary["critical_percentage"], 2)
    if "top_functions" in summary:
        summary["top_functions"] = [
            {"function": name, "critical_instructions": n}
            for name, n in summary["top_functions"]
        ]
    return {
        "pass": report.pass_name,
        "module": report.module_name,
        "config": report.config.to_dict(),
        "functions": [_function_to_dict(r, limit) for r in report.functions],
        "skipped": list(report.skipped),
        "summary": summary,
        "has_findings": report.has_findings,
    }


def render_json(report: ModuleReport) -> str:
    return json.dumps(report_to_dict(report), indent=2, sort_keys=False)


# ═════════════════════════════════════════════════════════════════════════
#  TEXT
# ═════════════════════════════════════════════════════════════════════════

class TextRenderer:
    """Plain-text renderer; ``color=True`` adds termcolor highlighting."""

    def __init__(self, color: bool = False) -> None:
        self.color = color
        self._lines: List[str] = []

    # ── helpers ──────────────────────────────────────────────────────

    def _c(self, text: str, color: Optional[str] = None,
           attrs: Optional[List[str]] = None) -> str:
        if not self.color:
            return text
        return colored(text, color, attrs=attrs)

    def _emit(self, text: str = "") -> None:
        self._lines.append(text)

    def _message(self, severity: Severity, text: str, indent: int = 2) -> None:
        label = self._c(severity.label, severity.color, attrs=["bold"])
        self._emit(" " * indent + f"{label}: {text}")

    def _header(self, title: str) -> None:
        self._emit(self._c(f"=== {title} ===", "blue", attrs=["bold"]))
        self._emit()

    def _function_header(self, report: FunctionReport) -> None:
        fn = report.function
        self._emit(self._c(f"Function: {fn.name}", attrs=["bold"]))
        self._emit(f"  Blocks: {len(fn.blocks)}  Instructions: {fn.instruction_count}")

    def _more(self, shown: int, total: int) -> None:
        if total > shown:
            self._emit(f"  ... and {total - shown} more")

    def _limit_note(self, reached: bool) -> None:
        if reached:
            self._message(Severity.WARNING,
                          "path limit reached; results cover a truncated path set")

    # ── per pass ─────────────────────────────────────────────────────

    def _critical_section(self, report: CriticalSectionReport) -> None:
        s = report.summary
        self._function_header(report)
        if not report.lock_states.converged:
            self._message(Severity.WARNING,
                          f"lock-state analysis did not converge after "
                          f"{report.lock_states.iterations} iterations")
        if not s.has_critical_sections:
            self._emit("  No critical sections")
            return
        self._emit(f"  Critical Section Instructions: {s.critical_instructions} "
                   f"({s.percentage:.2f}%)")
        if s.has_nested_locks:
            self._message(Severity.WARNING,
                          f"Nested locks detected (max depth: {s.max_depth})")
        self._emit("  Lock usage:")
        for lock, count in s.lock_usage.items():
            self._emit(f"    {lock}: {count} instructions")
        self._emit("  Lock states:")
        for block in report.function.blocks:
            held_in = format_lock_set(report.lock_states.facts_in.get(block))
            held_out = format_lock_set(report.lock_states.facts_out.get(block))
            self._emit(f"    {block.name}: in {held_in} out {held_out}")

    def _enumeration(self, report: EnumerationReport, limit: int) -> None:
        e = report.enumeration
        self._function_header(report)
        self._emit(f"  Paths: {len(e)} (max_paths={report.max_paths}, "
                   f"max_loop_iterations={report.max_loop_iterations})")
        self._limit_note(e.reached_limit)
        for n, path in enumerate(e.paths[:limit], 1):
            self._emit(f"  Path {n}: {format_path(report.function, path)}")
        self._more(min(limit, len(e)), len(e))

    def _lock_balance(self, report: LockBalanceReport, limit: int) -> None:
        b = report.balance
        self._function_header(report)
        self._emit(f"  Paths: {b.path_count}  Unbalanced: {len(b.unbalanced)}")
        self._limit_note(b.reached_limit)
        for n, r in enumerate(b.results[:limit], 1):
            state = (self._c("balanced", Severity.OK.color) if r.balanced
                     else self._c("UNBALANCED", Severity.WARNING.color, attrs=["bold"]))
            self._emit(f"  Path {n}: final depth {r.final_depth} [{state}] "
                       f"{format_path(report.function, r.path)}")
        self._more(min(limit, b.path_count), b.path_count)

    def _fan_out(self, report: FanOutReport, limit: int) -> None:
        f = report.fan_out
        self._function_header(report)
        self._emit(f"  Paths: {f.path_count}  Max tainted fan-out: {f.max_fan_out}  "
                   f"Mean: {f.mean_fan_out:.2f}")
        self._limit_note(f.reached_limit)
        for n, (path, count) in enumerate(list(zip(f.paths, f.per_path))[:limit], 1):
            self._emit(f"  Path {n}: fan-out {count} "
                       f"{format_path(report.function, path)}")
        self._more(min(limit, f.path_count), f.path_count)

    def _max_path(self, report: MaxPathReport, limit: int) -> None:
        c = report.chains
        self._function_header(report)
        self._emit(f"  Paths: {c.path_count}  Max critical path: {c.max_length}  "
                   f"Mean: {c.mean_length:.2f}")
        self._limit_note(c.reached_limit)
        for n, chain in enumerate(c.chains[:limit], 1):
            self._emit(f"  Path {n}: length {chain.length} "
                       f"({chain.nodes} nodes, {chain.edges} edges)")
        self._more(min(limit, c.path_count), c.path_count)

    def _summary(self, report: ModuleReport) -> None:
        self._header("Summary")
        for key, value in report.summary.items():
            if key == "top_functions":
                continue
            label = key.replace("_", " ").capitalize()
            if isinstance(value, float):
                value = f"{value:.2f}"
            elif isinstance(value, list):
                value = ", ".join(value) if value else "-"
            self._emit(f"{label}: {value}")
        top = report.summary.get("top_functions")
        if top:
            self._emit("Top Functions by Critical Section Size:")
            for n, (name, count) in enumerate(top, 1):
                self._emit(f"  {n}. {name}: {count} instructions")

    # ── entry point ──────────────────────────────────────────────────

    def render(self, report: ModuleReport) -> str:
        self._lines = []
        title = report.pass_name.replace("-", " ").title()
        self._header(f"{title} Analysis")
        detail = report.config.path_detail_limit
        display = report.config.path_display_limit
        dispatch: Dict[type, Callable[[Any], None]] = {
            CriticalSectionReport: self._critical_section,
            EnumerationReport: lambda r: self._enumeration(r, display),
            LockBalanceReport: lambda r: self._lock_balance(r, detail),
            FanOutReport: lambda r: self._fan_out(r, detail),
            MaxPathReport: lambda r: self._max_path(r, detail),
        }
        for fn_report in report.functions:
            dispatch[type(fn_report)](fn_report)
            self._emit()
        self._summary(report)
        return "\n".join(self._lines) + "\n"


def render_text(report: ModuleReport, color: bool = False) -> str:
    return TextRenderer(color).render(report)


def render(report: ModuleReport, fmt: str = "text", color: bool = False) -> str:
    if fmt == "json":
        return render_json(report)
    return render_text(report, color)
