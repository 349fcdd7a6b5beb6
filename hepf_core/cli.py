"""hepf_core/cli.py - command-line entry point for hepf-core.

Usage examples
--------------
    # Held-lock sets and critical-section statistics
    hepf-core run critical-section program.ir

    # List paths, with custom caps
    hepf-core run path-enumerator program.ir --max-paths 500 --max-loop-iterations 1

    # Per-path lock imbalance; exit 1 if any path is unbalanced
    hepf-core run path-critical-section program.ir --fail-on-findings

    # JSON output to a file
    hepf-core run path-fan-out program.ir --format json -o fanout.json

    # Available passes / re-print a parsed program
    hepf-core list-passes
    hepf-core dump program.ir

Exit codes
----------
    0   Success.
    1   Findings reported and ``--fail-on-findings`` given.
    2   Input, configuration or usage error.

``python -m hepf_core`` runs the same :func:`main`.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from pathlib import Path
from typing import Optional, Sequence, TextIO

from . import __version__
from .config import AnalysisConfig, load_config
from .errors import HepfError
from .ir_parser import format_module, parse_file
from .passes import PASS_REGISTRY
from .reporter import render

_log = logging.getLogger("hepf_core")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


def _configure_logging(verbosity: int) -> None:
    """Set up the ``hepf_core`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("hepf_core")
    root.setLevel(level)
    for old in [h for h in root.handlers if getattr(h, "_hepf_cli", False)]:
        root.removeHandler(old)
    handler._hepf_cli = True  # type: ignore[attr-defined]
    root.addHandler(handler)


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _write(dest: Optional[str], text: str) -> None:
    out = _open_output(dest)
    try:
        out.write(text)
    finally:
        if out is not sys.stdout:
            out.close()


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

def _build_config(args: argparse.Namespace) -> AnalysisConfig:
    config = load_config(args.config) if args.config else AnalysisConfig()
    if args.policy_preset is not None:
        config = config.with_policy_preset(args.policy_preset)
    return config.with_overrides(
        max_paths=args.max_paths,
        max_loop_iterations=args.max_loop_iterations,
    )


def cmd_run(args: argparse.Namespace) -> int:
    """Run one pass over every function in a program file."""
    analysis_pass = PASS_REGISTRY.create(args.pass_name, _build_config(args))
    module = parse_file(args.file)
    report = analysis_pass.run_module(module)

    color = args.format == "text" and not args.no_color and (
        args.output in (None, "-") and sys.stdout.isatty())
    _write(args.output, render(report, args.format, color=color))

    if args.fail_on_findings and report.has_findings:
        _log.info("findings reported by %s", args.pass_name)
        return EXIT_ERROR
    return EXIT_OK


# ---------------------------------------------------------------------------
# list-passes / dump
# ---------------------------------------------------------------------------

def cmd_list_passes(args: argparse.Namespace) -> int:
    """Print the registered passes."""
    lines = [f"  {p.name:<24} {p.description}"
             for p in sorted(PASS_REGISTRY, key=lambda p: p.name)]
    lines.append(f"\n{len(lines)} pass(es) available.")
    _write(args.output, "\n".join(lines) + "\n")
    return EXIT_OK


def cmd_dump(args: argparse.Namespace) -> int:
    """Parse a program file and print it back in canonical form."""
    module = parse_file(args.file)
    _write(args.output, format_module(module))
    return EXIT_OK


# ===========================================================================
# Argument parser construction
# ===========================================================================

def build_parser() -> argparse.ArgumentParser:
    """Construct the full CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="hepf-core",
        description=(
            "Lock-state, path, taint and dependency-chain analyses over a\n"
            "textual program representation."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              hepf-core run critical-section program.ir
              hepf-core run path-max-path program.ir --format json
              hepf-core list-passes
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    def _add_output_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "-o", "--output",
            default=None,
            metavar="FILE",
            help='Output file ("-" or omit for stdout).',
        )

    # --- run ---------------------------------------------------------------
    p_run = subparsers.add_parser(
        "run",
        help="Run an analysis pass over a program file.",
        description="Run one registered pass over every defined function.",
    )
    p_run.add_argument(
        "pass_name",
        metavar="PASS",
        help="Pass name (see 'list-passes').",
    )
    p_run.add_argument(
        "file",
        metavar="FILE",
        help="Program file in textual IR form.",
    )
    p_run.add_argument(
        "-c", "--config",
        default=None,
        metavar="JSON",
        help="JSON configuration file.",
    )
    g = p_run.add_argument_group("analysis tuning")
    g.add_argument(
        "--max-paths",
        type=int,
        default=None,
        metavar="N",
        help="Maximum number of paths per function (default: per pass).",
    )
    g.add_argument(
        "--max-loop-iterations",
        type=int,
        default=None,
        metavar="N",
        help="Times a block may repeat on one path, beyond the first.",
    )
    g.add_argument(
        "--policy-preset",
        type=int,
        choices=[0, 1, 2],
        default=None,
        help="Lock policy: 0 trylock acquires, 1 also keep locks across "
             "indirect calls, 2 default.",
    )
    p_run.add_argument(
        "-f", "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text).",
    )
    p_run.add_argument(
        "--no-color",
        action="store_true",
        help="Never colour text output.",
    )
    p_run.add_argument(
        "--fail-on-findings",
        action="store_true",
        help="Exit with status 1 when the pass reports findings.",
    )
    _add_output_arg(p_run)
    p_run.set_defaults(func=cmd_run)

    # --- list-passes -------------------------------------------------------
    p_list = subparsers.add_parser(
        "list-passes",
        help="List available passes.",
    )
    _add_output_arg(p_list)
    p_list.set_defaults(func=cmd_list_passes)

    # --- dump --------------------------------------------------------------
    p_dump = subparsers.add_parser(
        "dump",
        help="Parse a program file and print the parsed model.",
    )
    p_dump.add_argument(
        "file",
        metavar="FILE",
        help="Program file in textual IR form.",
    )
    _add_output_arg(p_dump)
    p_dump.set_defaults(func=cmd_dump)

    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the hepf-core CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    # No subcommand given → print help.
    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except HepfError as exc:
        _log.error("%s", exc)
        return exc.exit_code
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130  # Standard UNIX convention for SIGINT


if __name__ == "__main__":
    raise SystemExit(main())
