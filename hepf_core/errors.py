"""
hepf_core/errors.py
═══════════════════

Exception hierarchy for hepf-core.

    ┌──────────────────────────────────────────────────────────────┐
    │  HepfError (base)                                            │
    │  ├── IRParseError      - textual program failed to parse     │
    │  ├── ModelError        - parsed program is not well formed   │
    │  ├── ConfigError       - bad configuration file or value     │
    │  └── UnknownPassError  - pass name not in the registry       │
    └──────────────────────────────────────────────────────────────┘

Only the front end (:mod:`hepf_core.ir_parser`), the configuration layer
and the pass registry raise.  The analyses themselves are total: they
degrade to best-effort results and log instead of raising.
"""

from __future__ import annotations

from typing import Optional


class HepfError(Exception):
    """Base class for every error raised by hepf-core."""

    exit_code: int = 2

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class IRParseError(HepfError):
    """The textual program could not be parsed.

    Attributes
    ----------
    line, column : int, optional
        1-based position of the failure, when known.
    source_name : str, optional
        File name the text came from.
    """

    def __init__(
        self,
        message: str,
        *,
        line: Optional[int] = None,
        column: Optional[int] = None,
        source_name: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.line = line
        self.column = column
        self.source_name = source_name

    def __str__(self) -> str:
        where = self.source_name or "<input>"
        if self.line is not None:
            where += f":{self.line}"
            if self.column is not None:
                where += f":{self.column}"
        return f"{where}: {self.message}"


class ModelError(HepfError):
    """The program is syntactically valid but semantically malformed
    (undefined label, undefined local, duplicate definition, ...)."""

    def __init__(self, message: str, *, function: Optional[str] = None) -> None:
        super().__init__(message)
        self.function = function

    def __str__(self) -> str:
        if self.function:
            return f"in function @{self.function}: {self.message}"
        return self.message


class ConfigError(HepfError):
    """Configuration could not be loaded or failed validation."""


class UnknownPassError(HepfError):
    """A pass name was requested that the registry does not know."""

    def __init__(self, name: str, known) -> None:
        self.name = name
        self.known = sorted(known)
        super().__init__(
            f"unknown pass {name!r} (known passes: {', '.join(self.known)})"
        )
