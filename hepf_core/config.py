"""
hepf_core/config.py
═══════════════════

Analysis configuration.

``AnalysisConfig`` holds every tuning knob.  ``max_paths`` and
``max_loop_iterations`` default to ``None``, meaning "use the pass's own
default" (see :data:`PASS_PATH_DEFAULTS`); setting them applies the same
caps to every path pass.

Configuration files are JSON objects whose keys are field names, plus the
shorthand ``policy_preset`` (0, 1 or 2)::

    {
        "max_paths": 2000,
        "max_loop_iterations": 1,
        "try_acquire_policy": "acquire",
        "indirect_call_policy": "preserve"
    }
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .dataflow_engine import DEFAULT_MAX_ITERATIONS
from .errors import ConfigError
from .lock_state import IndirectCallPolicy, LockPolicy, TryAcquirePolicy

logger = logging.getLogger(__name__)

# pass name → (max_paths, max_loop_iterations)
PASS_PATH_DEFAULTS: Dict[str, Tuple[int, int]] = {
    "path-enumerator": (10_000, 2),
    "path-critical-section": (100, 100),
    "path-fan-out": (5_000, 1),
    "path-max-path": (5_000, 1),
}

_FALLBACK_PATH_DEFAULTS = (10_000, 2)


@dataclass(frozen=True)
class AnalysisConfig:
    """Tuning knobs shared by every pass."""
    max_paths: Optional[int] = None
    max_loop_iterations: Optional[int] = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    try_acquire_policy: TryAcquirePolicy = TryAcquirePolicy.IGNORE
    indirect_call_policy: IndirectCallPolicy = IndirectCallPolicy.CLEAR
    path_display_limit: int = 20
    path_detail_limit: int = 50

    @property
    def lock_policy(self) -> LockPolicy:
        return LockPolicy(self.try_acquire_policy, self.indirect_call_policy)

    def path_limits(self, pass_name: str) -> Tuple[int, int]:
        """Return ``(max_paths, max_loop_iterations)`` for ``pass_name``."""
        default_paths, default_loops = PASS_PATH_DEFAULTS.get(
            pass_name, _FALLBACK_PATH_DEFAULTS)
        return (
            self.max_paths if self.max_paths is not None else default_paths,
            self.max_loop_iterations if self.max_loop_iterations is not None
            else default_loops,
        )

    def validate(self) -> List[str]:
        """Return a list of validation problems (empty if valid)."""
        problems: List[str] = []
        if self.max_paths is not None and self.max_paths <= 0:
            problems.append("max_paths must be positive")
        if self.max_loop_iterations is not None and self.max_loop_iterations < 0:
            problems.append("max_loop_iterations must be non-negative")
        if self.max_iterations <= 0:
            problems.append("max_iterations must be positive")
        if self.path_display_limit < 0:
            problems.append("path_display_limit must be non-negative")
        if self.path_detail_limit < 0:
            problems.append("path_detail_limit must be non-negative")
        return problems

    def with_policy_preset(self, number: int) -> "AnalysisConfig":
        try:
            policy = LockPolicy.preset(number)
        except ValueError as exc:
            raise ConfigError(str(exc)) from None
        return dataclasses.replace(
            self,
            try_acquire_policy=policy.try_acquire,
            indirect_call_policy=policy.indirect_call,
        )

    def with_overrides(self, **overrides: Any) -> "AnalysisConfig":
        """Return a copy with every non-``None`` override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        config = dataclasses.replace(self, **changes)
        _raise_if_invalid(config)
        return config

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisConfig":
        if not isinstance(data, Mapping):
            raise ConfigError("configuration must be a JSON object")
        known = {f.name for f in dataclasses.fields(cls)}
        values: Dict[str, Any] = {}
        preset = None
        for key, raw in data.items():
            if key == "policy_preset":
                preset = raw
                continue
            if key not in known:
                raise ConfigError(f"unknown configuration key {key!r}")
            values[key] = _coerce(key, raw)

        config = cls(**values)
        if preset is not None:
            if not isinstance(preset, int) or isinstance(preset, bool):
                raise ConfigError("policy_preset must be an integer")
            config = config.with_policy_preset(preset)
        _raise_if_invalid(config)
        return config

    def to_dict(self) -> Dict[str, Any]:
        out = dataclasses.asdict(self)
        out["try_acquire_policy"] = self.try_acquire_policy.value
        out["indirect_call_policy"] = self.indirect_call_policy.value
        return out


_ENUM_FIELDS = {
    "try_acquire_policy": TryAcquirePolicy,
    "indirect_call_policy": IndirectCallPolicy,
}


def _coerce(key: str, raw: Any) -> Any:
    enum_type = _ENUM_FIELDS.get(key)
    if enum_type is not None:
        if isinstance(raw, enum_type):
            return raw
        try:
            return enum_type(str(raw).lower())
        except ValueError:
            choices = ", ".join(m.value for m in enum_type)
            raise ConfigError(
                f"{key}: invalid value {raw!r} (expected one of {choices})"
            ) from None
    if key in ("max_paths", "max_loop_iterations") and raw is None:
        return None
    if not isinstance(raw, int) or isinstance(raw, bool):
        raise ConfigError(f"{key}: expected an integer, got {raw!r}")
    return raw


def _raise_if_invalid(config: AnalysisConfig) -> None:
    problems = config.validate()
    if problems:
        raise ConfigError("invalid configuration: " + "; ".join(problems))


def load_config(path: Union[str, Path]) -> AnalysisConfig:
    """Read an :class:`AnalysisConfig` from a JSON file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"{path}: cannot read configuration: {exc.strerror}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}:{exc.lineno}: invalid JSON: {exc.msg}") from exc
    config = AnalysisConfig.from_mapping(data)
    logger.debug("loaded configuration from %s: %s", path, config)
    return config
