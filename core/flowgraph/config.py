"""Shared flowgraph configuration utilities.

Centralises reading of ~/.flowgraph/configuration.json (or the file named
by FLOWGRAPH_CONFIG) so the CLI, the executor and tests share one
implementation of the engine limits.
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_MAX_EXECUTIONS = 1000
DEFAULT_MAX_LOOP_ITERATIONS = 100
DEFAULT_LOOP_ITERATIONS = 10
DEFAULT_LOOP_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_PARALLEL_BRANCHES = 5
DEFAULT_PARALLEL_BRANCHES = 2

ENV_PREFIX = "FLOWGRAPH_"


class ConfigError(ValueError):
    """A configuration value cannot be converted to its field type."""


# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWGRAPH_CONFIG_FILE = Path.home() / ".flowgraph" / "configuration.json"


def get_config_path() -> Path:
    override = os.environ.get("FLOWGRAPH_CONFIG")
    return Path(override) if override else FLOWGRAPH_CONFIG_FILE


def get_flowgraph_config() -> dict[str, Any]:
    """Load configuration from the config file; missing or unreadable means empty."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Limits and policies for one executor instance."""

    # Circuit breaker: total dispatches per run
    max_executions: int = DEFAULT_MAX_EXECUTIONS
    # Hard cap applied to every loop node's maxIterations
    max_loop_iterations: int = DEFAULT_MAX_LOOP_ITERATIONS
    # Used when a loop node does not declare maxIterations
    default_loop_iterations: int = DEFAULT_LOOP_ITERATIONS
    # Wall-clock guard per loop node instance
    loop_timeout_seconds: float = DEFAULT_LOOP_TIMEOUT_SECONDS
    # Hard cap applied to every parallel node's branchCount
    max_parallel_branches: int = DEFAULT_MAX_PARALLEL_BRANCHES
    default_parallel_branches: int = DEFAULT_PARALLEL_BRANCHES
    # Cap on a merged node input in characters (0 = no cap)
    max_input_length: int = 0
    # "unsynchronized" (last write wins) or "synchronized"
    shared_state_mode: str = "unsynchronized"
    log_level: str = "INFO"
    log_format: str = "auto"
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, overrides: dict[str, Any] | None = None) -> "EngineConfig":
        """
        Build a config from (lowest to highest precedence) defaults, the
        config file's ``engine`` section, FLOWGRAPH_* environment variables
        and explicit overrides.
        """
        values: dict[str, Any] = {}
        file_section = get_flowgraph_config().get("engine", {})
        if isinstance(file_section, dict):
            values.update(file_section)
        values.update(_read_env())
        if overrides:
            values.update(overrides)
        return cls.from_dict(values)

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "EngineConfig":
        known = {f.name: f for f in fields(cls) if f.name != "extra"}
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in values.items():
            if key in known:
                try:
                    kwargs[key] = _coerce(value, type(getattr(cls(), key)))
                except (TypeError, ValueError) as e:
                    raise ConfigError(f"Invalid value for {key}: {value!r}") from e
            else:
                extra[key] = value
        return cls(**kwargs, extra=extra)


def _read_env() -> dict[str, Any]:
    values: dict[str, Any] = {}
    for f in fields(EngineConfig):
        if f.name == "extra":
            continue
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is not None:
            values[f.name] = raw
    return values


def _coerce(value: Any, target: type) -> Any:
    if isinstance(value, target):
        return value
    if target is int:
        return int(value)
    if target is float:
        return float(value)
    return str(value)
