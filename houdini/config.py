"""Houdini configuration: project-level .houdinirc.yml support.

Loads configuration from the nearest .houdinirc.yml (or .houdinirc.yaml,
.houdinirc.json, houdini.config.yml, houdini.config.json), searching from
the working directory upwards. Command-line flags override file values.

Example .houdinirc.yml:
    continue_at_error: false
    schedule: spin               # or round_robin
    flush_on_inconclusive: false
    flush_is_abnormal_end: false
    timeout_ms: 10000
    trace: true
    timings: false
    refuted_log: refuted.jsonl
    format: pretty               # or json
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

import yaml

from houdini.errors import ConfigurationError, configuration_error

logger = logging.getLogger(__name__)

SCHEDULES = ("spin", "round_robin")
FORMATS = ("pretty", "json")


@dataclass
class HoudiniConfig:
    """Options of one inference run."""
    # Tolerate genuine violations instead of flushing
    continue_at_error: bool = False
    # "spin" re-verifies the head until it is dequeued; "round_robin" requeues it
    schedule: str = "spin"
    # Abandon refinement on timed_out / inconclusive / out_of_memory too
    flush_on_inconclusive: bool = False
    # Report end(abnormal) when the run was flushed
    flush_is_abnormal_end: bool = False
    # Per-query solver timeout, 0 = none
    timeout_ms: int = 10000
    # Output
    trace: bool = False
    timings: bool = False
    refuted_log: str = ""
    format: str = "pretty"

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        errors = []
        if self.schedule not in SCHEDULES:
            errors.append(configuration_error(
                f"Unknown schedule '{self.schedule}' (expected one of {', '.join(SCHEDULES)})",
                key="schedule",
            ))
        if self.format not in FORMATS:
            errors.append(configuration_error(
                f"Unknown format '{self.format}' (expected one of {', '.join(FORMATS)})",
                key="format",
            ))
        if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int) or self.timeout_ms < 0:
            errors.append(configuration_error(
                f"timeout_ms must be a non-negative integer, got {self.timeout_ms!r}",
                key="timeout_ms",
            ))
        if errors:
            raise ConfigurationError(errors)

    def override(self, **values: Any) -> "HoudiniConfig":
        """Return a copy with every non-None value replaced."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data.update({k: v for k, v in values.items() if v is not None})
        return _dict_to_config(data)


# ---------------------------------------------------------------------------
# Config file names (in priority order)
# ---------------------------------------------------------------------------

_CONFIG_FILES = [
    ".houdinirc.yml",
    ".houdinirc.yaml",
    ".houdinirc.json",
    "houdini.config.yml",
    "houdini.config.json",
]


def find_config(start_dir: str = ".") -> Optional[str]:
    """Find the nearest config file by walking up from start_dir."""
    current = os.path.abspath(start_dir)
    while True:
        for name in _CONFIG_FILES:
            path = os.path.join(current, name)
            if os.path.isfile(path):
                return path
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return None


def load_config(path: Optional[str] = None, start_dir: str = ".") -> HoudiniConfig:
    """Load configuration from a file.

    If no path is given, searches for a config file starting from start_dir.
    If no config file is found, returns defaults. An explicit path that
    cannot be read or parsed raises ConfigurationError.
    """
    explicit = path is not None
    if path is None:
        path = find_config(start_dir)

    if path is None:
        return HoudiniConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except (IOError, OSError) as e:
        if explicit:
            raise ConfigurationError(configuration_error(f"Cannot read config '{path}': {e}")) from e
        logger.warning("ignoring unreadable config %s: %s", path, e)
        return HoudiniConfig()

    try:
        if path.endswith(".json"):
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(configuration_error(f"Malformed config '{path}': {e}")) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(configuration_error(f"Config '{path}' must be a mapping"))

    logger.debug("loaded config from %s", path)
    return _dict_to_config(data)


_BOOL_KEYS = ("continue_at_error", "flush_on_inconclusive", "flush_is_abnormal_end", "trace", "timings")
_STR_KEYS = ("schedule", "refuted_log", "format")


def _dict_to_config(data: Dict[str, Any]) -> HoudiniConfig:
    """Convert a parsed dict to HoudiniConfig. Unknown keys are ignored."""
    values: Dict[str, Any] = {}
    errors = []

    for key in _BOOL_KEYS:
        if key in data:
            if not isinstance(data[key], bool):
                errors.append(configuration_error(f"'{key}' must be true or false", key=key))
            else:
                values[key] = data[key]
    for key in _STR_KEYS:
        if key in data and data[key] is not None:
            values[key] = str(data[key])
    if "timeout_ms" in data:
        values["timeout_ms"] = data["timeout_ms"]

    if errors:
        raise ConfigurationError(errors)
    return HoudiniConfig(**values)
