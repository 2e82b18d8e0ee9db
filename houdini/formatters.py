"""Houdini output formatters: human-friendly terminal output.

Output modes:
    pretty  colored report: assignment, per-implementation outcomes, bad lists
    json    machine-readable HoudiniOutcome.to_dict()
"""

from __future__ import annotations

import json
import os
import sys
from typing import Any, Dict, List, Optional

from houdini.core.outcome import HoudiniOutcome
from houdini.errors import HoudiniException
from houdini.oracle.base import Outcome


# ── ANSI color helpers ───────────────────────────────────────────────────

_NO_COLOR = os.environ.get("NO_COLOR") is not None or not sys.stdout.isatty()


def _c(code: str, text: str) -> str:
    if _NO_COLOR:
        return text
    return f"\033[{code}m{text}\033[0m"


def red(t: str) -> str:
    return _c("31", t)


def yellow(t: str) -> str:
    return _c("33", t)


def green(t: str) -> str:
    return _c("32", t)


def cyan(t: str) -> str:
    return _c("36", t)


def bold(t: str) -> str:
    return _c("1", t)


def dim(t: str) -> str:
    return _c("2", t)


# ── Outcome icons ───────────────────────────────────────────────────────

ICON_ERROR = red("✖")
ICON_WARNING = yellow("▲")
ICON_OK = green("✔")
ICON_INFO = cyan("ℹ")

_OUTCOME_ICONS = {
    Outcome.CORRECT: ICON_OK,
    Outcome.ERRORS: ICON_ERROR,
    Outcome.TIMED_OUT: ICON_WARNING,
    Outcome.INCONCLUSIVE: ICON_WARNING,
    Outcome.OUT_OF_MEMORY: ICON_WARNING,
}


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n != 1 else ''}"


# ── Pretty formatter (default) ──────────────────────────────────────────

def format_pretty(outcome: HoudiniOutcome, filepath: Optional[str] = None) -> str:
    """Format an inference result with colors and icons."""
    lines: List[str] = []

    status_icon = ICON_OK if outcome.all_correct() else ICON_ERROR
    title = filepath or "houdini"
    lines.append(f"\n {status_icon}  {bold(title)}  {dim(f'({outcome.kind.value}, {outcome.iterations} oracle calls)')}")

    # Assignment
    if outcome.assignment:
        lines.append(f"\n   {bold('Candidates')}")
        for name, value in outcome.assignment.items():
            if value:
                lines.append(f"   {ICON_OK}  {name} {dim('= true')}")
            else:
                lines.append(f"   {ICON_INFO}  {name} {dim('= false')}")

    # Implementations
    lines.append(f"\n   {bold('Implementations')}")
    for name, record in outcome.implementation_outcomes.items():
        icon = _OUTCOME_ICONS.get(record.outcome, ICON_INFO)
        lines.append(f"   {icon}  {name}  {dim(record.outcome.value)}")
        for err in record.errors:
            loc = f"{err.location}: " if err.location else ""
            lines.append(f"      {ICON_ERROR}  {loc}{red(str(err))}")

    # Footer summary
    parts = [green(f"{outcome.verified} verified")]
    if outcome.error_count:
        parts.append(red(_plural(outcome.error_count, "error")))
    if outcome.timeouts:
        parts.append(yellow(_plural(outcome.timeouts, "timeout")))
    if outcome.inconclusives:
        parts.append(yellow(f"{outcome.inconclusives} inconclusive"))
    survivors = len(outcome.surviving_candidates())
    parts.append(f"{survivors}/{len(outcome.assignment)} candidates hold")
    lines.append(f"\n   {' · '.join(parts)}")

    bad = outcome.format_bad_outcomes()
    if bad:
        lines.append(bad)
    lines.append("")

    return "\n".join(lines)


# ── JSON formatter ──────────────────────────────────────────────────────

def format_json(outcome: HoudiniOutcome, filepath: Optional[str] = None) -> str:
    data: Dict[str, Any] = outcome.to_dict()
    if filepath:
        data["file"] = filepath
    return json.dumps(data, indent=2)


def format_exception(exc: HoudiniException, output_format: str = "pretty") -> str:
    if output_format == "json":
        return exc.to_json()
    return "\n".join(f" {ICON_ERROR}  {red(str(e))}" for e in exc.errors)


FORMATTERS = {
    "pretty": format_pretty,
    "json": format_json,
}


def format_outcome(outcome: HoudiniOutcome, output_format: str = "pretty",
                   filepath: Optional[str] = None) -> str:
    formatter = FORMATTERS.get(output_format, format_pretty)
    return formatter(outcome, filepath)
