"""Per-implementation outcomes and the run report."""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, TextIO

from houdini.core.refutation import RefutedAnnotation
from houdini.oracle.base import Counterexample, Outcome

logger = logging.getLogger(__name__)


class RunKind(str, Enum):
    DONE = "done"          # fixpoint reached
    FLUSHED = "flushed"    # refinement abandoned, remaining work drained


@dataclass
class OutcomeRecord:
    """Last outcome of one implementation plus its genuine errors."""
    outcome: Outcome
    errors: List[Counterexample] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class HoudiniOutcome:
    assignment: Dict[str, bool] = field(default_factory=dict)
    implementation_outcomes: "OrderedDict[str, OutcomeRecord]" = field(default_factory=OrderedDict)
    kind: RunKind = RunKind.DONE
    iterations: int = 0
    refutations: List[Dict[str, Any]] = field(default_factory=list)

    def record(self, name: str, outcome: Outcome, errors: Optional[List[Counterexample]] = None) -> None:
        # the latest round replaces any earlier record
        self.implementation_outcomes.pop(name, None)
        self.implementation_outcomes[name] = OutcomeRecord(outcome, list(errors or []))

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.implementation_outcomes.values() if r.outcome == outcome)

    def _matching(self, *outcomes: Outcome) -> List[str]:
        return [n for n, r in self.implementation_outcomes.items() if r.outcome in outcomes]

    @property
    def verified(self) -> int:
        return self._count(Outcome.CORRECT)

    @property
    def error_count(self) -> int:
        return self._count(Outcome.ERRORS)

    @property
    def inconclusives(self) -> int:
        return self._count(Outcome.INCONCLUSIVE) + self._count(Outcome.OUT_OF_MEMORY)

    @property
    def timeouts(self) -> int:
        return self._count(Outcome.TIMED_OUT)

    @property
    def timeouts_list(self) -> List[str]:
        return self._matching(Outcome.TIMED_OUT)

    @property
    def inconclusives_list(self) -> List[str]:
        return self._matching(Outcome.INCONCLUSIVE, Outcome.OUT_OF_MEMORY)

    @property
    def errors_list(self) -> List[str]:
        return [n for n, r in self.implementation_outcomes.items() if r.errors]

    def all_correct(self) -> bool:
        return all(r.outcome == Outcome.CORRECT for r in self.implementation_outcomes.values())

    def refuted_candidates(self) -> List[str]:
        return [name for name, value in self.assignment.items() if not value]

    def surviving_candidates(self) -> List[str]:
        return [name for name, value in self.assignment.items() if value]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "iterations": self.iterations,
            "assignment": dict(self.assignment),
            "implementations": {
                name: record.to_dict() for name, record in self.implementation_outcomes.items()
            },
            "summary": {
                "verified": self.verified,
                "errors": self.error_count,
                "inconclusive": self.inconclusives,
                "timed_out": self.timeouts,
            },
            "timeouts": self.timeouts_list,
            "inconclusives": self.inconclusives_list,
            "errors": self.errors_list,
            "refutations": list(self.refutations),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def format_bad_outcomes(self) -> str:
        lines: List[str] = []
        for label, names in (
            ("TimedOut", self.timeouts_list),
            ("Inconclusive", self.inconclusives_list),
            ("Errors", self.errors_list),
        ):
            if not names:
                continue
            lines.append("----------------------------------------")
            lines.append(f"Functions: {label}")
            lines.extend(f"\t{name}" for name in names)
            lines.append("----------------------------------------")
        return "\n".join(lines)


class RefutationLog:
    """Writes one JSON line per refuted annotation."""

    def __init__(self, stream: TextIO):
        self.stream = stream

    @classmethod
    def open(cls, path: str) -> "RefutationLog":
        return cls(open(path, "w", encoding="utf-8"))

    def write(self, implementation: str, annotation: RefutedAnnotation) -> Dict[str, Any]:
        entry = {"implementation": implementation}
        entry.update(annotation.to_dict())
        self.stream.write(json.dumps(entry) + "\n")
        self.stream.flush()
        return entry

    def close(self) -> None:
        self.stream.close()
