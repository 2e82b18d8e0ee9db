"""Refutation classification and propagation.

A failing obligation refutes a candidate when its condition, as written in
the program, has the shape ``c ==> property`` and ``c`` is a candidate.
Anything else is a genuine violation, independent of the assignment.

Disabling a refuted candidate re-enqueues the implementations whose proof
may change:

  REQUIRES(c, P)   successors of the current implementation realizing P
  ENSURES(c)       predecessors of the current implementation
  ASSERT(c)        none; the current implementation is still at the head
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Collection, Dict, List, Optional, Tuple

from houdini.core.callgraph import CallGraph
from houdini.errors import SourceLocation
from houdini.lang.ast import Implementation
from houdini.lang.formulas import implication_guard
from houdini.oracle.base import Counterexample, CounterexampleKind


class RefutedKind(str, Enum):
    REQUIRES = "requires"
    ENSURES = "ensures"
    ASSERT = "assert"


_KIND_OF = {
    CounterexampleKind.PRECONDITION: RefutedKind.REQUIRES,
    CounterexampleKind.POSTCONDITION: RefutedKind.ENSURES,
    CounterexampleKind.ASSERTION: RefutedKind.ASSERT,
}


@dataclass(frozen=True)
class RefutedAnnotation:
    kind: RefutedKind
    constant: str
    callee: Optional[str] = None            # REQUIRES only
    location: Optional[SourceLocation] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"kind": self.kind.value, "constant": self.constant}
        if self.callee:
            d["callee"] = self.callee
        if self.location:
            d["location"] = self.location.to_dict()
        return d


def classify(error: Counterexample, candidates: Collection[str]) -> Optional[RefutedAnnotation]:
    """Return the refuted annotation for ``error``, or None for a genuine violation."""
    constant = implication_guard(error.condition)
    if constant is None or constant not in candidates:
        return None
    kind = _KIND_OF[error.kind]
    callee = error.callee if kind == RefutedKind.REQUIRES else None
    return RefutedAnnotation(kind, constant, callee, error.location)


def partition(
    errors: List[Counterexample], candidates: Collection[str],
) -> Tuple[List[RefutedAnnotation], List[Counterexample]]:
    """Split ``errors`` into refuted annotations and genuine violations."""
    refuted: List[RefutedAnnotation] = []
    genuine: List[Counterexample] = []
    for error in errors:
        annotation = classify(error, candidates)
        if annotation is None:
            genuine.append(error)
        else:
            refuted.append(annotation)
    return refuted, genuine


def implementations_to_enqueue(
    annotation: RefutedAnnotation, current: Implementation, call_graph: CallGraph,
) -> List[Implementation]:
    if annotation.kind == RefutedKind.REQUIRES:
        return [
            callee for callee in call_graph.successors(current.name)
            if callee.procedure == annotation.callee
        ]
    if annotation.kind == RefutedKind.ENSURES:
        return call_graph.predecessors(current.name)
    return []
