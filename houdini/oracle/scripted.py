"""In-memory oracle driven by a script, for tests and dry runs.

Each implementation gets a list of rules. A rule names a counterexample and
fires when its guard candidate (the ``c`` of ``c ==> p``) is true in the
pushed axiom and every extra condition in ``when`` holds. Unguarded rules
always fire. Outcomes other than correct/errors, and session faults, can be
scripted per implementation and per call.

    oracle = ScriptedOracle()
    oracle.fail("Caller", CounterexampleKind.PRECONDITION, "P_pre", callee="Callee")
    oracle.fail("Callee", CounterexampleKind.POSTCONDITION, "P_post", when={"P_pre": False})
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from houdini.errors import SessionFault, oracle_fault
from houdini.lang.ast import Implementation, Program
from houdini.lang.formulas import F_BINOP, F_IMPLIES, F_INT, F_VAR, Formula, implication_guard
from houdini.oracle.base import (
    Axiom, Counterexample, CounterexampleKind, Outcome,
    VerifierOracle, VerifierSession,
)

FAULT = "fault"


def guarded(candidate: str, prop: Optional[Formula] = None) -> Formula:
    """``candidate ==> prop``; prop defaults to ``x > 0``."""
    if prop is None:
        prop = F_BINOP(">", F_VAR("x"), F_INT(0))
    return F_IMPLIES(F_VAR(candidate), prop)


@dataclass
class Rule:
    counterexample: Counterexample
    when: Dict[str, bool] = field(default_factory=dict)

    def fires(self, values: Dict[str, bool]) -> bool:
        guard = implication_guard(self.counterexample.condition)
        if guard is not None and guard in values and not values[guard]:
            return False
        return all(values.get(k) == v for k, v in self.when.items())


class ScriptedSession(VerifierSession):
    def __init__(self, oracle: "ScriptedOracle", name: str):
        self.oracle = oracle
        self.name = name
        self.stack: List[Axiom] = []

    def push(self, axiom: Axiom) -> None:
        if self.name in self.oracle.push_faults:
            raise SessionFault(oracle_fault(self.name, "push rejected"))
        self.stack.append(axiom)

    def verify(self) -> Tuple[Outcome, List[Counterexample]]:
        values = self.stack[-1].as_dict() if self.stack else {}
        self.oracle.calls.append((self.name, values))

        scripted = self.oracle.scripted.get(self.name)
        if scripted:
            outcome = scripted.popleft()
            if outcome == FAULT:
                raise SessionFault(oracle_fault(self.name, "scripted fault"))
            if outcome != Outcome.ERRORS:
                return outcome, []

        errors = [r.counterexample for r in self.oracle.rules[self.name] if r.fires(values)]
        if errors:
            return Outcome.ERRORS, errors
        return Outcome.CORRECT, []

    def pop(self) -> None:
        if not self.stack:
            raise SessionFault(oracle_fault(self.name, "pop without matching push"))
        self.stack.pop()
        self.oracle.pops += 1

    def close(self) -> None:
        self.oracle.closed.append(self.name)


class ScriptedOracle(VerifierOracle):
    def __init__(self) -> None:
        self.rules: Dict[str, List[Rule]] = defaultdict(list)
        self.scripted: Dict[str, Deque[str]] = {}
        self.push_faults: set = set()
        self.sessions: Dict[str, ScriptedSession] = {}
        self.calls: List[Tuple[str, Dict[str, bool]]] = []
        self.pops = 0
        self.closed: List[str] = []

    def open_session(self, program: Program, implementation: Implementation) -> ScriptedSession:
        session = ScriptedSession(self, implementation.name)
        self.sessions[implementation.name] = session
        return session

    def fail(self, implementation: str, kind: CounterexampleKind, candidate: Optional[str] = None,
             callee: Optional[str] = None, when: Optional[Dict[str, bool]] = None,
             condition: Optional[Formula] = None) -> "ScriptedOracle":
        """Add a failing obligation; guarded by ``candidate`` unless it is None."""
        if condition is None:
            condition = guarded(candidate) if candidate else F_BINOP(">", F_VAR("x"), F_INT(0))
        ce = Counterexample(kind=kind, condition=condition, implementation=implementation, callee=callee)
        self.rules[implementation].append(Rule(ce, dict(when or {})))
        return self

    def script(self, implementation: str, *outcomes: str) -> "ScriptedOracle":
        """Queue outcomes (or FAULT) returned by the next verify() calls."""
        self.scripted.setdefault(implementation, deque()).extend(outcomes)
        return self

    def calls_for(self, implementation: str) -> List[Dict[str, bool]]:
        return [values for name, values in self.calls if name == implementation]
