"""Verifier oracle contract.

Houdini never generates or proves verification conditions itself. It talks
to a ``VerifierOracle`` that opens one ``VerifierSession`` per
implementation. A session is stateful and stack-disciplined:

    session.push(axiom)       # extra hypothesis for the next verify()
    outcome, errors = session.verify()
    session.pop()             # restores the session exactly

Sessions live for the lifetime of the Houdini object and are reused across
iterations, so an oracle may keep solver state between calls.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from houdini.errors import SourceLocation
from houdini.lang.ast import Implementation, Program
from houdini.lang.formulas import Formula


class Outcome(str, Enum):
    """Result of one verification call on one implementation."""
    CORRECT = "correct"
    ERRORS = "errors"
    TIMED_OUT = "timed_out"
    INCONCLUSIVE = "inconclusive"
    OUT_OF_MEMORY = "out_of_memory"


class CounterexampleKind(str, Enum):
    PRECONDITION = "precondition"     # failing requires of a called procedure
    POSTCONDITION = "postcondition"   # failing ensures of the implementation
    ASSERTION = "assertion"           # failing assert or loop invariant


@dataclass(frozen=True)
class Counterexample:
    """A failed proof obligation reported by the oracle.

    ``condition`` is the annotation as written in the program (for a
    precondition, the callee's requires clause before argument binding), so
    the ``candidate ==> property`` shape survives for classification.
    """
    kind: CounterexampleKind
    condition: Formula
    implementation: str = ""
    callee: Optional[str] = None
    location: Optional[SourceLocation] = None
    model: Tuple[Tuple[str, str], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "kind": self.kind.value,
            "condition": str(self.condition),
            "implementation": self.implementation,
        }
        if self.callee:
            d["callee"] = self.callee
        if self.location:
            d["location"] = self.location.to_dict()
        if self.model:
            d["model"] = dict(self.model)
        return d

    def __str__(self) -> str:
        where = f" at {self.location}" if self.location else ""
        via = f" (call to {self.callee})" if self.callee else ""
        return f"{self.kind.value} violation{where}{via}: {self.condition}"


@dataclass(frozen=True)
class Axiom:
    """The hypothesis pushed before each verification call.

    ``formula`` is what a solver consumes; ``values`` is the same assignment
    in enumeration order, for oracles that do not evaluate formulas.
    """
    formula: Formula
    values: Tuple[Tuple[str, bool], ...] = ()

    def as_dict(self) -> Dict[str, bool]:
        return dict(self.values)

    def __str__(self) -> str:
        return f"axiom {self.formula};"


class VerifierSession(ABC):
    """Incremental verification session for a single implementation."""

    @abstractmethod
    def push(self, axiom: Axiom) -> None:
        """Add ``axiom`` as a hypothesis for subsequent verify() calls."""

    @abstractmethod
    def verify(self) -> Tuple[Outcome, List[Counterexample]]:
        """Check the implementation. ``errors`` is non-empty iff outcome is ERRORS."""

    @abstractmethod
    def pop(self) -> None:
        """Remove the most recently pushed hypothesis."""

    def close(self) -> None:
        """Release solver resources. Optional."""


class VerifierOracle(ABC):
    """Factory for verifier sessions over one program."""

    @abstractmethod
    def open_session(self, program: Program, implementation: Implementation) -> VerifierSession:
        ...


# ---------------------------------------------------------------------------
# Call-boundary result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Verified:
    outcome: Outcome
    errors: List[Counterexample] = field(default_factory=list)


@dataclass(frozen=True)
class OracleFault:
    message: str
