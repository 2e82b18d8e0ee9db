"""Verifier oracles."""

from houdini.oracle.base import (
    Axiom, Counterexample, CounterexampleKind, Outcome,
    VerifierOracle, VerifierSession,
)

__all__ = [
    "Axiom", "Counterexample", "CounterexampleKind", "Outcome",
    "VerifierOracle", "VerifierSession",
]
