"""Houdini worklist scheduler.

Computes the largest subset of candidate annotations under which every
implementation verifies (Flanagan & Leino 2001, "Houdini, an Annotation
Assistant for ESC/Java").

The run starts with every candidate true and every implementation queued.
The head implementation is verified under the axiom built from the current
assignment. Candidates refuted by the oracle are disabled and the
implementations whose proofs depend on them are re-queued; with the default
"spin" schedule the head is re-verified right away, until it verifies or
leaves the queue. A genuine violation (one not guarded by a candidate)
stops refinement: the assignment is frozen and the remaining queue is
drained once under it ("flush").

Every round either disables a candidate or shrinks the queue, and a
disabled candidate is never re-enabled, so a run performs at most
K disablements for K candidates and terminates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from houdini.config import HoudiniConfig
from houdini.core.assignment import Assignment
from houdini.core.callgraph import CallGraph, build_call_graph
from houdini.core.candidates import CandidateCollector
from houdini.core.observers import HoudiniObserver, ObserverBus
from houdini.core.outcome import HoudiniOutcome, RefutationLog, RunKind
from houdini.core.refutation import RefutedAnnotation, implementations_to_enqueue, partition
from houdini.core.worklist import Worklist
from houdini.errors import SessionFault
from houdini.lang.ast import Implementation, Program
from houdini.lang.formulas import Formula
from houdini.oracle.base import (
    Axiom, Counterexample, CounterexampleKind, OracleFault, Outcome, Verified,
    VerifierOracle, VerifierSession,
)

logger = logging.getLogger(__name__)

_UNREFINED = (Outcome.TIMED_OUT, Outcome.INCONCLUSIVE, Outcome.OUT_OF_MEMORY)


@dataclass
class _RunState:
    worklist: Worklist
    assignment: Assignment
    outcome: HoudiniOutcome = field(default_factory=HoudiniOutcome)
    current: Optional[Implementation] = None
    flushed: bool = False


class Houdini:
    """Annotation inference over one program.

    Candidates, the call graph and one verifier session per implementation
    are built once here and reused by every call to ``run()``.
    """

    def __init__(
        self,
        program: Program,
        oracle: Optional[VerifierOracle] = None,
        config: Optional[HoudiniConfig] = None,
        observers: Optional[List[HoudiniObserver]] = None,
        refutation_log: Optional[RefutationLog] = None,
    ):
        self.program = program
        self.config = config or HoudiniConfig()
        if oracle is None:
            from houdini.oracle.z3_oracle import Z3Oracle
            oracle = Z3Oracle(timeout_ms=self.config.timeout_ms)
        self.oracle = oracle
        self.candidates: List[str] = CandidateCollector(program).collect()
        self._candidate_set = frozenset(self.candidates)
        self.call_graph: CallGraph = build_call_graph(program)
        self.bus = ObserverBus(observers)
        self.refutation_log = refutation_log
        self.sessions: Dict[str, VerifierSession] = {
            impl.name: oracle.open_session(program, impl)
            for impl in program.implementations()
        }

    def add_observer(self, observer: HoudiniObserver) -> None:
        self.bus.add_observer(observer)

    def close(self) -> None:
        for session in self.sessions.values():
            session.close()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> HoudiniOutcome:
        state = _RunState(
            worklist=Worklist(self.program.implementations()),
            assignment=Assignment(self.candidates),
        )
        logger.info(
            "houdini: %d candidates, %d implementations, schedule=%s",
            len(self.candidates), len(state.worklist), self.config.schedule,
        )
        self.bus.notify_start(self.program, len(self.candidates))

        while state.worklist:
            self.bus.notify_iteration()
            state.current = state.worklist.peek()
            self.bus.notify_implementation(state.current)
            self._spin(state)

        state.outcome.assignment = state.assignment.snapshot()
        state.outcome.kind = RunKind.FLUSHED if state.flushed else RunKind.DONE
        is_normal = not (state.flushed and self.config.flush_is_abnormal_end)
        self.bus.notify_end(is_normal)
        logger.info(
            "houdini %s after %d oracle calls: %d/%d candidates survive",
            state.outcome.kind.value, state.outcome.iterations,
            len(state.outcome.surviving_candidates()), len(self.candidates),
        )
        return state.outcome

    def _spin(self, state: _RunState) -> None:
        """Verify the head until it leaves the queue or the run flushes."""
        first = True
        stay = True
        while stay and state.worklist:
            if not first:
                self.bus.notify_iteration()
            first = False
            stay = self._round(state)

    def _round(self, state: _RunState) -> bool:
        """One verification of the head. Returns True if it stays at the head."""
        current = state.current
        axiom = state.assignment.build_axiom()
        self.bus.notify_assignment(state.assignment.snapshot())

        outcome, errors = self._verify(state, current, axiom)
        self.bus.notify_outcome(outcome)

        refuted, genuine = partition(errors, self._candidate_set)
        state.outcome.record(current.name, outcome, genuine)
        self._log_refutations(state, current, refuted)

        if self._abandons_refinement(outcome, genuine):
            if outcome == Outcome.TIMED_OUT:
                state.worklist.blacklist(current.name)
            self._dequeue(state)
            self._flush(state)
            return False
        return self._update(state, outcome, refuted)

    def _abandons_refinement(self, outcome: Outcome, genuine: List[Counterexample]) -> bool:
        if self.config.continue_at_error:
            return False
        if genuine:
            return True
        return self.config.flush_on_inconclusive and outcome in _UNREFINED

    def _update(self, state: _RunState, outcome: Outcome, refuted: List[RefutedAnnotation]) -> bool:
        current = state.current

        if outcome == Outcome.ERRORS and refuted:
            disabled = False
            for annotation in refuted:
                for impl in implementations_to_enqueue(annotation, current, self.call_graph):
                    self._enqueue(state, impl)
                if state.assignment.disable(annotation.constant):
                    disabled = True
                    self.bus.notify_constant(annotation.constant)
            if not disabled:
                # assignment unchanged, so another round would repeat this one
                logger.warning("%s refuted only disabled candidates; dequeued", current.name)
                self._dequeue(state)
                return False
            if self.config.schedule == "round_robin":
                self._dequeue(state)
                self._enqueue(state, current)
                return False
            return True

        if outcome == Outcome.TIMED_OUT:
            logger.info("%s timed out; blacklisted", current.name)
            state.worklist.blacklist(current.name)
        self._dequeue(state)
        return False

    def _flush(self, state: _RunState) -> None:
        """Drain the queue once under the frozen assignment."""
        state.flushed = True
        state.assignment.freeze()
        logger.info("refinement abandoned; flushing %d implementations", len(state.worklist))
        self.bus.notify_flush_start()

        axiom = state.assignment.build_axiom()
        while state.worklist:
            self.bus.notify_iteration()
            state.current = state.worklist.peek()
            self.bus.notify_implementation(state.current)

            outcome, errors = self._verify(state, state.current, axiom)
            _, genuine = partition(errors, self._candidate_set)
            state.outcome.record(state.current.name, outcome, genuine)
            self.bus.notify_outcome(outcome)
            self._dequeue(state)

        self.bus.notify_flush_finish()

    # ------------------------------------------------------------------
    # Worklist helpers
    # ------------------------------------------------------------------

    def _enqueue(self, state: _RunState, impl: Implementation) -> None:
        if state.worklist.enqueue(impl):
            self.bus.notify_enqueue(impl)

    def _dequeue(self, state: _RunState) -> None:
        state.worklist.dequeue()
        self.bus.notify_dequeue()

    def _log_refutations(self, state: _RunState, current: Implementation,
                         refuted: List[RefutedAnnotation]) -> None:
        for annotation in refuted:
            entry = {"implementation": current.name}
            entry.update(annotation.to_dict())
            state.outcome.refutations.append(entry)
            if self.refutation_log is not None:
                self.refutation_log.write(current.name, annotation)

    # ------------------------------------------------------------------
    # Oracle boundary
    # ------------------------------------------------------------------

    def _verify(self, state: _RunState, impl: Implementation,
                axiom: Axiom) -> Tuple[Outcome, List[Counterexample]]:
        result = self._call_oracle(impl, axiom)
        state.outcome.iterations += 1
        if isinstance(result, OracleFault):
            logger.warning("oracle fault on %s: %s", impl.name, result.message)
            self.bus.notify_exception(result.message)
            return Outcome.INCONCLUSIVE, []
        return result.outcome, result.errors

    def _call_oracle(self, impl: Implementation, axiom: Axiom) -> Union[Verified, OracleFault]:
        """push / verify / pop; the session is popped on every path once pushed."""
        session = self.sessions[impl.name]
        pushed = False
        result: Union[Verified, OracleFault] = OracleFault("verification did not complete")
        try:
            session.push(axiom)
            pushed = True
            result = _check_response(impl, session.verify())
        except SessionFault as e:
            result = OracleFault(str(e))
        finally:
            if pushed:
                try:
                    session.pop()
                except SessionFault as e:
                    result = OracleFault(str(e))
        return result


def _check_response(impl: Implementation, response: object) -> Union[Verified, OracleFault]:
    if not isinstance(response, (tuple, list)) or len(response) != 2:
        return OracleFault(f"malformed response {response!r} for '{impl.name}'")
    outcome, errors = response
    if not isinstance(outcome, Outcome):
        return OracleFault(f"malformed outcome {outcome!r} for '{impl.name}'")
    if errors is not None and not isinstance(errors, (tuple, list)):
        return OracleFault(f"malformed error list {errors!r} for '{impl.name}'")
    errors = list(errors or [])
    for error in errors:
        if (not isinstance(error, Counterexample) or not isinstance(error.kind, CounterexampleKind)
                or not isinstance(error.condition, Formula)):
            return OracleFault(f"malformed counterexample {error!r} for '{impl.name}'")
    if outcome == Outcome.ERRORS and not errors:
        return OracleFault(f"'{impl.name}' reported errors without counterexamples")
    if outcome != Outcome.ERRORS and errors:
        return OracleFault(f"'{impl.name}' reported {outcome.value} with counterexamples")
    return Verified(outcome, errors)


def infer(program: Program, oracle: Optional[VerifierOracle] = None,
          config: Optional[HoudiniConfig] = None,
          observers: Optional[List[HoudiniObserver]] = None) -> HoudiniOutcome:
    """Run Houdini once on ``program``."""
    houdini = Houdini(program, oracle=oracle, config=config, observers=observers)
    try:
        return houdini.run()
    finally:
        houdini.close()
