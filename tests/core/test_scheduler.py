"""Houdini scheduler tests: spin loop, refutation, flush, blacklist, faults."""

import io
import json

import pytest

from houdini.config import HoudiniConfig
from houdini.core.observers import HoudiniObserver
from houdini.core.outcome import RefutationLog, RunKind
from houdini.core.scheduler import Houdini, infer
from houdini.lang.parser import parse
from houdini.oracle.base import Counterexample, CounterexampleKind, Outcome, VerifierSession
from houdini.oracle.scripted import FAULT, ScriptedOracle, guarded

PRE = CounterexampleKind.PRECONDITION
POST = CounterexampleKind.POSTCONDITION
ASSERT = CounterexampleKind.ASSERTION


class Recorder(HoudiniObserver):
    def __init__(self):
        self.events = []

    def update_start(self, program, candidate_count):
        self.events.append(("start", candidate_count))

    def update_iteration(self):
        self.events.append(("iteration", None))

    def update_implementation(self, implementation):
        self.events.append(("implementation", implementation.name))

    def update_assignment(self, assignment):
        self.events.append(("assignment", assignment))

    def update_outcome(self, outcome):
        self.events.append(("outcome", outcome))

    def update_enqueue(self, implementation):
        self.events.append(("enqueue", implementation.name))

    def update_dequeue(self):
        self.events.append(("dequeue", None))

    def update_constant(self, constant):
        self.events.append(("constant", constant))

    def update_flush_start(self):
        self.events.append(("flush_start", None))

    def update_flush_finish(self):
        self.events.append(("flush_finish", None))

    def see_exception(self, message):
        self.events.append(("exception", message))

    def update_end(self, is_normal_end):
        self.events.append(("end", is_normal_end))

    def of(self, kind):
        return [arg for k, arg in self.events if k == kind]


CALLER_CALLEE = """
const {:existential true} P_pre: bool;
const {:existential true} P_post: bool;

procedure Caller() { var y: int; call y := Callee(0); }

procedure Callee(x: int) returns (r: int);
  requires P_pre ==> x > 0;
  ensures P_post ==> r > 0;

implementation Callee { r := x; }
"""

THREE = """
const {:existential true} c: bool;
procedure A() { }
procedure B() { }
procedure C() { }
"""


def scenario_oracle():
    oracle = ScriptedOracle()
    oracle.fail("Caller", PRE, "P_pre", callee="Callee")
    oracle.fail("Callee", POST, "P_post", when={"P_pre": False})
    return oracle


def run(source, oracle, **config):
    recorder = Recorder()
    houdini = Houdini(parse(source), oracle=oracle, config=HoudiniConfig(**config),
                      observers=[recorder])
    return houdini.run(), recorder


class FixedSession(VerifierSession):
    """Returns the same raw response from every verify() call."""

    def __init__(self, response):
        self.response = response
        self.depth = 0
        self.verified = 0

    def push(self, axiom):
        self.depth += 1

    def verify(self):
        self.verified += 1
        return self.response

    def pop(self):
        self.depth -= 1


def run_with_session(source, name, session, **config):
    recorder = Recorder()
    houdini = Houdini(parse(source), oracle=ScriptedOracle(), config=HoudiniConfig(**config),
                      observers=[recorder])
    houdini.sessions[name] = session
    return houdini.run(), recorder


# ===========================================================================
# Caller / Callee refinement
# ===========================================================================

class TestCallerCalleeScenario:
    def test_final_assignment(self):
        outcome, _ = run(CALLER_CALLEE, scenario_oracle())
        assert outcome.assignment == {"P_pre": False, "P_post": False}
        assert outcome.kind == RunKind.DONE

    def test_both_correct(self):
        outcome, _ = run(CALLER_CALLEE, scenario_oracle())
        assert {n: r.outcome for n, r in outcome.implementation_outcomes.items()} == {
            "Caller": Outcome.CORRECT, "Callee": Outcome.CORRECT,
        }
        assert outcome.all_correct()

    def test_oracle_call_sequence(self):
        oracle = scenario_oracle()
        outcome, _ = run(CALLER_CALLEE, oracle)
        assert oracle.calls == [
            ("Caller", {"P_pre": True, "P_post": True}),
            ("Caller", {"P_pre": False, "P_post": True}),
            ("Callee", {"P_pre": False, "P_post": True}),
            ("Callee", {"P_pre": False, "P_post": False}),
            ("Caller", {"P_pre": False, "P_post": False}),
        ]
        assert outcome.iterations == 5

    def test_disable_and_enqueue_events(self):
        _, rec = run(CALLER_CALLEE, scenario_oracle())
        assert rec.of("constant") == ["P_pre", "P_post"]
        # Callee is still queued when P_pre falls, so only Caller is re-enqueued
        assert rec.of("enqueue") == ["Caller"]
        assert rec.of("implementation") == ["Caller", "Callee", "Caller"]

    def test_event_order_of_first_round(self):
        _, rec = run(CALLER_CALLEE, scenario_oracle())
        kinds = [k for k, _ in rec.events[:7]]
        assert kinds == [
            "start", "iteration", "implementation", "assignment",
            "outcome", "constant", "iteration",
        ]

    def test_start_and_end(self):
        _, rec = run(CALLER_CALLEE, scenario_oracle())
        assert rec.events[0] == ("start", 2)
        assert rec.events[-1] == ("end", True)

    def test_sessions_are_balanced(self):
        oracle = scenario_oracle()
        run(CALLER_CALLEE, oracle)
        assert oracle.pops == len(oracle.calls)
        assert all(not s.stack for s in oracle.sessions.values())

    def test_refutations_recorded(self):
        outcome, _ = run(CALLER_CALLEE, scenario_oracle())
        assert [(r["implementation"], r["kind"], r["constant"]) for r in outcome.refutations] == [
            ("Caller", "requires", "P_pre"),
            ("Callee", "ensures", "P_post"),
        ]
        assert outcome.refutations[0]["callee"] == "Callee"


class TestRoundRobin:
    def test_same_fixpoint(self):
        outcome, _ = run(CALLER_CALLEE, scenario_oracle(), schedule="round_robin")
        assert outcome.assignment == {"P_pre": False, "P_post": False}
        assert outcome.all_correct()

    def test_refuted_head_goes_to_tail(self):
        oracle = scenario_oracle()
        run(CALLER_CALLEE, oracle, schedule="round_robin")
        assert [name for name, _ in oracle.calls] == ["Caller", "Callee", "Caller", "Callee"]


# ===========================================================================
# Degenerate and propagation cases
# ===========================================================================

class TestNoCandidates:
    SOURCE = """
procedure A() { }
procedure B() { call A(); }
"""

    def test_one_call_per_implementation(self):
        oracle = ScriptedOracle()
        outcome, _ = run(self.SOURCE, oracle)
        assert [name for name, _ in oracle.calls] == ["A", "B"]
        assert outcome.assignment == {}
        assert outcome.verified == 2

    def test_plain_verification_outcomes(self):
        oracle = ScriptedOracle().fail("B", ASSERT)
        outcome, _ = run(self.SOURCE, oracle, continue_at_error=True)
        assert outcome.implementation_outcomes["A"].outcome == Outcome.CORRECT
        assert outcome.implementation_outcomes["B"].outcome == Outcome.ERRORS
        assert outcome.errors_list == ["B"]


class TestPropagation:
    REQUIRES = """
const {:existential true} c: bool;
procedure B(x: int) { }
procedure C(x: int) { }
procedure A() { call B(1); call C(1); }
"""

    ENSURES = """
const {:existential true} c: bool;
procedure A() { call B(); }
procedure C() { call B(); }
procedure D() { }
procedure B() { }
"""

    FANOUT = """
const {:existential true} c: bool;
procedure P();
implementation P { }
implementation {:id "P_fast"} P { }
procedure A() { call P(); }
"""

    def test_requires_enqueues_matching_successor_only(self):
        oracle = ScriptedOracle().fail("A", PRE, "c", callee="B")
        _, rec = run(self.REQUIRES, oracle)
        assert rec.of("enqueue") == ["B"]
        assert [name for name, _ in oracle.calls] == ["B", "C", "A", "A", "B"]

    def test_ensures_enqueues_predecessors(self):
        oracle = ScriptedOracle().fail("B", POST, "c")
        _, rec = run(self.ENSURES, oracle)
        assert rec.of("enqueue") == ["A", "C"]

    def test_assert_does_not_propagate(self):
        oracle = ScriptedOracle().fail("B", ASSERT, "c")
        outcome, rec = run(self.ENSURES, oracle)
        assert rec.of("enqueue") == []
        assert outcome.assignment == {"c": False}

    def test_requires_fans_out_to_every_realization(self):
        oracle = ScriptedOracle().fail("A", PRE, "c", callee="P")
        _, rec = run(self.FANOUT, oracle)
        assert rec.of("enqueue") == ["P", "P_fast"]
        assert oracle.calls_for("P") == [{"c": True}, {"c": False}]
        assert oracle.calls_for("P_fast") == [{"c": True}, {"c": False}]

    def test_self_recursion_terminates(self):
        source = """
const {:existential true} c: bool;
procedure R(n: int) { call R(n - 1); }
"""
        oracle = ScriptedOracle().fail("R", PRE, "c", callee="R").fail("R", POST, "c")
        outcome, _ = run(source, oracle)
        assert outcome.assignment == {"c": False}
        assert len(oracle.calls) == 2

    def test_candidate_disabled_once(self):
        oracle = ScriptedOracle().fail("A", ASSERT, "c").fail("A", ASSERT, "c")
        _, rec = run(THREE, oracle)
        assert rec.of("constant") == ["c"]


# ===========================================================================
# Genuine violations and flush
# ===========================================================================

class TestFlush:
    SOURCE = """
const {:existential true} a: bool;
const {:existential true} b: bool;
procedure A() { }
procedure B() { }
procedure C() { }
procedure D() { }
"""

    def oracle(self):
        oracle = ScriptedOracle()
        oracle.fail("A", ASSERT, "a")
        oracle.fail("B", ASSERT)                # genuine
        oracle.fail("C", ASSERT, "b")
        return oracle

    def test_genuine_violation_flushes(self):
        outcome, rec = run(self.SOURCE, self.oracle())
        assert outcome.kind == RunKind.FLUSHED
        assert rec.of("flush_start") == [None]
        assert rec.of("flush_finish") == [None]

    def test_remaining_get_exactly_one_call_under_frozen_assignment(self):
        oracle = self.oracle()
        run(self.SOURCE, oracle)
        frozen = {"a": False, "b": True}
        assert oracle.calls_for("C") == [frozen]
        assert oracle.calls_for("D") == [frozen]
        assert oracle.calls_for("B") == [frozen]

    def test_no_refinement_during_flush(self):
        outcome, rec = run(self.SOURCE, self.oracle())
        assert outcome.assignment == {"a": False, "b": True}
        assert rec.of("constant") == ["a"]
        assert outcome.implementation_outcomes["C"].outcome == Outcome.ERRORS
        # candidate-only errors are not genuine
        assert outcome.implementation_outcomes["C"].errors == []

    def test_every_implementation_has_a_record(self):
        outcome, _ = run(self.SOURCE, self.oracle())
        assert list(outcome.implementation_outcomes) == ["A", "B", "C", "D"]
        assert outcome.errors_list == ["B"]

    def test_end_is_normal_by_default(self):
        _, rec = run(self.SOURCE, self.oracle())
        assert rec.events[-1] == ("end", True)

    def test_end_is_abnormal_when_configured(self):
        _, rec = run(self.SOURCE, self.oracle(), flush_is_abnormal_end=True)
        assert rec.events[-1] == ("end", False)

    def test_mixed_errors_do_not_disable(self):
        oracle = ScriptedOracle().fail("A", ASSERT, "a").fail("A", ASSERT)
        outcome, rec = run(self.SOURCE, oracle)
        assert outcome.kind == RunKind.FLUSHED
        assert outcome.assignment == {"a": True, "b": True}
        assert rec.of("constant") == []
        assert len(outcome.implementation_outcomes["A"].errors) == 1


class TestContinueAtError:
    SOURCE = TestFlush.SOURCE

    def test_genuine_violation_dequeues_without_flush(self):
        oracle = ScriptedOracle().fail("B", ASSERT).fail("C", ASSERT, "b")
        outcome, rec = run(self.SOURCE, oracle, continue_at_error=True)
        assert outcome.kind == RunKind.DONE
        assert rec.of("flush_start") == []
        assert outcome.assignment == {"a": True, "b": False}
        assert len(oracle.calls_for("B")) == 1
        assert outcome.errors_list == ["B"]

    def test_mixed_errors_disable_and_stay(self):
        oracle = ScriptedOracle().fail("A", ASSERT, "a").fail("A", ASSERT)
        outcome, _ = run(self.SOURCE, oracle, continue_at_error=True)
        assert outcome.assignment["a"] is False
        assert oracle.calls_for("A") == [{"a": True, "b": True}, {"a": False, "b": True}]
        assert outcome.implementation_outcomes["A"].outcome == Outcome.ERRORS


# ===========================================================================
# Timeouts, inconclusive results, oracle faults
# ===========================================================================

class TestUnrefinedOutcomes:
    SOURCE = """
const {:existential true} c: bool;
procedure B(x: int) { }
procedure A() { call B(1); }
"""

    def test_timeout_blacklists(self):
        oracle = ScriptedOracle().script("B", Outcome.TIMED_OUT).fail("A", PRE, "c", callee="B")
        outcome, rec = run(self.SOURCE, oracle)
        assert rec.of("implementation").count("B") == 1
        assert rec.of("enqueue") == []
        assert outcome.timeouts_list == ["B"]
        assert outcome.timeouts == 1

    def test_inconclusive_not_retried(self):
        oracle = ScriptedOracle().script("B", Outcome.INCONCLUSIVE)
        outcome, _ = run(self.SOURCE, oracle)
        assert len(oracle.calls_for("B")) == 1
        assert outcome.inconclusives_list == ["B"]
        assert outcome.kind == RunKind.DONE

    def test_out_of_memory_reported_as_inconclusive(self):
        oracle = ScriptedOracle().script("A", Outcome.OUT_OF_MEMORY)
        outcome, _ = run(self.SOURCE, oracle)
        assert outcome.inconclusives_list == ["A"]
        assert outcome.implementation_outcomes["A"].outcome == Outcome.OUT_OF_MEMORY

    def test_flush_on_inconclusive(self):
        oracle = ScriptedOracle().script("B", Outcome.TIMED_OUT)
        outcome, rec = run(self.SOURCE, oracle, flush_on_inconclusive=True)
        assert outcome.kind == RunKind.FLUSHED
        assert rec.of("flush_start") == [None]
        assert outcome.timeouts_list == ["B"]

    def test_verify_fault_is_inconclusive(self):
        oracle = ScriptedOracle().script("B", FAULT)
        outcome, rec = run(self.SOURCE, oracle)
        assert outcome.implementation_outcomes["B"].outcome == Outcome.INCONCLUSIVE
        assert len(rec.of("exception")) == 1
        assert "scripted fault" in rec.of("exception")[0]
        assert outcome.implementation_outcomes["A"].outcome == Outcome.CORRECT

    def test_verify_fault_still_pops(self):
        oracle = ScriptedOracle().script("B", FAULT)
        run(self.SOURCE, oracle)
        assert oracle.pops == len(oracle.calls)
        assert oracle.sessions["B"].stack == []

    def test_push_fault_does_not_pop(self):
        oracle = ScriptedOracle()
        oracle.push_faults.add("B")
        outcome, rec = run(self.SOURCE, oracle)
        assert oracle.calls_for("B") == []
        assert oracle.pops == 1
        assert outcome.implementation_outcomes["B"].outcome == Outcome.INCONCLUSIVE
        assert len(rec.of("exception")) == 1

    @pytest.mark.parametrize("response", [
        Outcome.CORRECT,
        None,
        (Outcome.CORRECT, [], []),
        ("correct", []),
        (Outcome.ERRORS, "x > 0"),
        (Outcome.ERRORS, ["not a counterexample"]),
        (Outcome.ERRORS, [Counterexample(kind="bogus", condition=guarded("c"), implementation="B")]),
        (Outcome.ERRORS, [Counterexample(kind=ASSERT, condition="c ==> x > 0", implementation="B")]),
    ])
    def test_malformed_response_is_inconclusive(self, response):
        session = FixedSession(response)
        outcome, rec = run_with_session(self.SOURCE, "B", session)
        assert outcome.kind == RunKind.DONE
        assert outcome.implementation_outcomes["B"].outcome == Outcome.INCONCLUSIVE
        assert outcome.implementation_outcomes["A"].outcome == Outcome.CORRECT
        assert len(rec.of("exception")) == 1
        assert "malformed" in rec.of("exception")[0]
        assert session.verified == 1
        assert session.depth == 0

    @pytest.mark.parametrize("schedule", ["spin", "round_robin"])
    def test_refuting_disabled_candidate_leaves_head(self, schedule):
        refuted = Counterexample(kind=ASSERT, condition=guarded("c"), implementation="B")
        session = FixedSession((Outcome.ERRORS, [refuted]))
        outcome, rec = run_with_session(self.SOURCE, "B", session, schedule=schedule)
        assert outcome.kind == RunKind.DONE
        assert rec.of("constant") == ["c"]
        assert session.verified == 2
        assert session.depth == 0


# ===========================================================================
# Observers, logging, reuse
# ===========================================================================

class TestObserversAndReporting:
    def test_zero_observers(self):
        houdini = Houdini(parse(CALLER_CALLEE), oracle=scenario_oracle())
        assert houdini.run().assignment == {"P_pre": False, "P_post": False}

    def test_duplicate_observer_notified_once(self):
        rec = Recorder()
        houdini = Houdini(parse(THREE), oracle=ScriptedOracle(), observers=[rec, rec])
        houdini.add_observer(rec)
        houdini.run()
        assert rec.of("start") == [1]

    def test_observers_in_registration_order(self):
        seen = []

        class Tag(HoudiniObserver):
            def __init__(self, tag):
                self.tag = tag

            def update_start(self, program, candidate_count):
                seen.append(self.tag)

        Houdini(parse(THREE), oracle=ScriptedOracle(), observers=[Tag(1), Tag(2), Tag(3)]).run()
        assert seen == [1, 2, 3]

    def test_assignment_snapshots_are_monotone(self):
        _, rec = run(CALLER_CALLEE, scenario_oracle())
        snapshots = rec.of("assignment")
        for before, after in zip(snapshots, snapshots[1:]):
            for name, value in after.items():
                assert not (value and not before[name])

    def test_refutation_log_lines(self):
        stream = io.StringIO()
        houdini = Houdini(parse(CALLER_CALLEE), oracle=scenario_oracle(),
                          refutation_log=RefutationLog(stream))
        houdini.run()
        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [(l["implementation"], l["constant"]) for l in lines] == [
            ("Caller", "P_pre"), ("Callee", "P_post"),
        ]

    def test_runs_are_independent(self):
        houdini = Houdini(parse(CALLER_CALLEE), oracle=scenario_oracle())
        first = houdini.run()
        second = houdini.run()
        assert first.assignment == second.assignment
        assert second.iterations == 5

    def test_infer_closes_sessions(self):
        oracle = scenario_oracle()
        infer(parse(CALLER_CALLEE), oracle=oracle)
        assert sorted(oracle.closed) == ["Callee", "Caller"]

    def test_scheduler_logs(self, caplog):
        import logging
        with caplog.at_level(logging.INFO, logger="houdini.core.scheduler"):
            run(TestFlush.SOURCE, ScriptedOracle().fail("A", ASSERT))
        assert any("flushing" in r.getMessage() for r in caplog.records)
