"""Stock observers and the observer bus."""

import io
import logging

from houdini.config import HoudiniConfig
from houdini.core.observers import (
    HoudiniObserver, IterationTimer, LoggingObserver, ObserverBus, TextReporter, TimingObserver,
)
from houdini.core.scheduler import Houdini
from houdini.lang.ast import Implementation
from houdini.lang.parser import parse
from houdini.oracle.base import CounterexampleKind, Outcome
from houdini.oracle.scripted import ScriptedOracle

SOURCE = """
const {:existential true} b: bool;
procedure A() { }
procedure B() { }
"""


class TestObserverBus:
    def test_add_is_deduplicated(self):
        o = HoudiniObserver()
        bus = ObserverBus([o])
        bus.add_observer(o)
        assert bus.observers == [o]

    def test_remove(self):
        o = HoudiniObserver()
        bus = ObserverBus([o])
        bus.remove_observer(o)
        assert bus.observers == []

    def test_assignment_copy_per_observer(self):
        seen = []

        class Mutating(HoudiniObserver):
            def update_assignment(self, assignment):
                seen.append(dict(assignment))
                assignment["b"] = False

        bus = ObserverBus([Mutating(), Mutating()])
        original = {"b": True}
        bus.notify_assignment(original)
        assert seen == [{"b": True}, {"b": True}]
        assert original == {"b": True}

    def test_base_observer_ignores_everything(self):
        bus = ObserverBus([HoudiniObserver()])
        bus.notify_iteration()
        bus.notify_end(True)


class TestTextReporter:
    def run(self, oracle):
        out = io.StringIO()
        Houdini(parse(SOURCE), oracle=oracle, observers=[TextReporter(out)]).run()
        return out.getvalue()

    def test_trace(self):
        text = self.run(ScriptedOracle().fail("A", CounterexampleKind.ASSERTION, "b"))
        assert "Houdini started: <stdin> #constants: 1" in text
        assert "Houdini iteration #0" in text
        assert "implementation under analysis : A" in text
        assert "assignment under analysis : axiom (b == true);" in text
        assert "analysis outcome : errors" in text
        assert "constant disabled : b" in text
        assert "worklist dequeue" in text
        assert "Houdini ended: Normal" in text
        assert "Number of iterations: 3" in text

    def test_flush_trace(self):
        text = self.run(ScriptedOracle().fail("A", CounterexampleKind.ASSERTION))
        assert "Flushing remaining implementations" in text
        assert "Flushing finished" in text

    def test_abnormal_end(self):
        out = io.StringIO()
        reporter = TextReporter(out)
        reporter.update_end(False)
        assert "Houdini ended: Abnormal" in out.getvalue()

    def test_exception(self):
        out = io.StringIO()
        TextReporter(out).see_exception("boom")
        assert out.getvalue() == "Caught exception: boom\n"


class TestTiming:
    def test_iteration_timer(self):
        timer = IterationTimer()
        timer.add_time("A", 10.0)
        timer.add_time("A", 30.0)
        timer.add_time("B", 20.0)
        assert timer.total_ms() == 60.0
        assert timer.iterations() == 3
        out = io.StringIO()
        timer.print_times(out)
        text = out.getvalue()
        assert "Total procedures: 2" in text
        assert "Times for A:" in text
        assert "Total time: 0.060 (s)" in text
        assert "Avg: 0.020 (s/iter)" in text

    def test_timing_observer_with_fake_clock(self):
        ticks = iter([0.0, 0.5, 1.0, 3.0])
        obs = TimingObserver(io.StringIO(), clock=lambda: next(ticks))
        impl = Implementation(name="A", procedure="A")
        obs.update_iteration()
        obs.update_implementation(impl)
        obs.update_outcome(Outcome.CORRECT)
        obs.update_iteration()
        obs.update_outcome(Outcome.CORRECT)
        assert obs.timer.times == {"A": [500.0, 2000.0]}

    def test_timing_observer_counts_spin_rounds(self):
        obs = TimingObserver(io.StringIO())
        oracle = ScriptedOracle().fail("A", CounterexampleKind.ASSERTION, "b")
        Houdini(parse(SOURCE), oracle=oracle, observers=[obs]).run()
        assert len(obs.timer.times["A"]) == 2
        assert len(obs.timer.times["B"]) == 1

    def test_print_times_header(self):
        out = io.StringIO()
        TimingObserver(out).print_times()
        assert "Times for each iteration for each procedure" in out.getvalue()


class TestLoggingObserver:
    def test_levels(self, caplog):
        logger = logging.getLogger("houdini.test.observer")
        oracle = ScriptedOracle().script("A", "fault")
        with caplog.at_level(logging.DEBUG, logger="houdini.test.observer"):
            Houdini(parse(SOURCE), oracle=oracle, observers=[LoggingObserver(logger)]).run()
        records = [(r.levelno, r.getMessage()) for r in caplog.records if r.name == "houdini.test.observer"]
        assert (logging.INFO, "houdini started on <stdin> with 1 candidates") in records
        assert any(level == logging.WARNING and "oracle fault" in msg for level, msg in records)
        assert (logging.INFO, "houdini ended: normal") in records
        assert (logging.DEBUG, "dequeue") in records
