"""Lifecycle notifications for Houdini runs.

Observers are plain objects implementing ``HoudiniObserver``; every method
is a no-op by default so an observer overrides only the events it needs.
The bus calls observers synchronously, in registration order. Observers
must not mutate scheduler state.

Event order within one round on implementation I:

    update_iteration, update_implementation(I),
    update_assignment(...), update_outcome(...),
    [update_enqueue(...) update_constant(...)]*, [update_dequeue]
"""

from __future__ import annotations

import logging
import sys
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, TextIO

from houdini.lang.ast import Implementation, Program
from houdini.oracle.base import Outcome


class HoudiniObserver:
    def update_start(self, program: Program, candidate_count: int) -> None:
        pass

    def update_iteration(self) -> None:
        pass

    def update_implementation(self, implementation: Implementation) -> None:
        pass

    def update_assignment(self, assignment: Dict[str, bool]) -> None:
        pass

    def update_outcome(self, outcome: Outcome) -> None:
        pass

    def update_enqueue(self, implementation: Implementation) -> None:
        pass

    def update_dequeue(self) -> None:
        pass

    def update_constant(self, constant: str) -> None:
        pass

    def update_flush_start(self) -> None:
        pass

    def update_flush_finish(self) -> None:
        pass

    def see_exception(self, message: str) -> None:
        pass

    def update_end(self, is_normal_end: bool) -> None:
        pass


class ObserverBus:
    """Ordered, duplicate-free list of observers."""

    def __init__(self, observers: Optional[List[HoudiniObserver]] = None):
        self._observers: List[HoudiniObserver] = []
        for observer in observers or []:
            self.add_observer(observer)

    def add_observer(self, observer: HoudiniObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: HoudiniObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    @property
    def observers(self) -> List[HoudiniObserver]:
        return list(self._observers)

    def _notify(self, fn: Callable[[HoudiniObserver], None]) -> None:
        for observer in self._observers:
            fn(observer)

    def notify_start(self, program: Program, candidate_count: int) -> None:
        self._notify(lambda o: o.update_start(program, candidate_count))

    def notify_iteration(self) -> None:
        self._notify(lambda o: o.update_iteration())

    def notify_implementation(self, implementation: Implementation) -> None:
        self._notify(lambda o: o.update_implementation(implementation))

    def notify_assignment(self, assignment: Dict[str, bool]) -> None:
        # each observer gets its own copy
        self._notify(lambda o: o.update_assignment(dict(assignment)))

    def notify_outcome(self, outcome: Outcome) -> None:
        self._notify(lambda o: o.update_outcome(outcome))

    def notify_enqueue(self, implementation: Implementation) -> None:
        self._notify(lambda o: o.update_enqueue(implementation))

    def notify_dequeue(self) -> None:
        self._notify(lambda o: o.update_dequeue())

    def notify_constant(self, constant: str) -> None:
        self._notify(lambda o: o.update_constant(constant))

    def notify_flush_start(self) -> None:
        self._notify(lambda o: o.update_flush_start())

    def notify_flush_finish(self) -> None:
        self._notify(lambda o: o.update_flush_finish())

    def notify_exception(self, message: str) -> None:
        self._notify(lambda o: o.see_exception(message))

    def notify_end(self, is_normal_end: bool) -> None:
        self._notify(lambda o: o.update_end(is_normal_end))


# ---------------------------------------------------------------------------
# Stock observers
# ---------------------------------------------------------------------------

class TextReporter(HoudiniObserver):
    """Human-readable trace of every event."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.current_iteration = -1

    def _write(self, line: str) -> None:
        self.stream.write(line + "\n")
        self.stream.flush()

    def update_start(self, program, candidate_count):
        self._write(f"Houdini started: {program} #constants: {candidate_count}")
        self.current_iteration = -1

    def update_iteration(self):
        self.current_iteration += 1
        self._write("---------------------------------------")
        self._write(f"Houdini iteration #{self.current_iteration}")

    def update_implementation(self, implementation):
        self._write(f"implementation under analysis : {implementation.name}")

    def update_assignment(self, assignment):
        body = " && ".join(
            f"{name} == {'true' if value else 'false'}" for name, value in assignment.items()
        )
        self._write(f"assignment under analysis : axiom ({body});")

    def update_outcome(self, outcome):
        self._write(f"analysis outcome : {outcome.value}")

    def update_enqueue(self, implementation):
        self._write(f"worklist enqueue : {implementation.name}")

    def update_dequeue(self):
        self._write("worklist dequeue")

    def update_constant(self, constant):
        self._write(f"constant disabled : {constant}")

    def update_flush_start(self):
        self._write("***************************************")
        self._write("Flushing remaining implementations")

    def update_flush_finish(self):
        self._write("***************************************")
        self._write("Flushing finished")

    def see_exception(self, message):
        self._write(f"Caught exception: {message}")

    def update_end(self, is_normal_end):
        self._write(f"Houdini ended: {'Normal' if is_normal_end else 'Abnormal'}")
        self._write(f"Number of iterations: {self.current_iteration + 1}")


class IterationTimer:
    """Per-key lists of elapsed times in milliseconds."""

    def __init__(self) -> None:
        self.times: "OrderedDict[str, List[float]]" = OrderedDict()

    def add_time(self, key: str, time_ms: float) -> None:
        self.times.setdefault(key, []).append(time_ms)

    def total_ms(self) -> float:
        return sum(sum(v) for v in self.times.values())

    def iterations(self) -> int:
        return sum(len(v) for v in self.times.values())

    def print_times(self, stream: TextIO) -> None:
        stream.write(f"Total procedures: {len(self.times)}\n")
        for key, values in self.times.items():
            stream.write(f"Times for {key}:\n")
            for i, v in enumerate(values):
                stream.write(f"  ({i})\t{v:.3f}ms\n")
        total_s = self.total_ms() / 1000.0
        iters = self.iterations()
        stream.write(f"Total time: {total_s:.3f} (s)\n")
        avg = total_s / iters if iters else 0.0
        stream.write(f"Avg: {avg:.3f} (s/iter)\n")


class TimingObserver(HoudiniObserver):
    """Wall-clock time of each verification round, per implementation.

    A round starts at ``update_iteration`` (or ``update_assignment`` when
    the scheduler spins on the same implementation) and ends at
    ``update_outcome``.
    """

    def __init__(self, stream: Optional[TextIO] = None, clock: Callable[[], float] = time.perf_counter):
        self.stream = stream or sys.stdout
        self.timer = IterationTimer()
        self._clock = clock
        self._start: Optional[float] = None
        self._current: Optional[str] = None

    def update_iteration(self):
        self._start = self._clock()

    def update_implementation(self, implementation):
        self._current = implementation.name

    def update_assignment(self, assignment):
        if self._start is None:
            self._start = self._clock()

    def update_outcome(self, outcome):
        if self._current is None or self._start is None:
            return
        self.timer.add_time(self._current, (self._clock() - self._start) * 1000.0)
        self._start = None

    def print_times(self) -> None:
        self.stream.write("-----------------------------------------\n")
        self.stream.write("Times for each iteration for each procedure\n")
        self.stream.write("-----------------------------------------\n")
        self.timer.print_times(self.stream)


class LoggingObserver(HoudiniObserver):
    """Forwards events to a stdlib logger."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("houdini.run")

    def update_start(self, program, candidate_count):
        self.logger.info("houdini started on %s with %d candidates", program, candidate_count)

    def update_iteration(self):
        self.logger.debug("iteration")

    def update_implementation(self, implementation):
        self.logger.debug("implementation %s", implementation.name)

    def update_assignment(self, assignment):
        self.logger.debug("assignment %s", assignment)

    def update_outcome(self, outcome):
        self.logger.debug("outcome %s", outcome.value)

    def update_enqueue(self, implementation):
        self.logger.debug("enqueue %s", implementation.name)

    def update_dequeue(self):
        self.logger.debug("dequeue")

    def update_constant(self, constant):
        self.logger.debug("disabled %s", constant)

    def update_flush_start(self):
        self.logger.info("flushing remaining implementations")

    def update_flush_finish(self):
        self.logger.info("flush finished")

    def see_exception(self, message):
        self.logger.warning("oracle fault: %s", message)

    def update_end(self, is_normal_end):
        self.logger.info("houdini ended: %s", "normal" if is_normal_end else "abnormal")
