"""Houdini refinement engine."""

from houdini.core.observers import HoudiniObserver
from houdini.core.outcome import HoudiniOutcome, OutcomeRecord, RunKind
from houdini.core.scheduler import Houdini, infer

__all__ = ["Houdini", "HoudiniObserver", "HoudiniOutcome", "OutcomeRecord", "RunKind", "infer"]
