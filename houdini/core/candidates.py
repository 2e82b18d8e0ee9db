"""Candidate collection.

A candidate is a ``bool`` constant declared with ``{:existential true}``.
Every other constant is fixed and never inferred. The candidate set is
computed once per program and never grows.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from houdini.errors import ConfigurationError, configuration_error
from houdini.lang.ast import BOOL, Constant, Program

logger = logging.getLogger(__name__)


class CandidateCollector:
    """Extracts the existential boolean constants of a program."""

    def __init__(self, program: Program):
        self.program = program

    def collect(self) -> List[str]:
        """Return candidate names in declaration order.

        Raises ConfigurationError when a candidate is not boolean or when its
        name is also used by a non-candidate declaration.
        """
        candidates: Dict[str, Constant] = {}
        errors = []

        for const in self.program.constants():
            if not const.is_existential:
                continue
            if const.type_name != BOOL:
                errors.append(configuration_error(
                    f"Existential constant '{const.name}' must have type bool",
                    const.location, name=const.name, type=const.type_name,
                ))
                continue
            candidates[const.name] = const

        taken = {
            c.name for c in self.program.constants() if c.name not in candidates
        }
        taken.update(v.name for v in self.program.global_variables())
        taken.update(p.name for p in self.program.procedures())
        taken.update(i.name for i in self.program.implementations())
        for proc in self.program.procedures():
            taken.update(p.name for p in proc.params + proc.returns)
        for impl in self.program.implementations():
            taken.update(p.name for p in impl.locals)

        for name, const in candidates.items():
            if name in taken:
                errors.append(configuration_error(
                    f"Candidate '{name}' collides with another declaration",
                    const.location, name=name,
                ))

        if errors:
            raise ConfigurationError(errors)

        logger.debug("collected %d candidates", len(candidates))
        return list(candidates)


def collect_candidates(program: Program) -> List[str]:
    return CandidateCollector(program).collect()
