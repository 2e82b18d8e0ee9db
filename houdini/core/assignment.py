"""Candidate assignment and axiom construction.

The assignment maps each candidate to a truth value. It starts all-true and
only ever moves from true to false, which bounds a run by the number of
candidates. Enumeration order is the collection order and never changes
during a run.
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Tuple

from houdini.errors import HoudiniException, HoudiniError, ErrorKind
from houdini.lang.formulas import F_AND, F_BOOL, F_EQ, F_VAR
from houdini.oracle.base import Axiom


class Assignment:
    """Monotone candidate -> bool mapping owned by one inference run."""

    def __init__(self, candidates: List[str]):
        self._values: Dict[str, bool] = {name: True for name in candidates}
        self._frozen = False

    def __getitem__(self, name: str) -> bool:
        return self._values[name]

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def items(self) -> List[Tuple[str, bool]]:
        return list(self._values.items())

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def disable(self, name: str) -> bool:
        """Set ``name`` to false. Returns True if the value changed."""
        if self._frozen:
            raise HoudiniException(HoudiniError(
                kind=ErrorKind.INTERNAL_ERROR,
                message=f"Cannot disable '{name}': assignment is frozen",
            ))
        if name not in self._values:
            raise KeyError(name)
        if not self._values[name]:
            return False
        self._values[name] = False
        return True

    def snapshot(self) -> Dict[str, bool]:
        return dict(self._values)

    def build_axiom(self) -> Axiom:
        """Conjunction of ``c == value`` over all candidates, in enumeration order."""
        conjuncts = [F_EQ(F_VAR(name), F_BOOL(value)) for name, value in self._values.items()]
        return Axiom(formula=F_AND(*conjuncts), values=tuple(self._values.items()))

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={'true' if v else 'false'}" for k, v in self._values.items())
        return f"Assignment({inner})"
