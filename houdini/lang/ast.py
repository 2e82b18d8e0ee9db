"""Program model consumed by Houdini inference.

Top-level constructs: const, var, axiom, procedure, implementation.
Contracts (requires/ensures/modifies) live on procedures; implementations
carry a body of guarded commands. A procedure may have any number of
implementations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from houdini.errors import SourceLocation
from houdini.lang.formulas import Formula, F_TRUE


INT = "int"
BOOL = "bool"


@dataclass
class Declaration:
    location: Optional[SourceLocation] = None


@dataclass
class Constant(Declaration):
    name: str = ""
    type_name: str = INT
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_existential(self) -> bool:
        return self.attributes.get("existential") is True


@dataclass
class GlobalVariable(Declaration):
    name: str = ""
    type_name: str = INT


@dataclass
class AxiomDecl(Declaration):
    expr: Formula = field(default_factory=F_TRUE)


@dataclass
class Parameter:
    name: str
    type_name: str = INT
    location: Optional[SourceLocation] = None


@dataclass
class ContractClause:
    """A requires/ensures/invariant clause. Free clauses are assumed, never checked."""
    expr: Formula
    free: bool = False
    location: Optional[SourceLocation] = None


@dataclass
class Procedure(Declaration):
    name: str = ""
    params: List[Parameter] = field(default_factory=list)
    returns: List[Parameter] = field(default_factory=list)
    requires: List[ContractClause] = field(default_factory=list)
    ensures: List[ContractClause] = field(default_factory=list)
    modifies: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@dataclass
class Command:
    location: Optional[SourceLocation] = None


@dataclass
class AssertCmd(Command):
    expr: Formula = field(default_factory=F_TRUE)
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AssumeCmd(Command):
    expr: Formula = field(default_factory=F_TRUE)


@dataclass
class AssignCmd(Command):
    target: str = ""
    value: Formula = field(default_factory=F_TRUE)


@dataclass
class HavocCmd(Command):
    names: List[str] = field(default_factory=list)


@dataclass
class CallCmd(Command):
    procedure: str = ""
    args: List[Formula] = field(default_factory=list)
    results: List[str] = field(default_factory=list)


@dataclass
class IfCmd(Command):
    """``condition`` of None is the nondeterministic choice ``*``."""
    condition: Optional[Formula] = None
    then_body: List[Command] = field(default_factory=list)
    else_body: List[Command] = field(default_factory=list)


@dataclass
class WhileCmd(Command):
    condition: Optional[Formula] = None
    invariants: List[ContractClause] = field(default_factory=list)
    body: List[Command] = field(default_factory=list)


def iter_commands(body: List[Command]) -> Iterator[Command]:
    """Yield every command of a body, descending into if/while blocks."""
    for cmd in body:
        yield cmd
        if isinstance(cmd, IfCmd):
            yield from iter_commands(cmd.then_body)
            yield from iter_commands(cmd.else_body)
        elif isinstance(cmd, WhileCmd):
            yield from iter_commands(cmd.body)


@dataclass
class Implementation(Declaration):
    name: str = ""
    procedure: str = ""
    locals: List[Parameter] = field(default_factory=list)
    body: List[Command] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)

    def call_sites(self) -> List[CallCmd]:
        return [c for c in iter_commands(self.body) if isinstance(c, CallCmd)]

    def __str__(self) -> str:
        return self.name


@dataclass
class Program:
    declarations: List[Declaration] = field(default_factory=list)
    filename: str = "<stdin>"

    def constants(self) -> List[Constant]:
        return [d for d in self.declarations if isinstance(d, Constant)]

    def global_variables(self) -> List[GlobalVariable]:
        return [d for d in self.declarations if isinstance(d, GlobalVariable)]

    def axioms(self) -> List[AxiomDecl]:
        return [d for d in self.declarations if isinstance(d, AxiomDecl)]

    def procedures(self) -> List[Procedure]:
        return [d for d in self.declarations if isinstance(d, Procedure)]

    def implementations(self) -> List[Implementation]:
        return [d for d in self.declarations if isinstance(d, Implementation)]

    def procedure(self, name: str) -> Optional[Procedure]:
        for proc in self.procedures():
            if proc.name == name:
                return proc
        return None

    def implementation(self, name: str) -> Optional[Implementation]:
        for impl in self.implementations():
            if impl.name == name:
                return impl
        return None

    def __str__(self) -> str:
        return self.filename
