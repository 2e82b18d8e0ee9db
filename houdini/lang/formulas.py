"""Logical formulas for contracts, assertions and axioms.

Formulas are immutable trees. The parser produces them for every
expression in a program; the Z3 oracle translates them to solver terms;
the refutation classifier inspects their shape.

Candidate annotations are written as implications guarded by an
existential constant:

    requires b0 ==> x >= 0;

The smart constructors simplify trivially true or false sub-formulas, so
``b ==> true`` collapses to ``true`` and is no longer a candidate pattern.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, List, Tuple


class FormulaKind(Enum):
    TRUE = auto()
    FALSE = auto()
    VAR = auto()
    INT_CONST = auto()
    BOOL_CONST = auto()
    BINOP = auto()
    UNOP = auto()
    AND = auto()
    OR = auto()
    NOT = auto()
    IMPLIES = auto()
    IFF = auto()
    ITE = auto()
    FORALL = auto()
    EXISTS = auto()
    OLD = auto()          # old(e): value of e in the pre-state


@dataclass(frozen=True)
class Formula:
    """A first-order formula over int and bool variables."""
    kind: FormulaKind
    name: str = ""                          # for VAR
    int_val: int = 0                        # for INT_CONST
    bool_val: bool = True                   # for BOOL_CONST
    op: str = ""                            # for BINOP, UNOP
    children: Tuple[Formula, ...] = ()      # sub-formulas
    quant_var: str = ""                     # for FORALL/EXISTS

    def __str__(self) -> str:
        if self.kind == FormulaKind.TRUE:
            return "true"
        if self.kind == FormulaKind.FALSE:
            return "false"
        if self.kind == FormulaKind.VAR:
            return self.name
        if self.kind == FormulaKind.INT_CONST:
            return str(self.int_val)
        if self.kind == FormulaKind.BOOL_CONST:
            return str(self.bool_val).lower()
        if self.kind == FormulaKind.BINOP:
            return f"({self.children[0]} {self.op} {self.children[1]})"
        if self.kind == FormulaKind.UNOP:
            return f"({self.op}{self.children[0]})"
        if self.kind == FormulaKind.AND:
            return "(" + " && ".join(str(c) for c in self.children) + ")"
        if self.kind == FormulaKind.OR:
            return "(" + " || ".join(str(c) for c in self.children) + ")"
        if self.kind == FormulaKind.NOT:
            return f"!({self.children[0]})"
        if self.kind == FormulaKind.IMPLIES:
            return f"({self.children[0]} ==> {self.children[1]})"
        if self.kind == FormulaKind.IFF:
            return f"({self.children[0]} <==> {self.children[1]})"
        if self.kind == FormulaKind.ITE:
            return f"(if {self.children[0]} then {self.children[1]} else {self.children[2]})"
        if self.kind == FormulaKind.FORALL:
            return f"(forall {self.quant_var}: int :: {self.children[0]})"
        if self.kind == FormulaKind.EXISTS:
            return f"(exists {self.quant_var}: int :: {self.children[0]})"
        if self.kind == FormulaKind.OLD:
            return f"old({self.children[0]})"
        return "<?>"


# Formula constructors
def F_TRUE() -> Formula:
    return Formula(kind=FormulaKind.TRUE)

def F_FALSE() -> Formula:
    return Formula(kind=FormulaKind.FALSE)

def F_VAR(name: str) -> Formula:
    return Formula(kind=FormulaKind.VAR, name=name)

def F_INT(val: int) -> Formula:
    return Formula(kind=FormulaKind.INT_CONST, int_val=val)

def F_BOOL(val: bool) -> Formula:
    return Formula(kind=FormulaKind.BOOL_CONST, bool_val=val)

def F_BINOP(op: str, left: Formula, right: Formula) -> Formula:
    return Formula(kind=FormulaKind.BINOP, op=op, children=(left, right))

def F_UNOP(op: str, operand: Formula) -> Formula:
    return Formula(kind=FormulaKind.UNOP, op=op, children=(operand,))

def F_EQ(left: Formula, right: Formula) -> Formula:
    return F_BINOP("==", left, right)

def F_AND(*children: Formula) -> Formula:
    flat: List[Formula] = []
    for c in children:
        if c.kind == FormulaKind.TRUE:
            continue
        if c.kind == FormulaKind.FALSE:
            return F_FALSE()
        if c.kind == FormulaKind.AND:
            flat.extend(c.children)
        else:
            flat.append(c)
    if not flat:
        return F_TRUE()
    if len(flat) == 1:
        return flat[0]
    return Formula(kind=FormulaKind.AND, children=tuple(flat))

def F_OR(*children: Formula) -> Formula:
    flat: List[Formula] = []
    for c in children:
        if c.kind == FormulaKind.FALSE:
            continue
        if c.kind == FormulaKind.TRUE:
            return F_TRUE()
        if c.kind == FormulaKind.OR:
            flat.extend(c.children)
        else:
            flat.append(c)
    if not flat:
        return F_FALSE()
    if len(flat) == 1:
        return flat[0]
    return Formula(kind=FormulaKind.OR, children=tuple(flat))

def F_NOT(f: Formula) -> Formula:
    if f.kind == FormulaKind.TRUE:
        return F_FALSE()
    if f.kind == FormulaKind.FALSE:
        return F_TRUE()
    if f.kind == FormulaKind.NOT:
        return f.children[0]
    return Formula(kind=FormulaKind.NOT, children=(f,))

def F_IMPLIES(lhs: Formula, rhs: Formula) -> Formula:
    if lhs.kind == FormulaKind.TRUE:
        return rhs
    if lhs.kind == FormulaKind.FALSE:
        return F_TRUE()
    if rhs.kind == FormulaKind.TRUE:
        return F_TRUE()
    return Formula(kind=FormulaKind.IMPLIES, children=(lhs, rhs))

def F_IFF(lhs: Formula, rhs: Formula) -> Formula:
    return Formula(kind=FormulaKind.IFF, children=(lhs, rhs))

def F_ITE(cond: Formula, then_f: Formula, else_f: Formula) -> Formula:
    return Formula(kind=FormulaKind.ITE, children=(cond, then_f, else_f))

def F_FORALL(var: str, body: Formula) -> Formula:
    return Formula(kind=FormulaKind.FORALL, quant_var=var, children=(body,))

def F_EXISTS(var: str, body: Formula) -> Formula:
    return Formula(kind=FormulaKind.EXISTS, quant_var=var, children=(body,))

def F_OLD(inner: Formula) -> Formula:
    return Formula(kind=FormulaKind.OLD, children=(inner,))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def implication_guard(formula: Formula) -> Optional[str]:
    """Return the variable name guarding ``name ==> property``, if any."""
    if formula.kind != FormulaKind.IMPLIES:
        return None
    antecedent = formula.children[0]
    if antecedent.kind == FormulaKind.VAR:
        return antecedent.name
    return None

