"""Z3-backed verifier oracle.

Verification-condition generation by guarded symbolic execution, discharged
to Z3 (de Moura & Bjørner 2008). Each implementation is executed once, when
its session opens, producing a list of proof obligations:

  requires of the implementation      assumed on entry
  assert e                            obligation, then assumed
  call P(a)                           P's requires are obligations; results and
                                      P's modifies are havocked; P's ensures
                                      are assumed with old() = pre-call state
  if (b) S1 else S2                   both branches under guards b / !b,
                                      states merged with If(b, s1, s2)
  while (b) invariant I; S            I checked on entry and after S,
                                      modified variables havocked, I and !b
                                      assumed on exit
  ensures of the procedure            obligations at the end of the body

An obligation is the query  H /\\ g /\\ !c  where H are the hypotheses
collected before it, g is the path guard and c the checked condition. The
obligation holds iff the query is UNSAT.

The session owns one ``z3.Solver`` for the whole run. ``push(axiom)`` opens
a solver scope holding the candidate assignment; every obligation is then
checked in a nested scope, so the per-implementation solver state is reused
across Houdini iterations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import z3

from houdini.errors import (
    ConfigurationError, SessionFault, SourceLocation,
    configuration_error, name_error, oracle_fault,
)
from houdini.lang.ast import (
    BOOL, AssertCmd, AssignCmd, AssumeCmd, CallCmd, Command, HavocCmd,
    IfCmd, Implementation, Program, WhileCmd, iter_commands,
)
from houdini.lang.formulas import Formula, FormulaKind
from houdini.oracle.base import (
    Axiom, Counterexample, CounterexampleKind, Outcome,
    VerifierOracle, VerifierSession,
)


DEFAULT_TIMEOUT_MS = 10000

_TIMEOUT_REASONS = ("timeout", "canceled", "cancelled", "resource limit", "rlimit")
_MEMORY_REASONS = ("memory", "memout")


def classify_unknown(reason: str) -> Outcome:
    """Map a Z3 ``reason_unknown()`` string to an oracle outcome."""
    reason = reason.lower()
    if any(r in reason for r in _TIMEOUT_REASONS):
        return Outcome.TIMED_OUT
    if any(r in reason for r in _MEMORY_REASONS):
        return Outcome.OUT_OF_MEMORY
    return Outcome.INCONCLUSIVE


# ---------------------------------------------------------------------------
# Formula -> Z3
# ---------------------------------------------------------------------------

_BINOPS = {
    "+": lambda l, r: l + r,
    "-": lambda l, r: l - r,
    "*": lambda l, r: l * r,
    "/": lambda l, r: l / r,
    "%": lambda l, r: l % r,
    "==": lambda l, r: l == r,
    "!=": lambda l, r: l != r,
    ">=": lambda l, r: l >= r,
    "<=": lambda l, r: l <= r,
    ">": lambda l, r: l > r,
    "<": lambda l, r: l < r,
}


class Translator:
    """Translates formulas to Z3 terms over a variable environment.

    Constants of the program are shared by every session of the program.
    """

    def __init__(self, program: Program):
        self.constants: Dict[str, Any] = {}
        for const in program.constants():
            if const.type_name == BOOL:
                self.constants[const.name] = z3.Bool(const.name)
            else:
                self.constants[const.name] = z3.Int(const.name)

    def term(self, formula: Formula, env: Dict[str, Any],
             old_env: Optional[Dict[str, Any]] = None,
             bound: Optional[Dict[str, Any]] = None) -> Any:
        bound = bound or {}
        kind = formula.kind

        if kind == FormulaKind.TRUE:
            return z3.BoolVal(True)
        if kind == FormulaKind.FALSE:
            return z3.BoolVal(False)
        if kind == FormulaKind.INT_CONST:
            return z3.IntVal(formula.int_val)
        if kind == FormulaKind.BOOL_CONST:
            return z3.BoolVal(formula.bool_val)

        if kind == FormulaKind.VAR:
            name = formula.name
            if name in bound:
                return bound[name]
            if name in env:
                return env[name]
            if name in self.constants:
                return self.constants[name]
            raise ConfigurationError(name_error(name, what="variable"))

        if kind == FormulaKind.OLD:
            inner_env = old_env if old_env is not None else env
            return self.term(formula.children[0], inner_env, old_env, bound)

        if kind in (FormulaKind.FORALL, FormulaKind.EXISTS):
            var = z3.Int(f"{formula.quant_var}!bound")
            inner = dict(bound)
            inner[formula.quant_var] = var
            body = self.term(formula.children[0], env, old_env, inner)
            if kind == FormulaKind.FORALL:
                return z3.ForAll([var], body)
            return z3.Exists([var], body)

        parts = [self.term(c, env, old_env, bound) for c in formula.children]

        if kind == FormulaKind.BINOP:
            fn = _BINOPS.get(formula.op)
            if fn is None:
                raise ConfigurationError(configuration_error(f"Unsupported operator '{formula.op}'"))
            return fn(parts[0], parts[1])
        if kind == FormulaKind.UNOP:
            if formula.op == "-":
                return -parts[0]
            return z3.Not(parts[0])
        if kind == FormulaKind.AND:
            return z3.And(*parts)
        if kind == FormulaKind.OR:
            return z3.Or(*parts)
        if kind == FormulaKind.NOT:
            return z3.Not(parts[0])
        if kind == FormulaKind.IMPLIES:
            return z3.Implies(parts[0], parts[1])
        if kind == FormulaKind.IFF:
            return parts[0] == parts[1]
        if kind == FormulaKind.ITE:
            return z3.If(parts[0], parts[1], parts[2])

        raise ConfigurationError(configuration_error(f"Cannot translate formula '{formula}'"))


# ---------------------------------------------------------------------------
# Verification condition generation
# ---------------------------------------------------------------------------

@dataclass
class Obligation:
    kind: CounterexampleKind
    condition: Formula
    query: Any
    callee: Optional[str] = None
    location: Optional[SourceLocation] = None


class SymbolicExecutor:
    """Collects proof obligations for one implementation."""

    def __init__(self, program: Program, implementation: Implementation, translator: Translator):
        self.program = program
        self.implementation = implementation
        self.translator = translator
        self.procedure = program.procedure(implementation.procedure)
        if self.procedure is None:
            raise ConfigurationError(name_error(implementation.procedure, implementation.location,
                                                what="procedure"))
        self.globals = [g.name for g in program.global_variables()]
        self.types: Dict[str, str] = {}
        self.hypotheses: List[Any] = []
        self.obligations: List[Obligation] = []
        self.entry_env: Dict[str, Any] = {}
        self._counter = 0

    def fresh(self, name: str) -> Any:
        self._counter += 1
        sort = z3.BoolSort() if self.types.get(name) == BOOL else z3.IntSort()
        return z3.Const(f"{name}@{self._counter}", sort)

    def run(self) -> List[Obligation]:
        env: Dict[str, Any] = {}
        declared = (
            [(g.name, g.type_name) for g in self.program.global_variables()]
            + [(p.name, p.type_name) for p in self.procedure.params]
            + [(p.name, p.type_name) for p in self.procedure.returns]
            + [(p.name, p.type_name) for p in self.implementation.locals]
        )
        for name, type_name in declared:
            self.types[name] = type_name
            env[name] = self.fresh(name)
        self.entry_env = dict(env)

        true = z3.BoolVal(True)
        try:
            for req in self.procedure.requires:
                self.assume(true, self.translator.term(req.expr, env, self.entry_env))
            env = self.exec_block(self.implementation.body, env, true)
            for ens in self.procedure.ensures:
                cond = self.translator.term(ens.expr, env, self.entry_env)
                if ens.free:
                    self.assume(true, cond)
                else:
                    self.check(CounterexampleKind.POSTCONDITION, ens.expr, cond, true,
                               location=ens.location)
        except z3.Z3Exception as e:
            raise ConfigurationError(configuration_error(
                f"Ill-typed expression in '{self.implementation.name}': {e}",
                self.implementation.location,
            )) from e
        return self.obligations

    def assume(self, guard: Any, cond: Any) -> None:
        self.hypotheses.append(z3.Implies(guard, cond))

    def check(self, kind: CounterexampleKind, condition: Formula, cond: Any, guard: Any,
              callee: Optional[str] = None, location: Optional[SourceLocation] = None) -> None:
        query = z3.And(*self.hypotheses, guard, z3.Not(cond))
        self.obligations.append(Obligation(kind, condition, query, callee, location))
        self.assume(guard, cond)

    def exec_block(self, body: List[Command], env: Dict[str, Any], guard: Any) -> Dict[str, Any]:
        for cmd in body:
            env = self.exec(cmd, env, guard)
        return env

    def exec(self, cmd: Command, env: Dict[str, Any], guard: Any) -> Dict[str, Any]:
        term = self.translator.term
        old = self.entry_env

        if isinstance(cmd, AssertCmd):
            self.check(CounterexampleKind.ASSERTION, cmd.expr, term(cmd.expr, env, old), guard,
                       location=cmd.location)
            return env

        if isinstance(cmd, AssumeCmd):
            self.assume(guard, term(cmd.expr, env, old))
            return env

        if isinstance(cmd, AssignCmd):
            self._require_variable(cmd.target, env, cmd.location)
            value = term(cmd.value, env, old)
            if not value.sort().eq(env[cmd.target].sort()):
                raise ConfigurationError(configuration_error(
                    f"Cannot assign {value.sort()} to '{cmd.target}'", cmd.location,
                ))
            new_env = dict(env)
            new_env[cmd.target] = value
            return new_env

        if isinstance(cmd, HavocCmd):
            new_env = dict(env)
            for name in cmd.names:
                self._require_variable(name, env, cmd.location)
                new_env[name] = self.fresh(name)
            return new_env

        if isinstance(cmd, CallCmd):
            return self._exec_call(cmd, env, guard)

        if isinstance(cmd, IfCmd):
            cond = term(cmd.condition, env, old) if cmd.condition is not None else self._nondet()
            then_env = self.exec_block(cmd.then_body, dict(env), z3.And(guard, cond))
            else_env = self.exec_block(cmd.else_body, dict(env), z3.And(guard, z3.Not(cond)))
            merged = {}
            for name in env:
                t, e = then_env[name], else_env[name]
                merged[name] = t if t.eq(e) else z3.If(cond, t, e)
            return merged

        if isinstance(cmd, WhileCmd):
            return self._exec_while(cmd, env, guard)

        raise ConfigurationError(configuration_error(
            f"Unsupported command {type(cmd).__name__}", cmd.location,
        ))

    def _exec_call(self, cmd: CallCmd, env: Dict[str, Any], guard: Any) -> Dict[str, Any]:
        callee = self.program.procedure(cmd.procedure)
        if callee is None:
            raise ConfigurationError(name_error(cmd.procedure, cmd.location, what="procedure"))
        term = self.translator.term
        args = [term(a, env, self.entry_env) for a in cmd.args]

        pre_env = {g: env[g] for g in self.globals}
        pre_env.update(zip((p.name for p in callee.params), args))
        for req in callee.requires:
            cond = term(req.expr, pre_env, pre_env)
            if req.free:
                self.assume(guard, cond)
            else:
                self.check(CounterexampleKind.PRECONDITION, req.expr, cond, guard,
                           callee=callee.name, location=cmd.location)

        new_env = dict(env)
        for g in callee.modifies:
            if g not in self.globals:
                raise ConfigurationError(name_error(g, callee.location, what="global variable"))
            new_env[g] = self.fresh(g)
        post_env = {g: new_env[g] for g in self.globals}
        post_env.update(zip((p.name for p in callee.params), args))
        for ret in callee.returns:
            self.types.setdefault(f"{callee.name}.{ret.name}", ret.type_name)
            post_env[ret.name] = self.fresh(f"{callee.name}.{ret.name}")
        for ens in callee.ensures:
            self.assume(guard, term(ens.expr, post_env, pre_env))

        for target, ret in zip(cmd.results, callee.returns):
            self._require_variable(target, env, cmd.location)
            new_env[target] = post_env[ret.name]
        return new_env

    def _exec_while(self, cmd: WhileCmd, env: Dict[str, Any], guard: Any) -> Dict[str, Any]:
        term = self.translator.term
        old = self.entry_env
        for inv in cmd.invariants:
            if not inv.free:
                self.check(CounterexampleKind.ASSERTION, inv.expr, term(inv.expr, env, old), guard,
                           location=inv.location)

        loop_env = dict(env)
        for name in self._modified(cmd.body):
            if name in loop_env:
                loop_env[name] = self.fresh(name)
        for inv in cmd.invariants:
            self.assume(guard, term(inv.expr, loop_env, old))

        cond = term(cmd.condition, loop_env, old) if cmd.condition is not None else self._nondet()
        body_guard = z3.And(guard, cond)
        body_env = self.exec_block(cmd.body, dict(loop_env), body_guard)
        for inv in cmd.invariants:
            if not inv.free:
                self.check(CounterexampleKind.ASSERTION, inv.expr, term(inv.expr, body_env, old),
                           body_guard, location=inv.location)
        self.assume(guard, z3.Not(cond))
        return loop_env

    def _modified(self, body: List[Command]) -> List[str]:
        names: List[str] = []
        for cmd in iter_commands(body):
            if isinstance(cmd, AssignCmd):
                names.append(cmd.target)
            elif isinstance(cmd, HavocCmd):
                names.extend(cmd.names)
            elif isinstance(cmd, CallCmd):
                names.extend(cmd.results)
                callee = self.program.procedure(cmd.procedure)
                if callee is not None:
                    names.extend(callee.modifies)
        return list(dict.fromkeys(names))

    def _nondet(self) -> Any:
        self.types["*"] = BOOL
        return self.fresh("*")

    def _require_variable(self, name: str, env: Dict[str, Any],
                          location: Optional[SourceLocation]) -> None:
        if name not in env:
            raise ConfigurationError(name_error(name, location, what="variable"))


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class Z3Session(VerifierSession):
    """Incremental Z3 session for one implementation."""

    def __init__(self, program: Program, implementation: Implementation,
                 translator: Translator, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.name = implementation.name
        self.translator = translator
        executor = SymbolicExecutor(program, implementation, translator)
        self.obligations = executor.run()
        self._entry_env = executor.entry_env
        self._depth = 0

        self.solver = z3.Solver()
        if timeout_ms:
            self.solver.set("timeout", timeout_ms)
        for axiom in program.axioms():
            self.solver.add(translator.term(axiom.expr, {}))

    def push(self, axiom: Axiom) -> None:
        try:
            ax = self.translator.term(axiom.formula, {})
        except ConfigurationError as e:
            raise SessionFault(oracle_fault(self.name, str(e))) from e
        self.solver.push()
        try:
            self.solver.add(ax)
        except z3.Z3Exception as e:
            self.solver.pop()
            raise SessionFault(oracle_fault(self.name, str(e))) from e
        self._depth += 1

    def pop(self) -> None:
        if self._depth == 0:
            raise SessionFault(oracle_fault(self.name, "pop without matching push"))
        self.solver.pop()
        self._depth -= 1

    def verify(self) -> Tuple[Outcome, List[Counterexample]]:
        errors: List[Counterexample] = []
        unknown: Optional[Outcome] = None
        try:
            for ob in self.obligations:
                self.solver.push()
                try:
                    self.solver.add(ob.query)
                    result = self.solver.check()
                    if result == z3.sat:
                        errors.append(self._counterexample(ob, self.solver.model()))
                    elif result == z3.unknown:
                        reason = classify_unknown(self.solver.reason_unknown())
                        if unknown is None or reason == Outcome.TIMED_OUT:
                            unknown = reason
                finally:
                    self.solver.pop()
                if unknown == Outcome.TIMED_OUT:
                    break
        except z3.Z3Exception as e:
            raise SessionFault(oracle_fault(self.name, str(e))) from e

        if errors:
            return Outcome.ERRORS, errors
        if unknown is not None:
            return unknown, []
        return Outcome.CORRECT, []

    def _counterexample(self, ob: Obligation, model: Any) -> Counterexample:
        values = []
        for name, t in self._entry_env.items():
            values.append((name, str(model.eval(t, model_completion=True))))
        for name, t in self.translator.constants.items():
            values.append((name, str(model.eval(t, model_completion=True))))
        return Counterexample(
            kind=ob.kind,
            condition=ob.condition,
            implementation=self.name,
            callee=ob.callee,
            location=ob.location,
            model=tuple(values),
        )

    def close(self) -> None:
        self.solver.reset()
        self._depth = 0


class Z3Oracle(VerifierOracle):
    """Opens Z3 sessions; sessions of the same program share its constants."""

    def __init__(self, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.timeout_ms = timeout_ms
        self._program: Optional[Program] = None
        self._translator: Optional[Translator] = None

    def open_session(self, program: Program, implementation: Implementation) -> Z3Session:
        # the cached program stays referenced, so an identity match is never stale
        if self._translator is None or self._program is not program:
            self._program = program
            self._translator = Translator(program)
        return Z3Session(program, implementation, self._translator, self.timeout_ms)
