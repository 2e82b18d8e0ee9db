"""Recursive-descent parser for the Houdini program language.

Parses a token stream into a ``Program``. After parsing, ``resolve`` names
implementations and checks that every call and implementation refers to a
declared procedure with a matching signature.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from houdini.errors import (
    ConfigurationError, ParseError, SourceLocation,
    configuration_error, name_error, syntax_error,
)
from houdini.lang.ast import (
    BOOL, INT, AssertCmd, AssignCmd, AssumeCmd, AxiomDecl, CallCmd, Command,
    Constant, ContractClause, Declaration, GlobalVariable, HavocCmd, IfCmd,
    Implementation, Parameter, Procedure, Program, WhileCmd,
)
from houdini.lang.formulas import (
    Formula, FormulaKind,
    F_AND, F_BINOP, F_EXISTS, F_FALSE, F_FORALL, F_IFF, F_IMPLIES, F_INT,
    F_ITE, F_NOT, F_OLD, F_OR, F_TRUE, F_UNOP, F_VAR,
)
from houdini.lang.lexer import Token, TokenType, tokenize


_COMPARISONS = {
    TokenType.EQ, TokenType.NEQ, TokenType.LT,
    TokenType.LTE, TokenType.GT, TokenType.GTE,
}


class Parser:
    """Recursive-descent parser for Houdini programs."""

    def __init__(self, tokens: list[Token], filename: str = "<stdin>"):
        self.tokens = tokens
        self.pos = 0
        self.filename = filename

    def _current(self) -> Token:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return self.tokens[-1]  # EOF

    def _peek(self) -> TokenType:
        return self._current().type

    def _loc(self) -> SourceLocation:
        return self._current().location

    def _advance(self) -> Token:
        tok = self._current()
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        return tok

    def _expect(self, tt: TokenType) -> Token:
        tok = self._current()
        if tok.type != tt:
            raise ParseError(syntax_error(
                f"Expected {tt.name}, got {tok.type.name} ('{tok.value}')",
                tok.location,
            ))
        return self._advance()

    def _match(self, tt: TokenType) -> Optional[Token]:
        if self._peek() == tt:
            return self._advance()
        return None

    # -------------------------------------------------------------------
    # Top-level
    # -------------------------------------------------------------------

    def parse(self) -> Program:
        decls: list[Declaration] = []
        while self._peek() != TokenType.EOF:
            decls.extend(self._parse_declaration())
        return Program(declarations=decls, filename=self.filename)

    def _parse_declaration(self) -> List[Declaration]:
        tt = self._peek()
        if tt == TokenType.CONST:
            return self._parse_const()
        if tt == TokenType.VAR:
            return self._parse_global_vars()
        if tt == TokenType.AXIOM:
            loc = self._loc()
            self._advance()
            expr = self._parse_expression()
            self._expect(TokenType.SEMICOLON)
            return [AxiomDecl(expr=expr, location=loc)]
        if tt == TokenType.PROCEDURE:
            return self._parse_procedure()
        if tt == TokenType.IMPLEMENTATION:
            return [self._parse_implementation()]
        raise ParseError(syntax_error(
            f"Expected declaration, got '{self._current().value}'",
            self._loc(),
        ))

    def _parse_attributes(self) -> Dict[str, Any]:
        attrs: Dict[str, Any] = {}
        while self._match(TokenType.ATTR_OPEN):
            key = self._expect(TokenType.IDENT).value
            value: Any = True
            if self._peek() == TokenType.STRING_LIT:
                value = self._advance().value
            elif self._peek() != TokenType.RBRACE:
                value = _attribute_value(self._parse_expression())
            self._expect(TokenType.RBRACE)
            attrs[key] = value
        return attrs

    def _parse_type(self) -> str:
        tok = self._expect(TokenType.IDENT)
        if tok.value not in (INT, BOOL):
            raise ParseError(syntax_error(f"Unknown type '{tok.value}'", tok.location))
        return tok.value

    def _parse_typed_names(self) -> List[Parameter]:
        """Parse ``a, b: int`` groups separated by commas."""
        params: List[Parameter] = []
        pending: List[Token] = [self._expect(TokenType.IDENT)]
        while True:
            if self._match(TokenType.COMMA):
                pending.append(self._expect(TokenType.IDENT))
                continue
            self._expect(TokenType.COLON)
            type_name = self._parse_type()
            params.extend(Parameter(t.value, type_name, t.location) for t in pending)
            pending = []
            if not self._match(TokenType.COMMA):
                return params
            pending.append(self._expect(TokenType.IDENT))

    def _parse_const(self) -> List[Declaration]:
        loc = self._loc()
        self._expect(TokenType.CONST)
        attrs = self._parse_attributes()
        names = self._parse_typed_names()
        self._expect(TokenType.SEMICOLON)
        return [
            Constant(name=p.name, type_name=p.type_name, attributes=dict(attrs),
                     location=p.location or loc)
            for p in names
        ]

    def _parse_global_vars(self) -> List[Declaration]:
        self._expect(TokenType.VAR)
        names = self._parse_typed_names()
        self._expect(TokenType.SEMICOLON)
        return [GlobalVariable(name=p.name, type_name=p.type_name, location=p.location)
                for p in names]

    def _parse_param_list(self) -> List[Parameter]:
        self._expect(TokenType.LPAREN)
        params: List[Parameter] = []
        if self._peek() != TokenType.RPAREN:
            params = self._parse_typed_names()
        self._expect(TokenType.RPAREN)
        return params

    def _parse_procedure(self) -> List[Declaration]:
        loc = self._loc()
        self._expect(TokenType.PROCEDURE)
        attrs = self._parse_attributes()
        name = self._expect(TokenType.IDENT).value
        params = self._parse_param_list()
        returns: List[Parameter] = []
        if self._match(TokenType.RETURNS):
            returns = self._parse_param_list()
        self._match(TokenType.SEMICOLON)

        proc = Procedure(name=name, params=params, returns=returns, location=loc)
        while self._peek() in (TokenType.FREE, TokenType.REQUIRES,
                               TokenType.ENSURES, TokenType.MODIFIES):
            clause_loc = self._loc()
            free = self._match(TokenType.FREE) is not None
            if self._match(TokenType.MODIFIES):
                if free:
                    raise ParseError(syntax_error("'free' cannot qualify modifies", clause_loc))
                proc.modifies.extend(self._parse_ident_list())
            elif self._match(TokenType.REQUIRES):
                proc.requires.append(ContractClause(self._parse_expression(), free, clause_loc))
            else:
                self._expect(TokenType.ENSURES)
                proc.ensures.append(ContractClause(self._parse_expression(), free, clause_loc))
            self._expect(TokenType.SEMICOLON)

        decls: List[Declaration] = [proc]
        if self._peek() == TokenType.LBRACE:
            impl_locals, body = self._parse_impl_body()
            decls.append(Implementation(
                procedure=name, locals=impl_locals, body=body,
                attributes=attrs, location=loc,
            ))
        return decls

    def _parse_implementation(self) -> Implementation:
        loc = self._loc()
        self._expect(TokenType.IMPLEMENTATION)
        attrs = self._parse_attributes()
        proc_name = self._expect(TokenType.IDENT).value
        impl_locals, body = self._parse_impl_body()
        return Implementation(procedure=proc_name, locals=impl_locals, body=body,
                              attributes=attrs, location=loc)

    def _parse_impl_body(self) -> tuple[List[Parameter], List[Command]]:
        self._expect(TokenType.LBRACE)
        impl_locals: List[Parameter] = []
        while self._match(TokenType.VAR):
            impl_locals.extend(self._parse_typed_names())
            self._expect(TokenType.SEMICOLON)
        body = self._parse_commands()
        self._expect(TokenType.RBRACE)
        return impl_locals, body

    def _parse_ident_list(self) -> List[str]:
        names = [self._expect(TokenType.IDENT).value]
        while self._match(TokenType.COMMA):
            names.append(self._expect(TokenType.IDENT).value)
        return names

    # -------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------

    def _parse_block(self) -> List[Command]:
        self._expect(TokenType.LBRACE)
        body = self._parse_commands()
        self._expect(TokenType.RBRACE)
        return body

    def _parse_commands(self) -> List[Command]:
        cmds: List[Command] = []
        while self._peek() not in (TokenType.RBRACE, TokenType.EOF):
            cmds.append(self._parse_command())
        return cmds

    def _parse_command(self) -> Command:
        tt = self._peek()
        loc = self._loc()

        if tt == TokenType.ASSERT:
            self._advance()
            attrs = self._parse_attributes()
            expr = self._parse_expression()
            self._expect(TokenType.SEMICOLON)
            return AssertCmd(expr=expr, attributes=attrs, location=loc)

        if tt == TokenType.ASSUME:
            self._advance()
            expr = self._parse_expression()
            self._expect(TokenType.SEMICOLON)
            return AssumeCmd(expr=expr, location=loc)

        if tt == TokenType.HAVOC:
            self._advance()
            names = self._parse_ident_list()
            self._expect(TokenType.SEMICOLON)
            return HavocCmd(names=names, location=loc)

        if tt == TokenType.CALL:
            return self._parse_call()

        if tt == TokenType.IF:
            return self._parse_if()

        if tt == TokenType.WHILE:
            self._advance()
            condition = self._parse_guard()
            invariants: List[ContractClause] = []
            while self._peek() in (TokenType.FREE, TokenType.INVARIANT):
                inv_loc = self._loc()
                free = self._match(TokenType.FREE) is not None
                self._expect(TokenType.INVARIANT)
                invariants.append(ContractClause(self._parse_expression(), free, inv_loc))
                self._expect(TokenType.SEMICOLON)
            body = self._parse_block()
            return WhileCmd(condition=condition, invariants=invariants, body=body, location=loc)

        if tt == TokenType.IDENT:
            target = self._advance().value
            self._expect(TokenType.ASSIGN)
            value = self._parse_expression()
            self._expect(TokenType.SEMICOLON)
            return AssignCmd(target=target, value=value, location=loc)

        raise ParseError(syntax_error(
            f"Unexpected token '{self._current().value}' ({tt.name})", loc,
        ))

    def _parse_call(self) -> CallCmd:
        loc = self._loc()
        self._expect(TokenType.CALL)
        names = self._parse_ident_list()
        results: List[str] = []
        if self._match(TokenType.ASSIGN):
            results = names
            proc_name = self._expect(TokenType.IDENT).value
        elif len(names) == 1:
            proc_name = names[0]
        else:
            raise ParseError(syntax_error("Expected ':=' after call targets", self._loc()))
        self._expect(TokenType.LPAREN)
        args: List[Formula] = []
        if self._peek() != TokenType.RPAREN:
            args.append(self._parse_expression())
            while self._match(TokenType.COMMA):
                args.append(self._parse_expression())
        self._expect(TokenType.RPAREN)
        self._expect(TokenType.SEMICOLON)
        return CallCmd(procedure=proc_name, args=args, results=results, location=loc)

    def _parse_guard(self) -> Optional[Formula]:
        self._expect(TokenType.LPAREN)
        if self._match(TokenType.STAR):
            condition = None
        else:
            condition = self._parse_expression()
        self._expect(TokenType.RPAREN)
        return condition

    def _parse_if(self) -> IfCmd:
        loc = self._loc()
        self._expect(TokenType.IF)
        condition = self._parse_guard()
        then_body = self._parse_block()
        else_body: List[Command] = []
        if self._match(TokenType.ELSE):
            if self._peek() == TokenType.IF:
                else_body = [self._parse_if()]
            else:
                else_body = self._parse_block()
        return IfCmd(condition=condition, then_body=then_body, else_body=else_body, location=loc)

    # -------------------------------------------------------------------
    # Expressions (precedence climbing)
    # -------------------------------------------------------------------

    def _parse_expression(self) -> Formula:
        return self._parse_iff()

    def _parse_iff(self) -> Formula:
        left = self._parse_implies()
        while self._match(TokenType.IFF):
            left = F_IFF(left, self._parse_implies())
        return left

    def _parse_implies(self) -> Formula:
        left = self._parse_or()
        if self._match(TokenType.IMPLIES):
            # right associative
            return F_IMPLIES(left, self._parse_implies())
        return left

    def _parse_or(self) -> Formula:
        left = self._parse_and()
        while self._match(TokenType.OR):
            left = F_OR(left, self._parse_and())
        return left

    def _parse_and(self) -> Formula:
        left = self._parse_comparison()
        while self._match(TokenType.AND):
            left = F_AND(left, self._parse_comparison())
        return left

    def _parse_comparison(self) -> Formula:
        left = self._parse_additive()
        if self._peek() in _COMPARISONS:
            op = self._advance().value
            right = self._parse_additive()
            left = F_BINOP(op, left, right)
            if self._peek() in _COMPARISONS:
                raise ParseError(syntax_error("Comparisons do not chain", self._loc()))
        return left

    def _parse_additive(self) -> Formula:
        left = self._parse_multiplicative()
        while self._peek() in (TokenType.PLUS, TokenType.MINUS):
            op = self._advance().value
            left = F_BINOP(op, left, self._parse_multiplicative())
        return left

    def _parse_multiplicative(self) -> Formula:
        left = self._parse_unary()
        while self._peek() in (TokenType.STAR, TokenType.SLASH, TokenType.PERCENT):
            op = self._advance().value
            left = F_BINOP(op, left, self._parse_unary())
        return left

    def _parse_unary(self) -> Formula:
        if self._match(TokenType.MINUS):
            operand = self._parse_unary()
            if operand.kind == FormulaKind.INT_CONST:
                return F_INT(-operand.int_val)
            return F_UNOP("-", operand)
        if self._match(TokenType.NOT):
            return F_NOT(self._parse_unary())
        return self._parse_primary()

    def _parse_primary(self) -> Formula:
        tt = self._peek()
        loc = self._loc()

        if tt == TokenType.INT_LIT:
            return F_INT(int(self._advance().value))

        if tt == TokenType.TRUE:
            self._advance()
            return F_TRUE()

        if tt == TokenType.FALSE:
            self._advance()
            return F_FALSE()

        if tt == TokenType.IDENT:
            return F_VAR(self._advance().value)

        if tt == TokenType.OLD:
            self._advance()
            self._expect(TokenType.LPAREN)
            inner = self._parse_expression()
            self._expect(TokenType.RPAREN)
            return F_OLD(inner)

        if tt == TokenType.IF:
            self._advance()
            cond = self._parse_expression()
            self._expect(TokenType.THEN)
            then_f = self._parse_expression()
            self._expect(TokenType.ELSE)
            else_f = self._parse_expression()
            return F_ITE(cond, then_f, else_f)

        if tt == TokenType.LPAREN:
            self._advance()
            if self._peek() in (TokenType.FORALL, TokenType.EXISTS):
                quantifier = self._advance().type
                bound = self._expect(TokenType.IDENT).value
                self._expect(TokenType.COLON)
                if self._parse_type() != INT:
                    raise ParseError(syntax_error("Quantified variables must be int", loc))
                self._expect(TokenType.DOUBLE_COLON)
                body = self._parse_expression()
                self._expect(TokenType.RPAREN)
                if quantifier == TokenType.FORALL:
                    return F_FORALL(bound, body)
                return F_EXISTS(bound, body)
            expr = self._parse_expression()
            self._expect(TokenType.RPAREN)
            return expr

        raise ParseError(syntax_error(
            f"Unexpected token '{self._current().value}' ({tt.name})", loc,
        ))


def _attribute_value(expr: Formula) -> Any:
    if expr.kind == FormulaKind.TRUE:
        return True
    if expr.kind == FormulaKind.FALSE:
        return False
    if expr.kind == FormulaKind.INT_CONST:
        return expr.int_val
    return expr


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve(program: Program) -> Program:
    """Name implementations and check declaration/call consistency.

    Raises ConfigurationError listing every problem found.
    """
    errors = []
    seen: Dict[str, Declaration] = {}
    for decl in program.declarations:
        if isinstance(decl, (Constant, GlobalVariable, Procedure)):
            if decl.name in seen:
                errors.append(configuration_error(
                    f"Duplicate declaration '{decl.name}'", decl.location, name=decl.name,
                ))
            else:
                seen[decl.name] = decl

    procedures = {p.name: p for p in program.procedures()}
    impl_names: set = set()
    for impl in program.implementations():
        if impl.procedure not in procedures:
            errors.append(name_error(impl.procedure, impl.location, what="procedure"))
        if not impl.name:
            explicit = impl.attributes.get("id")
            impl.name = explicit if isinstance(explicit, str) else _fresh_name(impl.procedure, impl_names)
        if impl.name in impl_names:
            errors.append(configuration_error(
                f"Duplicate implementation name '{impl.name}'", impl.location, name=impl.name,
            ))
        impl_names.add(impl.name)

        for call in impl.call_sites():
            callee = procedures.get(call.procedure)
            if callee is None:
                errors.append(name_error(call.procedure, call.location, what="procedure"))
                continue
            if len(call.args) != len(callee.params):
                errors.append(configuration_error(
                    f"Call to '{callee.name}' passes {len(call.args)} argument(s), "
                    f"expected {len(callee.params)}", call.location,
                ))
            if call.results and len(call.results) != len(callee.returns):
                errors.append(configuration_error(
                    f"Call to '{callee.name}' assigns {len(call.results)} result(s), "
                    f"expected {len(callee.returns)}", call.location,
                ))

    if errors:
        raise ConfigurationError(errors)
    return program


def _fresh_name(procedure: str, taken: set) -> str:
    """``P`` for the first realization of ``P``, then ``P$2``, ``P$3``..."""
    if procedure not in taken:
        return procedure
    count = 2
    while f"{procedure}${count}" in taken:
        count += 1
    return f"{procedure}${count}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse(source: str, filename: str = "<stdin>") -> Program:
    """Parse program text into a resolved Program."""
    tokens = tokenize(source, filename)
    parser = Parser(tokens, filename)
    return resolve(parser.parse())


def parse_file(path: str) -> Program:
    with open(path, "r") as f:
        source = f.read()
    return parse(source, filename=path)
