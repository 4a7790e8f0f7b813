"""
Pretty printing terms, patterns and rules.

`to_sexpr` writes the same syntax the parser reads. `pretty_term` writes Python style calls, naming subterms which are
used more than once, and formats the result with black.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import black
from typing_extensions import assert_never

from .declarations import *
from .rewrite import Condition

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .rewrite import Rewrite


__all__ = ["pretty_rewrite", "pretty_term", "to_sexpr"]

MAX_LINE_LENGTH = 110
LINE_DIFFERENCE = 10
BLACK_MODE = black.Mode(line_length=110)


def to_sexpr(pattern: Pattern) -> str:
    match pattern:
        case Call(op, args):
            if not args:
                return str(op)
            return f"({op} {' '.join(map(to_sexpr, args))})"
        case Num(value):
            return str(value)
        case Symbol(name) | Var(name):
            return name
        case _:
            assert_never(pattern)


def pretty_term(pattern: Pattern) -> str:
    """
    Pretty print a term or pattern as Python calls.

    Subterms which appear more than once and are long enough are assigned to a variable first.
    """
    parents: Counter[Pattern] = Counter()
    _count_parents(pattern, parents, set())
    context = PrettyContext(parents)
    expr = context(pattern)
    return _format([*context.statements, expr])


def pretty_rewrite(rule: Rewrite) -> str:
    parents: Counter[Pattern] = Counter()
    seen: set[Pattern] = set()
    _count_parents(rule.lhs, parents, seen)
    _count_parents(rule.rhs, parents, seen)
    context = PrettyContext(parents)
    args = [context(rule.rhs)]
    if isinstance(rule.guard, Condition):
        args.append(f"guard={rule.guard.name}({', '.join(map(context, rule.guard.args))})")
    args.append(f"name={rule.name!r}")
    return _format([*context.statements, f"rewrite({context(rule.lhs)}).to({', '.join(args)})"])


def _format(lines: list[str]) -> str:
    program = "\n".join(lines)
    try:
        return black.format_str(program, mode=BLACK_MODE).strip()
    except black.parsing.InvalidInput:
        return program


def _count_parents(pattern: Pattern, parents: Counter[Pattern], seen: set[Pattern]) -> None:
    if isinstance(pattern, Call):
        for arg in pattern.args:
            parents[arg] += 1
            if arg not in seen:
                _count_parents(arg, parents, seen)
    seen.add(pattern)


@dataclass
class PrettyContext:
    parents: Mapping[Pattern, int]

    # Subterms already assigned to a variable
    names: dict[Pattern, str] = field(default_factory=dict)
    # Assignments of those variables, in order
    statements: list[str] = field(default_factory=list)
    _gen_name_ops: Counter[str] = field(default_factory=Counter)

    def __call__(self, pattern: Pattern) -> str:
        if pattern in self.names:
            return self.names[pattern]
        expr = self.uncached(pattern)
        # Only name a subterm if doing so saves more than about a line
        line_diff = len(expr) - LINE_DIFFERENCE
        n_parents = self.parents.get(pattern, 0)
        if isinstance(pattern, Call) and n_parents > 1 and n_parents * line_diff > MAX_LINE_LENGTH:
            self._gen_name_ops[pattern.op] += 1
            name = f"_{pattern.op.lower()}_{self._gen_name_ops[pattern.op]}"
            self.statements.append(f"{name} = {expr}")
            self.names[pattern] = name
            return name
        return expr

    def uncached(self, pattern: Pattern) -> str:
        match pattern:
            case Call(op, args):
                return f"{op}({', '.join(map(self, args))})"
            case Num(value):
                return str(value)
            case Symbol(name):
                return repr(name)
            case Var(name):
                ident = name[1:]
                return ident if ident.isidentifier() else f"var({name!r})"
            case _:
                assert_never(pattern)
