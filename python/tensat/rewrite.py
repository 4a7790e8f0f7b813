"""
Rewrite rules, the guards that restrict them, and applying their matches to an e-graph.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeAlias

from typing_extensions import assert_never

from .analysis import *
from .cost import OracleError
from .declarations import *
from .pattern import Match, match_pattern

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from .egraph import ClassId, EGraph


__all__ = [
    "GUARDS",
    "BirewriteBuilder",
    "Condition",
    "Guard",
    "Rewrite",
    "RewriteBuilder",
    "RewriteError",
    "apply_matches",
    "birewrite",
    "is_scalar",
    "is_tensor",
    "rewrite",
    "same_shape",
]

Guard: TypeAlias = Callable[["EGraph", "Mapping[Var, ClassId]"], bool]


class RewriteError(ValueError):
    pass


@dataclass(frozen=True)
class Condition:
    """
    A named guard over the metadata of some bound variables.

    Classes without metadata, which is the case when the e-graph has no analysis, never fail a condition.
    """

    name: str
    args: tuple[Var, ...]
    check: Callable[[list[TensorData]], bool] = field(compare=False, repr=False)

    def __call__(self, egraph: EGraph, subst: Mapping[Var, ClassId]) -> bool:
        data = [egraph[subst[v]].data for v in self.args]
        known = [d for d in data if d is not None]
        if len(known) < len(data):
            return True
        return self.check(known)

    def __str__(self) -> str:
        return " ".join([self.name, *map(str, self.args)])


def same_shape(*args: Var) -> Condition:
    """
    All the variables are bound to tensors of the same known shape.
    """
    if len(args) < 2:
        msg = "same_shape needs at least two variables"
        raise RewriteError(msg)

    def check(data: list[TensorData]) -> bool:
        if any(d.kind != DataKind.TENSOR or d.shape is None for d in data):
            return False
        return len({d.shape for d in data}) == 1

    return Condition("same_shape", args, check)


def is_tensor(*args: Var) -> Condition:
    return Condition("is_tensor", args, lambda data: all(d.kind == DataKind.TENSOR for d in data))


def is_scalar(*args: Var) -> Condition:
    return Condition("is_scalar", args, lambda data: all(d.kind == DataKind.SCALAR for d in data))


GUARDS: dict[str, Callable[..., Condition]] = {
    "same_shape": same_shape,
    "is_tensor": is_tensor,
    "is_scalar": is_scalar,
}


@dataclass(frozen=True)
class Rewrite:
    """
    A directional rule: wherever `lhs` matches, `rhs` is added to the same e-class.
    """

    name: str
    lhs: Pattern
    rhs: Pattern
    guard: Guard | None = None

    def __post_init__(self) -> None:
        if isinstance(self.lhs, Var):
            msg = f"Rule {self.name}: the left hand side cannot be a bare variable"
            raise RewriteError(msg)
        bound = set(variables(self.lhs))
        unbound = [v for v in variables(self.rhs) if v not in bound]
        if isinstance(self.guard, Condition):
            unbound += [v for v in self.guard.args if v not in bound and v not in unbound]
        if unbound:
            msg = f"Rule {self.name}: {', '.join(map(str, unbound))} not bound by the left hand side {self.lhs}"
            raise RewriteError(msg)

    def search(self, egraph: EGraph) -> Iterator[Match]:
        """
        The matches of the left hand side which pass the guard, and whose right hand side the analysis accepts.

        Both are checked against the e-graph as it is while searching, so all rules of a round have to be searched
        before any of them is applied.
        """
        return (m for m in match_pattern(self.lhs, egraph) if self.accepts(egraph, m))

    def accepts(self, egraph: EGraph, m: Match) -> bool:
        if self.guard is not None and not self.guard(egraph, m.subst):
            return False
        if egraph.analysis is not None:
            try:
                _evaluate(egraph, self.rhs, m.subst)
            except OracleError:
                return False
        return True

    def apply(self, egraph: EGraph, matches: Iterable[Match]) -> int:
        return apply_matches(self, matches, egraph)

    def __str__(self) -> str:
        text = f"{self.name}: {self.lhs} => {self.rhs}"
        if self.guard is not None:
            text += f" if {self.guard}"
        return text


@dataclass(frozen=True)
class RewriteBuilder:
    lhs: Pattern

    def to(self, rhs: Pattern, guard: Guard | None = None, name: str | None = None) -> Rewrite:
        return Rewrite(name or f"{self.lhs} => {rhs}", self.lhs, rhs, guard)


@dataclass(frozen=True)
class BirewriteBuilder:
    lhs: Pattern

    def to(self, rhs: Pattern, guard: Guard | None = None, name: str | None = None) -> tuple[Rewrite, Rewrite]:
        name = name or f"{self.lhs} <=> {rhs}"
        return Rewrite(name, self.lhs, rhs, guard), Rewrite(f"{name}-rev", rhs, self.lhs, guard)


def rewrite(lhs: Pattern) -> RewriteBuilder:
    """Rewrite the given pattern to the new pattern."""
    return RewriteBuilder(lhs)


def birewrite(lhs: Pattern) -> BirewriteBuilder:
    """Rewrite the given pattern to the new pattern, and vice versa."""
    return BirewriteBuilder(lhs)


def apply_matches(rule: Rewrite, matches: Iterable[Match], egraph: EGraph) -> int:
    """
    Add the right hand side for every match and union it with the matched class.

    The matches must come from `Rewrite.search`, which already checked the guard and the analysis, and should all
    have been found before calling this, so that the result does not depend on the order they are applied in.
    Returns how many of them merged two classes which were not equal before. Congruence is only restored when the
    e-graph is rebuilt.
    """
    applied = 0
    for m in matches:
        try:
            new = egraph.instantiate(rule.rhs, m.subst)
        except OracleError:
            # Shapes filled in by earlier unions this round contradict the right hand side
            continue
        if egraph.equiv(new, m.eclass):
            continue
        try:
            egraph.union(m.eclass, new)
        except MergeConflictError as err:
            err.add_note(f"while applying rule {rule}")
            raise
        applied += 1
    return applied


def _evaluate(egraph: EGraph, pattern: Pattern, subst: Mapping[Var, ClassId]) -> TensorData | None:
    assert egraph.analysis is not None
    match pattern:
        case Var():
            return egraph[subst[pattern]].data
        case Num(value):
            return egraph.analysis.evaluate(Op.NUM, [], value)[1]
        case Symbol(name):
            return egraph.analysis.evaluate(Op.SYMBOL, [], name)[1]
        case Call(op, args):
            children = [_evaluate(egraph, a, subst) for a in args]
            return egraph.analysis.evaluate(op, children)[1]
        case _:
            assert_never(pattern)
