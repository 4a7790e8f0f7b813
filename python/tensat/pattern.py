"""
E-matching: finding every way a pattern can match the e-graph.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from typing_extensions import assert_never

from .declarations import *
from .egraph import ENode

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from .egraph import ClassId, EGraph


__all__ = ["Match", "Matches", "match_pattern"]


@dataclass(frozen=True)
class Match:
    """
    The root of the pattern matched `eclass`, with each variable bound to the class in `subst`.
    """

    eclass: ClassId
    subst: Mapping[Var, ClassId]


@dataclass(frozen=True)
class Matches:
    """
    All the matches of a pattern, computed lazily.

    Iterating again starts over. Classes are visited in order of id and e-nodes in the order they were added, so for
    the same e-graph state the order of the matches is always the same.
    """

    pattern: Pattern
    egraph: EGraph

    def __iter__(self) -> Iterator[Match]:
        for eclass in self.egraph.classes():
            for subst in _match(self.egraph, self.pattern, eclass.id, {}):
                yield Match(eclass.id, subst)

    def in_class(self, i: ClassId) -> Iterator[Match]:
        """
        Only the matches rooted at the class `i`.
        """
        i = self.egraph.find(i)
        for subst in _match(self.egraph, self.pattern, i, {}):
            yield Match(i, subst)


def match_pattern(pattern: Pattern, egraph: EGraph) -> Matches:
    return Matches(pattern, egraph)


def _match(egraph: EGraph, pattern: Pattern, i: ClassId, subst: dict[Var, ClassId]) -> Iterator[dict[Var, ClassId]]:
    i = egraph.find(i)
    match pattern:
        case Var():
            bound = subst.get(pattern)
            if bound is None:
                yield {**subst, pattern: i}
            elif egraph.find(bound) == i:
                yield subst
            # Otherwise the same variable would bind two different classes, so this is not a match
        case Num(value):
            if ENode(Op.NUM, payload=value) in egraph[i].nodes:
                yield subst
        case Symbol(name):
            if ENode(Op.SYMBOL, payload=name) in egraph[i].nodes:
                yield subst
        case Call(op, args):
            for node in egraph[i]:
                if node.op == op:
                    yield from _match_args(egraph, args, node.children, subst)
        case _:
            assert_never(pattern)


def _match_args(
    egraph: EGraph, args: tuple[Pattern, ...], children: tuple[ClassId, ...], subst: dict[Var, ClassId]
) -> Iterator[dict[Var, ClassId]]:
    if not args:
        yield subst
        return
    for next_subst in _match(egraph, args[0], children[0], subst):
        yield from _match_args(egraph, args[1:], children[1:], next_subst)
