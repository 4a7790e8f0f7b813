"""
Greedy extraction of the cheapest term from an e-graph.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from typing_extensions import assert_never

from .cost import AstSize, CostOracle, OracleError
from .declarations import *

if TYPE_CHECKING:
    from .analysis import TensorData
    from .egraph import ClassId, EGraph, ENode


__all__ = ["ExtractionError", "Extractor", "extract", "term_cost"]


class ExtractionError(RuntimeError):
    """
    No term could be built for an e-class, because every e-node in it depends on an unresolved class.
    """


@dataclass
class _Best:
    cost: float
    node: ENode
    data: TensorData | None


@dataclass
class Extractor:
    """
    Picks the locally cheapest e-node of every class.

    Costs are computed bottom up until they stop improving. A node only replaces the chosen one if it is strictly
    cheaper, so among nodes of equal cost the one added first wins. The result is not guaranteed to be globally optimal,
    since shared children are counted once for every parent.
    """

    egraph: EGraph
    oracle: CostOracle = field(default_factory=AstSize)
    _best: dict[ClassId, _Best] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if not self.egraph.clean:
            warnings.warn(
                "Extracting from an e-graph with unions that have not been rebuilt, call rebuild() first",
                stacklevel=3,
            )
        self._find_costs()

    def _find_costs(self) -> None:
        changed = True
        while changed:
            changed = False
            for eclass in self.egraph.classes():
                current = self._best.get(eclass.id)
                for node in eclass:
                    candidate = self._node_cost(node)
                    if candidate is None:
                        continue
                    if current is None or candidate.cost < current.cost:
                        self._best[eclass.id] = current = candidate
                        changed = True

    def _node_cost(self, node: ENode) -> _Best | None:
        children = [self._best.get(self.egraph.find(c)) for c in node.children]
        resolved = [c for c in children if c is not None]
        if len(resolved) < len(children):
            return None
        try:
            local, data = self.oracle.evaluate(node.op, self._operand_data(node, resolved), node.payload)
        except OracleError:
            # The backend can't run this node with the chosen operands
            return None
        return _Best(local + sum(c.cost for c in resolved), node, data)

    def _operand_data(self, node: ENode, resolved: list[_Best]) -> list[TensorData | None]:
        """
        The metadata of each child class, which the analysis may know better than the chosen node does.
        """
        if self.egraph.analysis is None:
            return [c.data for c in resolved]
        return [
            merged if (merged := self.egraph[c].data) is not None else best.data
            for c, best in zip(node.children, resolved, strict=True)
        ]

    def cost(self, root: ClassId) -> float:
        return self._lookup(root).cost

    def find_best(self, root: ClassId) -> tuple[Term, float]:
        """
        The cheapest term in the class and its total cost.
        """
        best = self._lookup(root)
        return self._build(self.egraph.find(root), {}, set()), best.cost

    def _lookup(self, root: ClassId) -> _Best:
        root = self.egraph.find(root)
        try:
            return self._best[root]
        except KeyError:
            msg = f"E-class {root} has no e-node whose children can all be extracted, the e-graph contains a cycle"
            raise ExtractionError(msg) from None

    def _build(self, i: ClassId, built: dict[ClassId, Term], visiting: set[ClassId]) -> Term:
        if i in built:
            return built[i]
        if i in visiting:
            msg = f"The chosen e-nodes form a cycle through e-class {i}"
            raise ExtractionError(msg)
        visiting.add(i)
        node = self._lookup(i).node
        args = [self._build(self.egraph.find(c), built, visiting) for c in node.children]
        visiting.remove(i)
        built[i] = term = self.egraph.node_term(node, args)
        return term


def extract(root: ClassId, egraph: EGraph, oracle: CostOracle | None = None) -> tuple[Term, float]:
    return Extractor(egraph, oracle or AstSize()).find_best(root)


def term_cost(term: Term, oracle: CostOracle | None = None) -> float:
    """
    The total cost of a term, counting shared subterms once per use, like the extractor does.
    """
    return _term_cost(term, oracle or AstSize())[0]


def _term_cost(term: Term, oracle: CostOracle) -> tuple[float, TensorData | None]:
    match term:
        case Num(value):
            return oracle.evaluate(Op.NUM, [], value)
        case Symbol(name):
            return oracle.evaluate(Op.SYMBOL, [], name)
        case Call(op, args):
            children = [_term_cost(a, oracle) for a in args]  # type: ignore[arg-type]
            local, data = oracle.evaluate(op, [d for _, d in children])
            return local + sum(c for c, _ in children), data
        case _:
            assert_never(term)
