"""
Optimizing a tensor program by saturating it with the axioms and extracting the cheapest equivalent program.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from .config import Budget
from .cost import AnalyticCostModel, CostOracle
from .declarations import *
from .egraph import EGraph
from .extract import Extractor, term_cost
from .logs import get_logger
from .rewrite import Rewrite
from .runner import Runner, RunReport, Scheduler, SimpleScheduler

__all__ = ["OptimizationResult", "optimize"]

logger = get_logger(__name__)


@dataclass(frozen=True)
class OptimizationResult:
    term: Term
    cost: float
    original_cost: float
    report: RunReport

    @property
    def improvement(self) -> float:
        """
        How much cheaper the result is, as a fraction of the original cost.

        An original program that could not be priced counts as fully improved once the result can be.
        """
        if math.isinf(self.original_cost):
            return 0.0 if math.isinf(self.cost) else 1.0
        if self.original_cost == 0:
            return 0.0
        return (self.original_cost - self.cost) / self.original_cost

    def __str__(self) -> str:
        return f"{self.term}\ncost {self.cost:.6g} (was {self.original_cost:.6g})"


def optimize(
    term: Term,
    rules: Sequence[Rewrite],
    oracle: CostOracle | None = None,
    budget: Budget | None = None,
    scheduler: Scheduler | None = None,
) -> OptimizationResult:
    """
    Rewrite `term` with `rules` and return the cheapest equivalent term found according to the oracle.

    The oracle is also used as the analysis of the e-graph, so rules whose results it rejects are not applied.
    """
    oracle = oracle or AnalyticCostModel()
    original_cost = term_cost(term, oracle)
    egraph = EGraph(analysis=oracle)
    root = egraph.insert(term)
    report = Runner(rules, egraph, budget=budget or Budget(), scheduler=scheduler or SimpleScheduler()).run()
    best, cost = Extractor(egraph, oracle).find_best(root)
    logger.info("optimization_complete", cost=cost, original_cost=original_cost, reason=str(report.stop_reason))
    return OptimizationResult(best, cost, original_cost, report)
