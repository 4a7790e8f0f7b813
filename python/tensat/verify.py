"""
Proving candidate rules from axioms by equality saturation.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from typing_extensions import assert_never

from .config import Budget
from .cost import CostOracle, OracleError
from .declarations import *
from .egraph import EGraph
from .logs import get_logger
from .rewrite import Rewrite
from .runner import Goal, Runner, RunReport, Scheduler, SimpleScheduler

__all__ = ["VerificationReport", "Verdict", "skolemize", "verify"]

logger = get_logger(__name__)


class Verdict(StrEnum):
    VERIFIED = "verified"
    # Not provable within the budget. This does not mean the rule is wrong.
    UNVERIFIED = "unverified"


@dataclass(frozen=True)
class VerificationReport:
    verdicts: dict[str, Verdict]
    # Rule name to the iteration at which it was proved, 0 if both sides were equal before rewriting
    proved_at: dict[str, int]
    run: RunReport

    @property
    def iterations(self) -> int:
        return self.run.n_iterations

    @property
    def conclusive(self) -> bool:
        """
        False if the run ran out of budget, in which case unverified rules might still be provable.
        """
        return not self.run.exhausted

    def verified(self) -> list[str]:
        return [name for name, v in self.verdicts.items() if v == Verdict.VERIFIED]

    def unverified(self) -> list[str]:
        return [name for name, v in self.verdicts.items() if v == Verdict.UNVERIFIED]

    def unknown(self) -> list[str]:
        """
        The rules whose status is not known, because the budget was exhausted before they were proved.
        """
        return [] if self.conclusive else self.unverified()

    def __str__(self) -> str:
        lines = [f"{name}: {verdict}" for name, verdict in self.verdicts.items()]
        lines.append(f"{self.run.stop_reason} after {self.iterations} iterations")
        return "\n".join(lines)


def skolemize(pattern: Pattern) -> Term:
    """
    Replace every pattern variable by a fresh constant with the same name.

    Parsed symbols can never start with `?`, so these constants can't clash with anything else.
    """
    match pattern:
        case Var(name):
            return Symbol(name)
        case Call(op, args):
            return Call(op, tuple(skolemize(a) for a in args))
        case Num() | Symbol():
            return pattern
        case _:
            assert_never(pattern)


def verify(
    axioms: Sequence[Rewrite],
    candidates: Sequence[Rewrite],
    budget: Budget | None = None,
    oracle: CostOracle | None = None,
    scheduler: Scheduler | None = None,
) -> VerificationReport:
    """
    Check which of the candidate rules follow from the axioms.

    Both sides of all axioms and candidates are added to a single e-graph, so work done proving one candidate is shared
    with the others. Only the axioms are used for rewriting. The run stops as soon as every candidate is proved.

    Pattern variables become symbols, which an oracle like `AnalyticCostModel` treats as names rather than tensors.
    So with an oracle, candidates have to wrap their tensor variables, as in `(ewadd (input ?a) (input ?b))`.
    A candidate the oracle rejects raises its `OracleError`.
    """
    names = [c.name for c in candidates]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        msg = f"Candidate rule names must be unique, got duplicates {duplicates}"
        raise ValueError(msg)

    egraph = EGraph(analysis=oracle)
    for axiom in axioms:
        for side in (axiom.lhs, axiom.rhs):
            try:
                egraph.insert(skolemize(side))
            except OracleError:
                # Untyped axioms are still used for rewriting, their sides just can't be added as they are
                logger.debug("axiom_side_skipped", rule=axiom.name, side=str(side))
    goals = []
    for candidate in candidates:
        try:
            goals.append(
                Goal(candidate.name, egraph.insert(skolemize(candidate.lhs)), egraph.insert(skolemize(candidate.rhs)))
            )
        except OracleError as err:
            err.add_note(f"while adding candidate rule {candidate}")
            raise

    runner = Runner(
        axioms, egraph, budget=budget or Budget(), scheduler=scheduler or SimpleScheduler(), goals=goals
    )
    run = runner.run()
    verdicts = {g.name: Verdict.VERIFIED if egraph.equiv(g.lhs, g.rhs) else Verdict.UNVERIFIED for g in goals}
    report = VerificationReport(verdicts, dict(run.proved_at), run)
    logger.info(
        "verification_complete",
        verified=len(report.verified()),
        unverified=len(report.unverified()),
        conclusive=report.conclusive,
        iterations=report.iterations,
    )
    return report
