"""
The saturation loop.

Every round searches all rules against the e-graph as it was at the start of the round, then applies all the matches
and rebuilds once. The budget is only checked between rounds, so the e-graph invariants always hold when a run stops.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from .config import Budget
from .egraph import ClassId, EGraph
from .logs import get_logger
from .rewrite import Rewrite

if TYPE_CHECKING:
    from .pattern import Match


__all__ = [
    "BackoffScheduler",
    "Goal",
    "Iteration",
    "RunReport",
    "RunState",
    "Runner",
    "Scheduler",
    "SimpleScheduler",
    "StopReason",
]

logger = get_logger(__name__)


class RunState(StrEnum):
    RUNNING = "running"
    SATURATED = "saturated"
    GOAL_REACHED = "goal_reached"
    BUDGET_EXHAUSTED = "budget_exhausted"


class StopReason(StrEnum):
    SATURATED = "saturated"
    GOAL_REACHED = "goal_reached"
    ITERATION_LIMIT = "iteration_limit"
    NODE_LIMIT = "node_limit"
    TIME_LIMIT = "time_limit"

    @property
    def state(self) -> RunState:
        match self:
            case StopReason.SATURATED:
                return RunState.SATURATED
            case StopReason.GOAL_REACHED:
                return RunState.GOAL_REACHED
            case _:
                return RunState.BUDGET_EXHAUSTED


@dataclass(frozen=True)
class Goal:
    """
    Two classes which should end up equal.
    """

    name: str
    lhs: ClassId
    rhs: ClassId


@dataclass(frozen=True)
class Iteration:
    index: int
    n_matches: int
    # Matches which merged two classes
    n_applied: int
    # Unions found by congruence while rebuilding
    n_rebuilt: int
    n_nodes: int
    n_classes: int
    search_time: float
    apply_time: float
    rebuild_time: float
    banned: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return self.n_applied > 0 or self.n_rebuilt > 0


@dataclass
class RunReport:
    state: RunState = RunState.RUNNING
    stop_reason: StopReason | None = None
    iterations: list[Iteration] = field(default_factory=list)
    # Goal name to the iteration at which it first held, 0 if it held before any rewriting
    proved_at: dict[str, int] = field(default_factory=dict)
    total_time: float = 0.0

    @property
    def n_iterations(self) -> int:
        return len(self.iterations)

    @property
    def exhausted(self) -> bool:
        return self.state == RunState.BUDGET_EXHAUSTED

    def __str__(self) -> str:
        lines = [f"Stopped after {self.n_iterations} iterations: {self.stop_reason} ({self.total_time:.3f}s)"]
        lines.extend(
            f"  {it.index}: {it.n_matches} matches, {it.n_applied} applied, {it.n_rebuilt} rebuilt, "
            f"{it.n_nodes} nodes, {it.n_classes} classes"
            for it in self.iterations
        )
        return "\n".join(lines)


class Scheduler(Protocol):
    def search(self, iteration: int, rule: Rewrite, egraph: EGraph) -> list[Match]:
        """
        Return the matches of the rule that should be applied this iteration.
        """
        ...

    def can_stop(self, iteration: int) -> bool:
        """
        Called when an iteration did not change the e-graph. Return False to keep going.
        """
        ...

    def banned(self, iteration: int) -> tuple[str, ...]: ...


class SimpleScheduler:
    """
    Apply every rule every iteration.
    """

    def search(self, iteration: int, rule: Rewrite, egraph: EGraph) -> list[Match]:
        return list(rule.search(egraph))

    def can_stop(self, iteration: int) -> bool:
        return True

    def banned(self, iteration: int) -> tuple[str, ...]:
        return ()

    def __repr__(self) -> str:
        return "SimpleScheduler()"


@dataclass
class _RuleStats:
    times_banned: int = 0
    banned_until: int = 0


@dataclass
class BackoffScheduler:
    """
    Ban rules which match too often, so that a few explosive rules (like associativity) can't starve the others.

    A rule is banned once it has more than `match_limit << times_banned` matches in one iteration, for
    `ban_length << times_banned` iterations.
    """

    match_limit: int = 1_000
    ban_length: int = 5
    _stats: dict[str, _RuleStats] = field(default_factory=dict, repr=False)

    def search(self, iteration: int, rule: Rewrite, egraph: EGraph) -> list[Match]:
        stats = self._stats.setdefault(rule.name, _RuleStats())
        if iteration < stats.banned_until:
            return []
        threshold = self.match_limit << stats.times_banned
        matches = []
        for m in rule.search(egraph):
            matches.append(m)
            if len(matches) > threshold:
                ban_length = self.ban_length << stats.times_banned
                stats.times_banned += 1
                stats.banned_until = iteration + ban_length
                logger.debug("rule_banned", rule=rule.name, iteration=iteration, until=stats.banned_until)
                return []
        return matches

    def can_stop(self, iteration: int) -> bool:
        banned = [s for s in self._stats.values() if s.banned_until > iteration]
        if not banned:
            return True
        # Nothing else can happen, so lift the bans early instead of stopping
        delta = min(s.banned_until for s in banned) - iteration
        for s in banned:
            s.banned_until -= delta
        return False

    def banned(self, iteration: int) -> tuple[str, ...]:
        return tuple(name for name, s in self._stats.items() if s.banned_until > iteration)


@dataclass
class Runner:
    """
    Runs rewrite rules on an e-graph until it is saturated, all the goals hold, or the budget runs out.
    """

    rules: Sequence[Rewrite]
    egraph: EGraph = field(default_factory=EGraph)
    budget: Budget = field(default_factory=Budget)
    scheduler: Scheduler = field(default_factory=SimpleScheduler)
    goals: list[Goal] = field(default_factory=list)

    def __post_init__(self) -> None:
        names = [r.name for r in self.rules]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            msg = f"Rule names must be unique, got duplicates {duplicates}"
            raise ValueError(msg)

    def run(self) -> RunReport:
        report = RunReport()
        start = time.perf_counter()
        self.egraph.rebuild()
        self._check_goals(0, report)
        while report.state == RunState.RUNNING:
            reason = self._check_budget(report, start)
            if reason is None:
                iteration = self._run_one(report.n_iterations + 1)
                report.iterations.append(iteration)
                if self._check_goals(iteration.index, report):
                    continue
                if not iteration.changed and self.scheduler.can_stop(iteration.index):
                    reason = StopReason.SATURATED
            if reason is not None:
                report.stop_reason = reason
                report.state = reason.state
        report.total_time = time.perf_counter() - start
        logger.info(
            "run_stopped",
            reason=str(report.stop_reason),
            iterations=report.n_iterations,
            nodes=self.egraph.total_size,
            classes=self.egraph.number_of_classes,
            seconds=round(report.total_time, 6),
        )
        return report

    def _check_budget(self, report: RunReport, start: float) -> StopReason | None:
        budget = self.budget
        if budget.iter_limit is not None and report.n_iterations >= budget.iter_limit:
            return StopReason.ITERATION_LIMIT
        if budget.node_limit is not None and self.egraph.total_size > budget.node_limit:
            return StopReason.NODE_LIMIT
        if budget.time_limit is not None and time.perf_counter() - start > budget.time_limit:
            return StopReason.TIME_LIMIT
        return None

    def _check_goals(self, index: int, report: RunReport) -> bool:
        """
        Record newly proved goals, and return True and stop the run if all of them hold.
        """
        for goal in self.goals:
            if goal.name not in report.proved_at and self.egraph.equiv(goal.lhs, goal.rhs):
                report.proved_at[goal.name] = index
                logger.info("goal_proved", goal=goal.name, iteration=index)
        if self.goals and len(report.proved_at) == len({g.name for g in self.goals}):
            report.stop_reason = StopReason.GOAL_REACHED
            report.state = RunState.GOAL_REACHED
            return True
        return False

    def _run_one(self, index: int) -> Iteration:
        egraph = self.egraph
        search_start = time.perf_counter()
        # Find every match before changing anything
        found = [(rule, self.scheduler.search(index, rule, egraph)) for rule in self.rules]
        apply_start = time.perf_counter()
        n_applied = sum(rule.apply(egraph, matches) for rule, matches in found)
        rebuild_start = time.perf_counter()
        n_rebuilt = egraph.rebuild()
        end = time.perf_counter()
        iteration = Iteration(
            index=index,
            n_matches=sum(len(matches) for _, matches in found),
            n_applied=n_applied,
            n_rebuilt=n_rebuilt,
            n_nodes=egraph.total_size,
            n_classes=egraph.number_of_classes,
            search_time=apply_start - search_start,
            apply_time=rebuild_start - apply_start,
            rebuild_time=end - rebuild_start,
            banned=self.scheduler.banned(index),
        )
        logger.debug(
            "iteration_complete",
            iteration=index,
            matches=iteration.n_matches,
            applied=n_applied,
            rebuilt=n_rebuilt,
            nodes=iteration.n_nodes,
            classes=iteration.n_classes,
        )
        return iteration
