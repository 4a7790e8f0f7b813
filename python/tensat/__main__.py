"""
Command line interface.

    python -m tensat verify AXIOMS CANDIDATES
    python -m tensat optimize RULES EXPR

The exit status is 0 if the run finished within its budget, 1 if the budget ran out, 2 if the input could not be
read, parsed or typed, and 3 if the run failed on conflicting metadata or extraction. Whether individual rules were
verified does not change it.
"""

from __future__ import annotations

import argparse
import sys

from .analysis import MergeConflictError
from .config import ITER_LIMIT, LOG_LEVEL, NODE_LIMIT, TIME_LIMIT, Budget
from .cost import AnalyticCostModel, AstSize, CostOracle, OracleError
from .extract import ExtractionError
from .logs import configure_logging
from .optimize import optimize
from .parse import ParseError, parse_term, read_rules
from .pretty import pretty_term
from .runner import BackoffScheduler, Scheduler, SimpleScheduler
from .verify import verify

EXIT_OK = 0
EXIT_EXHAUSTED = 1
EXIT_PARSE_ERROR = 2
EXIT_RUN_ERROR = 3

ORACLES: dict[str, type[AnalyticCostModel] | type[AstSize]] = {"analytic": AnalyticCostModel, "size": AstSize}


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tensat", description="Verify and optimize tensor rewrite rules")
    parser.add_argument("--iter-limit", type=int, default=ITER_LIMIT, help="Maximum number of iterations")
    parser.add_argument("--node-limit", type=int, default=NODE_LIMIT, help="Maximum number of e-nodes")
    parser.add_argument("--time-limit", type=float, default=TIME_LIMIT, help="Maximum run time in seconds")
    parser.add_argument("--unbounded", action="store_true", help="Run until saturated, ignoring the limits")
    parser.add_argument("--backoff", action="store_true", help="Ban rules which match too often for a while")
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Log level, e.g. DEBUG or INFO")
    parser.add_argument("--log-format", choices=["console", "json"], default="console", help="Log output format")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    verify_parser = subparsers.add_parser("verify", help="Check which candidate rules follow from the axioms")
    verify_parser.add_argument("axioms", help="Path to the axioms rule file")
    verify_parser.add_argument("candidates", help="Path to the candidate rule file")
    verify_parser.add_argument(
        "--oracle", choices=sorted(ORACLES), default=None, help="Track tensor metadata while verifying"
    )

    optimize_parser = subparsers.add_parser("optimize", help="Find the cheapest program equal to an expression")
    optimize_parser.add_argument("rules", help="Path to the rule file used for rewriting")
    optimize_parser.add_argument("expr", help="The expression to optimize, as an s-expression")
    optimize_parser.add_argument("--oracle", choices=sorted(ORACLES), default="analytic", help="Cost model")
    return parser


def _budget(args: argparse.Namespace) -> Budget:
    if args.unbounded:
        return Budget.unbounded()
    return Budget(args.iter_limit, args.node_limit, args.time_limit)


def _scheduler(args: argparse.Namespace) -> Scheduler:
    return BackoffScheduler() if args.backoff else SimpleScheduler()


def _oracle(name: str | None) -> CostOracle | None:
    return None if name is None else ORACLES[name]()


def handle_verify(args: argparse.Namespace) -> int:
    axioms = read_rules(args.axioms)
    candidates = read_rules(args.candidates)
    report = verify(axioms, candidates, _budget(args), _oracle(args.oracle), _scheduler(args))
    print(report)
    if not report.conclusive:
        print(f"inconclusive, not proved within the budget: {', '.join(report.unknown()) or '-'}")
        return EXIT_EXHAUSTED
    return EXIT_OK


def handle_optimize(args: argparse.Namespace) -> int:
    rules = read_rules(args.rules)
    term = parse_term(args.expr)
    result = optimize(term, rules, _oracle(args.oracle), _budget(args), _scheduler(args))
    print(pretty_term(result.term))
    print(f"cost {result.cost:.6g} (was {result.original_cost:.6g}), {result.report.stop_reason}")
    return EXIT_EXHAUSTED if result.report.exhausted else EXIT_OK


def _report_error(err: Exception) -> None:
    print(f"tensat: {err}", file=sys.stderr)
    for note in getattr(err, "__notes__", ()):
        print(f"  {note}", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    parser = make_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return EXIT_PARSE_ERROR
    configure_logging(args.log_level, args.log_format)
    try:
        if args.command == "verify":
            return handle_verify(args)
        return handle_optimize(args)
    except (ParseError, OracleError, OSError) as err:
        _report_error(err)
        return EXIT_PARSE_ERROR
    except (MergeConflictError, ExtractionError) as err:
        _report_error(err)
        return EXIT_RUN_ERROR


if __name__ == "__main__":
    sys.exit(main())
