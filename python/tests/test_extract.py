from __future__ import annotations

import math

import pytest

from tensat.axioms import AXIOMS
from tensat.config import Budget
from tensat.cost import AnalyticCostModel, AstSize
from tensat.declarations import *
from tensat.extract import *
from tensat.optimize import *
from tensat.parse import parse_rules, parse_term
from tensat.runner import Runner

UNBOUNDED = Budget.unbounded()


def test_identity_is_removed():
    oracle = AnalyticCostModel()
    result = optimize(parse_term("(smul (smul (input a@4_4) 1) 1)"), parse_rules("(smul ?x 1) => ?x"), oracle, UNBOUNDED)
    assert result.term == parse_term("(input a@4_4)")
    assert result.cost == term_cost(parse_term("(input a@4_4)"), oracle)
    assert result.original_cost > result.cost
    assert result.improvement == 1.0


def test_cheaper_matmul_order_is_chosen():
    rules = parse_rules("assoc: (matmul 0 ?x (matmul 0 ?y ?z)) <=> (matmul 0 (matmul 0 ?x ?y) ?z)")
    term = parse_term("(matmul 0 (matmul 0 (input a@2_100) (input b@100_100)) (input c@100_1))")
    result = optimize(term, rules, budget=UNBOUNDED)
    assert result.term == parse_term("(matmul 0 (input a@2_100) (matmul 0 (input b@100_100) (input c@100_1)))")
    assert result.cost < result.original_cost
    assert result.cost == pytest.approx(term_cost(result.term, AnalyticCostModel()))


def test_default_axioms_remove_double_transpose():
    result = optimize(parse_term("(transpose (transpose (input a@2_3)))"), AXIOMS)
    assert result.term == parse_term("(input a@2_3)")
    assert result.cost == 0


def test_deterministic(egraph, assoc_comm):
    root = egraph.insert(parse_term("(ewadd a (ewadd b c))"))
    Runner(assoc_comm, egraph, UNBOUNDED).run()
    assert extract(root, egraph) == extract(root, egraph)


def test_smallest_term_with_ast_size(egraph):
    root = egraph.insert(parse_term("(relu (relu a))"))
    egraph.union(root, egraph.insert(parse_term("(tanh a)")))
    egraph.rebuild()
    assert extract(root, egraph, AstSize()) == (parse_term("(tanh a)"), 2.0)


def test_ties_go_to_the_first_node(egraph):
    first = egraph.insert(parse_term("(ewadd a b)"))
    egraph.union(first, egraph.insert(parse_term("(ewadd b a)")))
    egraph.rebuild()
    assert extract(first, egraph) == (parse_term("(ewadd a b)"), 3.0)


def test_rejected_nodes_cannot_be_extracted(egraph):
    root = egraph.insert(parse_term("(matmul 0 (input a@2_3) (input b@2_3))"))
    with pytest.raises(ExtractionError, match=f"E-class {root}"):
        extract(root, egraph, AnalyticCostModel())


def test_warns_before_rebuild(egraph):
    root = egraph.insert(parse_term("(relu a)"))
    egraph.union(root, egraph.insert(parse_term("(tanh a)")))
    with pytest.warns(UserWarning, match="rebuild"):
        Extractor(egraph)


def test_extractor_cost(egraph):
    root = egraph.insert(parse_term("(ewadd a (relu b))"))
    assert Extractor(egraph).cost(root) == 4.0


def test_term_cost():
    assert term_cost(parse_term("(ewadd a (relu b))")) == 4.0
    oracle = AnalyticCostModel()
    assert term_cost(parse_term("(relu (input a@2_3))"), oracle) == pytest.approx(
        oracle.flop_cost * 6 + oracle.memory_cost * 12
    )


def test_optimization_result_str():
    result = optimize(parse_term("(relu (input a@2_3))"), [], budget=UNBOUNDED)
    assert str(result).startswith("(relu (input a@2_3))\ncost")
    assert result.improvement == 0.0


def test_identity_wrapped_terms_are_not_free():
    oracle = AnalyticCostModel()
    term = parse_term("(relu (input a@100_100))")
    rules = parse_rules("(relu ?x) => (relu (matmul 0 ?x Imatmul))")
    result = optimize(term, rules, oracle, Budget(iter_limit=3))
    assert result.term == term
    assert result.cost == result.original_cost == term_cost(term, oracle)
    assert math.isinf(term_cost(parse_term("(relu (matmul 0 (input a@100_100) Imatmul))"), oracle))


def test_identity_is_extracted_away(analytic_egraph):
    oracle = AnalyticCostModel()
    root = analytic_egraph.insert(parse_term("(relu (matmul 0 (input a@2_3) Imatmul))"))
    Runner(parse_rules("(matmul 0 ?x Imatmul) => ?x"), analytic_egraph, UNBOUNDED).run()
    assert extract(root, analytic_egraph, oracle) == (
        parse_term("(relu (input a@2_3))"),
        term_cost(parse_term("(relu (input a@2_3))"), oracle),
    )


def test_improvement_from_an_unpriced_program():
    result = optimize(
        parse_term("(matmul 0 (input a@2_3) Imatmul)"), parse_rules("(matmul 0 ?x Imatmul) => ?x"), budget=UNBOUNDED
    )
    assert result.term == parse_term("(input a@2_3)")
    assert math.isinf(result.original_cost)
    assert result.improvement == 1.0
