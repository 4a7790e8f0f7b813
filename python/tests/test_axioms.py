from __future__ import annotations

from tensat import parse_rules, verify
from tensat.axioms import AXIOMS
from tensat.declarations import Call, Op


def test_names_are_unique():
    names = [rule.name for rule in AXIOMS]
    assert len(names) == len(set(names))
    assert "ewadd-comm" in names
    assert "matmul-assoc-rev" in names


def test_activations_are_none():
    def activations(pattern):
        if isinstance(pattern, Call):
            if pattern.op == Op.MATMUL:
                yield pattern.args[0]
            for arg in pattern.args:
                yield from activations(arg)

    for rule in AXIOMS:
        for activation in [*activations(rule.lhs), *activations(rule.rhs)]:
            assert str(activation) == "0", rule.name


def test_derived_rules_are_verified():
    candidates = parse_rules(
        """
        triple-transpose: (transpose (transpose (transpose ?x))) => (transpose ?x)
        transpose-product: (matmul 0 (transpose ?x) (transpose ?y)) => (transpose (matmul 0 ?y ?x))
        """
    )
    report = verify(AXIOMS, candidates)
    assert report.verified() == ["triple-transpose", "transpose-product"]
