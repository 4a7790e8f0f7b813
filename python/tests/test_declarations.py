from __future__ import annotations

import pytest

from tensat.declarations import *

x, y = Var("?x"), Var("?y")


def test_every_op_has_an_arity() -> None:
    assert set(ARITY) == set(Op)


@pytest.mark.parametrize(
    ("op", "arity"),
    [
        (Op.INPUT, 1),
        (Op.MATMUL, 3),
        (Op.CONV2D, 6),
        (Op.POOLMAX, 7),
        (Op.CONCAT, 4),
        (Op.IMATMUL, 0),
    ],
)
def test_arity(op: Op, arity: int) -> None:
    assert op.arity == arity


def test_call_checks_arity() -> None:
    with pytest.raises(ValueError, match="takes 2 arguments"):
        Call(Op.EWADD, (x,))


def test_leaves_cannot_be_called() -> None:
    with pytest.raises(ValueError, match="is a leaf"):
        Call(Op.NUM)


@pytest.mark.parametrize("name", ["x", "?", ""])
def test_var_names_start_with_question_mark(name: str) -> None:
    with pytest.raises(ValueError, match="must start with"):
        Var(name)


def test_str() -> None:
    assert str(Call(Op.EWADD, (x, Num(1)))) == "(ewadd ?x 1)"
    assert str(Call(Op.MATMUL, (Num(0), Symbol("a"), Call(Op.IMATMUL)))) == "(matmul 0 a Imatmul)"


def test_terms_are_hashable() -> None:
    assert len({Call(Op.RELU, (Symbol("a"),)), Call(Op.RELU, (Symbol("a"),))}) == 1


def test_variables_in_order_of_first_occurrence() -> None:
    pattern = Call(Op.EWADD, (y, Call(Op.EWMUL, (x, y))))
    assert variables(pattern) == [y, x]


def test_is_ground() -> None:
    assert is_ground(Call(Op.RELU, (Symbol("a"),)))
    assert not is_ground(Call(Op.RELU, (x,)))


def test_size() -> None:
    assert size(Call(Op.EWADD, (x, Call(Op.RELU, (Num(1),))))) == 4


def test_subterms_parents_first() -> None:
    inner = Call(Op.RELU, (x,))
    assert list(subterms(Call(Op.TRANSPOSE, (inner,)))) == [Call(Op.TRANSPOSE, (inner,)), inner, x]
