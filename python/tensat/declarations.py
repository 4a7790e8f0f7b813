"""
Data only descriptions of the tensor operator vocabulary and of terms and patterns built from it.

Terms are immutable trees. Inside the e-graph the children of an operator are e-class ids instead,
see `tensat.egraph.ENode`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, TypeAlias

from typing_extensions import assert_never

if TYPE_CHECKING:
    from collections.abc import Iterator


__all__ = [
    "ACTNONE",
    "ACTRELU",
    "ACTSIGMOID",
    "ACTTANH",
    "ARITY",
    "PSAME",
    "PVALID",
    "Call",
    "Num",
    "Op",
    "Pattern",
    "Symbol",
    "Term",
    "Var",
    "is_ground",
    "size",
    "subterms",
    "variables",
]

# Operator parameters, the values match the ones used by the tensor backend
PSAME = 0
PVALID = 1

ACTNONE = 0
ACTSIGMOID = 1
ACTRELU = 2
ACTTANH = 3


class Op(StrEnum):
    INPUT = "input"  # takes a symbol, format: name@dim1_dim2...
    WEIGHT = "weight"  # takes a symbol, format: name@dim1_dim2...
    EWADD = "ewadd"
    EWMUL = "ewmul"
    SMUL = "smul"
    TRANSPOSE = "transpose"
    MATMUL = "matmul"  # activation, input1, input2
    CONV2D = "conv2d"  # stride_h, stride_w, padding, activation, input, weight
    ENLARGE = "enlarge"  # input_to_enlarge, ref_input
    RELU = "relu"
    TANH = "tanh"
    SIGMOID = "sigmoid"
    POOLAVG = "poolavg"  # input, kernel_h, kernel_w, stride_h, stride_w, padding, activation
    POOLMAX = "poolmax"  # input, kernel_h, kernel_w, stride_h, stride_w, padding, activation
    CONCAT = "concat"  # axis, ndim, input1, input2
    SPLIT_0 = "split_0"  # must take a split node as input
    SPLIT_1 = "split_1"  # must take a split node as input
    SPLIT = "split"  # axis, input
    CPOOL = "Cpool"
    ICONV = "Iconv"
    IMATMUL = "Imatmul"
    IEWMUL = "Iewmul"
    MERGE = "merge"  # merge_gconv, takes weight, count
    # Leaves, which carry a payload instead of children
    NUM = "num"
    SYMBOL = "symbol"

    @property
    def arity(self) -> int:
        return ARITY[self]

    @property
    def is_leaf(self) -> bool:
        return self in (Op.NUM, Op.SYMBOL)


ARITY: dict[Op, int] = {
    Op.INPUT: 1,
    Op.WEIGHT: 1,
    Op.EWADD: 2,
    Op.EWMUL: 2,
    Op.SMUL: 2,
    Op.TRANSPOSE: 1,
    Op.MATMUL: 3,
    Op.CONV2D: 6,
    Op.ENLARGE: 2,
    Op.RELU: 1,
    Op.TANH: 1,
    Op.SIGMOID: 1,
    Op.POOLAVG: 7,
    Op.POOLMAX: 7,
    Op.CONCAT: 4,
    Op.SPLIT_0: 1,
    Op.SPLIT_1: 1,
    Op.SPLIT: 2,
    Op.CPOOL: 2,
    Op.ICONV: 2,
    Op.IMATMUL: 0,
    Op.IEWMUL: 0,
    Op.MERGE: 2,
    Op.NUM: 0,
    Op.SYMBOL: 0,
}


@dataclass(frozen=True)
class Num:
    value: int

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Symbol:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Var:
    """
    A pattern variable. Only valid inside patterns, it binds to an e-class when matched.
    """

    name: str

    def __post_init__(self) -> None:
        if not self.name.startswith("?") or len(self.name) == 1:
            msg = f"Pattern variable names must start with '?', got {self.name!r}"
            raise ValueError(msg)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Call:
    op: Op
    args: tuple[Pattern, ...] = ()

    def __post_init__(self) -> None:
        if self.op.is_leaf:
            msg = f"{self.op} is a leaf, use Num or Symbol instead"
            raise ValueError(msg)
        if len(self.args) != self.op.arity:
            msg = f"{self.op} takes {self.op.arity} arguments, got {len(self.args)}"
            raise ValueError(msg)

    def __str__(self) -> str:
        if not self.args:
            return str(self.op)
        return f"({self.op} {' '.join(map(str, self.args))})"


Term: TypeAlias = Call | Num | Symbol
# A pattern is a term whose leaves may also be variables
Pattern: TypeAlias = Call | Num | Symbol | Var


def subterms(pattern: Pattern) -> Iterator[Pattern]:
    """
    Yields the pattern and all of its descendants, parents before children.
    """
    yield pattern
    if isinstance(pattern, Call):
        for arg in pattern.args:
            yield from subterms(arg)


def variables(pattern: Pattern) -> list[Var]:
    """
    Returns the variables of the pattern in order of first occurrence.
    """
    seen: dict[Var, None] = {}
    for p in subterms(pattern):
        if isinstance(p, Var):
            seen.setdefault(p)
    return list(seen)


def is_ground(pattern: Pattern) -> bool:
    return not any(isinstance(p, Var) for p in subterms(pattern))


def size(pattern: Pattern) -> int:
    match pattern:
        case Call(_, args):
            return 1 + sum(map(size, args))
        case Num() | Symbol() | Var():
            return 1
        case _:
            assert_never(pattern)
