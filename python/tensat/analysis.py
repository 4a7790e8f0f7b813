"""
Metadata attached to every e-class and the rule for combining it when two classes are merged.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from functools import cached_property
from typing import TypeVar

__all__ = ["DataKind", "MergeConflictError", "TensorData", "contiguous_strides", "merge_data"]

T = TypeVar("T")


class MergeConflictError(RuntimeError):
    """
    Two equal e-classes carry metadata that cannot describe the same value, e.g. different shapes.

    This means some rewrite is unsound or ill-typed, so the run cannot continue.
    """


class DataKind(StrEnum):
    NAME = "name"
    SCALAR = "scalar"
    TENSOR = "tensor"
    # The output of a split, which holds two tensors
    TUPLE = "tuple"


def contiguous_strides(shape: tuple[int, ...]) -> tuple[int, ...]:
    strides = []
    acc = 1
    for dim in reversed(shape):
        strides.append(acc)
        acc *= dim
    return tuple(reversed(strides))


@dataclass(frozen=True)
class TensorData:
    """
    Metadata for an e-class: whether it is a name, a scalar or a tensor, and what is known about it.

    A `shape` of `None` means the shape is not known yet.
    """

    kind: DataKind
    # The value if this is a scalar
    value: int = 0
    # The name if this is a name
    name: str = ""
    shape: tuple[int, ...] | None = None
    # Shape of the second tensor if this is a tuple
    shape_2: tuple[int, ...] | None = None

    @classmethod
    def scalar(cls, value: int) -> TensorData:
        return cls(DataKind.SCALAR, value=value)

    @classmethod
    def named(cls, name: str) -> TensorData:
        return cls(DataKind.NAME, name=name)

    @classmethod
    def tensor(cls, shape: tuple[int, ...] | None) -> TensorData:
        return cls(DataKind.TENSOR, shape=shape)

    @cached_property
    def strides(self) -> tuple[int, ...] | None:
        return None if self.shape is None else contiguous_strides(self.shape)

    @property
    def ndim(self) -> int | None:
        return None if self.shape is None else len(self.shape)

    def __str__(self) -> str:
        match self.kind:
            case DataKind.SCALAR:
                return f"scalar({self.value})"
            case DataKind.NAME:
                return f"name({self.name})"
            case DataKind.TENSOR:
                return f"tensor({'?' if self.shape is None else self.shape})"
            case _:
                return f"tuple({self.shape}, {self.shape_2})"


def merge_data(left: TensorData | None, right: TensorData | None) -> TensorData | None:
    """
    Combine the metadata of two classes that are being merged.

    Unknown fields are filled in from the other side, so merging never loses information. Known fields which
    disagree raise a `MergeConflictError`.
    """
    if left is None or right is None:
        return left if right is None else right
    if left == right:
        return left
    if left.kind != right.kind:
        msg = f"Cannot merge {left} with {right}: different kinds"
        raise MergeConflictError(msg)
    if left.value != right.value or left.name != right.name:
        msg = f"Cannot merge {left} with {right}: different values"
        raise MergeConflictError(msg)
    return replace(
        left,
        shape=_merge_known(left.shape, right.shape, left, right),
        shape_2=_merge_known(left.shape_2, right.shape_2, left, right),
    )


def _merge_known(a: T | None, b: T | None, left: TensorData, right: TensorData) -> T | None:
    if a is None:
        return b
    if b is not None and a != b:
        msg = f"Cannot merge {left} with {right}: different shapes"
        raise MergeConflictError(msg)
    return a
