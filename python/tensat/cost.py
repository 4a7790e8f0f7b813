"""
Cost and metadata oracles.

The e-graph only ever talks to an oracle through `CostOracle.evaluate`. `AnalyticCostModel` stands in for a native
tensor runtime by inferring shapes in process and estimating the runtime from the amount of arithmetic and memory
traffic of each operator.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from .analysis import *
from .declarations import *

__all__ = ["AnalyticCostModel", "AstSize", "CostOracle", "Evaluation", "OracleError", "Payload"]

Payload = int | str | None
Evaluation = tuple[float, TensorData | None]


class OracleError(ValueError):
    """
    The oracle cannot evaluate an operator on the given operands, e.g. because their shapes are incompatible.
    """


class CostOracle(Protocol):
    """
    Returns the cost of an operator and the metadata of its output, given the metadata of its operands.

    Leaves (`Op.NUM` and `Op.SYMBOL`) have no operands and are passed their payload instead.

    Must be deterministic, so that extraction and verification are reproducible.
    """

    def evaluate(self, op: Op, children: Sequence[TensorData | None], payload: Payload = None) -> Evaluation: ...


class AstSize:
    """
    Oracle which doesn't compute any metadata and gives every node a cost of one, so that extraction picks the
    smallest term.
    """

    def evaluate(self, op: Op, children: Sequence[TensorData | None], payload: Payload = None) -> Evaluation:
        return 1.0, None

    def __repr__(self) -> str:
        return "AstSize()"


def _numel(shape: tuple[int, ...] | None) -> int:
    return 0 if shape is None else int(np.prod(shape, dtype=np.int64))


def _dims_from_name(name: str) -> tuple[int, ...] | None:
    if "@" not in name:
        return None
    _, dims = name.split("@", 1)
    try:
        return tuple(int(d) for d in dims.split("_"))
    except ValueError as err:
        msg = f"Cannot read dimensions from {name!r}, expected name@dim1_dim2..."
        raise OracleError(msg) from err


def _broadcast(*shapes: tuple[int, ...]) -> tuple[int, ...]:
    try:
        return tuple(int(d) for d in np.broadcast_shapes(*shapes))
    except ValueError as err:
        msg = f"Shapes {', '.join(map(str, shapes))} are not compatible"
        raise OracleError(msg) from err


def _spatial(size: int, kernel: int, stride: int, padding: int) -> int:
    if stride <= 0:
        msg = f"Stride must be positive, got {stride}"
        raise OracleError(msg)
    if padding == PSAME:
        return math.ceil(size / stride)
    out = (size - kernel) // stride + 1
    if out <= 0:
        msg = f"Kernel {kernel} does not fit in size {size}"
        raise OracleError(msg)
    return out


@dataclass(frozen=True)
class AnalyticCostModel:
    """
    Estimates runtime as `flop_cost * flops + memory_cost * elements moved`.

    Shapes follow the conventions of the tensor backend: images are NCHW and conv weights are OIHW.
    Tensors whose shape is unknown propagate an unknown shape, and operators applied to them cost `math.inf`.
    """

    flop_cost: float = 1.0e-6
    memory_cost: float = 4.0e-6

    def evaluate(self, op: Op, children: Sequence[TensorData | None], payload: Payload = None) -> Evaluation:
        if len(children) != op.arity:
            msg = f"{op} takes {op.arity} operands, got {len(children)}"
            raise OracleError(msg)
        handler = _HANDLERS[op]
        flops, traffic, data = handler(self, list(children), payload)
        if any(c is not None and c.kind == DataKind.TENSOR and c.shape is None for c in children):
            # Can't be priced, e.g. an operand is the Imatmul or Iewmul identity
            return math.inf, data
        return self.flop_cost * flops + self.memory_cost * traffic, data

    def __repr__(self) -> str:
        return f"AnalyticCostModel(flop_cost={self.flop_cost}, memory_cost={self.memory_cost})"


# Each handler returns the number of floating point operations, the number of elements read and written,
# and the output metadata
_Result = tuple[int, int, TensorData]
_Handler = Callable[[AnalyticCostModel, list[TensorData | None], Payload], _Result]


def _expect(data: TensorData | None, kind: DataKind, what: str) -> TensorData:
    if data is None or data.kind != kind:
        msg = f"Expected {what} to be a {kind}, got {data}"
        raise OracleError(msg)
    return data


def _tensor(data: TensorData | None, what: str, ndim: int | None = None) -> TensorData:
    data = _expect(data, DataKind.TENSOR, what)
    if ndim is not None and data.shape is not None and len(data.shape) != ndim:
        msg = f"Expected {what} to have {ndim} dimensions, got shape {data.shape}"
        raise OracleError(msg)
    return data


def _scalar(data: TensorData | None, what: str, allowed: Sequence[int] | None = None) -> int:
    value = _expect(data, DataKind.SCALAR, what).value
    if allowed is not None and value not in allowed:
        msg = f"Invalid {what} {value}, expected one of {list(allowed)}"
        raise OracleError(msg)
    return value


_ACTIVATIONS = (ACTNONE, ACTSIGMOID, ACTRELU, ACTTANH)
_PADDINGS = (PSAME, PVALID)


def _leaf(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    match payload:
        case int():
            return 0, 0, TensorData.scalar(payload)
        case str():
            return 0, 0, TensorData.named(payload)
    msg = f"Leaves need an int or str payload, got {payload!r}"
    raise OracleError(msg)


def _input(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    (name,) = children
    return 0, 0, TensorData.tensor(_dims_from_name(_expect(name, DataKind.NAME, "tensor name").name))


def _elementwise(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    a, b = (_tensor(c, "element-wise operand") for c in children)
    if a.shape is None or b.shape is None:
        shape = a.shape if b.shape is None else b.shape
        return 0, 0, TensorData.tensor(shape)
    shape = _broadcast(a.shape, b.shape)
    return _numel(shape), _numel(a.shape) + _numel(b.shape) + _numel(shape), TensorData.tensor(shape)


def _smul(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    a, w = children
    a = _tensor(a, "scaled tensor")
    if w is None or not (
        w.kind == DataKind.SCALAR or (w.kind == DataKind.TENSOR and (w.shape is None or _numel(w.shape) == 1))
    ):
        msg = f"Expected the scale to be a scalar or a single element tensor, got {w}"
        raise OracleError(msg)
    n = _numel(a.shape)
    return n, 2 * n, TensorData.tensor(a.shape)


def _transpose(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    (a,) = children
    a = _tensor(a, "transposed tensor")
    shape = None if a.shape is None else tuple(reversed(a.shape))
    return 0, 2 * _numel(a.shape), TensorData.tensor(shape)


def _activation_flops(activation: int, shape: tuple[int, ...] | None) -> int:
    return 0 if activation == ACTNONE else _numel(shape)


def _matmul(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    act, a, b = children
    activation = _scalar(act, "activation", _ACTIVATIONS)
    a, b = _tensor(a, "left matmul operand"), _tensor(b, "right matmul operand")
    if a.shape is None or b.shape is None:
        return 0, 0, TensorData.tensor(None)
    if len(a.shape) < 2 or len(b.shape) < 2:
        msg = f"Matmul operands need at least two dimensions, got {a.shape} and {b.shape}"
        raise OracleError(msg)
    (m, k), (k2, n) = a.shape[-2:], b.shape[-2:]
    if k != k2:
        msg = f"Inner dimensions of matmul do not agree: {a.shape} and {b.shape}"
        raise OracleError(msg)
    batch = _broadcast(a.shape[:-2], b.shape[:-2])
    shape = (*batch, m, n)
    flops = 2 * _numel(batch) * m * k * n + _activation_flops(activation, shape)
    return flops, _numel(a.shape) + _numel(b.shape) + _numel(shape), TensorData.tensor(shape)


def _conv2d(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    stride_h, stride_w, pad, act, inpt, wght = children
    sh, sw = _scalar(stride_h, "stride"), _scalar(stride_w, "stride")
    padding = _scalar(pad, "padding", _PADDINGS)
    activation = _scalar(act, "activation", _ACTIVATIONS)
    inpt, wght = _tensor(inpt, "conv input", 4), _tensor(wght, "conv weight", 4)
    if inpt.shape is None or wght.shape is None:
        return 0, 0, TensorData.tensor(None)
    n, c, h, w = inpt.shape
    o, cg, kh, kw = wght.shape
    if cg <= 0 or c % cg != 0 or o % (c // cg) != 0:
        msg = f"Conv weight {wght.shape} does not match input {inpt.shape}"
        raise OracleError(msg)
    shape = (n, o, _spatial(h, kh, sh, padding), _spatial(w, kw, sw, padding))
    flops = 2 * _numel(shape) * cg * kh * kw + _activation_flops(activation, shape)
    return flops, _numel(inpt.shape) + _numel(wght.shape) + _numel(shape), TensorData.tensor(shape)


def _enlarge(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    a, ref = _tensor(children[0], "enlarged kernel", 4), _tensor(children[1], "reference kernel", 4)
    if a.shape is None or ref.shape is None:
        return 0, 0, TensorData.tensor(None)
    if a.shape[2] > ref.shape[2] or a.shape[3] > ref.shape[3]:
        msg = f"Cannot enlarge kernel {a.shape} to {ref.shape}"
        raise OracleError(msg)
    shape = (*a.shape[:2], *ref.shape[2:])
    return 0, _numel(a.shape) + _numel(shape), TensorData.tensor(shape)


def _unary(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    (a,) = children
    a = _tensor(a, "activation input")
    n = _numel(a.shape)
    return n, 2 * n, TensorData.tensor(a.shape)


def _pool(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    inpt, kernel_h, kernel_w, stride_h, stride_w, pad, act = children
    kh, kw = _scalar(kernel_h, "kernel size"), _scalar(kernel_w, "kernel size")
    sh, sw = _scalar(stride_h, "stride"), _scalar(stride_w, "stride")
    padding = _scalar(pad, "padding", _PADDINGS)
    activation = _scalar(act, "activation", _ACTIVATIONS)
    inpt = _tensor(inpt, "pool input", 4)
    if inpt.shape is None:
        return 0, 0, TensorData.tensor(None)
    n, c, h, w = inpt.shape
    shape = (n, c, _spatial(h, kh, sh, padding), _spatial(w, kw, sw, padding))
    flops = _numel(shape) * kh * kw + _activation_flops(activation, shape)
    return flops, _numel(inpt.shape) + _numel(shape), TensorData.tensor(shape)


def _concat(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    axis_data, ndim_data, a, b = children
    axis, ndim = _scalar(axis_data, "axis"), _scalar(ndim_data, "ndim")
    a, b = _tensor(a, "concat operand", ndim), _tensor(b, "concat operand", ndim)
    if not 0 <= axis < ndim:
        msg = f"Axis {axis} out of range for {ndim} dimensions"
        raise OracleError(msg)
    if a.shape is None or b.shape is None:
        return 0, 0, TensorData.tensor(None)
    if any(x != y for i, (x, y) in enumerate(zip(a.shape, b.shape, strict=True)) if i != axis):
        msg = f"Cannot concat {a.shape} and {b.shape} along axis {axis}"
        raise OracleError(msg)
    shape = tuple(x + y if i == axis else x for i, (x, y) in enumerate(zip(a.shape, b.shape, strict=True)))
    return 0, 2 * _numel(shape), TensorData.tensor(shape)


def _split(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    axis_data, inpt = children
    axis = _scalar(axis_data, "axis")
    inpt = _tensor(inpt, "split input")
    if inpt.shape is None:
        return 0, 0, TensorData(DataKind.TUPLE)
    if not 0 <= axis < len(inpt.shape) or inpt.shape[axis] < 2:
        msg = f"Cannot split {inpt.shape} along axis {axis}"
        raise OracleError(msg)
    first = inpt.shape[axis] // 2
    shape = tuple(first if i == axis else d for i, d in enumerate(inpt.shape))
    shape_2 = tuple(d - first if i == axis else d for i, d in enumerate(inpt.shape))
    return 0, 0, TensorData(DataKind.TUPLE, shape=shape, shape_2=shape_2)


def _split_0(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    return 0, 0, TensorData.tensor(_expect(children[0], DataKind.TUPLE, "split output").shape)


def _split_1(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    return 0, 0, TensorData.tensor(_expect(children[0], DataKind.TUPLE, "split output").shape_2)


def _constant_kernel(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    # A per channel (depthwise) kernel for the channels of the reference input, e.g. an averaging or identity kernel
    ref, kernel = _tensor(children[0], "reference input", 4), _scalar(children[1], "kernel size")
    if kernel <= 0:
        msg = f"Kernel size must be positive, got {kernel}"
        raise OracleError(msg)
    shape = None if ref.shape is None else (ref.shape[1], 1, kernel, kernel)
    return 0, 0, TensorData.tensor(shape)


def _identity(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    # The identity for matmul/ewmul adapts to whatever it is used with, so its shape is left unknown
    return 0, 0, TensorData.tensor(None)


def _merge_gconv(model: AnalyticCostModel, children: list[TensorData | None], payload: Payload) -> _Result:
    weight, count_data = _tensor(children[0], "grouped conv weight", 4), _scalar(children[1], "count")
    if count_data <= 0:
        msg = f"Merge count must be positive, got {count_data}"
        raise OracleError(msg)
    if weight.shape is None:
        return 0, 0, TensorData.tensor(None)
    o, cg, kh, kw = weight.shape
    shape = (o, cg * count_data, kh, kw)
    return 0, _numel(weight.shape) + _numel(shape), TensorData.tensor(shape)


_HANDLERS: dict[Op, _Handler] = {
    Op.NUM: _leaf,
    Op.SYMBOL: _leaf,
    Op.INPUT: _input,
    Op.WEIGHT: _input,
    Op.EWADD: _elementwise,
    Op.EWMUL: _elementwise,
    Op.SMUL: _smul,
    Op.TRANSPOSE: _transpose,
    Op.MATMUL: _matmul,
    Op.CONV2D: _conv2d,
    Op.ENLARGE: _enlarge,
    Op.RELU: _unary,
    Op.TANH: _unary,
    Op.SIGMOID: _unary,
    Op.POOLAVG: _pool,
    Op.POOLMAX: _pool,
    Op.CONCAT: _concat,
    Op.SPLIT: _split,
    Op.SPLIT_0: _split_0,
    Op.SPLIT_1: _split_1,
    Op.CPOOL: _constant_kernel,
    Op.ICONV: _constant_kernel,
    Op.IMATMUL: _identity,
    Op.IEWMUL: _identity,
    Op.MERGE: _merge_gconv,
}
