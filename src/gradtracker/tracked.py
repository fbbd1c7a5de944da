import math
import numbers
import torch
from . import config
from . import builder
from .broadcast import shape_of, zeros_like
from .errors import TrackerError, ShapeMismatchError


class Call:
    """Record of one traced operation: which rule produced a value, from what."""
    __slots__ = ('rule_id', 'operands', 'output_shape', 'output_type')

    def __init__(self, rule_id, operands, output_shape, output_type):
        self.rule_id = rule_id
        self.operands = tuple(operands)
        self.output_shape = output_shape
        self.output_type = output_type

    def tracked_operands(self):
        return [op for op in self.operands if isinstance(op, TrackedValue)]

    def __repr__(self):
        return f"Call({self.rule_id!r}, operands={len(self.operands)}, output_shape={self.output_shape})"


class TrackedValue:
    """
    A raw value (number, torch tensor, or tuple of those) annotated with the
    operation that produced it and a gradient accumulator. Operators and
    methods route through the primitive registry so every step is recorded.
    """
    __slots__ = ('raw', 'origin', 'grad', 'pending', '__weakref__')

    def __init__(self, raw, origin=None):
        self.raw = raw
        self.origin = origin
        self.grad = None
        self.pending = 0

    @property
    def is_leaf(self): return self.origin is None
    @property
    def shape(self): return shape_of(self.raw)
    @property
    def ndim(self): return len(self.shape) if not isinstance(self.raw, tuple) else None
    @property
    def dtype(self): return self.raw.dtype if isinstance(self.raw, torch.Tensor) else type(self.raw)

    # --- Arithmetic ---
    def __add__(self, other):
        if not _is_operand(other): return NotImplemented
        return builder.apply("add", self, other)
    def __radd__(self, other):
        if not _is_operand(other): return NotImplemented
        return builder.apply("add", other, self)
    def __sub__(self, other):
        if not _is_operand(other): return NotImplemented
        return builder.apply("sub", self, other)
    def __rsub__(self, other):
        if not _is_operand(other): return NotImplemented
        return builder.apply("sub", other, self)
    def __mul__(self, other):
        if not _is_operand(other): return NotImplemented
        return builder.apply("mul", self, other)
    def __rmul__(self, other):
        if not _is_operand(other): return NotImplemented
        return builder.apply("mul", other, self)
    def __truediv__(self, other):
        if not _is_operand(other): return NotImplemented
        return builder.apply("div", self, other)
    def __rtruediv__(self, other):
        if not _is_operand(other): return NotImplemented
        return builder.apply("div", other, self)
    def __pow__(self, other):
        if not _is_operand(other): return NotImplemented
        return builder.apply("pow", self, other)
    def __rpow__(self, other):
        if not _is_operand(other): return NotImplemented
        return builder.apply("pow", other, self)
    def __matmul__(self, other):
        if not isinstance(other, (TrackedValue, torch.Tensor)): return NotImplemented
        return builder.apply("matmul", self, other)
    def __rmatmul__(self, other):
        if not isinstance(other, torch.Tensor): return NotImplemented
        return builder.apply("matmul", other, self)
    def __neg__(self): return builder.apply("neg", self)
    def __abs__(self): return builder.apply("abs", self)
    def __getitem__(self, index): return builder.apply("getindex", self, index)

    def __len__(self): return len(self.raw)
    def __iter__(self):
        for i in range(len(self)):
            yield self[i]

    # --- Unary Operations ---
    def exp(self): return builder.apply("exp", self)
    def log(self): return builder.apply("log", self)
    def sin(self): return builder.apply("sin", self)
    def cos(self): return builder.apply("cos", self)
    def tanh(self): return builder.apply("tanh", self)
    def sqrt(self): return builder.apply("sqrt", self)
    def relu(self): return builder.apply("relu", self)
    def sigmoid(self): return builder.apply("sigmoid", self)
    def pow(self, exponent): return builder.apply("pow", self, exponent)
    def matmul(self, other): return builder.apply("matmul", self, other)

    def sum(self, dim=None, keepdim=False):
        """Computes the sum of elements along given dimensions."""
        return builder.apply("sum", self, dim, keepdim)

    def mean(self, dim=None, keepdim=False):
        """Computes the mean of elements along given dimensions."""
        return builder.apply("mean", self, dim, keepdim)

    def reshape(self, *shape):
        if len(shape) == 1 and isinstance(shape[0], (tuple, list, torch.Size)):
            shape = shape[0]
        return builder.apply("reshape", self, tuple(shape))

    def transpose(self, dim0, dim1):
        return builder.apply("transpose", self, dim0, dim1)

    @property
    def T(self):
        """Alias for transpose(-2, -1) for 2D or higher dimensional values."""
        if self.ndim is None or self.ndim < 2:
            raise ValueError("`.T` is only supported on tensors with 2 or more dimensions.")
        return self.transpose(-2, -1)

    def backward(self, seed=None):
        from .backward import run_backward
        run_backward(self, seed)

    # --- Comparisons read the raw value and are not tracked ---
    def __eq__(self, other): return self.raw == value_of(other)
    def __ne__(self, other): return self.raw != value_of(other)
    def __lt__(self, other): return self.raw < value_of(other)
    def __le__(self, other): return self.raw <= value_of(other)
    def __gt__(self, other): return self.raw > value_of(other)
    def __ge__(self, other): return self.raw >= value_of(other)
    __hash__ = object.__hash__

    def __float__(self): return float(self.raw)
    def __bool__(self): return bool(self.raw)

    def __repr__(self):
        origin = self.origin.rule_id if self.origin is not None else "leaf"
        return f"TrackedValue({self.raw!r}, origin={origin}, grad={self.grad!r})"


def _is_operand(x):
    return isinstance(x, (TrackedValue, numbers.Number, torch.Tensor))


def _as_raw(data):
    if isinstance(data, (numbers.Number, torch.Tensor)):
        return data
    if isinstance(data, tuple):
        return tuple(_as_raw(d) for d in data)
    return torch.as_tensor(data, dtype=config.dtype, device=config.device)


def wrap(raw):
    """Creates a leaf: no origin, no gradient yet."""
    if isinstance(raw, TrackedValue):
        return raw  # Don't rewrap
    return TrackedValue(_as_raw(raw))


def record(rule_id, operands, raw_result):
    """Creates a non-leaf produced by ``rule_id`` applied to ``operands``."""
    output_type = raw_result.dtype if isinstance(raw_result, torch.Tensor) else type(raw_result)
    return TrackedValue(raw_result, Call(rule_id, operands, shape_of(raw_result), output_type))


def is_tracked(x):
    return isinstance(x, TrackedValue)


def value_of(x):
    return x.raw if isinstance(x, TrackedValue) else x


detach = value_of


def read_grad(tv):
    return tv.grad


def reset_grad(tv):
    """Sets the gradient of ``tv`` to zero, in place for tensors."""
    if isinstance(tv.grad, torch.Tensor):
        tv.grad.zero_()
    else:
        tv.grad = zeros_like(tv.raw)


def zero_grad(values):
    for tv in values:
        reset_grad(tv)


def assign_(tv, new_raw):
    """Replaces the payload of a leaf, e.g. after an optimizer step."""
    if not tv.is_leaf:
        raise TrackerError("Only leaf values can be assigned to.")
    if isinstance(tv.raw, torch.Tensor):
        new_raw = torch.as_tensor(value_of(new_raw), dtype=tv.raw.dtype, device=tv.raw.device)
        if new_raw.shape != tv.raw.shape:
            raise ShapeMismatchError(tuple(tv.raw.shape), tuple(new_raw.shape), "assign_")
        tv.raw.copy_(new_raw)
    else:
        tv.raw = value_of(new_raw)
    return tv


def _check(raw, torch_fn, math_fn):
    raw = value_of(raw)
    if isinstance(raw, torch.Tensor):
        return torch_fn(raw)
    return math_fn(raw)


def isnan(x): return _check(x, torch.isnan, math.isnan)
def isinf(x): return _check(x, torch.isinf, math.isinf)
def isfinite(x): return _check(x, torch.isfinite, math.isfinite)
