"""Built-in primitives.

Elementwise operations broadcast like torch does and are registered through
:func:`~gradtracker.registry.register_elementwise`, so their backward rules
sum gradients back down to each operand's shape. Raw payloads may be Python
numbers or torch tensors; the ``_``-prefixed helpers pick the right kernel.
"""
import math
import torch
from .registry import register, register_elementwise
from .broadcast import unbroadcast, zeros_like
from .mode import current_context
from .tracked import value_of


def _unary(torch_fn, math_fn):
    def fn(x):
        if isinstance(x, torch.Tensor):
            return torch_fn(x)
        return math_fn(x)
    fn.__name__ = torch_fn.__name__
    return fn


def _math_sigmoid(x):
    if x >= 0:
        return 1 / (1 + math.exp(-x))
    e = math.exp(x)
    return e / (1 + e)


_exp = _unary(torch.exp, math.exp)
_log = _unary(torch.log, math.log)
_sin = _unary(torch.sin, math.sin)
_cos = _unary(torch.cos, math.cos)
_tanh = _unary(torch.tanh, math.tanh)
_sqrt = _unary(torch.sqrt, math.sqrt)
_sigmoid = _unary(torch.sigmoid, _math_sigmoid)
_relu = _unary(torch.relu, lambda x: x if x > 0 else x * 0)


def _as_float(cond, out):
    """Turns a comparison result into a 0/1 multiplier matching ``out``."""
    return cond.to(out.dtype if out.is_floating_point() else torch.get_default_dtype())


def _pair(a, b):
    """Promotes a number to a tensor when the other operand is a tensor."""
    if isinstance(a, torch.Tensor) and not isinstance(b, torch.Tensor):
        b = torch.as_tensor(b, dtype=a.dtype, device=a.device)
    elif isinstance(b, torch.Tensor) and not isinstance(a, torch.Tensor):
        a = torch.as_tensor(a, dtype=b.dtype, device=b.device)
    return a, b


def _maximum(a, b):
    if isinstance(a, torch.Tensor) or isinstance(b, torch.Tensor):
        return torch.maximum(*_pair(a, b))
    return a if a >= b else b


def _minimum(a, b):
    if isinstance(a, torch.Tensor) or isinstance(b, torch.Tensor):
        return torch.minimum(*_pair(a, b))
    return a if a <= b else b


# --- Binary elementwise ---
add = register_elementwise("add", lambda a, b: a + b,
                           (lambda a, b, out: 1, lambda a, b, out: 1))
sub = register_elementwise("sub", lambda a, b: a - b,
                           (lambda a, b, out: 1, lambda a, b, out: -1))
mul = register_elementwise("mul", lambda a, b: a * b,
                           (lambda a, b, out: b, lambda a, b, out: a))
div = register_elementwise("div", lambda a, b: a / b,
                           (lambda a, b, out: 1 / b, lambda a, b, out: -out / b))
power = register_elementwise("pow", lambda a, b: a ** b,
                             (lambda a, b, out: b * a ** (b - 1),
                              lambda a, b, out: out * torch.log(a)))
# ties send the gradient to the first operand
maximum = register_elementwise("maximum", _maximum,
                               (lambda a, b, out: _as_float(a >= b, out),
                                lambda a, b, out: _as_float(a < b, out)))
minimum = register_elementwise("minimum", _minimum,
                               (lambda a, b, out: _as_float(a <= b, out),
                                lambda a, b, out: _as_float(a > b, out)))

# --- Unary elementwise ---
neg = register_elementwise("neg", lambda x: -x, (lambda x, out: -1,))
absolute = register_elementwise("abs", abs, (lambda x, out: torch.sign(x),))
exp = register_elementwise("exp", _exp, (lambda x, out: out,))
log = register_elementwise("log", _log, (lambda x, out: 1 / x,))
sin = register_elementwise("sin", _sin, (lambda x, out: _cos(x),))
cos = register_elementwise("cos", _cos, (lambda x, out: -_sin(x),))
tanh = register_elementwise("tanh", _tanh, (lambda x, out: 1 - out * out,))
sqrt = register_elementwise("sqrt", _sqrt, (lambda x, out: 0.5 / out,))
relu = register_elementwise("relu", _relu, (lambda x, out: _as_float(x > 0, out),))
sigmoid = register_elementwise("sigmoid", _sigmoid, (lambda x, out: out * (1 - out),))


# --- Matrix multiply ---
def _matmul_backward(g, a, b, out):
    if a.ndim == 1 and b.ndim == 1:
        return g * b, g * a
    a2 = a.unsqueeze(0) if a.ndim == 1 else a
    b2 = b.unsqueeze(-1) if b.ndim == 1 else b
    g2 = g.unsqueeze(-2) if a.ndim == 1 else g
    g2 = g2.unsqueeze(-1) if b.ndim == 1 else g2
    grad_a = torch.matmul(g2, b2.transpose(-2, -1))
    grad_b = torch.matmul(a2.transpose(-2, -1), g2)
    if a.ndim == 1:
        grad_a = grad_a.squeeze(-2)
    if b.ndim == 1:
        grad_b = grad_b.squeeze(-1)
    # batch dimensions of the product broadcast like elementwise ops
    return unbroadcast(grad_a, tuple(a.shape)), unbroadcast(grad_b, tuple(b.shape))


matmul = register("matmul", torch.matmul, _matmul_backward, arity=2)


# --- Reductions ---
def _dims(dim, ndim):
    dims = (dim,) if isinstance(dim, int) else tuple(dim)
    return sorted(d % ndim for d in dims)


def _sum_forward(x, dim, keepdim):
    if not isinstance(x, torch.Tensor):
        return x
    if dim is None:
        return x.sum(dim=tuple(range(x.ndim)), keepdim=True) if keepdim else x.sum()
    return x.sum(dim=dim, keepdim=keepdim)


def _expand_back(g, x, dim, keepdim):
    if not isinstance(x, torch.Tensor):
        return g
    if dim is not None and not keepdim:
        # the summed dims were squeezed, unsqueeze them back for broadcasting
        for d in _dims(dim, x.ndim):
            g = g.unsqueeze(d)
    return g.expand(x.shape)


def _sum_backward(g, x, dim, keepdim, out):
    return _expand_back(g, x, dim, keepdim), None, None


def _mean_forward(x, dim, keepdim):
    if not isinstance(x, torch.Tensor):
        return x
    return _sum_forward(x, dim, keepdim) / _count(x, dim)


def _count(x, dim):
    # Determine the number of elements that were averaged
    if dim is None:
        return x.numel()
    return math.prod(x.shape[d] for d in _dims(dim, x.ndim))


def _mean_backward(g, x, dim, keepdim, out):
    if not isinstance(x, torch.Tensor):
        return g, None, None
    return _expand_back(g, x, dim, keepdim) / _count(x, dim), None, None


reduce_sum = register("sum", _sum_forward, _sum_backward, arity=3)
reduce_mean = register("mean", _mean_forward, _mean_backward, arity=3)


# --- Shape ---
reshape = register("reshape", lambda x, shape: x.reshape(shape),
                   lambda g, x, shape, out: (g.reshape(x.shape), None), arity=2)
# the gradient of a transpose is the same transpose
transpose = register("transpose", lambda x, d0, d1: x.transpose(d0, d1),
                     lambda g, x, d0, d1, out: (g.transpose(d0, d1), None, None), arity=3)


def _getindex_backward(g, x, index, out):
    if isinstance(x, tuple):
        picked = range(len(x))[index]
        grads = [zeros_like(r) for r in x]
        if isinstance(picked, int):
            grads[picked] = g
        else:
            for k, j in enumerate(picked):
                grads[j] = g[k]
        return tuple(grads), None
    # route g through the flat position of every element it was read from,
    # so positions picked more than once add up
    positions = torch.arange(x.numel(), device=x.device).reshape(x.shape)[index]
    grad = torch.zeros(x.numel(), dtype=x.dtype, device=x.device)
    grad.index_add_(0, positions.reshape(-1), g.reshape(-1).to(x.dtype))
    return grad.reshape(x.shape), None


getindex = register("getindex", lambda x, index: x[index], _getindex_backward, arity=2)


# --- Stochastic ---
def dropout(x, p, context=None):
    """
    Zeroes each element with probability ``p`` and scales the rest by
    ``1/(1-p)`` while training; identity in inference mode.
    """
    assert 0 <= p <= 1
    context = context if context is not None else current_context()
    if not context.training or p == 0:
        return x
    raw = value_of(x)
    like = raw if isinstance(raw, torch.Tensor) else torch.as_tensor(float(raw))
    dtype = like.dtype if like.is_floating_point() else None
    draw = torch.rand(like.shape, generator=context.generator, dtype=dtype, device=like.device)
    mask = (draw > p).to(draw.dtype) * (1 / (1 - p) if p < 1 else 0.0)
    if not isinstance(raw, torch.Tensor):
        mask = mask.item()
    return mul(x, mask)
