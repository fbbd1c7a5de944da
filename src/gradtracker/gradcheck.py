"""Finite-difference helpers for checking backward rules."""
import torch
from .backward import run_backward
from .tracked import wrap, value_of


def gradient(f, *args, seed=None):
    """Returns df/darg for every argument, evaluated at ``args``."""
    xs = [wrap(a) for a in args]
    run_backward(f(*xs), seed)
    return tuple(x.grad for x in xs)


def numerical_grad(f, x, eps=1e-6):
    """
    Central-difference estimate of the gradient of scalar-valued ``f`` at
    ``x``. ``f`` works on raw values; ``x`` may be a number or a tensor.
    """
    if not isinstance(x, torch.Tensor):
        return (float(f(x + eps)) - float(f(x - eps))) / (2 * eps)
    x = x.detach().clone()
    grad = torch.zeros_like(x)
    flat_x = x.view(-1)
    flat_grad = grad.view(-1)
    for i in range(flat_x.numel()):
        orig = flat_x[i].item()
        flat_x[i] = orig + eps
        plus = float(value_of(f(x)))
        flat_x[i] = orig - eps
        minus = float(value_of(f(x)))
        flat_x[i] = orig
        flat_grad[i] = (plus - minus) / (2 * eps)
    return grad


def gradcheck(f, *xs, eps=1e-6, atol=1e-5, rtol=1e-3):
    """
    Compares the tracked gradient of ``f`` against finite differences for
    each argument in turn. ``f`` must accept both tracked and raw values.
    """
    grads = gradient(f, *xs)
    for i, (x, grad) in enumerate(zip(xs, grads)):
        def partial(xi, i=i):
            args = list(xs)
            args[i] = xi
            return f(*args)
        expected = numerical_grad(partial, x, eps)
        got = grad if grad is not None else 0.0 * torch.as_tensor(x)
        if not torch.allclose(torch.as_tensor(got, dtype=torch.float64),
                              torch.as_tensor(expected, dtype=torch.float64), atol=atol, rtol=rtol):
            return False
    return True
