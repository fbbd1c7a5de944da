"""Primitive registry.

Every differentiable operation the tracker knows about lives here, keyed by a
string rule id. A primitive pairs a forward function over raw values with a
backward rule::

    forward(*raw_operands) -> raw_result
    backward(upstream, *raw_operands, raw_result) -> (grad_0, ..., grad_n-1)

A primitive registered with ``masked=True`` also receives
``needs_grad=(bool, ...)``, one flag per operand, and may return ``None``
for the operands that are constants.

The backward rule returns one entry per operand, ``None`` meaning "no
gradient" (shape arguments, flags, integer indices...). Layers and other
collaborators add their own operations with :func:`register` or the
:func:`primitive` decorator; the core never needs to change for that.
"""
import logging
import torch
from .errors import RuleNotFoundError, DuplicateRuleError, ArityMismatchError
from .broadcast import shape_of, unbroadcast

logger = logging.getLogger(__name__)

_RULES = {}


class Primitive:
    __slots__ = ('name', 'forward', 'backward', 'arity', 'masked', '_override')

    def __init__(self, name, forward, backward=None, arity=None, *, masked=False, override=False):
        if not isinstance(name, str) or not name:
            raise TypeError("Rule id must be a non-empty string.")
        self.name = name
        self.forward = forward
        self.backward = backward
        self.arity = arity
        self.masked = masked
        self._override = override

    def defgrad(self, backward):
        """Attaches the backward rule and registers the primitive."""
        self.backward = backward
        _install(self, self._override)
        return backward

    def check_arity(self, n):
        if self.arity is not None and n != self.arity:
            raise ArityMismatchError(f"Primitive {self.name!r} takes {self.arity} operands, got {n}.")

    def __call__(self, *operands):
        from .builder import apply
        return apply(self, *operands)

    def __repr__(self):
        return f"Primitive({self.name!r}, arity={self.arity})"


def _install(prim, override):
    if prim.backward is None:
        raise TypeError(f"Primitive {prim.name!r} has no backward rule.")
    if prim.name in _RULES and not override:
        raise DuplicateRuleError(f"Rule {prim.name!r} is already registered.")
    _RULES[prim.name] = prim
    logger.debug("registered primitive %r (arity=%s)", prim.name, prim.arity)
    return prim


def register(name, forward, backward, *, arity=None, masked=False, override=False):
    """Registers ``forward``/``backward`` under ``name`` and returns the Primitive."""
    return _install(Primitive(name, forward, backward, arity, masked=masked), override)


def primitive(name, *, arity=None, override=False):
    """Decorator form of :func:`register`.

    The decorated forward function becomes a :class:`Primitive`; it is only
    registered once its backward rule is supplied through ``.defgrad``::

        @primitive("square", arity=1)
        def square(x):
            return x * x

        @square.defgrad
        def _(g, x, out):
            return (g * 2 * x,)
    """
    def decorator(forward):
        return Primitive(name, forward, arity=arity, override=override)
    return decorator


def register_elementwise(name, forward, derivatives, *, override=False):
    """Registers a broadcasting elementwise primitive.

    ``derivatives[i](*raw_operands, raw_result)`` gives the local derivative
    of the output with respect to operand ``i`` (``None`` if that operand is
    not differentiable). Gradients are summed back down to each operand's
    own shape along the broadcast dimensions.

    Derivatives always see torch tensors: Python numbers are lifted to 0-d
    tensors first, so a singular point yields ``inf``/``nan`` rather than a
    ``ZeroDivisionError``, and the gradient of a number operand is handed
    back as a number.
    """
    derivatives = tuple(derivatives)

    def backward(upstream, *args, needs_grad=None):
        *raws, out = args
        if needs_grad is None:
            needs_grad = (True,) * len(raws)
        upstream, out, *lifted = _lift(upstream, out, *raws)
        grads = []
        for raw, derivative, needed in zip(raws, derivatives, needs_grad):
            if derivative is None or not needed:
                grads.append(None)
                continue
            grad = unbroadcast(upstream * derivative(*lifted, out), shape_of(raw))
            if not isinstance(raw, torch.Tensor):
                grad = grad.item()
            grads.append(grad)
        return tuple(grads)

    backward.__name__ = f"{name}_backward"
    return register(name, forward, backward, arity=len(derivatives), masked=True, override=override)


def _lift(*values):
    """Turns Python numbers into 0-d tensors matching the tensors among ``values``."""
    ref = next((v for v in values if isinstance(v, torch.Tensor) and v.is_floating_point()), None)
    dtype = ref.dtype if ref is not None else torch.float64
    device = ref.device if ref is not None else None
    return [v if isinstance(v, torch.Tensor) else torch.tensor(float(v), dtype=dtype, device=device)
            for v in values]


def lookup(rule):
    if isinstance(rule, Primitive):
        rule = rule.name
    try:
        return _RULES[rule]
    except KeyError:
        raise RuleNotFoundError(rule) from None


def unregister(name):
    if _RULES.pop(name, None) is None:
        raise RuleNotFoundError(name)
    logger.debug("unregistered primitive %r", name)


def is_registered(name):
    return name in _RULES


def registered_rules():
    return sorted(_RULES)
