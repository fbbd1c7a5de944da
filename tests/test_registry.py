import math
import pytest
import torch
from gradtracker.backward import run_backward
from gradtracker.builder import apply
from gradtracker.errors import ArityMismatchError, DuplicateRuleError, RuleNotFoundError
from gradtracker.registry import (Primitive, is_registered, lookup, primitive, register,
                                  register_elementwise, registered_rules, unregister)
from gradtracker.tracked import wrap


@pytest.fixture
def scratch_rules():
    names = []
    yield names
    for name in names:
        if is_registered(name):
            unregister(name)


def test_builtin_rules_are_registered():
    rules = registered_rules()
    for name in ("add", "sub", "mul", "div", "pow", "matmul", "sum", "mean", "getindex"):
        assert name in rules
    assert isinstance(lookup("add"), Primitive)


def test_lookup_unknown_rule_raises():
    with pytest.raises(RuleNotFoundError) as excinfo:
        lookup("missing")
    assert isinstance(excinfo.value, KeyError)
    assert "missing" in str(excinfo.value)


def test_register_custom_primitive_and_differentiate(scratch_rules):
    scratch_rules.append("cube")
    register("cube", lambda x: x ** 3, lambda g, x, out: (g * 3 * x ** 2,), arity=1)
    x = wrap(2.0)
    y = apply("cube", x)
    assert y.raw == 8.0
    run_backward(y)
    assert x.grad == 12.0


def test_duplicate_registration_is_rejected(scratch_rules):
    scratch_rules.append("twice")
    register("twice", lambda x: 2 * x, lambda g, x, out: (2 * g,))
    with pytest.raises(DuplicateRuleError):
        register("twice", lambda x: 2 * x, lambda g, x, out: (2 * g,))
    register("twice", lambda x: 3 * x, lambda g, x, out: (3 * g,), override=True)
    assert apply("twice", wrap(1.0)).raw == 3.0


def test_unregister_unknown_rule_raises():
    with pytest.raises(RuleNotFoundError):
        unregister("never_registered")


def test_primitive_decorator_registers_on_defgrad(scratch_rules):
    scratch_rules.append("square_plus")

    @primitive("square_plus", arity=2)
    def square_plus(x, c):
        return x * x + c

    assert not is_registered("square_plus")

    @square_plus.defgrad
    def _(g, x, c, out):
        return g * 2 * x, None

    assert is_registered("square_plus")
    x = wrap(3.0)
    y = square_plus(x, 1.0)
    assert y.raw == 10.0
    run_backward(y)
    assert x.grad == 6.0


def test_backward_returning_wrong_count_raises(scratch_rules):
    scratch_rules.append("bad_arity")
    register("bad_arity", lambda x: 2 * x, lambda g, x, out: (g, g))
    with pytest.raises(ArityMismatchError):
        run_backward(apply("bad_arity", wrap(1.0)))


def test_rule_removed_after_forward_fails_at_backward(scratch_rules):
    register("temporary", lambda x: x + 1, lambda g, x, out: (g,))
    y = apply("temporary", wrap(1.0))
    unregister("temporary")
    with pytest.raises(RuleNotFoundError):
        run_backward(y)


def test_register_elementwise_reduces_broadcast_dims(scratch_rules):
    scratch_rules.append("scaled_add")
    register_elementwise("scaled_add", lambda a, b: a + 2 * b,
                         (lambda a, b, out: 1, lambda a, b, out: 2))
    a = wrap(torch.ones(2, 3, dtype=torch.float64))
    b = wrap(torch.ones(3, dtype=torch.float64))
    y = apply("scaled_add", a, b)
    run_backward(y, torch.ones(2, 3, dtype=torch.float64))
    assert torch.equal(a.grad, torch.ones(2, 3, dtype=torch.float64))
    assert b.grad.shape == (3,)
    assert torch.equal(b.grad, torch.full((3,), 4.0, dtype=torch.float64))


def test_elementwise_none_derivative_gives_no_gradient(scratch_rules):
    scratch_rules.append("shift")
    register_elementwise("shift", lambda a, k: a + k, (lambda a, k, out: 1, None))
    a, k = wrap(1.0), wrap(5.0)
    run_backward(apply("shift", a, k))
    assert a.grad == 1.0
    assert k.grad is None


def test_tuple_valued_primitive(scratch_rules):
    scratch_rules.append("sincos")
    register("sincos", lambda x: (math.sin(x), math.cos(x)),
             lambda g, x, out: (g[0] * math.cos(x) - g[1] * math.sin(x),), arity=1)
    x = wrap(0.5)
    pair = apply("sincos", x)
    assert len(pair) == 2
    y = pair[0] * pair[1]
    run_backward(y)
    # d/dx sin(x)cos(x) = cos(2x)
    assert math.isclose(x.grad, math.cos(1.0), rel_tol=1e-12)
    assert isinstance(pair.grad, tuple)


def test_tuple_element_used_alone(scratch_rules):
    scratch_rules.append("sincos_single")
    register("sincos_single", lambda x: (math.sin(x), math.cos(x)),
             lambda g, x, out: (g[0] * math.cos(x) - g[1] * math.sin(x),), arity=1)
    x = wrap(0.5)
    pair = apply("sincos_single", x)
    run_backward(pair[0])
    assert pair.grad == (1, 0.0)
    assert math.isclose(x.grad, math.cos(0.5), rel_tol=1e-12)


def test_tuple_slice_routes_gradient_to_picked_elements(scratch_rules):
    scratch_rules.append("powers")
    register("powers", lambda x: (x, x * x, x * x * x),
             lambda g, x, out: (g[0] + 2 * x * g[1] + 3 * x * x * g[2],), arity=1)
    x = wrap(2.0)
    triple = apply("powers", x)
    tail = triple[1:]
    assert tail.raw == (4.0, 8.0)
    run_backward(tail[0] + tail[1])
    assert triple.grad == (0.0, 1.0, 1.0)
    # d/dx (x^2 + x^3) = 2x + 3x^2
    assert x.grad == 16.0


def test_tuple_rejects_non_integer_index(scratch_rules):
    scratch_rules.append("pair_for_index")
    register("pair_for_index", lambda x: (x, -x), lambda g, x, out: (g[0] - g[1],), arity=1)
    pair = apply("pair_for_index", wrap(1.0))
    with pytest.raises(TypeError):
        pair["first"]
    with pytest.raises(TypeError):
        pair[0.5]
