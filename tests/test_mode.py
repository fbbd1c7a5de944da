import pytest
import torch
from gradtracker.backward import run_backward
from gradtracker.mode import (EvalContext, Mode, current_context, get_mode, is_training,
                              restore_mode, set_mode, use_mode)
from gradtracker.ops import dropout
from gradtracker.tracked import wrap


def test_default_mode_is_training():
    assert is_training()
    assert get_mode() is Mode.TRAINING
    assert current_context().training


def test_use_mode_restores_previous_mode():
    with use_mode("inference") as ctx:
        assert not ctx.training
        assert get_mode() is Mode.INFERENCE
        with use_mode(Mode.TRAINING):
            assert is_training()
        assert not is_training()
    assert is_training()


def test_set_mode_returns_restorable_token():
    token = set_mode(False)
    try:
        assert get_mode() is Mode.INFERENCE
    finally:
        restore_mode(token)
    assert get_mode() is Mode.TRAINING


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError):
        set_mode("sleeping")


def test_dropout_is_identity_in_inference():
    x = wrap(torch.ones(10))
    with use_mode("inference"):
        assert dropout(x, 0.5) is x


def test_dropout_zero_probability_is_identity():
    x = wrap(torch.ones(10))
    assert dropout(x, 0.0) is x


def test_dropout_training_masks_and_scales():
    generator = torch.Generator().manual_seed(0)
    x = wrap(torch.ones(1000, dtype=torch.float64))
    with use_mode("training", generator=generator):
        y = dropout(x, 0.25)
    values = set(y.raw.unique().tolist())
    assert values <= {0.0, 1.0 / 0.75}
    assert 0.0 in values
    run_backward(y, torch.ones(1000, dtype=torch.float64))
    assert torch.equal(x.grad, y.raw)


def test_dropout_probability_one_zeroes_everything():
    x = wrap(torch.ones(5))
    y = dropout(x, 1.0)
    assert torch.equal(y.raw, torch.zeros(5))


def test_explicit_context_overrides_ambient_mode():
    x = wrap(torch.ones(100))
    ctx = EvalContext(training=True, generator=torch.Generator().manual_seed(1))
    with use_mode("inference"):
        y = dropout(x, 0.5, context=ctx)
    assert y is not x
    assert y.origin.rule_id == "mul"


def test_dropout_on_number():
    x = wrap(2.0)
    y = dropout(x, 0.5, context=EvalContext(training=True, generator=torch.Generator().manual_seed(0)))
    assert y.raw in (0.0, 4.0)
    run_backward(y)
    assert x.grad == y.raw / 2.0


def test_dropout_rejects_bad_probability():
    with pytest.raises(AssertionError):
        dropout(wrap(1.0), 1.5)
