import numpy as np
import pytest
import torch

TOLERANCE = 1e-6


def _to_numpy(t):
    if isinstance(t, torch.Tensor):
        return t.detach().cpu().numpy()  # Ensure on CPU for numpy
    return np.asarray(t)


@pytest.fixture
def assert_tensors_close():
    """Compare a tracked result or gradient with PyTorch's."""
    def check(got, expected, name, tolerance=TOLERANCE):
        assert got is not None, f"No gradient for {name}"
        np.testing.assert_allclose(
            _to_numpy(got),
            _to_numpy(expected),
            rtol=tolerance,
            atol=tolerance,
            err_msg=f"Mismatch for {name}"
        )
    return check


@pytest.fixture
def rng():
    return torch.Generator().manual_seed(0)
