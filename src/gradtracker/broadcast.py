import numbers
import torch
from .errors import ShapeMismatchError


def shape_of(raw):
    """Shape of a raw payload: () for numbers, a tuple of shapes for tuples."""
    if isinstance(raw, torch.Tensor):
        return tuple(raw.shape)
    if isinstance(raw, tuple):
        return tuple(shape_of(r) for r in raw)
    return ()


def is_scalar(raw):
    if isinstance(raw, torch.Tensor):
        return raw.ndim == 0
    return isinstance(raw, numbers.Number)


def zeros_like(raw):
    """Additive identity with the structure of ``raw``."""
    if isinstance(raw, torch.Tensor):
        return torch.zeros_like(raw)
    if isinstance(raw, tuple):
        return tuple(zeros_like(r) for r in raw)
    return raw * 0


# --- Broadcasting Helper ---
def unbroadcast(grad, target_shape):
    """Reduces a gradient to match the shape of an operand that was broadcasted."""
    target_shape = tuple(target_shape)
    if not isinstance(grad, torch.Tensor):
        if target_shape:
            raise ShapeMismatchError(target_shape, (), "broadcast reduction")
        return grad
    if tuple(grad.shape) == target_shape:
        return grad
    try:
        expanded = torch.broadcast_shapes(target_shape, grad.shape)
    except RuntimeError as e:
        raise ShapeMismatchError(target_shape, tuple(grad.shape), "broadcast reduction") from e
    if expanded != grad.shape:
        raise ShapeMismatchError(target_shape, tuple(grad.shape), "broadcast reduction")

    # Add singleton dimensions to the front of target_shape to match grad's ndim
    padded_target_shape = (1,) * (grad.ndim - len(target_shape)) + target_shape

    # Identify dimensions that were broadcasted
    sum_dims = [i for i, (grad_dim, target_dim) in enumerate(zip(grad.shape, padded_target_shape)) if target_dim == 1 and grad_dim > 1]

    if sum_dims:
        grad = grad.sum(dim=sum_dims, keepdim=True)

    # Remove singleton dimensions to match the final target shape
    return grad.reshape(target_shape)
