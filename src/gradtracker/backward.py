"""
Backward walker.

``run_backward`` visits every value reachable from a root through ``origin``
edges. A node is only allowed to propagate once all of its consumer edges
inside that subgraph have delivered their contribution (its ``pending`` count
reaches zero), so shared subexpressions see the full sum of every path before
their own rule runs. Leaves only ever receive gradient.
"""
import time
import logging
from collections import deque
import torch
from . import config
from . import registry
from .autograd_graph import AutogradGraph
from .broadcast import is_scalar, shape_of, zeros_like
from .errors import (ArityMismatchError, GraphCycleError, SeedRequiredError,
                     ShapeMismatchError, TrackerError)
from .tracked import TrackedValue

logger = logging.getLogger(__name__)


def _accum(grad, raw, delta):
    if isinstance(raw, tuple):
        if not isinstance(delta, tuple) or len(delta) != len(raw):
            raise ShapeMismatchError(shape_of(raw), shape_of(delta), "tuple gradient")
        if grad is None:
            grad = zeros_like(raw)
        return tuple(g if d is None else _accum(g, r, d) for g, r, d in zip(grad, raw, delta))

    if isinstance(raw, torch.Tensor):
        if not isinstance(delta, torch.Tensor):
            delta = torch.as_tensor(delta, dtype=raw.dtype, device=raw.device)
        if delta.shape != raw.shape:
            raise ShapeMismatchError(tuple(raw.shape), tuple(delta.shape))
        if grad is None:
            grad = torch.zeros_like(raw)
        grad.add_(delta)
        return grad

    if isinstance(delta, torch.Tensor):
        if delta.ndim != 0:
            raise ShapeMismatchError((), tuple(delta.shape))
        delta = delta.item()
    elif isinstance(delta, tuple):
        raise ShapeMismatchError((), shape_of(delta))
    if grad is None:
        grad = raw * 0
    return grad + delta


def accumulate(tv, delta):
    """Adds ``delta`` onto the gradient of ``tv``, allocating zeros first if unset."""
    tv.grad = _accum(tv.grad, tv.raw, delta)


def _default_seed(root):
    if not is_scalar(root.raw):
        raise SeedRequiredError(
            f"A seed gradient is required for a non-scalar root of shape {shape_of(root.raw)}.")
    if isinstance(root.raw, torch.Tensor):
        return torch.ones_like(root.raw)
    return 1


def _propagate(node):
    call = node.origin
    prim = registry.lookup(call.rule_id)
    upstream = node.grad
    if shape_of(upstream) != call.output_shape:
        raise ShapeMismatchError(call.output_shape, shape_of(upstream), f"upstream of {call.rule_id!r}")
    raws = [op.raw if isinstance(op, TrackedValue) else op for op in call.operands]
    if prim.masked:
        needs_grad = tuple(isinstance(op, TrackedValue) for op in call.operands)
        grads = prim.backward(upstream, *raws, node.raw, needs_grad=needs_grad)
    else:
        grads = prim.backward(upstream, *raws, node.raw)
    if not isinstance(grads, tuple):
        grads = tuple(grads) if isinstance(grads, list) else (grads,)
    if len(grads) != len(call.operands):
        raise ArityMismatchError(
            f"Backward rule for {call.rule_id!r} returned {len(grads)} gradients "
            f"for {len(call.operands)} operands.")
    return grads


def run_backward(root, seed=None):
    """
    Accumulates d(root)/d(value) into the ``grad`` of every tracked value the
    root depends on. ``seed`` defaults to 1 for scalar roots and must be given
    for anything else. Leaf gradients add onto whatever they already hold.
    """
    if not isinstance(root, TrackedValue):
        raise TrackerError("Backward needs a tracked root value.")
    if seed is None:
        seed = _default_seed(root)

    start = time.perf_counter()
    with AutogradGraph.from_root(root) as graph:
        if config.CHECK_CYCLES:
            graph.raise_on_cycle()

        for idx in graph.node_indices():
            node = graph.node(idx)
            node.pending = graph.consumer_count(idx)
            if node.origin is not None:
                node.grad = None  # intermediate gradients belong to a single pass

        accumulate(root, seed)

        ready = deque([root])
        processed = 0
        while ready:
            node = ready.popleft()
            processed += 1
            if node.origin is None:
                continue
            operands = node.origin.operands
            grads = _propagate(node) if node.grad is not None else (None,) * len(operands)
            for operand, delta in zip(operands, grads):
                if not isinstance(operand, TrackedValue):
                    continue
                if delta is not None:
                    accumulate(operand, delta)
                operand.pending -= 1
                if operand.pending == 0:
                    ready.append(operand)

        stuck = [n for n in graph.nodes() if n.pending != 0]
        if stuck:
            raise GraphCycleError(f"{len(stuck)} node(s) never became ready during backward.")

        logger.debug("backward pass visited %d of %d nodes (%d edges) in %.6fs",
                     processed, len(graph), graph.graph.num_edges(), time.perf_counter() - start)
