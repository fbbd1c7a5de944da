"""Graph builder: runs primitives eagerly and records them lazily."""
import logging
from . import registry
from . import tracked

logger = logging.getLogger(__name__)


def apply(rule, *operands):
    """
    Runs primitive ``rule`` on the raw values of ``operands``.

    When at least one operand is a TrackedValue the result is a new
    TrackedValue whose Call record points at the operands; otherwise the raw
    result is returned as is and nothing is recorded.
    """
    prim = registry.lookup(rule)
    prim.check_arity(len(operands))
    raws = [tracked.value_of(op) for op in operands]
    result = prim.forward(*raws)
    if not any(isinstance(op, tracked.TrackedValue) for op in operands):
        return result
    out = tracked.record(prim.name, operands, result)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("recorded %r -> shape %s", prim.name, out.origin.output_shape)
    return out
