"""Training / inference mode.

The mode is read by stochastic functions such as :func:`gradtracker.ops.dropout`;
the tracker itself never looks at it. It is held in an explicit
:class:`EvalContext`: callers may pass one directly, otherwise the ambient
context of the current thread or task is used (training by default).
"""
import enum
import logging
from contextlib import contextmanager
from contextvars import ContextVar

logger = logging.getLogger(__name__)


class Mode(enum.Enum):
    TRAINING = "training"
    INFERENCE = "inference"


class EvalContext:
    __slots__ = ('training', 'generator')

    def __init__(self, training=True, generator=None):
        self.training = training
        self.generator = generator

    @property
    def mode(self):
        return Mode.TRAINING if self.training else Mode.INFERENCE

    def __repr__(self):
        return f"EvalContext(training={self.training})"


_context = ContextVar("gradtracker_eval_context", default=EvalContext())


def _as_mode(mode):
    if isinstance(mode, Mode):
        return mode
    if isinstance(mode, bool):
        return Mode.TRAINING if mode else Mode.INFERENCE
    try:
        return Mode(str(mode).lower())
    except ValueError:
        raise ValueError(f"Unknown mode {mode!r}; expected 'training' or 'inference'.") from None


def current_context():
    return _context.get()


def set_mode(mode, generator=None):
    """Sets the ambient mode; returns a token usable with :func:`restore_mode`."""
    mode = _as_mode(mode)
    if generator is None:
        generator = _context.get().generator
    logger.debug("mode set to %s", mode.value)
    return _context.set(EvalContext(mode is Mode.TRAINING, generator))


def restore_mode(token):
    _context.reset(token)


def get_mode():
    return _context.get().mode


def is_training():
    return _context.get().training


@contextmanager
def use_mode(value, generator=None):
    """Runs a block in the given mode and restores the previous one afterwards."""
    token = set_mode(value, generator)
    try:
        yield _context.get()
    finally:
        _context.reset(token)
