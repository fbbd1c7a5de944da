import os
import logging
import torch
from warnings import warn

logger = logging.getLogger("gradtracker")

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


def setup_logging(filename=None, level=None):
    """Configures root logging the way the package logs (file or stderr)."""
    level = level or os.environ.get("GRADTRACKER_LOG_LEVEL", "WARNING")
    kwargs = dict(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    if filename is not None:
        kwargs["filename"] = filename
    logging.basicConfig(**kwargs)


if os.environ.get("GRADTRACKER_LOG_FILE"):
    setup_logging(filename=os.environ["GRADTRACKER_LOG_FILE"])
if os.environ.get("GRADTRACKER_LOG_LEVEL"):
    logger.setLevel(os.environ["GRADTRACKER_LOG_LEVEL"])

# gradients are computed by the tracker, torch must not record its own graph
torch.autograd.set_grad_enabled(False)


def _parse_dtype(name):
    dt = getattr(torch, name, None)
    if not isinstance(dt, torch.dtype):
        raise ValueError(f"GRADTRACKER_DTYPE={name!r} is not a torch dtype.")
    return dt


dtype = _parse_dtype(os.environ.get("GRADTRACKER_DTYPE", "float32"))

# Detect hardware availability
RUN_ON_GPU = torch.cuda.is_available()
RUN_ON_MPS = (not RUN_ON_GPU and hasattr(torch.backends, "mps")
              and torch.backends.mps.is_available() and torch.backends.mps.is_built())
RUN_ON_CPU = not RUN_ON_GPU and not RUN_ON_MPS

# Determine active device
if os.environ.get("GRADTRACKER_DEVICE"):
    device = torch.device(os.environ["GRADTRACKER_DEVICE"])
elif RUN_ON_GPU:
    device = torch.device("cuda")
elif RUN_ON_MPS:
    device = torch.device("mps")
else:
    device = torch.device("cpu")

CHECK_CYCLES = os.environ.get("GRADTRACKER_CHECK_CYCLES", "1").lower() not in ("0", "false", "no")

device_summary = f"Running on: {device.type.upper()} (dtype={dtype})"
logger.info(device_summary)

if __name__ == "__main__":
    warn("This module is not intended to be run directly. Please import it in your application.")
