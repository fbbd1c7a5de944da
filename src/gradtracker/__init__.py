__all__ = [
    "autograd_graph",
    "backward",
    "broadcast",
    "builder",
    "config",
    "errors",
    "gradcheck",
    "mode",
    "ops",
    "registry",
    "tracked",
    "__version__"
]

# public names re-exported lazily from their submodules
_EXPORTS = {
    "TrackedValue": "tracked", "Call": "tracked", "wrap": "tracked", "value_of": "tracked",
    "record": "tracked", "read_grad": "tracked", "reset_grad": "tracked", "zero_grad": "tracked",
    "assign_": "tracked", "is_tracked": "tracked", "detach": "tracked",
    "isnan": "tracked", "isinf": "tracked", "isfinite": "tracked",
    "apply": "builder",
    "run_backward": "backward", "accumulate": "backward",
    "Primitive": "registry", "register": "registry", "primitive": "registry",
    "register_elementwise": "registry", "lookup": "registry", "unregister": "registry",
    "Mode": "mode", "EvalContext": "mode", "set_mode": "mode", "get_mode": "mode",
    "is_training": "mode", "use_mode": "mode", "current_context": "mode",
    "dropout": "ops",
    "gradient": "gradcheck", "numerical_grad": "gradcheck",
    "AutogradGraph": "autograd_graph",
}


def __getattr__(name):
    if name in __all__:
        import importlib
        mod = importlib.import_module(f".{name}", __name__)
        globals()[name] = mod  # cache so future lookups are fast
        return mod
    if name in _EXPORTS:
        import importlib
        value = getattr(importlib.import_module(f".{_EXPORTS[name]}", __name__), name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__():
    return sorted(list(globals().keys()) + __all__ + list(_EXPORTS))


from typing import TYPE_CHECKING
from . import ops  # built-in primitives register on import
if TYPE_CHECKING:
    from . import (
        autograd_graph,
        backward,
        builder,
        gradcheck,
        mode,
        registry,
        tracked
    )
__version__ = "0.1.0"
