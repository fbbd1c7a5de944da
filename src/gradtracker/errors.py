"""Exceptions raised by the tracker.

None of these are recoverable: each one marks a defect in a primitive
definition or in the calling code, and the core never catches them.
"""


class TrackerError(RuntimeError):
    """Base class for every error raised by the tracker core."""


class RuleNotFoundError(TrackerError, KeyError):
    """No primitive is registered under the requested rule id."""

    def __init__(self, rule_id):
        self.rule_id = rule_id
        super().__init__(f"No primitive registered for rule {rule_id!r}.")

    def __str__(self):
        return self.args[0]


class DuplicateRuleError(TrackerError):
    """A rule id is registered twice without override."""


class ShapeMismatchError(TrackerError, ValueError):
    """A gradient does not have the shape of the value it is accumulated into."""

    def __init__(self, expected, got, where=""):
        self.expected = expected
        self.got = got
        suffix = f" ({where})" if where else ""
        super().__init__(f"Gradient shape {got} does not match value shape {expected}{suffix}.")


class ArityMismatchError(TrackerError):
    """A primitive got, or a backward rule returned, the wrong number of entries."""


class SeedRequiredError(TrackerError):
    """Backward was started on a non-scalar root without an explicit seed."""


class GraphCycleError(TrackerError):
    """The graph reached from a root is not acyclic."""
