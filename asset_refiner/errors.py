"""Error taxonomy for the refinement loop."""

from typing import Optional


class RefinementError(Exception):
    """Base class for every error raised by the refinement core."""


class InvalidArgument(RefinementError, ValueError):
    """Bad bounding box, margin, dimensions or thresholds."""


class ScoringFailure(RefinementError):
    """A scoring back end could not produce a usable score."""


class EvaluationFailure(RefinementError):
    """A metric evaluation failed or returned out-of-range data."""

    def __init__(self, metric, cause: BaseException):
        self.metric = metric
        self.cause = cause
        name = getattr(metric, "value", metric)
        super().__init__(f"evaluation of metric '{name}' failed: {cause!r}")


class SynthesisFailure(RefinementError):
    """A synthesis collaborator could not produce an asset or instruction."""


class EditFailure(RefinementError):
    """The edit collaborator could not produce an edited asset."""


class IOFailure(RefinementError):
    """A mask or artifact could not be written."""


class IterationFailure(RefinementError):
    """Wraps any failure inside one iteration with its context."""

    def __init__(self, index: int, action, cause: BaseException):
        self.index = index
        self.action = action
        self.cause = cause
        name = getattr(action, "value", action)
        super().__init__(f"iteration {index} ({name}) failed: {cause}")


class RefinementCancelled(RefinementError):
    """The run was cancelled before any iteration completed."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "refinement cancelled before the first iteration completed")
