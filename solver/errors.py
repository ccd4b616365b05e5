"""
Failure taxonomy for the solver pipeline.

Structural errors (bad image, missing challenge element, failed fetch) abort an
attempt. Classifier, action and verification errors are transient and go
through the orchestrator's retry branch.
"""


class SolverError(Exception):
    """Base class for every failure the pipeline reports."""

    retryable = False


class InvalidImageData(SolverError):
    """Raster bytes do not describe a width x height RGBA image."""


class FetchFailure(SolverError):
    """The challenge image could not be retrieved or decoded."""


class ElementNotFound(SolverError):
    """A required challenge element (image, instruction, display box) is missing."""


class IndexOutOfRange(SolverError):
    """The classifier picked an index that does not name any box."""

    retryable = True

    def __init__(self, index: int, count: int):
        super().__init__(f"Index {index} out of range (valid: 1-{count})")
        self.index = index
        self.count = count


class ClassifierStageError(SolverError):
    """Any failure while asking the classifier for a selection index."""

    retryable = True


class NoIndexFound(ClassifierStageError):
    """The classifier reply contains no run of digits."""

    def __init__(self, text: str):
        preview = text if len(text) <= 200 else text[:200] + "..."
        super().__init__(f"No index found in classifier reply: {preview!r}")
        self.text = text


class ClassifierError(ClassifierStageError):
    """The classifier endpoint answered with a structured error payload."""


class TransportFailure(ClassifierStageError):
    """The classifier request timed out or failed at the network layer."""


class ActionFailure(SolverError):
    """The pointer gesture could not be dispatched."""

    retryable = True


class VerificationTimeout(SolverError):
    """The challenge is still visible after the click settled."""

    retryable = True


class NoGlyphsFound(SolverError):
    """Segmentation left no component large enough to label."""
