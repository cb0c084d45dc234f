"""Exceptions raised by the pipeline and its collaborators."""


class TextBlockerError(Exception):
    """Base exception for TextBlocker."""


class InputError(TextBlockerError):
    """Missing or unreadable source, or nothing to process."""


class DependencyError(TextBlockerError):
    """An external tool is unavailable or returned an error."""


class DecoderError(DependencyError):
    """Probing or frame sampling failed."""


class DetectorError(DependencyError):
    """The text detector could not be created or failed on a frame."""


class EncoderError(DependencyError):
    """Encoding the masked output failed."""


class FetchError(DependencyError):
    """Resolving or downloading a remote source failed."""


class ResourceError(TextBlockerError):
    """A temporary working directory could not be created or removed."""


class JobCancelled(TextBlockerError):
    """Raised at a checkpoint once cancellation has been requested."""


class InvalidTransition(ValueError):
    """A job status change that would move backwards or leave a terminal state."""
