"""Error kinds raised by the cleanup engine.

Contract violations are raised immediately and never defaulted.
Collaborator failures (``ExecutorError``) are recovered inside the engine
by running the same algorithm on the calling thread.
"""


class CleanupError(Exception):
    """Base class for every error produced by the cleanup engine."""


class ContractViolation(CleanupError, ValueError):
    """The caller passed something the operation cannot accept."""


class InvalidBufferError(ContractViolation):
    """Raster buffer is not an ``(H, W, 4)`` uint8 array."""


class InvalidOptionError(ContractViolation):
    """Unknown mode/method string or an out-of-range option value."""


class MissingOptionError(ContractViolation):
    """A required option for the selected mode was not supplied."""


class UnknownPresetError(ContractViolation):
    """Preset identifier is not one of the published names."""


class ExecutorError(CleanupError):
    """The worker collaborator is unavailable or failed to run an operation."""
