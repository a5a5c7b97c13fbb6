"""Domain exceptions for iteration jobs."""


class IterationError(Exception):
    """Base class for iteration errors."""


class IterationConfigurationError(IterationError, ValueError):
    """Raised when an enumerator or job is configured incorrectly."""


class EnumeratorContractError(IterationError, TypeError):
    """Raised when job code does not honor the enumerator contract."""


class JobNotFoundError(IterationError):
    """Raised when a queued job cannot be found."""


class UnknownJobError(IterationError):
    """Raised when a queued job names a job class that is not registered."""


class LeaseLostError(IterationError):
    """Raised when a worker updates a job whose lease it no longer holds."""


__all__ = [
    "EnumeratorContractError",
    "IterationConfigurationError",
    "IterationError",
    "JobNotFoundError",
    "LeaseLostError",
    "UnknownJobError",
]
