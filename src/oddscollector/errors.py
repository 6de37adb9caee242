class ProviderError(Exception):
    """Network, timeout, HTTP or payload failure talking to the odds provider."""


class StorageError(Exception):
    """Snapshot store fault that survived all retries."""


class ConfigurationError(Exception):
    """A job references a league or timing offset that is not configured."""


class QueueError(Exception):
    pass


class JobNotFoundError(QueueError):
    pass


class InvalidTransitionError(QueueError):
    pass


class LeaseLostError(QueueError):
    """The executor no longer holds the lease on the job it is finishing."""
