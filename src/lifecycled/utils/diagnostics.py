from typing import Optional


class LifecycledError(Exception):
    """
    Base class for every error raised by the daemon and its collaborators.
    """


class ProvisioningError(LifecycledError):
    """
    Raised when relay resources (queue, subscription) cannot be provisioned.
    Fatal to the run.
    """


class TagValidationError(ProvisioningError, ValueError):
    """
    Raised when a tag string violates the queue tagging restrictions.
    """


class MetadataError(LifecycledError):
    """Transient failure talking to the instance metadata service."""


class MetadataNotFoundError(MetadataError):
    """The requested metadata key does not exist (HTTP 404)."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Metadata key '{key}' not found")


class MetadataUnavailableError(LifecycledError):
    """The instance metadata service cannot be reached at all."""


class NoNoticeError(LifecycledError):
    """
    Raised when every listener exited without producing a termination notice
    and the run was not cancelled.
    """


class HandlerError(LifecycledError):
    """
    Exception raised when the handler program could not be started or exited
    with a non-zero status.
    """
    def __init__(self, message: str, returncode: Optional[int] = None):
        self.message = message
        self.returncode = returncode
        ctx = f" (exit status {returncode})" if returncode is not None else ""
        super().__init__(f"Handler Error{ctx}: {message}")
