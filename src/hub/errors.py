"""
Error taxonomy for Hub reconciliation.

Every error names the object it concerns so callers can log it and decide
whether to retry.
"""

from typing import Optional


class HubError(Exception):
    """Base class for all reconciliation errors."""

    retryable = True

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
    ):
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(message)

    @property
    def target(self) -> str:
        """Human-readable ``Kind namespace/name`` of the affected object."""
        parts = []
        if self.kind:
            parts.append(self.kind)
        if self.name:
            parts.append(f"{self.namespace}/{self.name}" if self.namespace else self.name)
        return " ".join(parts)

    def __str__(self) -> str:
        if self.target:
            return f"{self.message} ({self.target})"
        return self.message


class NotFoundError(HubError):
    """The requested object does not exist. Terminal."""

    retryable = False


class AlreadyExistsError(HubError):
    """An object with the same kind, namespace and name already exists."""


class TransientStoreError(HubError):
    """A store read or write failed for a reason other than not-found."""


class RenderError(HubError):
    """The renderer could not produce manifests from the Hub spec."""


class DeployError(HubError):
    """A single manifest could not be applied."""


class StatusPersistError(HubError):
    """Writing the Hub status subresource failed."""
