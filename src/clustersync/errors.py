"""Exception types shared by the global repository sync components."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Classification of a failed clone or fetch."""

    INVALID_REMOTE = "invalid_remote"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    TRANSPORT = "transport"


class ClusterSyncError(Exception):
    """Base exception for cluster sync operations."""
    pass


class ServiceLayerError(ClusterSyncError):
    """A repository or registry operation failed."""
    pass


class RepositoryUnavailableError(ServiceLayerError):
    """The local repository could not be opened."""
    pass


class InvalidRemoteUrlError(ClusterSyncError):
    """A peer URL cannot be used as a git remote."""

    def __init__(self, url: str, reason: str = "malformed URL"):
        super().__init__(f"Remote URL is invalid ({reason}): {url!r}")
        self.url = url
        self.reason = reason


class TransportError(ClusterSyncError):
    """A clone or fetch against a peer failed.

    ``kind`` is assigned once by the transport port so callers branch on it
    instead of inspecting git's output themselves.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        *,
        remote: Optional[str] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.remote = remote
        self.url = url
