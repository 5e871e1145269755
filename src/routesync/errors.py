"""Exceptions for routesync.

Fatal sync failures derive from :class:`SyncError` and carry the ``stage``
that failed. Per-item failures while applying a plan are never raised to the
caller; they are counted in the sync result.
"""

from __future__ import annotations

__all__ = [
    "SyncError",
    "AuthenticationError",
    "ApiResolutionError",
    "ApiNotFoundError",
    "SnapshotError",
    "RevisionError",
    "DuplicateEndpointError",
    "RegistryError",
]


class SyncError(Exception):
    """Base class for errors that abort a whole sync.

    Attributes:
        stage: One of "auth", "api", "snapshot", "revision".
    """

    stage = "sync"

    def __init__(self, message: str) -> None:
        super().__init__(f"[{self.stage}] {message}")


class AuthenticationError(SyncError):
    """Credentials could not be acquired or the client could not be built."""

    stage = "auth"


class ApiResolutionError(SyncError):
    """The API to sync could not be looked up."""

    stage = "api"


class ApiNotFoundError(ApiResolutionError):
    """No API in the service matches the configured id, display name or path."""

    def __init__(self, api_id: str, api_version: str | None = None) -> None:
        self.api_id = api_id
        self.api_version = api_version
        suffix = f" (version {api_version})" if api_version else ""
        super().__init__(f"API '{api_id}'{suffix} not found")


class SnapshotError(SyncError):
    """Listing the remote operations, tags or their pages failed."""

    stage = "snapshot"


class RevisionError(SyncError):
    """Creating or promoting an API revision failed."""

    stage = "revision"


class DuplicateEndpointError(ValueError):
    """Raised in strict mode when two routes resolve to the same path and method.

    Attributes:
        path: The express-style path, e.g. "/users/:id".
        method: Upper-case HTTP method.
    """

    def __init__(self, path: str, method: str) -> None:
        self.path = path
        self.method = method
        super().__init__(f"Duplicate endpoint {method} {path}")


class RegistryError(Exception):
    """A call to the remote registry failed.

    Attributes:
        status_code: HTTP status, or None for transport failures.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
