from __future__ import annotations


class KinwatchError(Exception):
    """Base error for kinwatch."""


class StoreError(KinwatchError):
    """Keyed store failure."""


class StoreUnavailableError(StoreError):
    """Keyed store could not be reached or timed out."""


class InvalidPathError(StoreError):
    """Store path is empty or contains forbidden characters."""


class RpcError(KinwatchError):
    """Caller-facing failure carrying a stable error code."""

    code = "INTERNAL"

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class UnauthenticatedError(RpcError):
    """Caller identity is missing or invalid."""

    code = "UNAUTHENTICATED"


class PermissionDeniedError(RpcError):
    """Caller lacks the role, or the target account is frozen."""

    code = "PERMISSION_DENIED"


class ResourceExhaustedError(RpcError):
    """Target account has used its daily quota."""

    code = "RESOURCE_EXHAUSTED"


class InvalidArgumentError(RpcError):
    """Request arguments failed validation."""

    code = "INVALID_ARGUMENT"


class NotFoundError(RpcError):
    """Requested record does not exist."""

    code = "NOT_FOUND"


class InternalError(RpcError):
    """Unexpected failure; details are logged, never returned."""

    code = "INTERNAL"
