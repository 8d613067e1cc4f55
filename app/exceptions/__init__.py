"""
Custom exceptions for the DBaaS control plane.

Every error raised by the services derives from DBaaSException so the API
layer can render it consistently. The reconciliation-specific kinds are:

- MaterializationError: secret resolution or a Kubernetes write/delete failed
- ConfigInUseError: a materialized config is still referenced (not a failure)
- ConsistencyError: a secret could not be removed after its record was deleted
"""
from typing import Optional, Dict, Any
from fastapi import status


class DBaaSException(Exception):
    """
    Base exception for all DBaaS platform errors.

    All custom exceptions should inherit from this base class.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(DBaaSException):
    """
    Raised when request validation fails.

    Used for invalid input data, forbidden spec transitions and failed
    connectivity checks. Never mutates any store.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class NotFoundError(DBaaSException):
    """
    Raised when a requested resource is not found.

    Inside reconciliation this is a fatal precondition failure.
    """

    def __init__(self, resource: str, resource_id: str, details: Optional[Dict[str, Any]] = None):
        message = f"{resource} '{resource_id}' not found"
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details or {"resource": resource, "resource_id": resource_id},
        )


class ConflictError(DBaaSException):
    """
    Raised when a resource conflict occurs.

    Used for duplicate names, conflicting operations, etc.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class ConfigInUseError(ConflictError):
    """
    Raised when deleting a materialized config that a database cluster still references.

    Expected outcome rather than a failure: background cleanups skip it,
    synchronous callers surface it as a conflict.
    """

    def __init__(self, kind: str, name: str, kubernetes_id: Optional[str] = None):
        self.kind = kind
        self.name = name
        self.kubernetes_id = kubernetes_id
        super().__init__(
            message=f"{kind} '{name}' is used by a database cluster on the Kubernetes cluster",
            details={"kind": kind, "name": name, "kubernetes_id": kubernetes_id},
        )


class OperationalError(DBaaSException):
    """
    Raised when the platform cannot perform an operation in its current state.

    Used when no Kubernetes cluster is registered, etc.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


class KubernetesError(DBaaSException):
    """
    Raised when Kubernetes API operations fail.

    Client errors reported by the API server (4xx) keep their status code so
    proxied mutations answer the caller the way Kubernetes did.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=f"Kubernetes error: {message}",
            status_code=status_code,
            details=details,
        )


class MaterializationError(DBaaSException):
    """
    Raised when a config could not be projected into Kubernetes.

    Fatal for synchronous phases, logged and swallowed by background cleanups.
    """

    def __init__(self, kind: str, name: str, reason: str, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.name = name
        super().__init__(
            message=f"Could not materialize {kind} '{name}': {reason}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details or {"kind": kind, "name": name, "reason": reason},
        )


class VaultError(DBaaSException):
    """
    Raised when secrets vault operations fail.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Vault error: {message}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


class ConsistencyError(DBaaSException):
    """
    Raised when stores are provably out of sync.

    A secret could not be deleted after its owning record was already
    removed. Requires operator attention.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


# Export all exceptions
__all__ = [
    "DBaaSException",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ConfigInUseError",
    "OperationalError",
    "KubernetesError",
    "MaterializationError",
    "VaultError",
    "ConsistencyError",
]
