"""Custom exceptions for telegraf-injector.

This module defines the exception hierarchy used throughout the application
to classify failures of the admission and hot-reload paths.
"""

from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError


class InjectorError(Exception):
    """Base exception for all telegraf-injector errors.

    All custom exceptions in this package inherit from this class,
    allowing callers to catch all telegraf-injector errors with a single
    except clause if desired.
    """

    pass


class NonFatalSidecarError(InjectorError):
    """Raised when a single sidecar cannot be built but the pod may still be admitted.

    The admission handler reports the message back to the API server and
    allows the pod without the affected sidecar.
    """

    pass


class ConfigInvalidError(NonFatalSidecarError):
    """Raised when the assembled Telegraf configuration is not valid TOML.

    This can occur when:
    - The raw inputs annotation contains invalid syntax
    - The class data combined with pod sections produces duplicate tables
    - A global tag annotation uses a key that is not a valid TOML key
    """

    pass


class ClassNotFoundError(NonFatalSidecarError):
    """Raised when a requested Telegraf class has no matching class file."""

    pass


class ClassDataError(InjectorError):
    """Raised when the classes directory fails validation at startup.

    This typically means:
    - No class file could be read from the directory
    - At least one class file is not valid TOML
    """

    pass


class OwnershipConflictError(InjectorError):
    """Raised when an existing secret is not managed by telegraf-injector.

    The secret may belong to an unrelated workload reusing the same name,
    so it is never adopted or overwritten.
    """

    pass


class SecretLabelsError(InjectorError):
    """Raised when a managed secret is missing its pod or class label."""

    pass


class UpstreamApiError(InjectorError):
    """Raised when a call to the Kubernetes API fails.

    Attributes:
        status: HTTP status code returned by the API server, if any.
        reason: Reason phrase returned by the API server, if any.

    """

    def __init__(self, message: str, *, status: int | None = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason

    @classmethod
    def from_api_exception(cls, message: str, err: ApiException) -> "UpstreamApiError":
        """Build an UpstreamApiError from a kubernetes ApiException.

        Args:
            message: Description of the operation that failed.
            err: The exception raised by the kubernetes client.

        Returns:
            A new UpstreamApiError carrying the status and reason of ``err``.

        """
        return cls(f"{message}: {err.status} {err.reason}", status=err.status, reason=err.reason)

    @classmethod
    def from_connection_error(cls, message: str, err: MaxRetryError) -> "UpstreamApiError":
        """Build an UpstreamApiError for an API server that could not be reached.

        Args:
            message: Description of the operation that failed.
            err: The exception raised by urllib3 after its retries ran out.

        Returns:
            A new UpstreamApiError without a status, carrying the connection failure.

        """
        return cls(f"{message}: failed to connect to the Kubernetes cluster: {err.reason}", reason=str(err.reason))


class ClusterConnectionError(InjectorError):
    """Raised when no Kubernetes client configuration can be loaded.

    This can occur when:
    - The process is not running inside a cluster
    - The kubeconfig is invalid or missing
    """

    pass
