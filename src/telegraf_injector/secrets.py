"""Lifecycle of the secrets holding sidecar configuration.

Secrets are created on first injection and updated afterwards, but only
when the existing object is recognizably managed by telegraf-injector.
"""

import base64
from http import HTTPStatus

from icecream import ic
from kubernetes import client
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError

from telegraf_injector.exceptions import OwnershipConflictError, UpstreamApiError
from telegraf_injector.models import (
    SECRET_ANNOTATION_KEY,
    SECRET_ANNOTATION_VALUE,
    SECRET_DATA_KEY,
    SECRET_TYPE,
    SecretRecord,
)
from telegraf_injector.settings import InjectorContext
from telegraf_injector.sidecar import secret_names


def encode_data(text: str) -> str:
    """Encode text the way the API server stores secret data."""
    return base64.b64encode(text.encode()).decode()


def decode_data(data: str | None) -> str:
    """Decode a secret data value, treating a missing value as empty."""
    if not data:
        return ""
    return base64.b64decode(data).decode()


class SecretManager:
    """Creates, updates and deletes telegraf configuration secrets.

    Attributes:
        require_annotations: Whether the managed-by annotation is part of
            the ownership check.

    """

    def __init__(self, context: InjectorContext) -> None:
        """Initialize SecretManager from the injector context.

        Args:
            context: Ownership setting, API client and reporter used for secret calls.

        """
        self.require_annotations = context.settings.require_annotations_for_secret
        self._core_api = context.core_api
        self._reporter = context.reporter.child("secrets")

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"SecretManager(require_annotations={self.require_annotations!r})"

    def is_managed(self, secret: client.V1Secret) -> bool:
        """Check whether an existing secret was created by telegraf-injector.

        A managed secret is of type Opaque, holds exactly the configuration
        key and, when annotations are required, carries the managed-by
        annotation.
        """
        if secret.type != SECRET_TYPE:
            self._reporter.info("assuming secret already exists and is not telegraf-matched as its type is not Opaque")
            return False

        data = secret.data or {}
        if len(data) != 1 or not data.get(SECRET_DATA_KEY):
            self._reporter.info(
                "assuming secret already exists and is not telegraf-matched as its data has non-standard keys"
            )
            return False

        annotations = (secret.metadata.annotations if secret.metadata else None) or {}
        if self.require_annotations and annotations.get(SECRET_ANNOTATION_KEY) != SECRET_ANNOTATION_VALUE:
            self._reporter.info(
                "assuming secret already exists and is not telegraf-matched as it is missing the annotation"
            )
            return False

        return True

    def create_or_update(self, record: SecretRecord) -> None:
        """Create a secret, or update it if it exists and is managed.

        Args:
            record: The secret to persist.

        Raises:
            OwnershipConflictError: If a secret with the same name exists and
                is not managed by telegraf-injector.
            UpstreamApiError: If a call to the API server fails.

        """
        body = record.to_body()
        ic(record.name, record.namespace)

        try:
            self._core_api.create_namespaced_secret(record.namespace, body)
            self._reporter.info(f"created secret {record.namespace}/{record.name}")
            return
        except MaxRetryError as err:
            self._reporter.error(f"unable to create secret {record.name} in namespace {record.namespace}", err)
            raise UpstreamApiError.from_connection_error(
                f"unable to create secret {record.name} in namespace {record.namespace}", err
            ) from err
        except ApiException as err:
            if err.status != HTTPStatus.CONFLICT:
                self._reporter.error(f"unable to create secret {record.name} in namespace {record.namespace}", err)
                raise UpstreamApiError.from_api_exception(
                    f"unable to create secret {record.name} in namespace {record.namespace}", err
                ) from err

        try:
            existing = self._core_api.read_namespaced_secret(record.name, record.namespace)
        except MaxRetryError as err:
            self._reporter.error(f"unable to get secret {record.name} in namespace {record.namespace}", err)
            raise UpstreamApiError.from_connection_error(
                f"unable to get secret {record.name} in namespace {record.namespace}", err
            ) from err
        except ApiException as err:
            self._reporter.error(f"unable to get secret {record.name} in namespace {record.namespace}", err)
            raise UpstreamApiError.from_api_exception(
                f"unable to get secret {record.name} in namespace {record.namespace}", err
            ) from err

        if not self.is_managed(existing):
            raise OwnershipConflictError(
                f"unable to update existing secret {record.name} in namespace {record.namespace} "
                "as it is not managed by telegraf-operator"
            )

        try:
            self._core_api.replace_namespaced_secret(record.name, record.namespace, body)
        except MaxRetryError as err:
            self._reporter.error(f"unable to update secret {record.name} in namespace {record.namespace}", err)
            raise UpstreamApiError.from_connection_error(
                f"unable to update secret {record.name} in namespace {record.namespace}", err
            ) from err
        except ApiException as err:
            self._reporter.error(f"unable to update secret {record.name} in namespace {record.namespace}", err)
            raise UpstreamApiError.from_api_exception(
                f"unable to update secret {record.name} in namespace {record.namespace}", err
            ) from err
        self._reporter.info(f"updated secret {record.namespace}/{record.name}")

    def update_config(self, secret: client.V1Secret, config: str) -> None:
        """Replace the configuration stored in an existing managed secret.

        Args:
            secret: The secret as read from the API server.
            config: The new configuration.

        Raises:
            UpstreamApiError: If the update is rejected by the API server.

        """
        name = secret.metadata.name
        namespace = secret.metadata.namespace
        secret.data = {**(secret.data or {}), SECRET_DATA_KEY: encode_data(config)}
        try:
            self._core_api.replace_namespaced_secret(name, namespace, secret)
        except MaxRetryError as err:
            raise UpstreamApiError.from_connection_error(
                f"unable to update secret {name} in namespace {namespace}", err
            ) from err
        except ApiException as err:
            raise UpstreamApiError.from_api_exception(
                f"unable to update secret {name} in namespace {namespace}", err
            ) from err

    def delete_for_pod(self, pod_name: str, namespace: str) -> list[str]:
        """Delete every variant's secret for a pod, best effort.

        Args:
            pod_name: Name of the deleted pod.
            namespace: Namespace of the deleted pod.

        Returns:
            Names of the secrets that could not be deleted.

        """
        failed: list[str] = []
        for name in secret_names(pod_name):
            self._reporter.info(f"deleting secret {namespace}/{name}")
            try:
                self._core_api.delete_namespaced_secret(name, namespace)
            except MaxRetryError as err:
                self._reporter.warning(f"secret {namespace}/{name} error: {err.reason}")
                failed.append(name)
            except ApiException as err:
                if err.status == HTTPStatus.NOT_FOUND:
                    self._reporter.debug(f"secret {namespace}/{name} does not exist")
                    continue
                self._reporter.warning(f"secret {namespace}/{name} error: {err.status} {err.reason}")
                failed.append(name)
        return failed
