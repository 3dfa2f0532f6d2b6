"""Re-rendering managed secrets after class data changes.

``SecretsUpdater.on_change`` is the classes watcher's callback: it walks every
namespace, re-renders the configuration of each managed secret from its pod's
current annotations and updates the secrets whose content changed.
"""

from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError

from telegraf_injector.exceptions import InjectorError, SecretLabelsError, UpstreamApiError
from telegraf_injector.models import SECRET_DATA_KEY, SECRET_LABEL_CLASS, SECRET_LABEL_POD, variant_for_secret
from telegraf_injector.secrets import SecretManager, decode_data
from telegraf_injector.settings import InjectorContext
from telegraf_injector.sidecar import SidecarHandler


class SecretsUpdater:
    """Updates telegraf-injector managed secrets in all namespaces."""

    def __init__(self, context: InjectorContext) -> None:
        """Initialize SecretsUpdater from the injector context.

        Args:
            context: Settings, class data, API client and reporter shared by all components.

        """
        self._core_api = context.core_api
        self._sidecars = SidecarHandler(context)
        self._secrets = SecretManager(context)
        self._reporter = context.reporter.child("updater")

    def on_change(self) -> None:
        """Update secrets in all namespaces, handling and logging errors internally.

        The first failing namespace ends the pass; the next change starts over.
        """
        self._reporter.info("checking secrets for updater")

        try:
            namespaces = self._core_api.list_namespace().items
        except (ApiException, MaxRetryError) as err:
            self._reporter.error("unable to list namespaces", err)
            return

        for namespace in namespaces:
            name = namespace.metadata.name
            try:
                self.update_secrets_in_namespace(name)
            except InjectorError as err:
                self._reporter.error(f"unable to update secrets in namespace {name}", err)
                return

    def update_secrets_in_namespace(self, namespace: str) -> int:
        """Update the managed secrets of a single namespace.

        Args:
            namespace: Namespace to process.

        Returns:
            Number of secrets that were updated.

        Raises:
            SecretLabelsError: If a managed secret lacks its pod or class label.
            UpstreamApiError: If listing secrets, reading a pod or updating a
                secret fails.
            NonFatalSidecarError: If a configuration cannot be rendered.

        """
        try:
            # only secrets carrying the class label are managed by telegraf-injector
            secrets = self._core_api.list_namespaced_secret(namespace, label_selector=SECRET_LABEL_CLASS).items
        except MaxRetryError as err:
            raise UpstreamApiError.from_connection_error(f"unable to list secrets in namespace {namespace}", err) from err
        except ApiException as err:
            raise UpstreamApiError.from_api_exception(f"unable to list secrets in namespace {namespace}", err) from err

        updated = 0
        for secret in secrets:
            labels = secret.metadata.labels or {}
            pod_name = labels.get(SECRET_LABEL_POD, "")
            class_name = labels.get(SECRET_LABEL_CLASS, "")
            if not pod_name or not class_name:
                raise SecretLabelsError(
                    f"unable to get pod and class name for secret {secret.metadata.name} in namespace {namespace}; "
                    f'podName="{pod_name}"; className="{class_name}"'
                )

            try:
                pod = self._core_api.read_namespaced_pod(pod_name, namespace)
            except MaxRetryError as err:
                raise UpstreamApiError.from_connection_error(
                    f"unable to get pod {pod_name} in namespace {namespace}", err
                ) from err
            except ApiException as err:
                raise UpstreamApiError.from_api_exception(
                    f"unable to get pod {pod_name} in namespace {namespace}", err
                ) from err

            variant = variant_for_secret(secret.metadata.name)
            annotations = (pod.metadata.annotations if pod.metadata else None) or {}
            conf = self._sidecars.render(variant, annotations, class_name)

            details = f"namespace={namespace} name={secret.metadata.name} podName={pod_name} class={class_name}"
            if decode_data((secret.data or {}).get(SECRET_DATA_KEY)) != conf:
                self._reporter.info(f"updating secret {details}")
                self._secrets.update_config(secret, conf)
                updated += 1
            else:
                self._reporter.debug(f"not updating secret {details}")

        return updated
