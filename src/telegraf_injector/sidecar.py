"""Sidecar decision engine.

This module decides which Telegraf sidecars a pod receives, builds their
containers and volumes, and renders the configuration stored in each
sidecar's secret.
"""

from collections.abc import Mapping
from functools import cache
from typing import Any

from icecream import ic
from kubernetes import client

from telegraf_injector.assembler import assemble_conf
from telegraf_injector.console import Reporter
from telegraf_injector.exceptions import NonFatalSidecarError
from telegraf_injector.models import (
    ANNOTATION_PATH,
    ANNOTATION_PORT,
    ANNOTATION_PREFIX,
    ISTIO,
    ISTIO_SIDECAR_ANNOTATION,
    PRIMARY,
    VARIANTS,
    InjectionResult,
    SecretRecord,
    SidecarOptions,
    SidecarVariant,
)
from telegraf_injector.settings import InjectorContext, check_quantity

# Telegraf reads its configuration from the mounted secret
CONFIG_MOUNT_PATH = "/etc/telegraf"
CONFIG_FILE = f"{CONFIG_MOUNT_PATH}/telegraf.conf"

# Annotations used to render the istio sidecar, which scrapes the envoy proxy
ISTIO_ANNOTATIONS = {
    ANNOTATION_PORT: "15090",
    ANNOTATION_PATH: "/stats/prometheus",
}


@cache
def _api_client() -> client.ApiClient:
    return client.ApiClient()


def to_dict(model: Any) -> Any:
    """Serialize a kubernetes model to the JSON form used in pod manifests."""
    return _api_client().sanitize_for_serialization(model)


def pod_annotations(pod: Mapping[str, Any]) -> dict[str, str]:
    """Return the annotations of a pod manifest."""
    return dict((pod.get("metadata") or {}).get("annotations") or {})


def has_container(pod: Mapping[str, Any], name: str) -> bool:
    """Check whether a pod manifest already has a container with the given name."""
    containers = (pod.get("spec") or {}).get("containers") or []
    return any(container.get("name") == name for container in containers)


def secret_names(pod_name: str) -> list[str]:
    """Return the names of every variant's secret for a pod."""
    return [variant.secret_name(pod_name) for variant in VARIANTS]


def resolve_with_fallback(
    custom: str | None,
    default: str,
    reporter: Reporter | None = None,
) -> tuple[str, bool]:
    """Resolve a resource quantity override.

    Args:
        custom: Quantity from a pod annotation, or None if not set.
        default: Operator default, assumed to be valid.
        reporter: Reporter used to log an invalid override.

    Returns:
        The quantity to use and whether an invalid override was replaced
        by the default.

    """
    if custom is None:
        return default, False
    try:
        check_quantity(custom)
    except ValueError as err:
        if reporter is not None:
            reporter.warning(f'unable to parse resource "{custom}": {err}')
        return default, True
    return custom, False


def _split_reference(reference: str) -> tuple[str, str] | None:
    """Split ``<object>.<key>`` on the first dot; keys may contain dots."""
    parts = reference.split(".", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


class SidecarHandler:
    """Builds Telegraf sidecars for pods.

    Attributes:
        settings: Operator-wide defaults.

    """

    def __init__(self, context: InjectorContext) -> None:
        """Initialize SidecarHandler from the injector context.

        Args:
            context: Settings, class data and reporter used to build sidecars.

        """
        self.settings = context.settings
        self._class_data = context.class_data
        self._reporter = context.reporter.child("sidecar")

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"SidecarHandler(image={self.settings.telegraf_image!r}, istio={self.settings.enable_istio_injection!r})"

    def should_inject_primary(self, pod: Mapping[str, Any]) -> bool:
        """Check whether the pod asks for the telegraf sidecar and does not have it yet."""
        if has_container(pod, PRIMARY.container_name):
            return False
        return any(ANNOTATION_PREFIX in key for key in pod_annotations(pod))

    def should_inject_istio(self, pod: Mapping[str, Any]) -> bool:
        """Check whether the pod is istio-enabled and does not have the istio sidecar yet."""
        if has_container(pod, ISTIO.container_name) or not self.settings.enable_istio_injection:
            return False
        return ISTIO_SIDECAR_ANNOTATION in pod_annotations(pod)

    def skip(self, pod: Mapping[str, Any]) -> bool:
        """Check whether no sidecar would be added to the pod."""
        return not (self.should_inject_primary(pod) or self.should_inject_istio(pod))

    def class_name_for(self, variant: SidecarVariant, annotations: Mapping[str, str]) -> str:
        """Return the class a variant's configuration is built from."""
        if variant == ISTIO:
            return self.settings.istio_output_class
        return SidecarOptions.from_annotations(annotations).class_name or self.settings.default_class

    def render(self, variant: SidecarVariant, annotations: Mapping[str, str], class_name: str) -> str:
        """Render the configuration of a variant for a pod.

        Args:
            variant: Sidecar variant to render.
            annotations: Current annotations of the pod.
            class_name: Class appended to the configuration.

        Returns:
            The assembled Telegraf configuration.

        Raises:
            ClassNotFoundError: If the class does not exist.
            ConfigInvalidError: If the assembled configuration is not valid TOML.

        """
        class_data = self._class_data.get_data(class_name)
        source = ISTIO_ANNOTATIONS if variant == ISTIO else annotations
        return assemble_conf(
            source,
            class_data,
            enable_internal=self.settings.enable_default_internal_plugin,
        )

    def add_sidecars(self, pod: dict[str, Any], name: str, namespace: str) -> InjectionResult:
        """Add every applicable sidecar to a pod manifest.

        The pod is modified in place. A sidecar whose class is missing or whose
        configuration does not parse is skipped and reported in the result
        messages; the remaining sidecars are still added.

        Args:
            pod: Pod manifest in its JSON form.
            name: Name of the pod.
            namespace: Namespace of the pod.

        Returns:
            The secrets to persist and advisory messages for skipped sidecars.

        """
        result = InjectionResult()
        annotations = pod_annotations(pod)
        options = SidecarOptions.from_annotations(annotations)

        planned: list[tuple[SidecarVariant, str]] = []
        if self.should_inject_primary(pod):
            planned.append((PRIMARY, options.image or self.settings.telegraf_image))
        if self.should_inject_istio(pod):
            planned.append((ISTIO, self.settings.istio_image))

        for variant, image in planned:
            class_name = self.class_name_for(variant, annotations)
            try:
                conf = self.render(variant, annotations, class_name)
            except NonFatalSidecarError as err:
                message = f"telegraf-injector could not add {variant.container_name} sidecar: {err}"
                self._reporter.warning(message)
                result.messages.append(message)
                continue

            ic(variant.container_name, class_name, conf)
            container = self.new_container(variant, options, image)
            spec = pod.setdefault("spec", {})
            spec["containers"] = [*(spec.get("containers") or []), to_dict(container)]
            spec["volumes"] = [*(spec.get("volumes") or []), to_dict(self.new_volume(variant, name))]
            result.secrets.append(
                SecretRecord(
                    name=variant.secret_name(name),
                    namespace=namespace,
                    pod_name=name,
                    class_name=class_name,
                    config=conf,
                )
            )
            self._reporter.info(f"added {variant.container_name} sidecar to {namespace}/{name} using class {class_name}")

        return result

    @staticmethod
    def new_volume(variant: SidecarVariant, pod_name: str) -> client.V1Volume:
        """Return the volume exposing a variant's secret."""
        return client.V1Volume(
            name=variant.volume_name,
            secret=client.V1SecretVolumeSource(secret_name=variant.secret_name(pod_name)),
        )

    def new_container(self, variant: SidecarVariant, options: SidecarOptions, image: str) -> client.V1Container:
        """Build a sidecar container.

        Invalid resource overrides fall back to the operator defaults.

        Args:
            variant: Sidecar variant naming the container and its volume.
            options: Typed pod annotations.
            image: Container image.

        Returns:
            The container specification.

        """
        settings = self.settings
        requests_cpu, _ = resolve_with_fallback(options.requests_cpu, settings.requests_cpu, self._reporter)
        requests_memory, _ = resolve_with_fallback(options.requests_memory, settings.requests_memory, self._reporter)
        limits_cpu, _ = resolve_with_fallback(options.limits_cpu, settings.limits_cpu, self._reporter)
        limits_memory, _ = resolve_with_fallback(options.limits_memory, settings.limits_memory, self._reporter)

        command = ["telegraf", "--config", CONFIG_FILE]
        if settings.watch_config:
            command.extend(["--watch-config", settings.watch_config])

        env_from = None
        if options.secret_env:
            env_from = [
                client.V1EnvFromSource(
                    secret_ref=client.V1SecretEnvSource(name=options.secret_env, optional=True),
                )
            ]

        return client.V1Container(
            name=variant.container_name,
            image=image,
            command=command,
            resources=client.V1ResourceRequirements(
                limits={"cpu": limits_cpu, "memory": limits_memory},
                requests={"cpu": requests_cpu, "memory": requests_memory},
            ),
            env=self.new_env(options),
            env_from=env_from,
            volume_mounts=[client.V1VolumeMount(name=variant.volume_name, mount_path=CONFIG_MOUNT_PATH)],
        )

    def new_env(self, options: SidecarOptions) -> list[client.V1EnvVar]:
        """Build the environment of a sidecar from the env annotation families.

        Malformed config map and secret references are logged and skipped.
        """
        env = [
            client.V1EnvVar(
                name="NODENAME",
                value_from=client.V1EnvVarSource(field_ref=client.V1ObjectFieldSelector(field_path="spec.nodeName")),
            )
        ]

        for name, value in options.env_literals:
            env.append(client.V1EnvVar(name=name, value=value))

        for name, field_path in options.env_fieldrefs:
            env.append(
                client.V1EnvVar(
                    name=name,
                    value_from=client.V1EnvVarSource(field_ref=client.V1ObjectFieldSelector(field_path=field_path)),
                )
            )

        for name, reference in options.env_configmapkeyrefs:
            parts = _split_reference(reference)
            if parts is None:
                self._reporter.warning(f"unable to parse configmapkeyref {reference!r} for {name}; skipping")
                continue
            env.append(
                client.V1EnvVar(
                    name=name,
                    value_from=client.V1EnvVarSource(
                        config_map_key_ref=client.V1ConfigMapKeySelector(name=parts[0], key=parts[1]),
                    ),
                )
            )

        for name, reference in options.env_secretkeyrefs:
            parts = _split_reference(reference)
            if parts is None:
                self._reporter.warning(f"unable to parse secretkeyref {reference!r} for {name}; skipping")
                continue
            env.append(
                client.V1EnvVar(
                    name=name,
                    value_from=client.V1EnvVarSource(
                        secret_key_ref=client.V1SecretKeySelector(name=parts[0], key=parts[1]),
                    ),
                )
            )

        return env
