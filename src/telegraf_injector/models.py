"""Data models for telegraf-injector.

This module holds the annotation vocabulary, the sidecar variants, the typed
view of a pod's annotations and the secret record persisted for each sidecar.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import NamedTuple

from kubernetes import client

# Shared prefix for all annotations.
ANNOTATION_PREFIX = "telegraf.influxdata.com"

# Port telegraf should scrape; equivalent to ANNOTATION_PORTS with a single port.
ANNOTATION_PORT = f"{ANNOTATION_PREFIX}/port"
# Comma separated list of ports to scrape.
ANNOTATION_PORTS = f"{ANNOTATION_PREFIX}/ports"
# Path to scrape, applies to all ports.
ANNOTATION_PATH = f"{ANNOTATION_PREFIX}/path"
# Scheme to scrape with, applies to all ports.
ANNOTATION_SCHEME = f"{ANNOTATION_PREFIX}/scheme"
# Go style duration, e.g 5s, 30s, 2m.
ANNOTATION_INTERVAL = f"{ANNOTATION_PREFIX}/interval"
ANNOTATION_RAW_INPUT = f"{ANNOTATION_PREFIX}/inputs"
ANNOTATION_INTERNAL = f"{ANNOTATION_PREFIX}/internal"
ANNOTATION_CLASS = f"{ANNOTATION_PREFIX}/class"
ANNOTATION_SECRET_ENV = f"{ANNOTATION_PREFIX}/secret-env"
ANNOTATION_IMAGE = f"{ANNOTATION_PREFIX}/image"
ANNOTATION_REQUESTS_CPU = f"{ANNOTATION_PREFIX}/requests-cpu"
ANNOTATION_REQUESTS_MEMORY = f"{ANNOTATION_PREFIX}/requests-memory"
ANNOTATION_LIMITS_CPU = f"{ANNOTATION_PREFIX}/limits-cpu"
ANNOTATION_LIMITS_MEMORY = f"{ANNOTATION_PREFIX}/limits-memory"

ENV_LITERAL_PREFIX = f"{ANNOTATION_PREFIX}/env-literal-"
ENV_FIELDREF_PREFIX = f"{ANNOTATION_PREFIX}/env-fieldref-"
ENV_CONFIGMAPKEYREF_PREFIX = f"{ANNOTATION_PREFIX}/env-configmapkeyref-"
ENV_SECRETKEYREF_PREFIX = f"{ANNOTATION_PREFIX}/env-secretkeyref-"
GLOBAL_TAG_LITERAL_PREFIX = f"{ANNOTATION_PREFIX}/global-tag-literal-"

# Set by the istio injector; only its presence is checked.
ISTIO_SIDECAR_ANNOTATION = "sidecar.istio.io/status"

SECRET_DATA_KEY = "telegraf.conf"
SECRET_TYPE = "Opaque"
SECRET_LABEL_CLASS = f"{ANNOTATION_PREFIX}/class"
SECRET_LABEL_POD = f"{ANNOTATION_PREFIX}/pod"
SECRET_ANNOTATION_KEY = "app.kubernetes.io/managed-by"
SECRET_ANNOTATION_VALUE = "telegraf-operator"


class SidecarVariant(NamedTuple):
    """Naming of one kind of injected sidecar.

    Attributes:
        container_name: Name of the injected container.
        volume_name: Name of the volume holding the configuration secret.
        secret_prefix: Prefix of the secret name, followed by the pod name.

    """

    container_name: str
    volume_name: str
    secret_prefix: str

    def secret_name(self, pod_name: str) -> str:
        """Return the name of this variant's secret for a pod."""
        return f"{self.secret_prefix}-{pod_name}"


PRIMARY = SidecarVariant(container_name="telegraf", volume_name="telegraf-config", secret_prefix="telegraf-config")
ISTIO = SidecarVariant(
    container_name="telegraf-istio",
    volume_name="telegraf-istio-config",
    secret_prefix="telegraf-istio-config",
)
VARIANTS = (PRIMARY, ISTIO)


def variant_for_secret(secret_name: str) -> SidecarVariant:
    """Return the sidecar variant a secret belongs to, judged by its name."""
    # the istio prefix is the more specific one, so it is checked first
    if secret_name.startswith(f"{ISTIO.secret_prefix}-"):
        return ISTIO
    return PRIMARY


def _prefixed(annotations: Mapping[str, str], prefix: str) -> list[tuple[str, str]]:
    """Return (suffix, value) pairs for annotations under a prefix, sorted by suffix."""
    return sorted(
        (key[len(prefix):], value)
        for key, value in annotations.items()
        if key.startswith(prefix) and len(key) > len(prefix)
    )


def env_literals(annotations: Mapping[str, str]) -> list[tuple[str, str]]:
    """Return environment variables given as literal values."""
    return _prefixed(annotations, ENV_LITERAL_PREFIX)


def env_fieldrefs(annotations: Mapping[str, str]) -> list[tuple[str, str]]:
    """Return environment variables given as pod field paths."""
    return _prefixed(annotations, ENV_FIELDREF_PREFIX)


def env_configmapkeyrefs(annotations: Mapping[str, str]) -> list[tuple[str, str]]:
    """Return environment variables given as ``<configmap>.<key>`` references."""
    return _prefixed(annotations, ENV_CONFIGMAPKEYREF_PREFIX)


def env_secretkeyrefs(annotations: Mapping[str, str]) -> list[tuple[str, str]]:
    """Return environment variables given as ``<secret>.<key>`` references."""
    return _prefixed(annotations, ENV_SECRETKEYREF_PREFIX)


def global_tags(annotations: Mapping[str, str]) -> list[tuple[str, str]]:
    """Return global tags given as literal values."""
    return _prefixed(annotations, GLOBAL_TAG_LITERAL_PREFIX)


def metrics_ports(annotations: Mapping[str, str]) -> list[str]:
    """Gather unique ports from both the port and ports annotations.

    Ports are sorted as strings so the rendered configuration does not
    depend on annotation order.

    Args:
        annotations: Pod annotations.

    Returns:
        Sorted list of distinct ports, empty when none are configured.

    """
    unique: set[str] = set()
    if ANNOTATION_PORT in annotations:
        unique.add(annotations[ANNOTATION_PORT].strip())
    if ANNOTATION_PORTS in annotations:
        unique.update(port.strip() for port in annotations[ANNOTATION_PORTS].split(","))
    unique.discard("")
    return sorted(unique)


_TRUE_VALUES = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_VALUES = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def parse_bool(value: str) -> bool | None:
    """Parse a boolean annotation, returning None when the value is not a boolean."""
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


@dataclass(frozen=True, slots=True)
class SidecarOptions:
    """Typed view of the telegraf annotations of one pod.

    Built by ``from_annotations``, which visits every recognized key and
    prefix once; absent annotations are left as None or empty.
    """

    ports: list[str] = field(default_factory=list)
    path: str = "/metrics"
    scheme: str = "http"
    interval: str | None = None
    raw_input: str | None = None
    internal: bool | None = None
    class_name: str | None = None
    image: str | None = None
    requests_cpu: str | None = None
    requests_memory: str | None = None
    limits_cpu: str | None = None
    limits_memory: str | None = None
    secret_env: str | None = None
    env_literals: list[tuple[str, str]] = field(default_factory=list)
    env_fieldrefs: list[tuple[str, str]] = field(default_factory=list)
    env_configmapkeyrefs: list[tuple[str, str]] = field(default_factory=list)
    env_secretkeyrefs: list[tuple[str, str]] = field(default_factory=list)
    global_tags: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_annotations(cls, annotations: Mapping[str, str]) -> "SidecarOptions":
        """Build options from a pod's annotations.

        An internal annotation that is not a boolean is treated as absent.
        """
        internal = None
        if ANNOTATION_INTERNAL in annotations:
            internal = parse_bool(annotations[ANNOTATION_INTERNAL])
        return cls(
            ports=metrics_ports(annotations),
            path=annotations.get(ANNOTATION_PATH, "/metrics"),
            scheme=annotations.get(ANNOTATION_SCHEME, "http"),
            interval=annotations.get(ANNOTATION_INTERVAL),
            raw_input=annotations.get(ANNOTATION_RAW_INPUT),
            internal=internal,
            class_name=annotations.get(ANNOTATION_CLASS),
            image=annotations.get(ANNOTATION_IMAGE),
            requests_cpu=annotations.get(ANNOTATION_REQUESTS_CPU),
            requests_memory=annotations.get(ANNOTATION_REQUESTS_MEMORY),
            limits_cpu=annotations.get(ANNOTATION_LIMITS_CPU),
            limits_memory=annotations.get(ANNOTATION_LIMITS_MEMORY),
            secret_env=annotations.get(ANNOTATION_SECRET_ENV),
            env_literals=env_literals(annotations),
            env_fieldrefs=env_fieldrefs(annotations),
            env_configmapkeyrefs=env_configmapkeyrefs(annotations),
            env_secretkeyrefs=env_secretkeyrefs(annotations),
            global_tags=global_tags(annotations),
        )


@dataclass(frozen=True, slots=True)
class SecretRecord:
    """A rendered Telegraf configuration waiting to be persisted as a secret.

    Attributes:
        name: Secret name, derived from the variant and pod name.
        namespace: Namespace of the pod.
        pod_name: Name of the pod the sidecar is injected into.
        class_name: Resolved Telegraf class.
        config: Assembled Telegraf configuration.

    """

    name: str
    namespace: str
    pod_name: str
    class_name: str
    config: str

    def to_body(self) -> client.V1Secret:
        """Return the V1Secret sent to the API server for this record."""
        return client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=client.V1ObjectMeta(
                name=self.name,
                namespace=self.namespace,
                labels={
                    SECRET_LABEL_CLASS: self.class_name,
                    SECRET_LABEL_POD: self.pod_name,
                },
                annotations={SECRET_ANNOTATION_KEY: SECRET_ANNOTATION_VALUE},
            ),
            type=SECRET_TYPE,
            string_data={SECRET_DATA_KEY: self.config},
        )


@dataclass(slots=True)
class InjectionResult:
    """Outcome of running the sidecar gates against one pod.

    Attributes:
        secrets: Secrets to create or update, one per injected sidecar.
        messages: Advisory messages for sidecars that were skipped.

    """

    secrets: list[SecretRecord] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
