"""Process settings and the dependency context shared by all components.

The settings are read once by the CLI; the context bundles them with the
class data, the Kubernetes API client and the reporter, and is passed to
every component constructor.
"""

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from icecream import ic
from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException
from kubernetes.utils import parse_quantity

from telegraf_injector.console import Reporter
from telegraf_injector.exceptions import ClusterConnectionError

if TYPE_CHECKING:
    from telegraf_injector.classes import ClassData

DEFAULT_TELEGRAF_IMAGE = "docker.io/library/telegraf:1.19"
DEFAULT_REQUESTS_CPU = "10m"
DEFAULT_REQUESTS_MEMORY = "10Mi"
DEFAULT_LIMITS_CPU = "200m"
DEFAULT_LIMITS_MEMORY = "200Mi"
DEFAULT_CLASSES_DIRECTORY = "/config/classes"
# seconds to wait for class file events to settle before updating secrets
DEFAULT_HOT_RELOAD_DELAY = 10.0

# Quantity grammar accepted by the API server
_QUANTITY_PATTERN = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)(([KMGTPE]i)|[numkMGTPE]|[eE][+-]?\d+)?")


def check_quantity(value: str) -> None:
    """Check that a value is a resource quantity the API server accepts.

    The value must match the quantity grammar as a whole, so values such as
    ``NaN``, ``1_000`` or ``1K`` are rejected even though ``parse_quantity``
    accepts them.

    Args:
        value: Quantity to check.

    Raises:
        ValueError: If the value is not a valid quantity.

    """
    if not _QUANTITY_PATTERN.fullmatch(value):
        raise ValueError(f"quantities must match the regular expression '{_QUANTITY_PATTERN.pattern}'")
    parse_quantity(value)


@dataclass(frozen=True, slots=True)
class InjectorSettings:
    """Operator-wide defaults for injected sidecars.

    Attributes:
        telegraf_image: Image used for sidecars without an image annotation.
        default_class: Class used for pods without a class annotation.
        enable_default_internal_plugin: Add ``[[inputs.internal]]`` unless a pod opts out.
        enable_istio_injection: Inject a second sidecar into istio-enabled pods.
        istio_output_class: Class appended to the istio sidecar configuration.
        istio_telegraf_image: Image of the istio sidecar; empty means ``telegraf_image``.
        watch_config: Value of telegraf's ``--watch-config`` flag; empty disables it.
        requests_cpu: Default CPU request.
        requests_memory: Default memory request.
        limits_cpu: Default CPU limit.
        limits_memory: Default memory limit.
        require_annotations_for_secret: Also require the managed-by annotation
            before updating an existing secret.
        classes_directory: Directory holding one file per class.
        hot_reload_delay: Quiescence window of the classes watcher, in seconds.

    """

    telegraf_image: str = DEFAULT_TELEGRAF_IMAGE
    default_class: str = "default"
    enable_default_internal_plugin: bool = False
    enable_istio_injection: bool = False
    istio_output_class: str = "istio"
    istio_telegraf_image: str = ""
    watch_config: str = ""
    requests_cpu: str = DEFAULT_REQUESTS_CPU
    requests_memory: str = DEFAULT_REQUESTS_MEMORY
    limits_cpu: str = DEFAULT_LIMITS_CPU
    limits_memory: str = DEFAULT_LIMITS_MEMORY
    require_annotations_for_secret: bool = False
    classes_directory: str = DEFAULT_CLASSES_DIRECTORY
    hot_reload_delay: float = DEFAULT_HOT_RELOAD_DELAY

    @property
    def istio_image(self) -> str:
        """The image of the istio sidecar."""
        return self.istio_telegraf_image or self.telegraf_image

    def validate_requests_and_limits(self) -> None:
        """Check that all default quantities parse.

        Raises:
            ValueError: If any default request or limit is not a valid quantity.

        """
        for label, value in (
            ("requests-cpu", self.requests_cpu),
            ("requests-memory", self.requests_memory),
            ("limits-cpu", self.limits_cpu),
            ("limits-memory", self.limits_memory),
        ):
            try:
                check_quantity(value)
            except ValueError as err:
                raise ValueError(f"invalid default {label} {value!r}: {err}") from err

    def summary(self) -> dict[str, str]:
        """Return the settings as labels and values for the startup panel."""
        return {
            "Image": self.telegraf_image,
            "Default class": self.default_class,
            "Classes directory": self.classes_directory,
            "Internal plugin": str(self.enable_default_internal_plugin).lower(),
            "Istio injection": str(self.enable_istio_injection).lower(),
            "Istio class": self.istio_output_class,
            "Istio image": self.istio_image,
            "Watch config": self.watch_config or "-",
            "Requests": f"cpu={self.requests_cpu} memory={self.requests_memory}",
            "Limits": f"cpu={self.limits_cpu} memory={self.limits_memory}",
            "Strict ownership": str(self.require_annotations_for_secret).lower(),
        }


@dataclass(slots=True)
class InjectorContext:
    """Everything a component needs, constructed once at process start.

    Attributes:
        settings: Operator-wide defaults.
        class_data: Source of Telegraf class text.
        core_api: Kubernetes CoreV1Api client.
        reporter: Reporter for log output.

    """

    settings: InjectorSettings
    class_data: "ClassData"
    core_api: client.CoreV1Api
    reporter: Reporter = field(default_factory=Reporter)


def load_core_api() -> client.CoreV1Api:
    """Load the Kubernetes client configuration and return a CoreV1Api.

    The in-cluster service account configuration is tried first, then the
    local kubeconfig.

    Returns:
        A configured CoreV1Api instance.

    Raises:
        ClusterConnectionError: If neither configuration can be loaded.

    """
    try:
        config.load_incluster_config()
        ic("using in-cluster configuration")
    except ConfigException:
        try:
            config.load_kube_config()
            ic("using kubeconfig")
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e
    return client.CoreV1Api()
