"""telegraf-injector: Telegraf sidecar injection for Kubernetes pods.

This package provides the admission handler that adds Telegraf sidecars to
annotated pods, and the hot-reload loop that keeps their configuration
secrets in sync with the Telegraf classes.

Example usage:
    from telegraf_injector import DirectoryClassData, InjectorContext, InjectorSettings, PodInjector

    settings = InjectorSettings(classes_directory="/config/classes")
    context = InjectorContext(
        settings=settings,
        class_data=DirectoryClassData(settings.classes_directory),
        core_api=load_core_api(),
    )
    response = PodInjector(context).review(admission_review)
"""

__version__ = "0.1.0"

from telegraf_injector.admission import PodInjector
from telegraf_injector.assembler import assemble_conf
from telegraf_injector.classes import DirectoryClassData
from telegraf_injector.exceptions import (
    ClassDataError,
    ClassNotFoundError,
    ClusterConnectionError,
    ConfigInvalidError,
    InjectorError,
    NonFatalSidecarError,
    OwnershipConflictError,
    SecretLabelsError,
    UpstreamApiError,
)
from telegraf_injector.secrets import SecretManager
from telegraf_injector.settings import InjectorContext, InjectorSettings, load_core_api
from telegraf_injector.sidecar import SidecarHandler
from telegraf_injector.updater import SecretsUpdater
from telegraf_injector.watcher import ClassesWatcher

__all__ = [
    # Version
    "__version__",
    # Classes
    "ClassesWatcher",
    "DirectoryClassData",
    "InjectorContext",
    "InjectorSettings",
    "PodInjector",
    "SecretManager",
    "SecretsUpdater",
    "SidecarHandler",
    # Functions
    "assemble_conf",
    "load_core_api",
    # Exceptions
    "InjectorError",
    "NonFatalSidecarError",
    "ConfigInvalidError",
    "ClassNotFoundError",
    "ClassDataError",
    "OwnershipConflictError",
    "SecretLabelsError",
    "UpstreamApiError",
    "ClusterConnectionError",
]
