"""Shared test fixtures for telegraf-injector tests."""

import base64
import io
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from rich.console import Console

from telegraf_injector.classes import DirectoryClassData
from telegraf_injector.console import _THEME, Reporter
from telegraf_injector.models import SECRET_ANNOTATION_KEY, SECRET_ANNOTATION_VALUE, SECRET_DATA_KEY
from telegraf_injector.settings import InjectorContext, InjectorSettings

DEFAULT_CLASS = '[[outputs.file]]\n  files = ["stdout"]\n'
ISTIO_CLASS = "# istio outputs\n"


@pytest.fixture
def log_output():
    """Buffer receiving everything written by the test reporter."""
    return io.StringIO()


@pytest.fixture
def reporter(log_output):
    """Reporter writing to an in-memory console."""
    return Reporter("test", target=Console(file=log_output, width=300, theme=_THEME), verbose=True)


@pytest.fixture
def classes_dir(tmp_path):
    """Classes directory with a default, an istio and an empty class."""
    directory = tmp_path / "classes"
    directory.mkdir()
    (directory / "default").write_text(DEFAULT_CLASS)
    (directory / "istio").write_text(ISTIO_CLASS)
    (directory / "empty").write_text("")
    return directory


@pytest.fixture
def core_api():
    """Mock CoreV1Api."""
    return MagicMock()


@pytest.fixture
def make_context(classes_dir, core_api, reporter):
    """Factory building an InjectorContext with settings overrides."""

    def _make(**overrides):
        settings = InjectorSettings(classes_directory=str(classes_dir), **overrides)
        return InjectorContext(
            settings=settings,
            class_data=DirectoryClassData(classes_dir, reporter),
            core_api=core_api,
            reporter=reporter,
        )

    return _make


@pytest.fixture
def context(make_context):
    """InjectorContext with default settings."""
    return make_context()


@pytest.fixture
def make_secret():
    """Factory building V1Secret objects as returned by the API server."""

    def _make(
        name="telegraf-config-mypod",
        namespace="default",
        data=None,
        secret_type="Opaque",
        labels=None,
        annotations=None,
    ):
        if data is None:
            data = {SECRET_DATA_KEY: "[agent]\n"}
        if annotations is None:
            annotations = {SECRET_ANNOTATION_KEY: SECRET_ANNOTATION_VALUE}
        return client.V1Secret(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels, annotations=annotations),
            type=secret_type,
            data={key: base64.b64encode(value.encode()).decode() for key, value in data.items()},
        )

    return _make


@pytest.fixture
def make_pod():
    """Factory building pod manifests in their JSON form."""

    def _make(annotations=None, name="mypod", containers=None):
        metadata = {"name": name, "namespace": "default"}
        if annotations is not None:
            metadata["annotations"] = annotations
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": metadata,
            "spec": {"containers": containers if containers is not None else [{"name": "app", "image": "nginx"}]},
        }

    return _make
