#!/usr/bin/env python
"""Command-line interface for telegraf-injector.

This module provides the main CLI entry point: it reads the settings,
validates the class data, connects to the cluster, and then either answers
a single AdmissionReview or runs the classes hot-reload loop.
"""

import sys
from typing import TextIO

import click
import yaml
from icecream import ic

from telegraf_injector import __version__
from telegraf_injector.admission import PodInjector
from telegraf_injector.classes import DirectoryClassData
from telegraf_injector.console import Reporter, summary_panel
from telegraf_injector.exceptions import ClassDataError, ClusterConnectionError
from telegraf_injector.settings import (
    DEFAULT_CLASSES_DIRECTORY,
    DEFAULT_HOT_RELOAD_DELAY,
    DEFAULT_LIMITS_CPU,
    DEFAULT_LIMITS_MEMORY,
    DEFAULT_REQUESTS_CPU,
    DEFAULT_REQUESTS_MEMORY,
    DEFAULT_TELEGRAF_IMAGE,
    InjectorContext,
    InjectorSettings,
    load_core_api,
)
from telegraf_injector.updater import SecretsUpdater
from telegraf_injector.watcher import ClassesWatcher

_ENV_PREFIX = "TELEGRAF_INJECTOR_"


def answer_review(context: InjectorContext, stream: TextIO) -> str:
    """Answer an AdmissionReview read from a stream.

    Args:
        context: Injector context.
        stream: Stream holding the AdmissionReview as YAML or JSON.

    Returns:
        The response AdmissionReview rendered as YAML.

    Raises:
        click.ClickException: If the input is not an AdmissionReview document.

    """
    try:
        document = yaml.safe_load(stream)
    except yaml.YAMLError as err:
        raise click.ClickException(f"AdmissionReview contains malformed YAML: {err}") from err
    if not isinstance(document, dict):
        raise click.ClickException("input is not an AdmissionReview document")

    ic(document)
    return yaml.safe_dump(PodInjector(context).review(document), sort_keys=False)


def run_hot_reload(context: InjectorContext) -> None:
    """Watch the classes directory and update secrets until interrupted.

    Args:
        context: Injector context.

    """
    updater = SecretsUpdater(context)
    reporter = context.reporter.child("watcher")
    with ClassesWatcher(
        updater.on_change,
        event_delay=context.settings.hot_reload_delay,
        reporter=reporter,
    ) as watcher:
        watcher.watch(context.settings.classes_directory)
        reporter.success(f"watching {context.settings.classes_directory} for class changes")
        try:
            watcher.wait()
        except KeyboardInterrupt:
            reporter.info("shutting down")


@click.command(help="Inject Telegraf sidecars into pods and keep their configuration in sync with Telegraf classes")
@click.option("--version", "-v", required=False, is_flag=True, help="print version")
@click.option("--debug", required=False, is_flag=True, help="print debug information")
@click.option(
    "--telegraf-classes-directory",
    "classes_directory",
    default=DEFAULT_CLASSES_DIRECTORY,
    envvar=f"{_ENV_PREFIX}CLASSES_DIRECTORY",
    show_default=True,
    help="directory holding one file per telegraf class",
)
@click.option(
    "--telegraf-default-class",
    "default_class",
    default="default",
    envvar=f"{_ENV_PREFIX}DEFAULT_CLASS",
    show_default=True,
    help="default telegraf class to use",
)
@click.option(
    "--telegraf-image",
    default=DEFAULT_TELEGRAF_IMAGE,
    envvar=f"{_ENV_PREFIX}TELEGRAF_IMAGE",
    show_default=True,
    help="telegraf image to inject",
)
@click.option(
    "--enable-default-internal-plugin",
    is_flag=True,
    envvar=f"{_ENV_PREFIX}ENABLE_DEFAULT_INTERNAL_PLUGIN",
    help="enable the internal plugin for all sidecars",
)
@click.option(
    "--enable-istio-injection",
    is_flag=True,
    envvar=f"{_ENV_PREFIX}ENABLE_ISTIO_INJECTION",
    help="inject a telegraf-istio sidecar into istio-enabled pods",
)
@click.option(
    "--istio-output-class",
    default="istio",
    envvar=f"{_ENV_PREFIX}ISTIO_OUTPUT_CLASS",
    show_default=True,
    help="class appended to the telegraf-istio configuration",
)
@click.option(
    "--istio-telegraf-image",
    default="",
    envvar=f"{_ENV_PREFIX}ISTIO_TELEGRAF_IMAGE",
    help="telegraf image for the telegraf-istio sidecar (defaults to --telegraf-image)",
)
@click.option(
    "--telegraf-watch-config",
    "watch_config",
    default="",
    envvar=f"{_ENV_PREFIX}WATCH_CONFIG",
    help="value of telegraf's --watch-config flag (e.g. inotify or poll)",
)
@click.option("--telegraf-requests-cpu", "requests_cpu", default=DEFAULT_REQUESTS_CPU, show_default=True)
@click.option("--telegraf-requests-memory", "requests_memory", default=DEFAULT_REQUESTS_MEMORY, show_default=True)
@click.option("--telegraf-limits-cpu", "limits_cpu", default=DEFAULT_LIMITS_CPU, show_default=True)
@click.option("--telegraf-limits-memory", "limits_memory", default=DEFAULT_LIMITS_MEMORY, show_default=True)
@click.option(
    "--require-annotations-for-secret",
    is_flag=True,
    envvar=f"{_ENV_PREFIX}REQUIRE_ANNOTATIONS_FOR_SECRET",
    help="only update secrets carrying the managed-by annotation",
)
@click.option(
    "--hot-reload-delay",
    type=float,
    default=DEFAULT_HOT_RELOAD_DELAY,
    envvar=f"{_ENV_PREFIX}HOT_RELOAD_DELAY",
    show_default=True,
    help="seconds to wait for class changes to settle before updating secrets",
)
@click.option("--review", type=click.File("r"), required=False, help="AdmissionReview file to answer ('-' for stdin)")
def cli(
    version: bool,
    debug: bool,
    classes_directory: str,
    default_class: str,
    telegraf_image: str,
    enable_default_internal_plugin: bool,
    enable_istio_injection: bool,
    istio_output_class: str,
    istio_telegraf_image: str,
    watch_config: str,
    requests_cpu: str,
    requests_memory: str,
    limits_cpu: str,
    limits_memory: str,
    require_annotations_for_secret: bool,
    hot_reload_delay: float,
    review: TextIO | None,
) -> None:
    """Process CLI arguments and run the injector.

    Args:
        version: Print version and exit.
        debug: Enable debug output.
        classes_directory: Directory holding the telegraf classes.
        default_class: Class used when a pod does not select one.
        telegraf_image: Default sidecar image.
        enable_default_internal_plugin: Enable the internal input by default.
        enable_istio_injection: Inject the telegraf-istio sidecar.
        istio_output_class: Class of the telegraf-istio sidecar.
        istio_telegraf_image: Image of the telegraf-istio sidecar.
        watch_config: Telegraf --watch-config value.
        requests_cpu: Default CPU request.
        requests_memory: Default memory request.
        limits_cpu: Default CPU limit.
        limits_memory: Default memory limit.
        require_annotations_for_secret: Require the managed-by annotation.
        hot_reload_delay: Quiescence window of the classes watcher.
        review: AdmissionReview to answer instead of running the watcher.

    """
    if not debug:
        ic.disable()

    if version:
        click.echo(__version__)
        return

    settings = InjectorSettings(
        telegraf_image=telegraf_image,
        default_class=default_class,
        enable_default_internal_plugin=enable_default_internal_plugin,
        enable_istio_injection=enable_istio_injection,
        istio_output_class=istio_output_class,
        istio_telegraf_image=istio_telegraf_image,
        watch_config=watch_config,
        requests_cpu=requests_cpu,
        requests_memory=requests_memory,
        limits_cpu=limits_cpu,
        limits_memory=limits_memory,
        require_annotations_for_secret=require_annotations_for_secret,
        classes_directory=classes_directory,
        hot_reload_delay=hot_reload_delay,
    )
    ic(settings)
    try:
        settings.validate_requests_and_limits()
    except ValueError as e:
        raise click.ClickException(str(e)) from None

    reporter = Reporter(verbose=debug)
    class_data = DirectoryClassData(settings.classes_directory, reporter.child("classes"))
    try:
        class_data.validate()
    except ClassDataError as e:
        raise click.ClickException(str(e)) from None

    try:
        core_api = load_core_api()
    except ClusterConnectionError as e:
        reporter.error("Cluster connection failed", e)
        sys.exit(1)

    context = InjectorContext(settings=settings, class_data=class_data, core_api=core_api, reporter=reporter)

    if review is not None:
        click.echo(answer_review(context, review), nl=False)
        return

    summary_panel("telegraf-injector", settings.summary())
    run_hot_reload(context)


if __name__ == "__main__":
    cli()
