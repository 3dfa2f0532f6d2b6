"""Assembly of Telegraf configuration from pod annotations and class data.

The configuration is the concatenation, in this order, of a prometheus
input for the annotated ports, the internal input, the raw inputs
annotation, the class text and the global tags. The result must parse as
TOML.
"""

import json
import tomllib
from collections.abc import Mapping

from telegraf_injector.exceptions import ConfigInvalidError
from telegraf_injector.models import SidecarOptions

GLOBAL_TAGS_HEADER = "[global_tags]"


def _prometheus_section(options: SidecarOptions) -> str:
    urls = [f"{options.scheme}://127.0.0.1:{port}{options.path}" for port in options.ports]
    interval = f'interval = "{options.interval}"' if options.interval is not None else ""
    return "[[inputs.prometheus]]\n  urls = [\"{}\"]\n  {}\n".format('", "'.join(urls), interval)


def _merge_global_tags(conf: str, tags: list[tuple[str, str]]) -> str:
    """Add global tag lines to the first ``[global_tags]`` table, or append a new one."""
    lines = "\n".join(f"  {key} = {json.dumps(value, ensure_ascii=False)}" for key, value in tags)
    if GLOBAL_TAGS_HEADER in conf:
        return conf.replace(GLOBAL_TAGS_HEADER, f"{GLOBAL_TAGS_HEADER}\n{lines}", 1)
    return f"{conf}\n{GLOBAL_TAGS_HEADER}\n{lines}"


def assemble_conf(
    annotations: Mapping[str, str],
    class_data: str,
    *,
    enable_internal: bool = False,
) -> str:
    """Assemble the Telegraf configuration for one sidecar.

    Args:
        annotations: Pod annotations driving the pod-specific sections.
        class_data: Text of the resolved Telegraf class, appended verbatim.
        enable_internal: Operator default for the internal input; a boolean
            internal annotation overrides it.

    Returns:
        The assembled configuration.

    Raises:
        ConfigInvalidError: If the assembled configuration is not valid TOML.

    """
    options = SidecarOptions.from_annotations(annotations)
    conf = ""

    if options.ports:
        conf = f"{conf}\n{_prometheus_section(options)}"

    internal = enable_internal if options.internal is None else options.internal
    if internal:
        conf = f"{conf}\n[[inputs.internal]]\n"

    if options.raw_input is not None:
        conf = f"{conf}\n{options.raw_input}"

    conf = f"{conf}\n{class_data}"

    if options.global_tags:
        conf = _merge_global_tags(conf, options.global_tags)

    try:
        tomllib.loads(conf)
    except tomllib.TOMLDecodeError as err:
        raise ConfigInvalidError(f"resulting Telegraf is not a valid file: {err}") from err

    return conf
