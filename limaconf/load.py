"""Loading an instance configuration and mixing in the defaults and override files."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from .defaults import fill_default
from .model import LimaYAML, ModelError

log = logging.getLogger(__name__)

DEFAULT_FILENAME = "default.yaml"
OVERRIDE_FILENAME = "override.yaml"

_MERGE_TAG = "tag:yaml.org,2002:merge"


class LoadError(ValueError):
    """A configuration file could not be parsed."""


class _StrictLoader(yaml.SafeLoader):
    """Safe loader that rejects duplicate mapping keys."""

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen = set()
            for key_node, _ in node.value:
                if not isinstance(key_node, yaml.ScalarNode) or key_node.tag == _MERGE_TAG:
                    continue
                key = (key_node.tag, key_node.value)
                if key in seen:
                    raise yaml.constructor.ConstructorError(
                        "while constructing a mapping",
                        node.start_mark,
                        f"duplicate key {key_node.value!r}",
                        key_node.start_mark,
                    )
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _unmarshal(data: Union[bytes, str], comment: str) -> LimaYAML:
    text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    try:
        document: Any = yaml.load(text, Loader=_StrictLoader)
        return LimaYAML.from_dict(document)
    except (yaml.YAMLError, ModelError, UnicodeDecodeError) as exc:
        raise LoadError(f"failed to unmarshal YAML ({comment}): {exc}") from exc


def _load_optional(path: Path, kind: str, file_path: str) -> LimaYAML:
    try:
        content = path.read_bytes()
    except FileNotFoundError:
        return LimaYAML()
    log.debug('Mixing "%s" into "%s"', path, file_path)
    return _unmarshal(content, f'{kind} file "{path}"')


def load(
    data: Union[bytes, str],
    file_path: Union[str, os.PathLike],
    config_dir: Optional[Union[str, os.PathLike]] = None,
) -> LimaYAML:
    """Parse a configuration and fill unset fields with defaults.

    ``default.yaml`` and ``override.yaml`` in ``config_dir`` are mixed in when
    present. The result is not validated.
    """
    file_path = os.fspath(file_path)
    y = _unmarshal(data, f'main file "{file_path}"')
    d = LimaYAML()
    o = LimaYAML()
    if config_dir is not None:
        directory = Path(config_dir)
        d = _load_optional(directory / DEFAULT_FILENAME, "default", file_path)
        o = _load_optional(directory / OVERRIDE_FILENAME, "override", file_path)
    fill_default(y, d, o, file_path)
    return y