"""Data documents and their conversion into the value model."""

import json
import logging
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import yaml

from checkonaut.errors import DocumentError, ValueModelError
from checkonaut.models.value import Value, to_value

logger = logging.getLogger(__name__)


class DataFormat(str, Enum):
    """Supported data file formats."""
    JSON = "json"
    YAML = "yaml"
    TOML = "toml"

    @classmethod
    def from_path(cls, path: Path) -> "DataFormat | None":
        """Derive the format from a file extension (case-insensitive)."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return cls.JSON
        if suffix in (".yaml", ".yml"):
            return cls.YAML
        if suffix == ".toml":
            return cls.TOML
        return None


@dataclass(frozen=True)
class Document:
    """A parsed data file.

    JSON and TOML documents hold exactly one object. A YAML stream holds one
    object per embedded document.
    """
    path: Path
    format: DataFormat
    objects: tuple[Value, ...]


def load_document(path: Path) -> Document:
    """Read and parse a data file into a Document.

    Args:
        path: Path to a ``.json``, ``.yaml``, ``.yml`` or ``.toml`` file

    Returns:
        Document with an absolute path and its objects

    Raises:
        DocumentError: If the file is unreadable, malformed, or of unknown type
    """
    path = path.resolve()
    data_format = DataFormat.from_path(path)
    if data_format is None:
        raise DocumentError(path, "unrecognised file extension")

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DocumentError(path, f"failed to read data file: {e}") from e

    try:
        objects = tuple(to_value(obj) for obj in _parse(text, data_format))
    except ValueModelError as e:
        raise DocumentError(path, str(e)) from e

    logger.debug(f"Loaded {len(objects)} object(s) from {path}")
    return Document(path=path, format=data_format, objects=objects)


def _parse(text: str, data_format: DataFormat) -> list:
    try:
        if data_format is DataFormat.JSON:
            return [json.loads(text)]
        if data_format is DataFormat.TOML:
            return [tomllib.loads(text)]
        # Empty documents in a stream (e.g. a trailing "---") carry no object
        return [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except json.JSONDecodeError as e:
        raise ValueModelError(f"invalid JSON: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueModelError(f"invalid TOML: {e}") from e
    except yaml.YAMLError as e:
        raise ValueModelError(f"invalid YAML: {e}") from e
