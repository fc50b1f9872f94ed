"""
YAML/JSON loader for schema documents.

Example document:
    files:
      - name: blog.proto
        package: blog
        messages:
          - name: User
            options:
              entgen.storage.entity: {table_name: users}
            fields:
              - name: id
                number: 1
                type: int64
                options:
                  entgen.storage.column: {primary_key: true}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from .types import SchemaSet

logger = logging.getLogger(__name__)


class SchemaLoadError(ValueError):
    """Raised when a schema document cannot be parsed."""


def parse_schema(content: str, source: str = "<string>") -> SchemaSet:
    """Parse a schema document from YAML or JSON text.

    Args:
        content: Document text
        source: Name used in error messages

    Returns:
        Parsed SchemaSet

    Raises:
        SchemaLoadError: If the text is not a valid schema document
    """
    try:
        if content.lstrip().startswith("{"):
            data: Any = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise SchemaLoadError(f"{source}: cannot parse document: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("files"), list):
        raise SchemaLoadError(f"{source}: document must be a mapping with a 'files' list")

    try:
        schema = SchemaSet.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise SchemaLoadError(f"{source}: invalid schema: {e}") from e

    logger.debug(f"Loaded {len(schema.files)} schema file(s) from {source}")
    return schema


def load_schema(path: str | Path) -> SchemaSet:
    """Load a schema document from a .yaml, .yml or .json file."""
    path = Path(path)
    return parse_schema(path.read_text(encoding="utf-8"), source=str(path))
