"""
Loads, parses, and caches dataset schema YAML into SchemaDescriptor objects.

The dataset catalog owns schemas; this module only reads them.  Sample
datasets ship under ``semantic_layer/datasets/*.yml`` and back the
``/schemas`` endpoints and the evaluation harness.

YAML keys are the same camelCase keys the HTTP API uses::

    name: finance_data
    displayName: 财务数据表
    fields:
      - {name: department, displayName: 部门, type: string, isDimension: true}
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from src.core.logging import get_logger
from src.intent.model import SchemaDescriptor

logger = get_logger(__name__)

_DATASETS_DIR = Path(__file__).resolve().parents[2] / "semantic_layer" / "datasets"


class SchemaLoadError(ValueError):
    """A schema file is missing, unreadable, or not a valid dataset schema."""


# ── Parsing ──────────────────────────────────────────────


def parse_schema(raw: dict[str, Any]) -> SchemaDescriptor:
    """Build a SchemaDescriptor from an already-loaded mapping."""
    if not isinstance(raw, dict):
        raise SchemaLoadError(f"Schema must be a mapping, got {type(raw).__name__}")
    raw = dict(raw)
    # a catalog entry without a display name falls back to its table name
    raw.setdefault("displayName", raw.get("name"))
    raw["fields"] = [
        {"displayName": f.get("name"), **f} if isinstance(f, dict) else f
        for f in raw.get("fields") or []
    ]
    try:
        return SchemaDescriptor.model_validate(raw)
    except ValidationError as exc:
        raise SchemaLoadError(f"Invalid dataset schema '{raw.get('name')}': {exc}") from exc


@lru_cache
def load_schema(path: Path) -> SchemaDescriptor:
    """Load and cache one schema YAML file."""
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise SchemaLoadError(f"Cannot read schema file {path}: {exc}") from exc
    schema = parse_schema(raw)
    logger.info("Loaded schema %s (%d fields) from %s", schema.name, len(schema.fields), path.name)
    return schema


# ── Public API ───────────────────────────────────────────


def list_bundled_schemas(directory: Path | None = None) -> list[SchemaDescriptor]:
    """All sample schemas, sorted by file name."""
    directory = directory or _DATASETS_DIR
    return [load_schema(p) for p in sorted(directory.glob("*.yml"))]


def load_bundled_schema(name: str, directory: Path | None = None) -> SchemaDescriptor | None:
    """Find a sample schema by dataset name or file stem; None if absent."""
    directory = directory or _DATASETS_DIR
    for path in sorted(directory.glob("*.yml")):
        schema = load_schema(path)
        if name in (schema.name, path.stem):
            return schema
    return None
