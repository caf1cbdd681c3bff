"""
GET /schemas, GET /schemas/{name}, GET /schemas/{name}/suggest -- sample dataset catalog.
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.governance.schema_loader import list_bundled_schemas, load_bundled_schema
from src.intent.model import SchemaDescriptor
from src.intent.suggestions import suggest_fields

router = APIRouter()


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SchemaSummary(_ApiModel):
    name: str
    display_name: str
    field_count: int
    has_time_field: bool


class SuggestionItem(_ApiModel):
    name: str
    display_name: str
    score: float


class SuggestResponse(_ApiModel):
    query: str
    suggestions: list[SuggestionItem]


def _get_schema(name: str) -> SchemaDescriptor:
    schema = load_bundled_schema(name)
    if schema is None:
        raise HTTPException(status_code=404, detail=f"Unknown dataset '{name}'")
    return schema


@router.get("/schemas", response_model=list[SchemaSummary])
def list_schemas() -> list[SchemaSummary]:
    """Return a lightweight listing of the bundled sample datasets."""
    return [
        SchemaSummary(
            name=s.name,
            display_name=s.display_name,
            field_count=len(s.fields),
            has_time_field=s.time_field() is not None,
        )
        for s in list_bundled_schemas()
    ]


@router.get("/schemas/{name}", response_model=SchemaDescriptor, response_model_exclude_none=True)
def get_schema(name: str) -> SchemaDescriptor:
    """Return the full field list of one dataset."""
    return _get_schema(name)


@router.get("/schemas/{name}/suggest", response_model=SuggestResponse)
def suggest_endpoint(name: str, q: str = "") -> SuggestResponse:
    """Return the dataset fields that look like *q* (typo-tolerant)."""
    schema = _get_schema(name)
    hits = suggest_fields(q, schema) if q.strip() else []
    return SuggestResponse(
        query=q,
        suggestions=[
            SuggestionItem(name=h.name, display_name=h.display_name, score=round(h.score, 3))
            for h in hits
        ],
    )
