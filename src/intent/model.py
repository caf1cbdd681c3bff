"""
Query intent model -- the structured intermediate representation between
natural language and SQL, plus the dataset schema it is resolved against.

JSON keys are camelCase (``displayName``, ``groupBy`` ...) so the same models
serve the HTTP layer and the LLM response contract; Python attributes are
snake_case.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

FieldType = Literal["string", "number", "date", "boolean"]
Aggregation = Literal["sum", "count", "avg", "max", "min", "distinct_count"]
Operator = Literal["=", "!=", ">", "<", ">=", "<=", "in", "not_in", "like", "between"]
Period = Literal["day", "week", "month", "quarter", "year"]
Direction = Literal["asc", "desc"]
TimeFormat = Literal["date", "datetime", "timestamp", "period"]

AGGREGATIONS: tuple[str, ...] = ("sum", "count", "avg", "max", "min", "distinct_count")
NUMERIC_AGGREGATIONS: frozenset[str] = frozenset({"sum", "avg", "max", "min"})
OPERATORS: tuple[str, ...] = ("=", "!=", ">", "<", ">=", "<=", "in", "not_in", "like", "between")
SEQUENCE_OPERATORS: frozenset[str] = frozenset({"in", "not_in", "between"})

# Furthest a relative or period timeRange may reach back (or forward): 100 years
MAX_TIME_OFFSET: dict[str, int] = {"day": 36_525, "week": 5_218, "month": 1_200, "quarter": 400, "year": 100}


class _IntentModel(BaseModel):
    """Immutable, camelCase-on-the-wire, no unknown keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


# ── Dataset schema (owned by the catalog, read-only here) ──


class FieldDescriptor(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    name: str
    display_name: str
    type: FieldType
    description: str | None = None
    is_time_field: bool = False
    is_metric: bool = False
    is_dimension: bool = False

    @property
    def is_numeric(self) -> bool:
        return self.type == "number"


class SchemaDescriptor(BaseModel):
    """Queryable fields of one dataset (table)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    name: str
    display_name: str
    fields: list[FieldDescriptor] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_field_names(self) -> "SchemaDescriptor":
        seen: set[str] = set()
        for f in self.fields:
            if f.name in seen:
                raise ValueError(f"Duplicate field name '{f.name}' in schema '{self.name}'")
            seen.add(f.name)
        return self

    # ── Convenience look-ups ─────────────────────────

    def field(self, name: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def time_field(self) -> FieldDescriptor | None:
        for f in self.fields:
            if f.is_time_field:
                return f
        return None

    def metric_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if f.is_metric]

    def dimension_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if f.is_dimension]


# ── Intent building blocks ───────────────────────────────


class TimeRange(_IntentModel):
    """absolute: explicit bounds; relative: N periods back; period: a calendar bucket."""

    type: Literal["absolute", "relative", "period"]
    start: str | int | float | None = None
    end: str | int | float | None = None
    period: Period | None = None
    value: int | None = None
    format: TimeFormat | None = None


class Metric(_IntentModel):
    field: str
    display_name: str
    aggregation: Aggregation
    alias: str | None = None


class Dimension(_IntentModel):
    field: str
    display_name: str
    group_by: bool = True
    order_by: Direction | None = None
    alias: str | None = None


class Filter(_IntentModel):
    field: str
    display_name: str
    operator: Operator
    value: Any
    data_type: FieldType


class OrderBy(_IntentModel):
    field: str
    direction: Direction = "desc"


class QueryIntent(_IntentModel):
    """What the user wants, independent of SQL dialect."""

    time_range: TimeRange | None = None
    metrics: list[Metric] = Field(default_factory=list)
    dimensions: list[Dimension] = Field(default_factory=list)
    filters: list[Filter] = Field(default_factory=list)
    limit: int | None = None
    order_by: OrderBy | None = None
    description: str = ""

    def referenced_fields(self) -> list[str]:
        """Every field name the intent mentions, in first-seen order."""
        names: list[str] = []
        for item in (*self.metrics, *self.dimensions, *self.filters):
            if item.field not in names:
                names.append(item.field)
        if self.order_by is not None and self.order_by.field not in names:
            names.append(self.order_by.field)
        return names


# ── Extraction request / response ────────────────────────


class IntentExtractionRequest(_IntentModel):
    query: str
    dataset_schema: SchemaDescriptor


class IntentExtractionResponse(_IntentModel):
    intent: QueryIntent
    confidence: float = Field(..., ge=0.0, le=1.0)
    explanation: str
    suggestions: list[str] | None = None


class LLMConfig(_IntentModel):
    """Connection details for one language-model provider."""

    provider: str
    api_key: str
    api_url: str | None = None
    model: str
    temperature: float = 0.3
    max_tokens: int = 2000
