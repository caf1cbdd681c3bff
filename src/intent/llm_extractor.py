"""
LLM intent extractor -- asks a language model to turn the question into a
QueryIntent and parses the answer strictly.

This is a pure boundary adapter: one provider call, one strict parse, one
schema check.  It never falls back on its own; the orchestrator decides what
to do with ProviderError / ParseError / SchemaMismatchError.
"""
from __future__ import annotations

import json
import re

import httpx
from pydantic import ValidationError

from src.core.config import get_settings
from src.core.errors import ParseError, SchemaMismatchError
from src.core.logging import get_logger, shorten
from src.intent.llm_client import Message, call_llm
from src.intent.model import (
    AGGREGATIONS,
    OPERATORS,
    IntentExtractionResponse,
    LLMConfig,
    SchemaDescriptor,
)

logger = get_logger(__name__)

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")

_SYSTEM_PROMPT = """\
You are a data-analysis query planner. Given a user's question about the dataset \
below, extract the query intent and reply with ONE JSON object of this exact shape:

{{
  "intent": {{
    "timeRange": {{"type": "absolute|relative|period", "start": "...", "end": "...", \
"period": "day|week|month|quarter|year", "value": -7}} | null,
    "metrics":    [{{"field": "...", "displayName": "...", "aggregation": "...", "alias": "..."}}],
    "dimensions": [{{"field": "...", "displayName": "...", "groupBy": true, "orderBy": "asc|desc"}}],
    "filters":    [{{"field": "...", "displayName": "...", "operator": "...", "value": ..., \
"dataType": "string|number|date|boolean"}}],
    "limit": 100,
    "orderBy": {{"field": "...", "direction": "asc|desc"}} | null,
    "description": "..."
  }},
  "confidence": 0.0-1.0,
  "explanation": "one or two sentences on how you read the question",
  "suggestions": ["optional follow-up questions"]
}}

Rules:
  - Use ONLY field names from the field list; never invent fields.
  - aggregation is one of: {aggregations}
    (sum/avg/max/min only on number fields)
  - operator is one of: {operators}
    (in/not_in take a list, between takes exactly [low, high])
  - relative timeRange: value is the signed number of periods back (e.g. -30 with "day")
  - period timeRange: value 0 is the current period, -1 the previous one
  - limit is a positive integer, at most {max_limit}; default {default_limit}
  - omit optional keys rather than inventing values; no keys beyond the shape above

Dataset: {dataset_name} ({dataset_display})
Fields:
{fields}

Respond ONLY with valid JSON. No markdown, no commentary."""


def _describe_field(f) -> str:
    roles = [
        role
        for role, flag in (("time", f.is_time_field), ("metric", f.is_metric), ("dimension", f.is_dimension))
        if flag
    ]
    line = f"  - {f.name} ({f.display_name}): {f.type}"
    if roles:
        line += f" [{', '.join(roles)}]"
    if f.description:
        line += f" -- {f.description}"
    return line


def build_messages(query: str, schema: SchemaDescriptor) -> list[Message]:
    """System prompt embedding the schema, plus the question as the user turn."""
    settings = get_settings()
    system = _SYSTEM_PROMPT.format(
        aggregations=", ".join(AGGREGATIONS),
        operators=", ".join(OPERATORS),
        max_limit=settings.max_limit,
        default_limit=settings.default_limit,
        dataset_name=schema.name,
        dataset_display=schema.display_name,
        fields="\n".join(_describe_field(f) for f in schema.fields) or "  (none)",
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": query},
    ]


def strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN_RE.sub("", text)
        text = _FENCE_CLOSE_RE.sub("", text)
    return text


def parse_llm_response(text: str) -> IntentExtractionResponse:
    """Strictly parse the model's reply.

    Raises
    ------
    ParseError
        Not JSON, or any missing / extra / mistyped key.
    """
    body = strip_fences(text)
    if not body:
        raise ParseError("LLM returned an empty response", raw_output=text)
    try:
        return IntentExtractionResponse.model_validate_json(body, strict=True)
    except ValidationError as exc:
        raise ParseError(
            f"LLM response does not match the intent contract: {exc.error_count()} error(s); "
            f"first: {json.dumps(exc.errors(include_url=False)[0], default=str)}",
            raw_output=text,
        ) from exc


def check_fields(response: IntentExtractionResponse, schema: SchemaDescriptor) -> None:
    unknown = [name for name in response.intent.referenced_fields() if schema.field(name) is None]
    if unknown:
        raise SchemaMismatchError(unknown, schema.name)


async def extract_via_llm(
    query: str,
    schema: SchemaDescriptor,
    llm_config: LLMConfig,
    *,
    client: httpx.AsyncClient | None = None,
) -> IntentExtractionResponse:
    """Extract an intent with the configured language model.

    The returned intent's ``description`` is always the original question.

    Raises
    ------
    ProviderError, ParseError, SchemaMismatchError
    """
    messages = build_messages(query, schema)
    raw = await call_llm(llm_config, messages, client=client)
    response = parse_llm_response(raw)
    check_fields(response, schema)

    intent = response.intent.model_copy(update={"description": query})
    logger.info(
        "LLM[%s] '%s' -> confidence=%.2f, %d metric(s), %d dimension(s)",
        llm_config.provider,
        shorten(query),
        response.confidence,
        len(intent.metrics),
        len(intent.dimensions),
    )
    return response.model_copy(update={"intent": intent})
