"""POST /intent/* -- extraction, validation and compilation endpoints."""
from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.compiler.sql_generator import intent_to_sql
from src.core.errors import CompileError, IntentValidationError
from src.core.logging import get_logger
from src.governance.sql_safety import check_sql_safety
from src.governance.validator import validate_intent
from src.intent.model import (
    IntentExtractionRequest,
    IntentExtractionResponse,
    LLMConfig,
    QueryIntent,
    SchemaDescriptor,
)
from src.intent.service import extract_query_intent

logger = get_logger(__name__)
router = APIRouter()


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractRequest(_ApiModel):
    query: str = Field(..., max_length=20_000, description="Natural-language question")
    dataset_schema: SchemaDescriptor
    llm_config: LLMConfig | None = Field(None, description="Provider override; defaults to LLM_* settings")


class AskRequest(ExtractRequest):
    dialect: str | None = Field(None, description="generic | sqlite | postgres | mysql")
    reference_date: date | None = None


class IntentRequest(_ApiModel):
    intent: QueryIntent
    dataset_schema: SchemaDescriptor


class CompileRequest(IntentRequest):
    dialect: str | None = None
    reference_date: date | None = None


class ValidateResponse(_ApiModel):
    valid: bool
    errors: list[str]


class CompileResponse(_ApiModel):
    sql: str
    params: list[Any]
    dialect: str


class AskResponse(_ApiModel):
    intent: QueryIntent
    confidence: float
    explanation: str
    suggestions: list[str] | None = None
    sql: str | None = None
    params: list[Any] = Field(default_factory=list)
    dialect: str | None = None
    errors: list[str] = Field(default_factory=list)


async def _extract(query: str, schema: SchemaDescriptor, llm_config: LLMConfig | None) -> IntentExtractionResponse:
    try:
        return await extract_query_intent(
            IntentExtractionRequest(query=query, dataset_schema=schema),
            llm_config,
        )
    except IntentValidationError as exc:
        logger.exception("Fallback intent failed validation for dataset %s", schema.name)
        raise HTTPException(status_code=500, detail={"errors": exc.errors})


def _compile(
    intent: QueryIntent,
    schema: SchemaDescriptor,
    dialect: str | None,
    reference_date: date | None,
) -> CompileResponse:
    try:
        compiled = intent_to_sql(intent, schema, dialect=dialect, reference_date=reference_date)
    except CompileError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    violations = check_sql_safety(compiled.sql, schema)
    if violations:
        raise HTTPException(status_code=400, detail={"errors": violations})
    return CompileResponse(**compiled.to_dict())


@router.post("/extract", response_model=IntentExtractionResponse, response_model_exclude_none=True)
async def extract_endpoint(req: ExtractRequest):
    """Question + schema -> validated intent (LLM, or rule-based fallback)."""
    return await _extract(req.query, req.dataset_schema, req.llm_config)


@router.post("/validate", response_model=ValidateResponse)
def validate_endpoint(req: IntentRequest):
    """Check an intent against a schema without compiling it."""
    result = validate_intent(req.intent, req.dataset_schema)
    return ValidateResponse(valid=result.valid, errors=result.errors)


@router.post("/compile", response_model=CompileResponse)
def compile_endpoint(req: CompileRequest):
    """Validated intent -> parameterised SQL."""
    result = validate_intent(req.intent, req.dataset_schema)
    if not result.valid:
        raise HTTPException(status_code=422, detail={"errors": result.errors})
    return _compile(req.intent, req.dataset_schema, req.dialect, req.reference_date)


@router.post("/ask", response_model=AskResponse, response_model_exclude_none=True)
async def ask_endpoint(req: AskRequest):
    """Full pipeline: question -> intent -> validate -> SQL -> safety check."""
    extraction = await _extract(req.query, req.dataset_schema, req.llm_config)
    resp = AskResponse(
        intent=extraction.intent,
        confidence=extraction.confidence,
        explanation=extraction.explanation,
        suggestions=extraction.suggestions,
    )
    try:
        compiled = _compile(extraction.intent, req.dataset_schema, req.dialect, req.reference_date)
    except HTTPException as exc:
        detail = exc.detail
        resp.errors = detail["errors"] if isinstance(detail, dict) else [str(detail)]
        return resp

    resp.sql, resp.params, resp.dialect = compiled.sql, compiled.params, compiled.dialect
    return resp
