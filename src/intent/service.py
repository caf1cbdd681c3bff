"""
Extraction service -- orchestrates LLM extract -> validate, with the
rule-based extractor as the safety net.

Two tiers, tried in order:
  1. Language model (when configured); its intent must pass validation
  2. Rule-based fallback; confidence 0 and an explanation of why

The caller always gets an IntentExtractionResponse with a validator-approved
intent.  Cancellation of the awaiting task propagates untouched.
"""
from __future__ import annotations

import httpx

from src.core.config import get_settings
from src.core.errors import (
    IntentValidationError,
    ParseError,
    ProviderError,
    SchemaMismatchError,
)
from src.core.logging import get_logger, shorten
from src.core.utils import timer
from src.governance.validator import validate_intent
from src.intent.explainer import explain_fallback, fallback_suggestions
from src.intent.fallback import fallback_extract
from src.intent.llm_extractor import extract_via_llm
from src.intent.model import (
    IntentExtractionRequest,
    IntentExtractionResponse,
    LLMConfig,
    SchemaDescriptor,
)

logger = get_logger(__name__)


def llm_config_from_settings() -> LLMConfig | None:
    """LLMConfig built from ``LLM_*`` settings, or None when no key is set."""
    settings = get_settings()
    if not settings.llm_configured:
        return None
    return LLMConfig(
        provider=settings.llm_provider,
        api_key=settings.llm_api_key,
        api_url=settings.llm_api_url or None,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )


def _fallback(
    query: str,
    schema: SchemaDescriptor,
    reason: str,
    first_error: str | None = None,
) -> IntentExtractionResponse:
    settings = get_settings()
    intent = fallback_extract(query, schema)
    result = validate_intent(intent, schema, max_limit=settings.max_limit)
    if not result.valid:
        # a fallback intent that does not validate is a defect, not a user error
        raise IntentValidationError(result.errors)

    return IntentExtractionResponse(
        intent=intent,
        confidence=0.0,
        explanation=explain_fallback(reason, intent),
        suggestions=fallback_suggestions(reason, first_error),
    )


async def extract_query_intent(
    request: IntentExtractionRequest,
    llm_config: LLMConfig | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> IntentExtractionResponse:
    """End-to-end: question + schema -> validated intent.

    Parameters
    ----------
    request : IntentExtractionRequest
        The question and the dataset schema it is about.
    llm_config : LLMConfig, optional
        Provider to use.  When None, one is derived from settings; with no
        API key configured the fallback is used directly.
    client : httpx.AsyncClient, optional
        Passed through to the provider call.

    Raises
    ------
    IntentValidationError
        Only if the fallback intent itself fails validation.
    """
    query, schema = request.query, request.dataset_schema
    if llm_config is None:
        llm_config = llm_config_from_settings()

    with timer("Intent extraction", logger):
        logger.info(
            "extract_query_intent | dataset=%s | provider=%s | query=%s",
            schema.name,
            llm_config.provider if llm_config else "none",
            shorten(query),
        )

        if llm_config is None:
            return _fallback(query, schema, "not_configured")

        try:
            response = await extract_via_llm(query, schema, llm_config, client=client)
        except ProviderError as exc:
            logger.warning("LLM provider error, using fallback: %s", exc)
            return _fallback(query, schema, "provider_error")
        except ParseError as exc:
            logger.warning("LLM response malformed, using fallback: %s", exc)
            return _fallback(query, schema, "malformed_response")
        except SchemaMismatchError as exc:
            logger.warning("LLM intent references unknown fields %s, using fallback", exc.fields)
            return _fallback(query, schema, "schema_mismatch")
        except Exception:
            logger.exception("Unexpected error during LLM extraction, using fallback")
            return _fallback(query, schema, "unexpected_error")

        result = validate_intent(response.intent, schema, max_limit=get_settings().max_limit)
        if not result.valid:
            logger.warning("LLM intent failed validation (%d error(s)), using fallback", len(result.errors))
            return _fallback(query, schema, "validation_failure", first_error=result.errors[0])

        return response
