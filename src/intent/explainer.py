"""
Plain-language explanation layer.

Generates human-readable text for:
  - What an intent will query (``describe_intent``)
  - Why the rule-based fallback was used instead of the language model
  - How the user can get a better answer next time

Template-based only; no network calls.
"""
from __future__ import annotations

from typing import Any

from src.intent.model import QueryIntent, TimeRange


# ── Phrase tables ────────────────────────────────────────


_AGG_PHRASES: dict[str, str] = {
    "sum": "total {name}",
    "avg": "average {name}",
    "count": "count of {name}",
    "max": "maximum {name}",
    "min": "minimum {name}",
    "distinct_count": "number of distinct {name}",
}

_OP_PHRASES: dict[str, str] = {
    "=": "is",
    "!=": "is not",
    ">": "is greater than",
    "<": "is less than",
    ">=": "is at least",
    "<=": "is at most",
    "in": "is one of",
    "not_in": "is not one of",
    "like": "matches",
    "between": "is between",
}

_FALLBACK_REASONS: dict[str, str] = {
    "not_configured": "no language model is configured",
    "provider_error": "the language model provider could not be reached (provider error)",
    "malformed_response": "the language model returned a malformed response",
    "schema_mismatch": "the language model referenced fields that are not in the dataset (schema mismatch)",
    "validation_failure": "the language model's intent failed validation",
    "unexpected_error": "an unexpected error occurred while calling the language model",
}

_FALLBACK_HINTS: dict[str, list[str]] = {
    "not_configured": [
        "Configure a language model (provider, API key, model) for better understanding of free-form questions.",
    ],
    "provider_error": [
        "Check the language model API URL, API key and network connectivity.",
    ],
    "malformed_response": [
        "Try a model that follows JSON instructions more reliably, or rephrase the question.",
    ],
    "schema_mismatch": [
        "Refer to fields by their display names so the model can map them to the dataset.",
    ],
    "validation_failure": [
        "Rephrase the question to name the metrics and groupings you want explicitly.",
    ],
    "unexpected_error": [
        "Try again; if the problem persists, check the service logs.",
    ],
}

_GENERAL_HINTS = [
    "Mention field names directly, e.g. 'total revenue by department'.",
    "Add a time phrase such as 'last 30 days' or 'this month' to narrow the data.",
]


# ── Intent description ───────────────────────────────────


def _fmt_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return "(" + ", ".join(_fmt_value(v) for v in value) + ")"
    if isinstance(value, str):
        return f"'{value}'"
    return str(value)


def describe_time_range(tr: TimeRange) -> str:
    if tr.type == "relative" and tr.value is not None and tr.period:
        n = abs(tr.value)
        return f"the last {n} {tr.period}{'s' if n != 1 else ''}"
    if tr.type == "period" and tr.period:
        value = tr.value or 0
        if value == 0:
            return f"the current {tr.period}"
        if value == -1:
            return f"the previous {tr.period}"
        n = abs(value)
        return f"the {tr.period} {n} {tr.period}s {'ago' if value < 0 else 'ahead'}"
    if tr.start is not None and tr.end is not None:
        return f"{tr.start} to {tr.end}"
    if tr.start is not None:
        return f"since {tr.start}"
    if tr.end is not None:
        return f"up to {tr.end}"
    return "an unspecified time range"


def describe_intent(intent: QueryIntent) -> str:
    """One plain-language sentence describing what *intent* will return."""
    grouped = [d.display_name for d in intent.dimensions if d.group_by]

    if intent.metrics:
        what = ", ".join(
            _AGG_PHRASES.get(m.aggregation, "{name}").format(name=m.display_name) for m in intent.metrics
        )
        text = f"Shows {what}"
        if grouped:
            text += f" by {', '.join(grouped)}"
    elif grouped:
        text = f"Lists the distinct values of {', '.join(grouped)}"
    else:
        text = "Selects nothing"

    if intent.time_range is not None:
        text += f" for {describe_time_range(intent.time_range)}"

    if intent.filters:
        conds = [
            f"{f.display_name} {_OP_PHRASES.get(f.operator, f.operator)} {_fmt_value(f.value)}"
            for f in intent.filters
        ]
        text += f", where {' and '.join(conds)}"

    if intent.order_by is not None:
        direction = "descending" if intent.order_by.direction == "desc" else "ascending"
        text += f", sorted by {intent.order_by.field} {direction}"

    if intent.limit is not None:
        text += f", up to {intent.limit} rows"

    return text + "."


# ── Fallback explanations ────────────────────────────────


def fallback_reason(reason: str) -> str:
    return _FALLBACK_REASONS.get(reason, reason)


def explain_fallback(reason: str, intent: QueryIntent) -> str:
    """Explanation returned with a fallback intent.

    Parameters
    ----------
    reason : str
        Key of ``_FALLBACK_REASONS`` (e.g. ``"provider_error"``).
    intent : QueryIntent
        The fallback intent being returned.
    """
    return (
        f"Used the rule-based fallback extractor because {fallback_reason(reason)}. "
        f"{describe_intent(intent)}"
    )


def fallback_suggestions(reason: str, first_error: str | None = None) -> list[str]:
    """Targeted hints for the user; the triggering error, if any, comes first."""
    suggestions: list[str] = []
    if first_error:
        suggestions.append(first_error)
    suggestions.extend(_FALLBACK_HINTS.get(reason, []))
    suggestions.extend(_GENERAL_HINTS)
    return suggestions
