"""
Validates a QueryIntent against the dataset schema it will be compiled for.

Checks performed (all accumulated, never short-circuited):
  1. Every field referenced by metrics / dimensions / filters / orderBy exists
  2. A timeRange needs a time field in the schema, and must be internally
     consistent (relative -> value + period, absolute -> start or end,
     period -> period, offsets within 100 years)
  3. sum / avg / max / min only on numeric fields (count, distinct_count always ok)
  4. Filter value arity matches the operator; value type matches dataType
     (numbers must be finite);
     dataType agrees with the field's declared type
  5. limit is a positive integer <= the configured hard maximum
  6. At least one metric or dimension, and at least one selected column
  7. Aliases are valid identifiers and unique across metrics + dimensions
  8. In aggregate queries, orderBy targets a metric field or a grouped dimension;
     a dimension that sorts the result (first dimension's orderBy) must be grouped
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any

from src.core.config import get_settings
from src.intent.model import (
    MAX_TIME_OFFSET,
    NUMERIC_AGGREGATIONS,
    SEQUENCE_OPERATORS,
    FieldDescriptor,
    Filter,
    QueryIntent,
    SchemaDescriptor,
    TimeRange,
)
from src.intent.suggestions import suggest_fields

# Unicode letters are allowed (display-name style aliases such as 总营收)
IDENTIFIER_RE = re.compile(r"[^\W\d]\w*")

# date and string columns are routinely compared with each other
_COMPATIBLE_TYPES = {frozenset({"date", "string"})}


@dataclass(frozen=True)
class ValidationResult:
    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


# ── Helpers ──────────────────────────────────────────────


def _unknown_field(name: str, where: str, schema: SchemaDescriptor) -> str:
    msg = f"Unknown field '{name}' in {where}; dataset '{schema.name}' has no such field."
    hints = suggest_fields(name, schema)
    if hints:
        msg += f" Did you mean: {', '.join(h.name for h in hints)}?"
    return msg


def _value_matches(value: Any, data_type: str) -> bool:
    if data_type == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)
    if data_type == "boolean":
        return isinstance(value, bool)
    if data_type == "date":
        if isinstance(value, float):
            return math.isfinite(value)
        return isinstance(value, (str, int)) and not isinstance(value, bool)
    return isinstance(value, str)


def _check_filter(idx: int, flt: Filter, fdef: FieldDescriptor | None) -> list[str]:
    errors: list[str] = []
    where = f"Filter {idx + 1} on '{flt.field}'"

    if fdef is not None and flt.data_type != fdef.type:
        if frozenset({flt.data_type, fdef.type}) not in _COMPATIBLE_TYPES:
            errors.append(
                f"{where}: dataType '{flt.data_type}' does not match the field type '{fdef.type}'."
            )

    value = flt.value
    is_seq = isinstance(value, (list, tuple))

    if flt.operator in SEQUENCE_OPERATORS:
        if not is_seq:
            errors.append(f"{where}: operator '{flt.operator}' requires a list of values.")
            return errors
        if flt.operator == "between" and len(value) != 2:
            errors.append(
                f"{where}: operator 'between' requires exactly 2 values, got {len(value)}."
            )
            return errors
        if not value:
            errors.append(f"{where}: operator '{flt.operator}' requires at least one value.")
            return errors
        bad = [v for v in value if not _value_matches(v, flt.data_type)]
        if bad:
            errors.append(f"{where}: values {bad!r} are not of type '{flt.data_type}'.")
        return errors

    if is_seq or isinstance(value, dict):
        errors.append(f"{where}: operator '{flt.operator}' requires a single value, got a list.")
        return errors
    if value is None:
        errors.append(f"{where}: value is missing.")
        return errors
    if flt.operator == "like" and not isinstance(value, str):
        errors.append(f"{where}: operator 'like' requires a string pattern.")
        return errors
    if not _value_matches(value, flt.data_type):
        errors.append(f"{where}: value {value!r} is not of type '{flt.data_type}'.")
    return errors


def _check_time_range(tr: TimeRange, schema: SchemaDescriptor) -> list[str]:
    errors: list[str] = []
    if schema.time_field() is None:
        errors.append(
            f"timeRange given but dataset '{schema.name}' has no time field."
        )
    if tr.type == "relative":
        if tr.value is None or tr.period is None:
            errors.append("Relative timeRange requires both 'value' and 'period'.")
        elif tr.value == 0:
            errors.append("Relative timeRange 'value' must be non-zero.")
        elif abs(tr.value) > MAX_TIME_OFFSET[tr.period]:
            errors.append(
                f"Relative timeRange reaches too far: {abs(tr.value)} {tr.period}s "
                f"(at most {MAX_TIME_OFFSET[tr.period]})."
            )
    elif tr.type == "absolute":
        if tr.start is None and tr.end is None:
            errors.append("Absolute timeRange requires at least one of 'start' or 'end'.")
    elif tr.type == "period":
        if tr.period is None:
            errors.append("Period timeRange requires 'period'.")
        elif tr.value is not None and abs(tr.value) > MAX_TIME_OFFSET[tr.period]:
            errors.append(
                f"Period timeRange offset {tr.value} is out of range "
                f"(at most {MAX_TIME_OFFSET[tr.period]} {tr.period}s)."
            )
    return errors


# ── Public API ───────────────────────────────────────────


def validate_intent(
    intent: QueryIntent,
    schema: SchemaDescriptor,
    *,
    max_limit: int | None = None,
) -> ValidationResult:
    """Check that *intent* is executable against *schema*.

    Never raises; every problem found is reported in ``errors``.

    Parameters
    ----------
    intent : QueryIntent
        Intent from either extractor.
    schema : SchemaDescriptor
        Dataset the intent will run against.
    max_limit : int, optional
        Hard row ceiling; defaults to ``Settings.max_limit``.
    """
    if max_limit is None:
        max_limit = get_settings().max_limit

    errors: list[str] = []

    # 1 + 3. Metrics
    for i, m in enumerate(intent.metrics):
        fdef = schema.field(m.field)
        if fdef is None:
            errors.append(_unknown_field(m.field, f"metrics[{i}]", schema))
            continue
        if m.aggregation in NUMERIC_AGGREGATIONS and not fdef.is_numeric:
            errors.append(
                f"Aggregation '{m.aggregation}' is not valid for non-numeric field "
                f"'{m.field}' (type '{fdef.type}'); use count or distinct_count."
            )

    for i, d in enumerate(intent.dimensions):
        if schema.field(d.field) is None:
            errors.append(_unknown_field(d.field, f"dimensions[{i}]", schema))

    # 4. Filters
    for i, flt in enumerate(intent.filters):
        fdef = schema.field(flt.field)
        if fdef is None:
            errors.append(_unknown_field(flt.field, f"filters[{i}]", schema))
        errors.extend(_check_filter(i, flt, fdef))

    # 2. Time range
    if intent.time_range is not None:
        errors.extend(_check_time_range(intent.time_range, schema))

    # 5. Limit
    if intent.limit is not None:
        if isinstance(intent.limit, bool) or intent.limit <= 0:
            errors.append(f"limit must be a positive integer, got {intent.limit!r}.")
        elif intent.limit > max_limit:
            errors.append(
                f"Requested limit ({intent.limit}) exceeds maximum allowed ({max_limit})."
            )

    # 6. Selection
    if not intent.metrics and not intent.dimensions:
        errors.append("Intent selects nothing: at least one metric or dimension is required.")
    elif not intent.metrics and not any(d.group_by for d in intent.dimensions):
        errors.append(
            "Intent selects no columns: add a metric or set groupBy on at least one dimension."
        )

    # 7. Aliases
    seen_aliases: set[str] = set()
    for item in (*intent.metrics, *intent.dimensions):
        if item.alias is None:
            continue
        if not IDENTIFIER_RE.fullmatch(item.alias):
            errors.append(f"Alias '{item.alias}' for field '{item.field}' is not a valid SQL identifier.")
        elif item.alias in seen_aliases:
            errors.append(f"Alias '{item.alias}' is used more than once.")
        seen_aliases.add(item.alias)

    # 1 + 8. Order by
    if intent.order_by is not None:
        ob_field = intent.order_by.field
        if schema.field(ob_field) is None:
            errors.append(_unknown_field(ob_field, "orderBy", schema))
        elif intent.metrics:
            orderable = {m.field for m in intent.metrics} | {
                d.field for d in intent.dimensions if d.group_by
            }
            if ob_field not in orderable:
                errors.append(
                    f"orderBy field '{ob_field}' must be one of the metrics or grouped "
                    f"dimensions in an aggregate query."
                )
    elif intent.dimensions and intent.dimensions[0].order_by and not intent.dimensions[0].group_by:
        first = intent.dimensions[0]
        errors.append(
            f"Dimension '{first.field}' sets orderBy but has groupBy false; an ungrouped "
            f"column cannot be sorted on."
        )

    return ValidationResult(errors=errors)
