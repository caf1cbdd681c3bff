"""
QueryDSL -- the compiler's normalised, schema-resolved form of a QueryIntent.

``intent_to_dsl`` resolves every field reference against the dataset schema,
picks output labels, turns the intent's timeRange into concrete bounds and
clamps the row limit.  Nothing here produces SQL text; see sql_generator.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from src.core.config import get_settings
from src.core.errors import CompileError
from src.governance.validator import IDENTIFIER_RE
from src.intent.model import (
    SEQUENCE_OPERATORS,
    Dimension,
    FieldDescriptor,
    Metric,
    QueryIntent,
    SchemaDescriptor,
    TimeRange,
)


# ── DSL types ────────────────────────────────────────────


@dataclass(frozen=True)
class SelectItem:
    field: str
    alias: str
    aggregation: str | None = None


@dataclass(frozen=True)
class WhereItem:
    field: str
    operator: str
    value: Any


@dataclass(frozen=True)
class OrderItem:
    field: str
    direction: str
    aggregation: str | None = None


@dataclass(frozen=True)
class TimeBounds:
    field: str
    start: Any | None
    end: Any | None
    start_op: str = ">="
    end_op: str = "<="


@dataclass(frozen=True)
class QueryDSL:
    select: list[SelectItem]
    from_: str
    where: list[WhereItem] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    order_by: list[OrderItem] = field(default_factory=list)
    limit: int = 100
    time_range: TimeBounds | None = None


# ── Calendar arithmetic ──────────────────────────────────


def _shift_months(d: date, months: int) -> date:
    total = d.year * 12 + (d.month - 1) + months
    year, month0 = divmod(total, 12)
    day = min(d.day, calendar.monthrange(year, month0 + 1)[1])
    return date(year, month0 + 1, day)


def _shift(d: date, period: str, n: int) -> date:
    if period == "day":
        return d + timedelta(days=n)
    if period == "week":
        return d + timedelta(weeks=n)
    if period == "month":
        return _shift_months(d, n)
    if period == "quarter":
        return _shift_months(d, 3 * n)
    return _shift_months(d, 12 * n)


def _bucket_start(d: date, period: str) -> date:
    if period == "day":
        return d
    if period == "week":
        return d - timedelta(days=d.weekday())
    if period == "month":
        return d.replace(day=1)
    if period == "quarter":
        return date(d.year, 3 * ((d.month - 1) // 3) + 1, 1)
    return date(d.year, 1, 1)


def resolve_time_range(time_range: TimeRange, today: date) -> tuple[date, date] | None:
    """Turn a relative / period range into inclusive ``(start, end)`` dates.

    Returns None for absolute ranges, whose bounds are used as given.
    """
    try:
        return _resolve_dates(time_range, today)
    except (ValueError, OverflowError) as exc:
        raise CompileError(f"timeRange falls outside the supported calendar: {exc}") from exc


def _resolve_dates(time_range: TimeRange, today: date) -> tuple[date, date] | None:
    if time_range.type == "relative":
        if time_range.value is None or time_range.period is None:
            raise CompileError("Relative timeRange needs both value and period.")
        n = abs(time_range.value)
        return (_shift(today, time_range.period, -n), today)

    if time_range.type == "period":
        if time_range.period is None:
            raise CompileError("Period timeRange needs a period.")
        start = _shift(_bucket_start(today, time_range.period), time_range.period, time_range.value or 0)
        end = _shift(start, time_range.period, 1) - timedelta(days=1)
        return (start, end)

    return None


def _epoch(d: date) -> int:
    return int(datetime(d.year, d.month, d.day, tzinfo=timezone.utc).timestamp())


def _render_bounds(
    bounds: tuple[date, date],
    fmt: str,
    time_field: FieldDescriptor,
) -> tuple[Any, Any, str]:
    """Render inclusive date bounds in the column's storage format -> (start, end, end_op)."""
    start, end = bounds
    if fmt == "datetime":
        nxt = end + timedelta(days=1)
        return (f"{start.isoformat()} 00:00:00", f"{nxt.isoformat()} 00:00:00", "<")
    if fmt == "timestamp":
        return (_epoch(start), _epoch(end + timedelta(days=1)), "<")
    if fmt == "period":
        s_key = f"{start.year:04d}{start.month:02d}"
        e_key = f"{end.year:04d}{end.month:02d}"
        if time_field.is_numeric:
            return (int(s_key), int(e_key), "<=")
        return (s_key, e_key, "<=")
    return (start.isoformat(), end.isoformat(), "<=")


def _time_bounds(
    time_range: TimeRange,
    schema: SchemaDescriptor,
    today: date,
) -> TimeBounds:
    time_field = schema.time_field()
    if time_field is None:
        raise CompileError(f"timeRange given but dataset '{schema.name}' has no time field.")

    if time_range.type == "absolute":
        if time_range.start is None and time_range.end is None:
            raise CompileError("Absolute timeRange needs a start or an end.")
        return TimeBounds(field=time_field.name, start=time_range.start, end=time_range.end)

    fmt = time_range.format or ("period" if time_field.is_numeric else "date")
    resolved = resolve_time_range(time_range, today)
    start, end, end_op = _render_bounds(resolved, fmt, time_field)
    return TimeBounds(field=time_field.name, start=start, end=end, end_op=end_op)


# ── Resolution helpers ───────────────────────────────────


def _resolve(name: str, schema: SchemaDescriptor, where: str) -> FieldDescriptor:
    fdef = schema.field(name)
    if fdef is None:
        raise CompileError(f"Field '{name}' in {where} is not part of dataset '{schema.name}'.")
    return fdef


def _label(item: Metric | Dimension, fdef: FieldDescriptor, used: set[str]) -> str:
    if item.alias is not None:
        if not IDENTIFIER_RE.fullmatch(item.alias):
            raise CompileError(f"Alias '{item.alias}' is not a valid SQL identifier.")
        if item.alias in used:
            raise CompileError(f"Alias '{item.alias}' is used more than once.")
        used.add(item.alias)
        return item.alias

    label = fdef.display_name
    if label in used and isinstance(item, Metric):
        label = f"{item.aggregation}_{fdef.name}"
    base, n = label, 2
    while label in used:
        label = f"{base}_{n}"
        n += 1
    used.add(label)
    return label


def _check_arity(operator: str, value: Any, field_name: str) -> None:
    is_seq = isinstance(value, (list, tuple))
    if operator in SEQUENCE_OPERATORS:
        if not is_seq or not value:
            raise CompileError(f"Filter on '{field_name}': '{operator}' needs a non-empty list.")
        if operator == "between" and len(value) != 2:
            raise CompileError(f"Filter on '{field_name}': 'between' needs exactly 2 values.")
    elif is_seq or isinstance(value, dict):
        raise CompileError(f"Filter on '{field_name}': '{operator}' needs a single value.")


# ── Public API ───────────────────────────────────────────


def intent_to_dsl(
    intent: QueryIntent,
    schema: SchemaDescriptor,
    *,
    reference_date: date | None = None,
    max_limit: int | None = None,
    default_limit: int | None = None,
) -> QueryDSL:
    """Resolve a validated intent into a QueryDSL.

    Raises
    ------
    CompileError
        If the intent references something the schema cannot back
        (unknown field, bad alias, wrong filter arity, nothing to select).
    """
    settings = get_settings()
    if max_limit is None:
        max_limit = settings.max_limit
    if default_limit is None:
        default_limit = settings.default_limit
    today = reference_date or date.today()

    used_labels: set[str] = set()
    select: list[SelectItem] = []
    group_by: list[str] = []

    for dim in intent.dimensions:
        fdef = _resolve(dim.field, schema, "dimensions")
        if not dim.group_by:
            continue
        select.append(SelectItem(field=fdef.name, alias=_label(dim, fdef, used_labels)))
        group_by.append(fdef.name)

    for metric in intent.metrics:
        fdef = _resolve(metric.field, schema, "metrics")
        select.append(
            SelectItem(
                field=fdef.name,
                alias=_label(metric, fdef, used_labels),
                aggregation=metric.aggregation,
            )
        )

    if not select:
        raise CompileError("Intent selects no columns; validate it before compiling.")

    where: list[WhereItem] = []
    for flt in intent.filters:
        fdef = _resolve(flt.field, schema, "filters")
        _check_arity(flt.operator, flt.value, fdef.name)
        value = list(flt.value) if isinstance(flt.value, (list, tuple)) else flt.value
        where.append(WhereItem(field=fdef.name, operator=flt.operator, value=value))

    time_bounds = None
    if intent.time_range is not None:
        time_bounds = _time_bounds(intent.time_range, schema, today)

    order_by: list[OrderItem] = []
    if intent.order_by is not None:
        fdef = _resolve(intent.order_by.field, schema, "orderBy")
        aggregation = None
        if fdef.name not in group_by:
            for m in intent.metrics:
                if m.field == fdef.name:
                    aggregation = m.aggregation
                    break
        order_by.append(OrderItem(field=fdef.name, direction=intent.order_by.direction, aggregation=aggregation))
    elif intent.dimensions and intent.dimensions[0].order_by and intent.dimensions[0].group_by:
        first = intent.dimensions[0]
        order_by.append(OrderItem(field=_resolve(first.field, schema, "dimensions").name, direction=first.order_by))

    limit = intent.limit if intent.limit and intent.limit > 0 else default_limit
    limit = min(int(limit), max_limit)

    return QueryDSL(
        select=select,
        from_=schema.name,
        where=where,
        group_by=group_by,
        order_by=order_by,
        limit=limit,
        time_range=time_bounds,
    )
