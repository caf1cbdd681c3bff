"""
Rule-based fallback extractor -- builds a best-effort QueryIntent from the
question text and the dataset schema alone.

No network, no randomness: the same (query, schema) always gives the same
intent, and every schema with at least one field yields an intent that
passes validation.  Works for English and Chinese phrasing.

Field matching precedence: when several fields match overlapping text, the
earliest mention wins, then the longest matched term, then schema order.
Each field is taken once, at its earliest accepted mention.
"""
from __future__ import annotations

import calendar
import math
import re
from dataclasses import dataclass
from typing import Any

from src.core.config import get_settings
from src.core.logging import get_logger, shorten
from src.intent.model import (
    MAX_TIME_OFFSET,
    Dimension,
    FieldDescriptor,
    Filter,
    Metric,
    OrderBy,
    QueryIntent,
    SchemaDescriptor,
    TimeRange,
)

logger = get_logger(__name__)

# ── Keyword maps ─────────────────────────────────────────

# Name tokens too vague to identify a field on their own
_GENERIC_TERMS = frozenset({
    "amount", "count", "total", "number", "num", "value", "field", "id",
    "date", "time", "qty", "data", "info", "name", "type", "code",
})

# Stripped from CJK display names: 营收金额 is also mentioned as 营收
_CJK_SUFFIXES = ("金额", "数量", "总额", "字段", "名称", "编号", "数", "额", "量")

_AGG_KEYWORDS: dict[str, tuple[str, ...]] = {
    "distinct_count": ("distinct", "unique", "去重", "不同"),
    "avg":            ("average", "avg", "mean", "平均", "均值", "人均"),
    "count":          ("count", "how many", "number of", "多少", "几个", "计数", "个数"),
    "max":            ("maximum", "max", "highest", "largest", "最大", "最高"),
    "min":            ("minimum", "min", "lowest", "smallest", "最小", "最低"),
    "sum":            ("total", "sum", "overall", "合计", "总计", "总和", "汇总", "总共", "总"),
}

_UNITS: dict[str, str] = {
    "day": "day", "天": "day", "日": "day",
    "week": "week", "周": "week", "星期": "week",
    "month": "month", "月": "month",
    "quarter": "quarter", "季度": "quarter",
    "year": "year", "年": "year",
}

_EN_NUMBERS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}
_CN_DIGITS = {"一": 1, "二": 2, "两": 2, "三": 3, "四": 4, "五": 5, "六": 6, "七": 7, "八": 8, "九": 9}

_CJK_RE = re.compile(r"[\u3400-\u9fff]")

# ── Regex patterns ───────────────────────────────────────

_LIMIT_RE = re.compile(r"(?:(?<![a-z])(top|first|limit)|前)\s*([0-9]+)")
_LIMIT_VAGUE_RE = re.compile(r"前几")

_EN_N = r"([0-9]+|" + "|".join(_EN_NUMBERS) + r")"
_RELATIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(?<![a-z])(?:last|past|previous)\s+" + _EN_N + r"\s+(day|week|month|quarter|year)s?(?![a-z])"),
    re.compile(r"(?:最近|近|过去)\s*([0-9]+|[一二两三四五六七八九十]+)\s*个?\s*(天|日|星期|周|季度|月|年)"),
]

_ABSOLUTE_PATTERNS: list[tuple[re.Pattern[str], bool]] = [
    # (pattern, has month group)
    (re.compile(r"(?<![0-9])([0-9]{4})\s*年\s*([0-9]{1,2})\s*月"), True),
    (re.compile(r"(?<![0-9])([0-9]{4})-([0-9]{1,2})(?![0-9]|-[0-9])"), True),
    (re.compile(r"(?<![0-9])([0-9]{4})\s*年"), False),
    (re.compile(r"(?<![a-z])in\s+([0-9]{4})(?![0-9])"), False),
]

# (pattern, fixed period or None to read it from group 1, value)
_PERIOD_PATTERNS: list[tuple[re.Pattern[str], str | None, int]] = [
    (re.compile(r"(?<![a-z])(?:last|previous|past)\s+(day|week|month|quarter|year)(?![a-z])"), None, -1),
    (re.compile(r"(?<![a-z])yesterday(?![a-z])"), "day", -1),
    (re.compile(r"昨天|昨日"), "day", -1),
    (re.compile(r"上周|上个?星期"), "week", -1),
    (re.compile(r"上个?月"), "month", -1),
    (re.compile(r"上个?季度"), "quarter", -1),
    (re.compile(r"去年|上一?年"), "year", -1),
    (re.compile(r"(?<![a-z])(?:this|current)\s+(day|week|month|quarter|year)(?![a-z])"), None, 0),
    (re.compile(r"(?<![a-z])today(?![a-z])"), "day", 0),
    (re.compile(r"今天|今日"), "day", 0),
    (re.compile(r"本周|这周|这个?星期"), "week", 0),
    (re.compile(r"本月|这个月|当月"), "month", 0),
    (re.compile(r"本季度|这个?季度"), "quarter", 0),
    (re.compile(r"今年|本年"), "year", 0),
]

_FILTER_OPS: list[tuple[str, str]] = [
    (">=", ">="), ("<=", "<="), ("!=", "!="), ("<>", "!="), ("==", "="),
    ("=", "="), (">", ">"), ("<", "<"),
    ("大于等于", ">="), ("小于等于", "<="), ("不等于", "!="), ("大于", ">"),
    ("小于", "<"), ("超过", ">"), ("低于", "<"), ("等于", "="), ("为", "="), ("是", "="),
    ("at least", ">="), ("at most", "<="), ("more than", ">"), ("greater than", ">"),
    ("less than", "<"), ("fewer than", "<"), ("above", ">"), ("over", ">"),
    ("below", "<"), ("under", "<"), ("is not", "!="), ("equals", "="),
    ("equal to", "="), ("is", "="),
]

_VALUE_PATTERN = r"(\"[^\"]*\"|'[^']*'|“[^”]*”|「[^」]*」|[-+]?[0-9]+(?:\.[0-9]+)?(?![a-z0-9_])|[a-z0-9_][a-z0-9_\-.]*)"


def _op_regex(token: str) -> re.Pattern[str]:
    if token[0].isascii() and token[0].isalpha():
        body = r"(?:is\s+)?" if token not in ("is", "is not", "equals") else ""
        body += r"\s+".join(re.escape(w) for w in token.split()) + r"(?![a-z])"
    else:
        body = re.escape(token)
    return re.compile(r"\s*" + body + r"\s*" + _VALUE_PATTERN, re.IGNORECASE)


_FILTER_REGEXES = [(_op_regex(tok), op) for tok, op in _FILTER_OPS]


# ── Helpers ──────────────────────────────────────────────


@dataclass(frozen=True)
class _Mention:
    start: int
    end: int
    field: FieldDescriptor


def _is_cjk(text: str) -> bool:
    return bool(_CJK_RE.search(text))


def _field_terms(f: FieldDescriptor) -> list[str]:
    """Every lower-cased string that counts as a mention of *f*."""
    terms: list[str] = []

    def add(term: str) -> None:
        term = term.strip().lower()
        if term and term not in terms:
            terms.append(term)

    add(f.display_name)
    add(f.name)
    add(f.name.replace("_", " "))
    for tok in re.split(r"[\s_\-]+", f"{f.name} {f.display_name}".lower()):
        if len(tok) >= 3 and tok not in _GENERIC_TERMS and not _is_cjk(tok):
            add(tok)
    if _is_cjk(f.display_name):
        for suffix in _CJK_SUFFIXES:
            stem = f.display_name[: -len(suffix)]
            if f.display_name.endswith(suffix) and len(stem) >= 2:
                add(stem)
                break
    return terms


def _term_regex(term: str) -> re.Pattern[str]:
    if _is_cjk(term):
        return re.compile(re.escape(term))
    return re.compile(r"(?<![a-z0-9_])" + re.escape(term) + r"(?![a-z0-9_])")


def _find_mentions(q: str, schema: SchemaDescriptor) -> list[_Mention]:
    candidates: list[tuple[int, int, int, int]] = []
    for idx, f in enumerate(schema.fields):
        for term in _field_terms(f):
            for m in _term_regex(term).finditer(q):
                candidates.append((m.start(), -(m.end() - m.start()), idx, m.end()))
    candidates.sort()

    accepted: list[_Mention] = []
    taken: set[int] = set()
    for start, _, idx, end in candidates:
        if idx in taken:
            continue
        if any(start < m.end and m.start < end for m in accepted):
            continue
        accepted.append(_Mention(start=start, end=end, field=schema.fields[idx]))
        taken.add(idx)
    accepted.sort(key=lambda m: m.start)
    return accepted


def _mask(q: str, mentions: list[_Mention]) -> str:
    chars = list(q)
    for m in mentions:
        chars[m.start:m.end] = " " * (m.end - m.start)
    return "".join(chars)


def _keyword_hits(masked: str) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    for agg, keywords in _AGG_KEYWORDS.items():
        for kw in keywords:
            for m in _term_regex(kw).finditer(masked):
                hits.append((m.start(), agg))
    hits.sort()
    return hits


def _aggregation_for(mention: _Mention, hits: list[tuple[int, str]]) -> str:
    preceding = [agg for pos, agg in hits if pos < mention.start]
    if preceding:
        agg = preceding[-1]
    elif hits:
        agg = hits[0][1]
    else:
        agg = "sum"
    if not mention.field.is_numeric and agg not in ("count", "distinct_count"):
        return "count"
    return agg


def _parse_number(text: str) -> int:
    if text.isascii() and text.isdigit():
        return int(text)
    if text in _EN_NUMBERS:
        return _EN_NUMBERS[text]
    if "十" in text:
        head, _, tail = text.partition("十")
        return _CN_DIGITS.get(head, 1) * 10 + _CN_DIGITS.get(tail, 0)
    return _CN_DIGITS.get(text, 0)


def _extract_limit(masked: str, max_limit: int, default_limit: int) -> tuple[int, bool]:
    """Return ``(limit, is_top_n)``."""
    m = _LIMIT_RE.search(masked)
    if m:
        n = int(m.group(2))
        limit = min(n, max_limit) if n > 0 else default_limit
        return limit, m.group(1) == "top"
    if _LIMIT_VAGUE_RE.search(masked):
        return min(10, max_limit), False
    return default_limit, False


def _absolute_range(year: int, month: int | None, time_field: FieldDescriptor) -> TimeRange | None:
    if year < 1 or (month is not None and not 1 <= month <= 12):
        return None
    first, last = (month, month) if month is not None else (1, 12)
    if time_field.is_numeric:
        return TimeRange(type="absolute", start=year * 100 + first, end=year * 100 + last)
    last_day = calendar.monthrange(year, last)[1]
    return TimeRange(
        type="absolute",
        start=f"{year:04d}-{first:02d}-01",
        end=f"{year:04d}-{last:02d}-{last_day:02d}",
    )


def _extract_time_range(q: str, time_field: FieldDescriptor) -> TimeRange | None:
    for pattern in _RELATIVE_PATTERNS:
        m = pattern.search(q)
        if m:
            n = _parse_number(m.group(1))
            if n > 0:
                period = _UNITS[m.group(2)]
                return TimeRange(type="relative", value=-min(n, MAX_TIME_OFFSET[period]), period=period)

    for pattern, has_month in _ABSOLUTE_PATTERNS:
        m = pattern.search(q)
        if m:
            month = int(m.group(2)) if has_month else None
            tr = _absolute_range(int(m.group(1)), month, time_field)
            if tr is not None:
                return tr

    for pattern, period, value in _PERIOD_PATTERNS:
        m = pattern.search(q)
        if m:
            return TimeRange(type="period", period=period or m.group(1), value=value)
    return None


def _coerce(raw: str, f: FieldDescriptor) -> Any | None:
    quoted = raw[:1] in "\"'“「"
    text = raw[1:-1] if quoted else raw
    if f.type == "number":
        try:
            num = float(text)
        except ValueError:
            return None
        if not math.isfinite(num):
            return None
        return int(num) if re.fullmatch(r"[-+]?[0-9]+", text) else num
    if f.type == "boolean":
        lowered = text.lower()
        if lowered in ("true", "yes", "1", "是"):
            return True
        if lowered in ("false", "no", "0", "否"):
            return False
        return None
    return text or None


def _extract_filter(source: str, mention: _Mention) -> Filter | None:
    for regex, op in _FILTER_REGEXES:
        m = regex.match(source, mention.end)
        if m is None:
            continue
        value = _coerce(m.group(1), mention.field)
        if value is None:
            return None
        return Filter(
            field=mention.field.name,
            display_name=mention.field.display_name,
            operator=op,
            value=value,
            data_type=mention.field.type,
        )
    return None


def _default_selection(schema: SchemaDescriptor) -> tuple[list[Metric], list[Dimension]]:
    """Pick something sensible when the question names no field."""
    metric_f = next((f for f in schema.metric_fields() if not f.is_time_field), None)
    dim_f = next((f for f in schema.dimension_fields() if not f.is_time_field), None)

    metrics: list[Metric] = []
    dims: list[Dimension] = []
    if metric_f is not None:
        metrics.append(
            Metric(
                field=metric_f.name,
                display_name=metric_f.display_name,
                aggregation="sum" if metric_f.is_numeric else "count",
            )
        )
    if dim_f is not None:
        dims.append(Dimension(field=dim_f.name, display_name=dim_f.display_name, group_by=True))

    if not metrics and not dims and schema.fields:
        f = next((f for f in schema.fields if not f.is_time_field), schema.fields[0])
        dims.append(Dimension(field=f.name, display_name=f.display_name, group_by=True))
    return metrics, dims


# ── Public API ───────────────────────────────────────────


def fallback_extract(
    query: str,
    schema: SchemaDescriptor,
    *,
    max_limit: int | None = None,
    default_limit: int | None = None,
) -> QueryIntent:
    """Deterministic keyword-based NL -> QueryIntent parser.  Never raises."""
    settings = get_settings()
    if max_limit is None:
        max_limit = settings.max_limit
    if default_limit is None:
        default_limit = settings.default_limit
    default_limit = min(default_limit, max_limit)

    q = query.lower()
    # filter values keep their original case when lowering kept offsets intact
    source = query if len(query) == len(q) else q

    # 1. Field mentions
    mentions = _find_mentions(q, schema)
    masked = _mask(q, mentions)

    # 2. Filters right after a mention
    filters: list[Filter] = []
    filtered: set[str] = set()
    for mention in mentions:
        flt = _extract_filter(source, mention)
        if flt is not None:
            filters.append(flt)
            filtered.add(flt.field)

    # 3. Metrics and dimensions
    hits = _keyword_hits(masked)
    metrics: list[Metric] = []
    dims: list[Dimension] = []
    for mention in mentions:
        f = mention.field
        if f.is_time_field or f.name in filtered:
            continue
        if f.is_dimension and not f.is_metric:
            dims.append(Dimension(field=f.name, display_name=f.display_name, group_by=True))
        elif f.is_numeric or f.is_metric:
            metrics.append(
                Metric(field=f.name, display_name=f.display_name, aggregation=_aggregation_for(mention, hits))
            )
        else:
            dims.append(Dimension(field=f.name, display_name=f.display_name, group_by=True))

    if not metrics and not dims:
        metrics, dims = _default_selection(schema)

    # 4. Limit / top-N
    limit, is_top = _extract_limit(masked, max_limit, default_limit)
    order_by = OrderBy(field=metrics[0].field, direction="desc") if is_top and metrics else None

    # 5. Time range
    time_range = None
    time_field = schema.time_field()
    if time_field is not None:
        time_range = _extract_time_range(masked, time_field)

    intent = QueryIntent(
        time_range=time_range,
        metrics=metrics,
        dimensions=dims,
        filters=filters,
        limit=limit,
        order_by=order_by,
        description=query,
    )
    logger.info(
        "Fallback[%s] '%s' -> %d metric(s), %d dimension(s), %d filter(s), limit=%d",
        schema.name,
        shorten(query),
        len(metrics),
        len(dims),
        len(filters),
        limit,
    )
    return intent
