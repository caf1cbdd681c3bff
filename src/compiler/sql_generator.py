"""
SQL Generator -- turns a validated QueryIntent into a parameterised SQL SELECT.

Every identifier in the output comes from the dataset schema and is quoted
for the target dialect; every literal is a bound parameter.  The generator
never concatenates user text into the SQL string.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from src.compiler.dsl import OrderItem, QueryDSL, SelectItem, intent_to_dsl
from src.core.config import get_settings
from src.core.errors import CompileError
from src.core.logging import get_logger
from src.intent.model import QueryIntent, SchemaDescriptor

logger = get_logger(__name__)


# ── Dialects ─────────────────────────────────────────────


@dataclass(frozen=True)
class Dialect:
    name: str
    quote: str
    placeholder: str

    def quote_identifier(self, name: str) -> str:
        quoted = self.quote + name.replace(self.quote, self.quote * 2) + self.quote
        if self.placeholder == "%s":
            # pyformat drivers treat a bare % in the statement as a placeholder
            quoted = quoted.replace("%", "%%")
        return quoted

    def quote_table(self, name: str) -> str:
        return ".".join(self.quote_identifier(part) for part in name.split("."))


_DIALECTS: dict[str, Dialect] = {
    "generic": Dialect("generic", '"', "?"),
    "sqlite": Dialect("sqlite", '"', "?"),
    "postgres": Dialect("postgres", '"', "%s"),
    "mysql": Dialect("mysql", "`", "%s"),
}


def register_dialect(dialect: Dialect) -> None:
    _DIALECTS[dialect.name] = dialect


def get_dialect(name: str | None = None) -> Dialect:
    """Look up a dialect by name; None means ``Settings.sql_dialect``."""
    key = (name or get_settings().sql_dialect).lower()
    dialect = _DIALECTS.get(key)
    if dialect is None:
        raise CompileError(
            f"Unknown SQL dialect '{key}'. Available: {', '.join(sorted(_DIALECTS))}"
        )
    return dialect


def available_dialects() -> list[str]:
    return sorted(_DIALECTS)


# ── Compiled output ──────────────────────────────────────


@dataclass(frozen=True)
class CompiledQuery:
    sql: str
    params: list[Any] = field(default_factory=list)
    dialect: str = "generic"

    def to_dict(self) -> dict[str, Any]:
        return {"sql": self.sql, "params": list(self.params), "dialect": self.dialect}


_AGGREGATE_SQL: dict[str, str] = {
    "sum": "SUM({col})",
    "count": "COUNT({col})",
    "avg": "AVG({col})",
    "max": "MAX({col})",
    "min": "MIN({col})",
    "distinct_count": "COUNT(DISTINCT {col})",
}

_OPERATOR_SQL: dict[str, str] = {
    "=": "=",
    "!=": "<>",
    ">": ">",
    "<": "<",
    ">=": ">=",
    "<=": "<=",
    "like": "LIKE",
}


def _column_expr(item: SelectItem | OrderItem, d: Dialect) -> str:
    col = d.quote_identifier(item.field)
    if item.aggregation is None:
        return col
    template = _AGGREGATE_SQL.get(item.aggregation)
    if template is None:
        raise CompileError(f"Unsupported aggregation '{item.aggregation}'")
    return template.format(col=col)


# ── SQL builder ──────────────────────────────────────────


def dsl_to_sql(dsl: QueryDSL, dialect: Dialect | str | None = None) -> CompiledQuery:
    """Render a QueryDSL as SQL text plus positional parameters."""
    d = dialect if isinstance(dialect, Dialect) else get_dialect(dialect)
    ph = d.placeholder
    params: list[Any] = []

    # ── SELECT clause ────────────────────────────────
    select_parts = [
        f"{_column_expr(item, d)} AS {d.quote_identifier(item.alias)}" for item in dsl.select
    ]

    # ── WHERE clause ─────────────────────────────────
    where_parts: list[str] = []

    tr = dsl.time_range
    if tr is not None:
        col = d.quote_identifier(tr.field)
        if tr.start is not None:
            where_parts.append(f"{col} {tr.start_op} {ph}")
            params.append(tr.start)
        if tr.end is not None:
            where_parts.append(f"{col} {tr.end_op} {ph}")
            params.append(tr.end)

    for w in dsl.where:
        col = d.quote_identifier(w.field)
        if w.operator in ("in", "not_in"):
            keyword = "IN" if w.operator == "in" else "NOT IN"
            where_parts.append(f"{col} {keyword} ({', '.join([ph] * len(w.value))})")
            params.extend(w.value)
        elif w.operator == "between":
            where_parts.append(f"{col} BETWEEN {ph} AND {ph}")
            params.extend(w.value)
        else:
            op = _OPERATOR_SQL.get(w.operator)
            if op is None:
                raise CompileError(f"Unsupported operator '{w.operator}'")
            where_parts.append(f"{col} {op} {ph}")
            params.append(w.value)

    # ── Assemble ─────────────────────────────────────
    sql_lines: list[str] = ["SELECT"]
    sql_lines.append("  " + ",\n  ".join(select_parts))
    sql_lines.append(f"FROM {d.quote_table(dsl.from_)}")

    if where_parts:
        sql_lines.append("WHERE " + "\n  AND ".join(where_parts))

    if dsl.group_by:
        sql_lines.append("GROUP BY " + ", ".join(d.quote_identifier(g) for g in dsl.group_by))

    if dsl.order_by:
        sql_lines.append(
            "ORDER BY "
            + ", ".join(f"{_column_expr(o, d)} {o.direction.upper()}" for o in dsl.order_by)
        )

    sql_lines.append(f"LIMIT {int(dsl.limit)}")

    return CompiledQuery(sql="\n".join(sql_lines), params=params, dialect=d.name)


def intent_to_sql(
    intent: QueryIntent,
    schema: SchemaDescriptor,
    *,
    dialect: Dialect | str | None = None,
    reference_date: date | None = None,
    max_limit: int | None = None,
) -> CompiledQuery:
    """Compile a validator-approved intent for *schema*.

    Parameters
    ----------
    intent : QueryIntent
        Must already pass ``validate_intent``; business rules are not re-checked.
    schema : SchemaDescriptor
        Source of the table name and of every identifier in the output.
    dialect : Dialect | str, optional
        Quoting and placeholder style; defaults to ``Settings.sql_dialect``.
    reference_date : date, optional
        "Today" for relative and period time ranges.  Pass it to get
        byte-identical output across days.
    max_limit : int, optional
        Hard row ceiling; defaults to ``Settings.max_limit``.

    Raises
    ------
    CompileError
        On structural defects the compiler refuses to render.
    """
    dsl = intent_to_dsl(intent, schema, reference_date=reference_date, max_limit=max_limit)
    compiled = dsl_to_sql(dsl, dialect)
    logger.info("Generated SQL (%s):\n%s", compiled.dialect, compiled.sql)
    return compiled
