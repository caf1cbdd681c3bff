"""
Unit tests -- SQL generator: layout, dialect quoting, bound parameters,
determinism, and the injection guarantee.
"""
from datetime import date

import pytest

from src.compiler.sql_generator import (
    Dialect,
    available_dialects,
    get_dialect,
    intent_to_sql,
    register_dialect,
)
from src.core.errors import CompileError
from src.governance.sql_safety import check_sql_safety
from src.intent.model import (
    Dimension,
    FieldDescriptor,
    Filter,
    Metric,
    OrderBy,
    QueryIntent,
    SchemaDescriptor,
    TimeRange,
)

TODAY = date(2024, 6, 15)


def _intent(**kw) -> QueryIntent:
    base = {
        "metrics": [Metric(field="revenue_amount", display_name="营收金额", aggregation="sum")],
        "dimensions": [Dimension(field="department", display_name="部门")],
    }
    base.update(kw)
    return QueryIntent(**base)


def _flt(field, op, value, data_type="number") -> Filter:
    return Filter(field=field, display_name=field, operator=op, value=value, data_type=data_type)


# ── Layout ───────────────────────────────────────────────

def test_basic_aggregate_query(finance_schema):
    compiled = intent_to_sql(_intent(), finance_schema, dialect="generic")
    assert compiled.sql == (
        'SELECT\n'
        '  "department" AS "部门",\n'
        '  SUM("revenue_amount") AS "营收金额"\n'
        'FROM "finance_data"\n'
        'GROUP BY "department"\n'
        'LIMIT 100'
    )
    assert compiled.params == []
    assert compiled.dialect == "generic"


def test_full_query_clause_order(finance_schema):
    intent = _intent(
        filters=[_flt("cost_amount", ">", 10)],
        time_range=TimeRange(type="period", period="month", value=-1),
        order_by=OrderBy(field="revenue_amount"),
        limit=5,
    )
    compiled = intent_to_sql(intent, finance_schema, dialect="sqlite", reference_date=TODAY)
    assert compiled.sql == (
        'SELECT\n'
        '  "department" AS "部门",\n'
        '  SUM("revenue_amount") AS "营收金额"\n'
        'FROM "finance_data"\n'
        'WHERE "date_field" >= ?\n'
        '  AND "date_field" <= ?\n'
        '  AND "cost_amount" > ?\n'
        'GROUP BY "department"\n'
        'ORDER BY SUM("revenue_amount") DESC\n'
        'LIMIT 5'
    )
    assert compiled.params == ["2024-05-01", "2024-05-31", 10]


@pytest.mark.parametrize("agg,expr", [
    ("count", 'COUNT("revenue_amount")'),
    ("avg", 'AVG("revenue_amount")'),
    ("max", 'MAX("revenue_amount")'),
    ("min", 'MIN("revenue_amount")'),
    ("distinct_count", 'COUNT(DISTINCT "revenue_amount")'),
])
def test_aggregation_expressions(finance_schema, agg, expr):
    intent = _intent(metrics=[Metric(field="revenue_amount", display_name="营收金额", aggregation=agg)])
    assert expr in intent_to_sql(intent, finance_schema).sql


# ── Operators ────────────────────────────────────────────

def test_not_equal_renders_ansi(finance_schema):
    compiled = intent_to_sql(_intent(filters=[_flt("department", "!=", "HR", "string")]), finance_schema)
    assert '"department" <> ?' in compiled.sql
    assert compiled.params == ["HR"]


def test_in_and_between(finance_schema):
    intent = _intent(filters=[
        _flt("department", "in", ["HR", "IT", "Ops"], "string"),
        _flt("revenue_amount", "between", [100, 200]),
        _flt("department", "not_in", ["X"], "string"),
    ])
    compiled = intent_to_sql(intent, finance_schema)
    assert '"department" IN (?, ?, ?)' in compiled.sql
    assert '"revenue_amount" BETWEEN ? AND ?' in compiled.sql
    assert '"department" NOT IN (?)' in compiled.sql
    assert compiled.params == ["HR", "IT", "Ops", 100, 200, "X"]


def test_like(finance_schema):
    compiled = intent_to_sql(_intent(filters=[_flt("department", "like", "%Sales%", "string")]), finance_schema)
    assert '"department" LIKE ?' in compiled.sql
    assert compiled.params == ["%Sales%"]


# ── Dialects ─────────────────────────────────────────────

def test_postgres_placeholders(finance_schema):
    compiled = intent_to_sql(_intent(filters=[_flt("cost_amount", ">", 1)]), finance_schema, dialect="postgres")
    assert '"cost_amount" > %s' in compiled.sql
    assert compiled.dialect == "postgres"


def test_mysql_backticks(finance_schema):
    compiled = intent_to_sql(_intent(), finance_schema, dialect="mysql")
    assert "`department` AS `部门`" in compiled.sql
    assert "FROM `finance_data`" in compiled.sql


def test_dialect_name_case_insensitive():
    assert get_dialect("SQLite").name == "sqlite"


def test_unknown_dialect(finance_schema):
    with pytest.raises(CompileError, match="Unknown SQL dialect"):
        intent_to_sql(_intent(), finance_schema, dialect="oracle")


def test_default_dialect_from_settings():
    assert get_dialect().name == "generic"


def test_register_dialect(finance_schema):
    register_dialect(Dialect("brackets_test", "'", ":p"))
    assert "brackets_test" in available_dialects()
    compiled = intent_to_sql(_intent(filters=[_flt("cost_amount", "=", 1)]), finance_schema,
                             dialect="brackets_test")
    assert "'cost_amount' = :p" in compiled.sql


def test_quote_character_doubled_inside_identifier():
    d = get_dialect("generic")
    assert d.quote_identifier('we"ird') == '"we""ird"'
    assert get_dialect("mysql").quote_identifier("a`b") == "`a``b`"


def test_percent_escaped_for_pyformat_dialects():
    assert get_dialect("postgres").quote_identifier("pct%") == '"pct%%"'
    assert get_dialect("sqlite").quote_identifier("pct%") == '"pct%"'


def test_dotted_table_quoted_per_part(monthly_schema):
    intent = QueryIntent(
        metrics=[Metric(field="order_count", display_name="Orders", aggregation="sum")],
        dimensions=[Dimension(field="region", display_name="Region")],
    )
    assert 'FROM "analytics"."monthly_sales"' in intent_to_sql(intent, monthly_schema).sql


# ── Determinism and injection ────────────────────────────

def test_same_input_same_output(finance_schema):
    intent = _intent(time_range=TimeRange(type="relative", value=-30, period="day"))
    a = intent_to_sql(intent, finance_schema, reference_date=TODAY)
    b = intent_to_sql(intent, finance_schema, reference_date=TODAY)
    assert a == b


def test_injection_value_only_in_params(finance_schema):
    evil = "x'; DROP TABLE finance_data; --"
    compiled = intent_to_sql(_intent(filters=[_flt("department", "=", evil, "string")]), finance_schema)
    assert evil not in compiled.sql
    assert "DROP" not in compiled.sql
    assert compiled.params == [evil]
    assert check_sql_safety(compiled.sql, finance_schema) == []


def test_hostile_display_name_stays_quoted():
    schema = SchemaDescriptor(
        name="t",
        display_name="T",
        fields=[FieldDescriptor(name="v", display_name='x" FROM t; DROP TABLE t; --', type="number",
                                is_metric=True)],
    )
    intent = QueryIntent(metrics=[Metric(field="v", display_name="x", aggregation="sum")])
    compiled = intent_to_sql(intent, schema)
    assert 'AS "x"" FROM t; DROP TABLE t; --"' in compiled.sql
    assert check_sql_safety(compiled.sql, schema) == []


def test_to_dict(finance_schema):
    d = intent_to_sql(_intent(limit=3), finance_schema).to_dict()
    assert set(d) == {"sql", "params", "dialect"}
    assert d["sql"].endswith("LIMIT 3")
