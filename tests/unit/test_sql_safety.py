"""
Unit tests -- SQL safety checker: every gate over compiled SQL text.
"""
import pytest

from src.governance.sql_safety import check_sql_safety


# ── Helper: a known-safe SQL ─────────────────────────────

_SAFE_SQL = """\
SELECT
  "department" AS "部门",
  SUM("revenue_amount") AS "营收金额"
FROM "finance_data"
WHERE "date_field" >= ?
  AND "revenue_amount" > ?
GROUP BY "department"
ORDER BY SUM("revenue_amount") DESC
LIMIT 50"""


def test_safe_sql_passes(finance_schema):
    errors = check_sql_safety(_SAFE_SQL, finance_schema)
    assert errors == [], f"Expected no errors but got: {errors}"


def test_unquoted_table_matches_case_insensitively(finance_schema):
    sql = 'SELECT "department" AS d FROM FINANCE_DATA LIMIT 5'
    assert check_sql_safety(sql, finance_schema) == []


def test_dotted_table_passes(monthly_schema):
    sql = 'SELECT SUM("order_count") AS "Orders" FROM "analytics"."monthly_sales" LIMIT 10'
    assert check_sql_safety(sql, monthly_schema) == []


# ── 1. Must start with SELECT ───────────────────────────

def test_not_select(finance_schema):
    errors = check_sql_safety("INSERT INTO finance_data VALUES (1)", finance_schema)
    assert any("SELECT" in e for e in errors)


# ── 1b. No multi-statement ──────────────────────────────

def test_multi_statement(finance_schema):
    sql = 'SELECT "department" AS d FROM "finance_data" LIMIT 10; DROP TABLE users'
    errors = check_sql_safety(sql, finance_schema)
    assert any("Multi-statement" in e for e in errors)


def test_trailing_semicolon_ok(finance_schema):
    sql = 'SELECT "department" AS d FROM "finance_data" LIMIT 10;'
    assert check_sql_safety(sql, finance_schema) == []


# ── 2. No SELECT * ──────────────────────────────────────

def test_select_star(finance_schema):
    errors = check_sql_safety('SELECT * FROM "finance_data" LIMIT 10', finance_schema)
    assert any("SELECT *" in e for e in errors)


# ── 3. No dangerous keywords ────────────────────────────

@pytest.mark.parametrize("statement", [
    "DROP TABLE foo",
    "ALTER TABLE foo ADD col int",
    "TRUNCATE TABLE foo",
    "DELETE FROM foo",
    "UPDATE foo SET x=1",
    "GRANT ALL ON foo TO public",
    "CREATE TABLE foo (id int)",
    "ATTACH DATABASE 'x' AS y",
    "PRAGMA table_info(foo)",
])
def test_dangerous_keywords(finance_schema, statement):
    errors = check_sql_safety(statement, finance_schema)
    assert any("Dangerous" in e for e in errors)


def test_keyword_inside_quoted_identifier_ignored(finance_schema):
    sql = 'SELECT COUNT("department") AS "Update Count" FROM "finance_data" LIMIT 5'
    assert check_sql_safety(sql, finance_schema) == []


# ── 4. No SQL comments ──────────────────────────────────

def test_inline_comment(finance_schema):
    sql = 'SELECT "department" AS d FROM "finance_data" -- sneaky\nLIMIT 10'
    errors = check_sql_safety(sql, finance_schema)
    assert any("comment" in e.lower() for e in errors)


def test_block_comment(finance_schema):
    sql = 'SELECT "department" /* hi */ AS d FROM "finance_data" LIMIT 10'
    errors = check_sql_safety(sql, finance_schema)
    assert any("Block comments" in e for e in errors)


# ── 5. No inline literals ───────────────────────────────

def test_string_literal_rejected(finance_schema):
    sql = 'SELECT "department" AS d FROM "finance_data" WHERE "department" = \'HR\' LIMIT 10'
    errors = check_sql_safety(sql, finance_schema)
    assert any("bound parameters" in e for e in errors)


# ── 6. Single table ─────────────────────────────────────

def test_other_table_rejected(finance_schema):
    errors = check_sql_safety('SELECT "x" AS x FROM "users" LIMIT 10', finance_schema)
    assert any("'users'" in e for e in errors)


def test_join_rejected(finance_schema):
    sql = 'SELECT "department" AS d FROM "finance_data" JOIN "users" ON 1 = 1 LIMIT 10'
    errors = check_sql_safety(sql, finance_schema)
    assert any("JOIN" in e for e in errors)


def test_union_rejected(finance_schema):
    sql = ('SELECT "department" AS d FROM "finance_data" UNION '
           'SELECT "department" AS d FROM "finance_data" LIMIT 10')
    errors = check_sql_safety(sql, finance_schema)
    assert any("UNION" in e for e in errors)
    assert any("Subqueries" in e for e in errors)


def test_subquery_rejected(finance_schema):
    sql = 'SELECT "d" AS d FROM (SELECT "department" AS d FROM "finance_data") LIMIT 10'
    errors = check_sql_safety(sql, finance_schema)
    assert any("Subqueries" in e for e in errors)


def test_missing_from(finance_schema):
    errors = check_sql_safety("SELECT 1 AS x LIMIT 1", finance_schema)
    assert any("FROM" in e for e in errors)


# ── 7. LIMIT must exist and be ≤ max ────────────────────

def test_missing_limit(finance_schema):
    errors = check_sql_safety('SELECT "department" AS d FROM "finance_data"', finance_schema)
    assert any("LIMIT" in e for e in errors)


def test_limit_exceeds_max(finance_schema):
    errors = check_sql_safety('SELECT "department" AS d FROM "finance_data" LIMIT 99999', finance_schema)
    assert any("exceeds" in e for e in errors)


def test_custom_max_limit(finance_schema):
    sql = 'SELECT "department" AS d FROM "finance_data" LIMIT 50'
    assert check_sql_safety(sql, finance_schema, max_limit=20)
