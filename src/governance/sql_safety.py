"""
Deterministic SQL safety checks (non-LLM).

A second, purely textual gate over compiled SQL before it is handed to the
caller for execution.  It does not trust the compiler: it re-reads the SQL
text and the dataset schema only.

Checks performed:
  1. SQL must be a single SELECT statement (no DDL / DML / multi-statement)
  2. No SELECT *
  3. No dangerous keywords (DROP, ALTER, TRUNCATE, INSERT, UPDATE, DELETE, GRANT …)
  4. No comments (--, /*)
  5. No string literals -- values must travel as bound parameters
  6. Only the dataset's own table; no joins, unions or subqueries
  7. LIMIT must be present and <= the hard maximum

Quoted identifiers are masked before the keyword checks, so a column whose
display name is e.g. "Update Count" does not trip check 3.
"""
from __future__ import annotations

import re

from src.core.config import get_settings
from src.core.logging import get_logger
from src.intent.model import SchemaDescriptor

logger = get_logger(__name__)

# ── Compiled patterns ────────────────────────────────────

_QUOTED_IDENT = re.compile(r'"(?:[^"]|"")*"|`(?:[^`]|``)*`')

_DANGEROUS_KW = re.compile(
    r"\b(DROP|ALTER|TRUNCATE|INSERT|UPDATE|DELETE|MERGE|GRANT|REVOKE|"
    r"CREATE|REPLACE|EXECUTE|EXEC|CALL|DECLARE|COPY|ATTACH|PRAGMA|"
    r"SET\s+ROLE|RESET\s+ROLE)\b",
    re.IGNORECASE,
)

_MULTI_STMT = re.compile(r";\s*\S")  # semicolon followed by non-whitespace

_COMMENT_INLINE = re.compile(r"--")
_COMMENT_BLOCK = re.compile(r"/\*")

_STRING_LITERAL = re.compile(r"'")

_SELECT_STAR = re.compile(r"\bSELECT\s+\*", re.IGNORECASE)
_SELECT_KW = re.compile(r"\bSELECT\b", re.IGNORECASE)
_JOIN_UNION = re.compile(r"\b(JOIN|UNION|INTERSECT|EXCEPT)\b", re.IGNORECASE)

_LIMIT_RE = re.compile(r"\bLIMIT\s+(\d+)", re.IGNORECASE)

_FROM_RE = re.compile(r"\bFROM\s+([\w]+(?:\s*\.\s*[\w]+)*)", re.IGNORECASE)

_TOKEN_RE = re.compile(r"^__ident(\d+)__$")


def _mask_identifiers(sql: str) -> tuple[str, list[str]]:
    """Replace quoted identifiers with ``__identN__`` tokens; return the names."""
    names: list[str] = []

    def repl(m: re.Match[str]) -> str:
        raw = m.group(0)
        q = raw[0]
        names.append(raw[1:-1].replace(q * 2, q))
        return f"__ident{len(names) - 1}__"

    return _QUOTED_IDENT.sub(repl, sql), names


def _unmask(part: str, names: list[str]) -> str:
    m = _TOKEN_RE.match(part)
    return names[int(m.group(1))] if m else part


def check_sql_safety(
    sql: str,
    schema: SchemaDescriptor,
    *,
    max_limit: int | None = None,
) -> list[str]:
    """Return a list of safety violations (empty list = safe).

    Parameters
    ----------
    sql : str
        The SQL query to check.
    schema : SchemaDescriptor
        Dataset whose table is the only one allowed.
    max_limit : int, optional
        Hard row ceiling; defaults to ``Settings.max_limit``.
    """
    if max_limit is None:
        max_limit = get_settings().max_limit

    errors: list[str] = []
    masked, names = _mask_identifiers(sql.strip())

    # ── 1. Must start with SELECT ────────────────────
    if not masked.upper().startswith("SELECT"):
        errors.append("SQL must be a SELECT statement.")

    # ── 1b. No multi-statement ───────────────────────
    if _MULTI_STMT.search(masked):
        errors.append("Multi-statement SQL is not allowed (found ';' followed by another statement).")

    # ── 2. No SELECT * ───────────────────────────────
    if _SELECT_STAR.search(masked):
        errors.append("SELECT * is not allowed. Specify explicit columns.")

    # ── 3. No dangerous keywords ─────────────────────
    m = _DANGEROUS_KW.search(masked)
    if m:
        errors.append(f"Dangerous keyword detected: '{m.group(1).upper()}'.")

    # ── 4. No SQL comments (injection vector) ────────
    if _COMMENT_INLINE.search(masked):
        errors.append("Inline comments (--) are not allowed.")
    if _COMMENT_BLOCK.search(masked):
        errors.append("Block comments (/* */) are not allowed.")

    # ── 5. No inline literals ────────────────────────
    if _STRING_LITERAL.search(masked):
        errors.append("String literals are not allowed; values must be bound parameters.")

    # ── 6. Single table, single SELECT ───────────────
    if len(_SELECT_KW.findall(masked)) > 1:
        errors.append("Subqueries are not allowed.")
    m = _JOIN_UNION.search(masked)
    if m:
        errors.append(f"'{m.group(1).upper()}' is not allowed; queries are single-table.")

    table_refs = _FROM_RE.findall(masked)
    if not table_refs:
        errors.append("SQL must select FROM the dataset table.")
    for ref in table_refs:
        table = ".".join(_unmask(part.strip(), names) for part in ref.split("."))
        if table.lower() != schema.name.lower():
            errors.append(f"Table '{table}' is not the dataset table '{schema.name}'.")

    # ── 7. LIMIT must exist and be ≤ max ─────────────
    limit_match = _LIMIT_RE.search(masked)
    if not limit_match:
        errors.append(f"SQL must include a LIMIT clause (max {max_limit}).")
    else:
        limit_val = int(limit_match.group(1))
        if limit_val > max_limit:
            errors.append(f"LIMIT {limit_val} exceeds maximum allowed ({max_limit}).")

    if errors:
        logger.warning("SQL safety violations: %s", errors)
    return errors
