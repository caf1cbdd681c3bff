"""
Evaluation harness -- runs eval_questions.jsonl through the rule-based
extractor and compiler, and generates analytics/reports/eval_report.md.

Checks:
  - Metric correctness    (field:aggregation pairs match expected, order-independent)
  - Dimension correctness (grouped fields match expected, order-independent)
  - Limit / time range    (when the question states them)
  - Validity              (intent passes the validator)
  - SQL generation        (compiles and passes the safety gate)
  - SQL execution         (runs against an empty in-memory SQLite table)
  - Latency               (extraction + compilation ms)
"""
from __future__ import annotations

import datetime
import json
import sqlite3
import sys
from pathlib import Path
from typing import Any

EVAL_PATH = Path(__file__).resolve().parent / "eval_questions.jsonl"
REPORT_PATH = Path(__file__).resolve().parents[1] / "reports" / "eval_report.md"

# Fixed "today" so the report is reproducible
REFERENCE_DATE = datetime.date(2024, 6, 15)

_SQLITE_TYPES = {"number": "REAL", "boolean": "INTEGER"}


def _load_questions() -> list[dict[str, Any]]:
    lines = EVAL_PATH.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def _executes_on_sqlite(sql: str, params: list[Any], schema) -> bool:
    """Create an empty table shaped like *schema* and run the query."""
    conn = sqlite3.connect(":memory:")
    try:
        parts = schema.name.split(".")
        if len(parts) == 2:
            conn.execute(f"ATTACH DATABASE ':memory:' AS \"{parts[0]}\"")
        cols = ", ".join(f'"{f.name}" {_SQLITE_TYPES.get(f.type, "TEXT")}' for f in schema.fields)
        table = ".".join(f'"{p}"' for p in parts)
        conn.execute(f"CREATE TABLE {table} ({cols})")
        conn.execute(sql, params).fetchall()
        return True
    except sqlite3.Error:
        return False
    finally:
        conn.close()


def _run_one(q: dict[str, Any]) -> dict[str, Any]:
    """Run a single question through extraction -> validation -> compilation."""
    from src.compiler.sql_generator import intent_to_sql
    from src.core.errors import CompileError
    from src.core.utils import timer
    from src.governance.schema_loader import load_bundled_schema
    from src.governance.sql_safety import check_sql_safety
    from src.governance.validator import validate_intent
    from src.intent.fallback import fallback_extract

    question = q["question"]
    schema = load_bundled_schema(q["dataset"])
    if schema is None:
        return {"dataset": q["dataset"], "question": question, "error": f"unknown dataset {q['dataset']}",
                "success": False, "latency_ms": 0, "metrics_ok": False, "dims_ok": False, "limit_ok": False,
                "time_ok": False, "valid": False, "sql_generated": False, "sql_executed": False,
                "generated_sql": "", "errors": []}

    errors: list[str] = []
    sql, params = "", []
    with timer() as t:
        intent = fallback_extract(question, schema)
        validation = validate_intent(intent, schema)
        errors.extend(validation.errors)
        if validation.valid:
            try:
                compiled = intent_to_sql(intent, schema, dialect="sqlite", reference_date=REFERENCE_DATE)
                sql, params = compiled.sql, compiled.params
                errors.extend(check_sql_safety(sql, schema))
            except CompileError as exc:
                errors.append(f"Compile error: {exc}")

    actual_metrics = {f"{m.field}:{m.aggregation}" for m in intent.metrics}
    actual_dims = {d.field for d in intent.dimensions if d.group_by}
    metrics_ok = actual_metrics == set(q.get("expected_metrics", []))
    dims_ok = actual_dims == set(q.get("expected_dimensions", []))
    limit_ok = "expected_limit" not in q or intent.limit == q["expected_limit"]
    expected_time = q.get("expected_time_type")
    actual_time = intent.time_range.type if intent.time_range else None
    time_ok = "expected_time_type" not in q or actual_time == expected_time

    sql_generated = bool(sql) and not errors
    sql_executed = sql_generated and _executes_on_sqlite(sql, params, schema)

    return {
        "dataset": q["dataset"],
        "question": question,
        "error": None,
        "latency_ms": t["elapsed_ms"],
        "metrics_ok": metrics_ok,
        "dims_ok": dims_ok,
        "limit_ok": limit_ok,
        "time_ok": time_ok,
        "valid": validation.valid,
        "sql_generated": sql_generated,
        "sql_executed": sql_executed,
        "success": metrics_ok and dims_ok and limit_ok and time_ok and sql_executed,
        "generated_sql": sql,
        "errors": errors,
    }



# ── Report ───────────────────────────────────────────────

_CHECKS = [
    ("metrics_ok", "Metric correctness"),
    ("dims_ok", "Dimension correctness"),
    ("limit_ok", "Limit correctness"),
    ("time_ok", "Time range correctness"),
    ("valid", "Intent validity"),
    ("sql_generated", "SQL generated + safe"),
    ("sql_executed", "SQL runs on SQLite"),
]


def _rate(n: int, total: int) -> str:
    pct = (n / total * 100) if total else 0
    return f"**{pct:.0f}%** ({n}/{total})"


def _percentile(values: list[int], q: float) -> int:
    if not values:
        return 0
    ordered = sorted(values)
    return ordered[min(int(len(ordered) * q), len(ordered) - 1)]


def _table(header: list[str], rows: list[list[Any]]) -> list[str]:
    out = ["| " + " | ".join(header) + " |", "|" + "|".join("---" for _ in header) + "|"]
    out.extend("| " + " | ".join(str(c) for c in row) + " |" for row in rows)
    return out + [""]


def _mark(flag: bool) -> str:
    return "OK" if flag else "ERROR"


def _generate_report(results: list[dict[str, Any]]) -> str:
    """Markdown report: summary, per-dataset rates, latency, per-question grid, failures."""
    total = len(results)
    stamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M")
    latencies = [r["latency_ms"] for r in results]

    lines = [
        "# Evaluation Report",
        "",
        f"> Generated: {stamp}  |  Questions: **{total}**  |  Extractor: rule-based fallback  |  "
        f"Reference date: {REFERENCE_DATE.isoformat()}",
        "",
        "## Summary",
        "",
    ]
    summary = [["Overall success rate", _rate(sum(r["success"] for r in results), total)]]
    summary += [[label, _rate(sum(r[key] for r in results), total)] for key, label in _CHECKS]
    lines += _table(["Check", "Rate"], summary)

    lines += ["## By dataset", ""]
    by_dataset: dict[str, list[dict[str, Any]]] = {}
    for r in results:
        by_dataset.setdefault(r["dataset"], []).append(r)
    lines += _table(
        ["Dataset", "Questions", "Passed"],
        [[name, len(rs), _rate(sum(r["success"] for r in rs), len(rs))] for name, rs in sorted(by_dataset.items())],
    )

    lines += ["## Latency (ms)", ""]
    mean = sum(latencies) / len(latencies) if latencies else 0
    lines += _table(
        ["Mean", "p50", "p95", "Max"],
        [[f"{mean:.0f}", _percentile(latencies, 0.5), _percentile(latencies, 0.95), max(latencies, default=0)]],
    )

    example = next((r for r in results if r["sql_generated"]), None)
    if example:
        lines += [
            "## Example SQL",
            "",
            f"Question: *{example['question']}*",
            "",
            "```sql",
            example["generated_sql"],
            "```",
            "",
        ]

    lines += ["## Per-question results", ""]
    grid = []
    for i, r in enumerate(results, 1):
        q = r["question"] if len(r["question"]) <= 45 else r["question"][:45] + "..."
        grid.append([i, q, *(_mark(r[key]) for key, _ in _CHECKS), r["latency_ms"], _mark(r["success"])])
    lines += _table(["#", "Question", "Metrics", "Dims", "Limit", "Time", "Valid", "SQL", "Runs", "ms", "Pass"], grid)

    lines += ["## Failures", ""]
    failures = [(i, r) for i, r in enumerate(results, 1) if not r["success"]]
    if not failures:
        lines += ["None.", ""]
    for i, r in failures:
        lines.append(f"### #{i}: {r['question']}")
        if r.get("error"):
            lines.append(f"- error: `{r['error']}`")
        for err in r.get("errors") or []:
            lines.append(f"- {err}")
        lines.append("")

    return "\n".join(lines)


def run() -> int:
    # CJK questions break the Windows cp1252 console
    if sys.platform == "win32":
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")  # type: ignore[attr-defined]

    questions = _load_questions()
    print(f"Evaluating {len(questions)} questions (reference date {REFERENCE_DATE}).\n")

    results = []
    for i, q in enumerate(questions, 1):
        r = _run_one(q)
        results.append(r)
        print(f"  [{i:2d}/{len(questions)}] {'PASS' if r['success'] else 'FAIL'}  "
              f"{r['question'][:50]:<50}  {r['latency_ms']:>4d}ms")

    REPORT_PATH.parent.mkdir(parents=True, exist_ok=True)
    REPORT_PATH.write_text(_generate_report(results), encoding="utf-8")

    passed = sum(r["success"] for r in results)
    print(f"\nPassed {passed}/{len(results)}; report written to {REPORT_PATH}")
    return 0 if passed == len(results) else 1


if __name__ == "__main__":
    sys.exit(run())
