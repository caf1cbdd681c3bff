"""
API tests -- FastAPI endpoints via TestClient (no live server needed).
"""
import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.intent import service

client = TestClient(app)

SCHEMA = {
    "name": "finance_data",
    "displayName": "财务数据表",
    "fields": [
        {"name": "department", "displayName": "部门", "type": "string", "isDimension": True},
        {"name": "revenue_amount", "displayName": "营收金额", "type": "number", "isMetric": True},
        {"name": "cost_amount", "displayName": "成本金额", "type": "number", "isMetric": True},
        {"name": "date_field", "displayName": "日期", "type": "date", "isTimeField": True},
        {"name": "employee_count", "displayName": "员工数量", "type": "number", "isMetric": True},
    ],
}

INTENT = {
    "metrics": [{"field": "revenue_amount", "displayName": "营收金额", "aggregation": "sum"}],
    "dimensions": [{"field": "department", "displayName": "部门"}],
    "timeRange": {"type": "period", "period": "month", "value": -1},
    "limit": 20,
}


@pytest.fixture(autouse=True)
def no_llm(monkeypatch):
    """Every extraction in this module goes through the rule-based fallback."""
    monkeypatch.setattr(service, "llm_config_from_settings", lambda: None)


def test_health():
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ── Catalog ──────────────────────────────────────────────

def test_schemas_list():
    resp = client.get("/schemas")
    assert resp.status_code == 200
    items = {s["name"]: s for s in resp.json()}
    assert {"finance_data", "product_inventory", "analytics.monthly_sales"} <= set(items)
    assert items["finance_data"]["fieldCount"] == 5
    assert items["finance_data"]["hasTimeField"] is True
    assert items["product_inventory"]["hasTimeField"] is False


def test_schema_detail():
    resp = client.get("/schemas/finance_data")
    assert resp.status_code == 200
    data = resp.json()
    assert data["displayName"] == "财务数据表"
    date_field = next(f for f in data["fields"] if f["name"] == "date_field")
    assert date_field["isTimeField"] is True


def test_schema_detail_by_file_stem():
    resp = client.get("/schemas/monthly_sales")
    assert resp.status_code == 200
    assert resp.json()["name"] == "analytics.monthly_sales"


def test_unknown_schema_404():
    resp = client.get("/schemas/nope")
    assert resp.status_code == 404


def test_suggest():
    resp = client.get("/schemas/finance_data/suggest", params={"q": "revenue_amt"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["query"] == "revenue_amt"
    assert data["suggestions"][0]["name"] == "revenue_amount"
    assert data["suggestions"][0]["displayName"] == "营收金额"


def test_suggest_blank_query():
    resp = client.get("/schemas/finance_data/suggest")
    assert resp.json()["suggestions"] == []


# ── Extraction ───────────────────────────────────────────

def test_extract_without_llm_uses_fallback():
    resp = client.post("/intent/extract", json={"query": "查看各部门营收情况", "datasetSchema": SCHEMA})
    assert resp.status_code == 200
    data = resp.json()
    assert data["confidence"] == 0.0
    assert "fallback" in data["explanation"]
    assert data["intent"]["description"] == "查看各部门营收情况"
    assert {"field": "revenue_amount", "displayName": "营收金额", "aggregation": "sum"} in data["intent"]["metrics"]
    assert data["suggestions"]


def test_extract_empty_query():
    resp = client.post("/intent/extract", json={"query": "", "datasetSchema": SCHEMA})
    assert resp.status_code == 200
    assert resp.json()["intent"]["metrics"]


def test_extract_bad_body_422():
    resp = client.post("/intent/extract", json={"query": "x"})
    assert resp.status_code == 422


# ── Validate / compile ───────────────────────────────────

def test_validate_ok():
    resp = client.post("/intent/validate", json={"intent": INTENT, "datasetSchema": SCHEMA})
    assert resp.json() == {"valid": True, "errors": []}


def test_validate_unknown_filter_field():
    bad = {**INTENT, "filters": [
        {"field": "region", "displayName": "r", "operator": "=", "value": "x", "dataType": "string"},
    ]}
    data = client.post("/intent/validate", json={"intent": bad, "datasetSchema": SCHEMA}).json()
    assert data["valid"] is False
    assert any("region" in e for e in data["errors"])


def test_compile():
    resp = client.post(
        "/intent/compile",
        json={"intent": INTENT, "datasetSchema": SCHEMA, "dialect": "postgres", "referenceDate": "2024-06-15"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["dialect"] == "postgres"
    assert data["params"] == ["2024-05-01", "2024-05-31"]
    assert 'FROM "finance_data"' in data["sql"]
    assert data["sql"].endswith("LIMIT 20")


def test_compile_invalid_intent_422():
    resp = client.post("/intent/compile", json={"intent": {**INTENT, "limit": 0}, "datasetSchema": SCHEMA})
    assert resp.status_code == 422
    assert any("limit" in e for e in resp.json()["detail"]["errors"])


def test_compile_unknown_dialect_400():
    resp = client.post("/intent/compile", json={"intent": INTENT, "datasetSchema": SCHEMA, "dialect": "oracle"})
    assert resp.status_code == 400
    assert "Unknown SQL dialect" in resp.json()["detail"]


# ── Full pipeline ────────────────────────────────────────

def test_ask():
    resp = client.post(
        "/intent/ask",
        json={"query": "各部门平均员工数量", "datasetSchema": SCHEMA, "dialect": "sqlite"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["confidence"] == 0.0
    assert 'AVG("employee_count")' in data["sql"]
    assert 'GROUP BY "department"' in data["sql"]
    assert data["dialect"] == "sqlite"
    assert data["errors"] == []


@pytest.mark.parametrize("query", ["revenue_amount last 9999 years", "revenue_amount last 999999999999 days"])
def test_ask_with_far_reaching_range(query):
    resp = client.post("/intent/ask", json={"query": query, "datasetSchema": SCHEMA, "dialect": "sqlite"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["errors"] == []
    assert '"date_field" >= ?' in data["sql"]


def test_ask_reports_compile_errors():
    resp = client.post("/intent/ask", json={"query": "营收", "datasetSchema": SCHEMA, "dialect": "oracle"})
    assert resp.status_code == 200
    data = resp.json()
    assert "sql" not in data
    assert any("Unknown SQL dialect" in e for e in data["errors"])
