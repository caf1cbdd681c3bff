"""
Shared dataset schemas for unit and integration tests.

Built in code rather than read from semantic_layer/ so that editing the
sample YAML never changes test expectations.
"""
import pytest

from src.intent.model import FieldDescriptor, SchemaDescriptor


def make_finance_schema() -> SchemaDescriptor:
    return SchemaDescriptor(
        name="finance_data",
        display_name="财务数据表",
        fields=[
            FieldDescriptor(name="department", display_name="部门", type="string", is_dimension=True),
            FieldDescriptor(name="revenue_amount", display_name="营收金额", type="number", is_metric=True),
            FieldDescriptor(name="cost_amount", display_name="成本金额", type="number", is_metric=True),
            FieldDescriptor(name="date_field", display_name="日期", type="date", is_time_field=True),
            FieldDescriptor(name="employee_count", display_name="员工数量", type="number", is_metric=True),
        ],
    )


def make_inventory_schema() -> SchemaDescriptor:
    """No time field."""
    return SchemaDescriptor(
        name="product_inventory",
        display_name="Product Inventory",
        fields=[
            FieldDescriptor(name="product_name", display_name="Product", type="string", is_dimension=True),
            FieldDescriptor(name="category", display_name="Category", type="string", is_dimension=True),
            FieldDescriptor(name="warehouse", display_name="Warehouse", type="string", is_dimension=True),
            FieldDescriptor(name="stock_qty", display_name="Stock Quantity", type="number", is_metric=True),
            FieldDescriptor(name="unit_price", display_name="Unit Price", type="number", is_metric=True),
            FieldDescriptor(name="discontinued", display_name="Discontinued", type="boolean"),
        ],
    )


def make_monthly_schema() -> SchemaDescriptor:
    """Numeric YYYYMM time field and a dotted table name."""
    return SchemaDescriptor(
        name="analytics.monthly_sales",
        display_name="Monthly Sales",
        fields=[
            FieldDescriptor(name="period_key", display_name="Month", type="number", is_time_field=True),
            FieldDescriptor(name="region", display_name="Region", type="string", is_dimension=True),
            FieldDescriptor(name="channel", display_name="Sales Channel", type="string", is_dimension=True),
            FieldDescriptor(name="order_count", display_name="Orders", type="number", is_metric=True),
            FieldDescriptor(name="gross_revenue", display_name="Gross Revenue", type="number", is_metric=True),
            FieldDescriptor(name="customer_id", display_name="Customer", type="string", is_metric=True),
        ],
    )


@pytest.fixture(scope="module")
def finance_schema() -> SchemaDescriptor:
    return make_finance_schema()


@pytest.fixture(scope="module")
def inventory_schema() -> SchemaDescriptor:
    return make_inventory_schema()


@pytest.fixture(scope="module")
def monthly_schema() -> SchemaDescriptor:
    return make_monthly_schema()
