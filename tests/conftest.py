"""Pytest configuration and fixtures."""

import json
import textwrap

import pytest

from snowlink.config import ProjectConfig
from snowlink.core import DateField, IntegerField, LandingTable, StringField
from snowlink.engine import DryRunCloudAdapter, DryRunWarehouseAdapter

STORAGE_SA = "abc123@gcpuscentral1-1dfa.iam.gserviceaccount.com"
PUBSUB_SA = "xyz789@gcpuscentral1-1dfa.iam.gserviceaccount.com"


class OrdersDataLz(LandingTable):
    """Raw order events."""

    order_id = IntegerField(nullable=False)
    product = StringField(max_length=100)
    quantity = IntegerField()
    order_status = StringField(max_length=30)
    order_date = DateField()


SETTINGS_PY = textwrap.dedent('''
    GCP_PROJECT_ID = "acme-data"
    GCS_BUCKET = "acme-landing"
    GCS_PREFIX = "orders/"
    PUBSUB_TOPIC = "snowpipe-orders-topic"
    PUBSUB_SUBSCRIPTION = "snowpipe-orders-sub"
    SNOWFLAKE_ACCOUNT = "acme-xy12345"
    SNOWFLAKE_USER = "loader"
    SNOWFLAKE_ROLE = "ACCOUNTADMIN"
    SNOWFLAKE_WAREHOUSE = "COMPUTE_WH"
    SNOWFLAKE_DATABASE = "RAW"
    SNOWFLAKE_SCHEMA = "LANDING"
    TARGET_TABLE = "orders_data_lz"
    ENVIRONMENT = "test"
''')

CONTRACTS_PY = textwrap.dedent('''
    from snowlink.core import LandingTable, IntegerField, StringField, DateField


    class OrdersDataLz(LandingTable):
        """Raw order events."""

        order_id = IntegerField(nullable=False)
        product = StringField(max_length=100)
        quantity = IntegerField()
        order_status = StringField(max_length=30)
        order_date = DateField()
''')

SAMPLE_CSV = (
    b"1001,Wireless Mouse,2,PLACED,2024-06-01\n"
    b"1002,USB-C Cable,5,SHIPPED,2024-06-01\n"
    b"1003,Laptop Stand,1,DELIVERED,2024-06-02\n"
)


@pytest.fixture
def orders_contract():
    return OrdersDataLz


@pytest.fixture
def config():
    """Fully populated project settings."""
    return ProjectConfig(
        gcp_project_id="acme-data",
        gcs_bucket="acme-landing",
        gcs_prefix="orders/",
        pubsub_topic="snowpipe-orders-topic",
        pubsub_subscription="snowpipe-orders-sub",
        snowflake_account="acme-xy12345",
        snowflake_user="loader",
        snowflake_role="ACCOUNTADMIN",
        snowflake_warehouse="COMPUTE_WH",
        snowflake_database="RAW",
        snowflake_schema="LANDING",
        target_table="orders_data_lz",
    )


@pytest.fixture
def project_dir(tmp_path):
    """A snowlink project directory with settings and one landing contract."""
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "settings.py").write_text(SETTINGS_PY)
    (tmp_path / "contracts").mkdir()
    (tmp_path / "contracts" / "__init__.py").write_text("")
    (tmp_path / "contracts" / "landing.py").write_text(CONTRACTS_PY)
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "orders.csv").write_bytes(SAMPLE_CSV)
    return tmp_path


@pytest.fixture
def sample_csv():
    return SAMPLE_CSV


def describe_rows(properties):
    """DESC INTEGRATION result rows for a property dict."""
    return [
        {"property": key, "property_type": "String", "property_value": value,
         "property_default": ""}
        for key, value in properties.items()
    ]


def pipe_status_json(state="RUNNING", **extra):
    payload = {
        "executionState": state,
        "pendingFileCount": 0,
        "notificationChannelName": "projects/acme-data/subscriptions/snowpipe-orders-sub",
    }
    payload.update(extra)
    return json.dumps(payload)


@pytest.fixture
def warehouse():
    """Dry-run warehouse answering DESC INTEGRATION and SYSTEM$PIPE_STATUS like Snowflake."""
    adapter = DryRunWarehouseAdapter()
    adapter.add_response("DESC INTEGRATION gcs_bucket_read_int", describe_rows({
        "ENABLED": "true",
        "STORAGE_PROVIDER": "GCS",
        "STORAGE_ALLOWED_LOCATIONS": "gcs://acme-landing/orders/",
        "STORAGE_GCP_SERVICE_ACCOUNT": STORAGE_SA,
    }))
    adapter.add_response("DESC INTEGRATION gcs_notification_int", describe_rows({
        "ENABLED": "true",
        "GCP_PUBSUB_SUBSCRIPTION_NAME": "projects/acme-data/subscriptions/snowpipe-orders-sub",
        "GCP_PUBSUB_SERVICE_ACCOUNT": PUBSUB_SA,
    }))
    adapter.add_response("SELECT SYSTEM$PIPE_STATUS", [{"PIPE_STATUS": pipe_status_json()}])
    return adapter


@pytest.fixture
def cloud():
    return DryRunCloudAdapter("acme-data")
