"""
Provisioning Examples for snowlink.

Demonstrates the GCS -> Pub/Sub -> Snowpipe setup end to end using the
dry-run adapters, so every example runs without Snowflake or GCP access.
Swap in SnowflakeAdapter / GCPAdapter to run against real accounts.
"""

from snowlink import (
    DryRunCloudAdapter,
    DryRunWarehouseAdapter,
    ProjectConfig,
    ProvisioningRunner,
    Severity,
    configure_logging,
    expect,
    run_health_checks,
    validate_csv_bytes,
)
from snowlink.core import DateField, IntegerField, LandingTable, StringField
from snowlink.infra import ddl, gcloud
from snowlink.monitoring import PipelineSnapshot, default_checks
from snowlink.monitoring.status import CopyHistoryEntry, LoadStatus, PipeStatus


# ============================================================================
# Landing contract and settings shared by the examples
# ============================================================================

class OrdersDataLz(LandingTable):
    """Raw order events delivered as CSV files."""

    order_id = IntegerField(nullable=False)
    product = StringField(max_length=100)
    quantity = IntegerField()
    order_status = StringField(max_length=30)
    order_date = DateField()


CONFIG = ProjectConfig(
    gcp_project_id="my-gcp-project",
    gcs_bucket="my-landing-bucket",
    gcs_prefix="orders/",
    pubsub_topic="snowpipe-orders-topic",
    pubsub_subscription="snowpipe-orders-sub",
    snowflake_account="myorg-myaccount",
    snowflake_user="loader",
    snowflake_role="ACCOUNTADMIN",
    snowflake_warehouse="COMPUTE_WH",
    snowflake_database="RAW",
    snowflake_schema="LANDING",
    target_table="orders_data_lz",
)


# ============================================================================
# EXAMPLE 1: Render the DDL by hand
# ============================================================================

def example_render_ddl():
    """
    Print the statements in the order Snowflake needs them.

    The storage integration and the notification integration each issue a
    GCP service account; DESC INTEGRATION shows it, and the IAM grants in
    between use it.
    """
    print(OrdersDataLz.to_create_table_sql())
    print(ddl.create_storage_integration_sql(CONFIG.storage_integration, [CONFIG.gcs_url]))
    print(ddl.describe_integration_sql(CONFIG.storage_integration))
    print(ddl.create_notification_integration_sql(
        CONFIG.notification_integration, CONFIG.subscription_path))
    print(ddl.create_stage_sql(CONFIG.stage_name, CONFIG.gcs_url, CONFIG.storage_integration))
    print(ddl.create_pipe_sql(
        CONFIG.pipe_name,
        OrdersDataLz.get_table_name(),
        CONFIG.stage_name,
        CONFIG.notification_integration,
        file_format=ddl.FileFormat(skip_header=1),
    ))

    # GCP side
    print(gcloud.create_topic_cmd(CONFIG.gcp_project_id, CONFIG.pubsub_topic))
    print(gcloud.create_bucket_notification_cmd(
        CONFIG.gcp_project_id, CONFIG.gcs_bucket, CONFIG.pubsub_topic, CONFIG.gcs_prefix))


# ============================================================================
# EXAMPLE 2: Dry-run provisioning
# ============================================================================

def example_dry_run_provision():
    """
    Run every provisioning step against recording adapters.

    Without canned DESC INTEGRATION rows the runner falls back to the
    ${STORAGE_SERVICE_ACCOUNT} / ${PUBSUB_SERVICE_ACCOUNT} placeholders.
    """
    warehouse = DryRunWarehouseAdapter()
    cloud = DryRunCloudAdapter(CONFIG.gcp_project_id)

    runner = ProvisioningRunner(CONFIG, [OrdersDataLz], warehouse=warehouse, cloud=cloud,
                                dry_run=True)
    for result in runner.provision():
        print(f"[{result.status.upper():7}] {result.name}: {result.detail}")

    print("\n".join(cloud.commands))


# ============================================================================
# EXAMPLE 3: Simulated Snowflake answers
# ============================================================================

def example_canned_responses():
    """
    Register DESC INTEGRATION and SYSTEM$PIPE_STATUS results so the runner
    reads real-looking service accounts and pipe state.
    """
    warehouse = DryRunWarehouseAdapter()
    warehouse.add_response(f"DESC INTEGRATION {CONFIG.storage_integration}", [
        {"property": "STORAGE_GCP_SERVICE_ACCOUNT",
         "property_value": "abc123@gcpuscentral1-1dfa.iam.gserviceaccount.com"},
    ])
    warehouse.add_response(f"DESC INTEGRATION {CONFIG.notification_integration}", [
        {"property": "GCP_PUBSUB_SERVICE_ACCOUNT",
         "property_value": "xyz789@gcpuscentral1-1dfa.iam.gserviceaccount.com"},
    ])
    warehouse.add_response("SELECT SYSTEM$PIPE_STATUS", [
        {"PIPE_STATUS": '{"executionState": "RUNNING", "pendingFileCount": 0}'},
    ])

    runner = ProvisioningRunner(CONFIG, [OrdersDataLz], warehouse=warehouse,
                                cloud=DryRunCloudAdapter(CONFIG.gcp_project_id))
    runner.provision()
    print(f"Storage SA: {runner.storage_service_account}")
    print(f"Pipe state: {runner.pipe_status.execution_state.value}")


# ============================================================================
# EXAMPLE 4: Preflight a CSV file
# ============================================================================

def example_check_csv():
    """
    COPY maps CSV columns by position; catch mismatches before uploading.
    """
    good = b"1001,Wireless Mouse,2,PLACED,2024-06-01\n"
    bad = b"order_id,product,quantity,order_status,order_date\n1002,Cable,x,PLACED,2024-06-01\n"

    print(validate_csv_bytes(good, OrdersDataLz))
    # Header row and a non-numeric quantity
    for error in validate_csv_bytes(bad, OrdersDataLz).errors:
        print(f"  - {error}")
    # With SKIP_HEADER = 1 only the quantity is reported
    for error in validate_csv_bytes(bad, OrdersDataLz, skip_header=1).errors:
        print(f"  - {error}")


# ============================================================================
# EXAMPLE 5: Custom health checks
# ============================================================================

@expect("gcs_orders_pipe", severity=Severity.WARN)
def no_skipped_files(snapshot):
    """Files skipped by the pipe usually mean a bad ON_ERROR setting or a reused name."""
    skipped = [e.file_name for e in snapshot.history if e.status is LoadStatus.LOAD_SKIPPED]
    return (not skipped, f"Skipped: {skipped}" if skipped else "No skipped files")


def example_health_checks():
    snapshot = PipelineSnapshot(
        pipe_name="gcs_orders_pipe",
        pipe_status=PipeStatus.from_dict({
            "executionState": "RUNNING",
            "pendingFileCount": 0,
            "notificationChannelName": CONFIG.subscription_path,
        }),
        history=[
            CopyHistoryEntry("orders/batch_001.csv", LoadStatus.LOADED, row_count=5),
            CopyHistoryEntry("orders/batch_001.csv", LoadStatus.LOAD_SKIPPED),
        ],
    )
    checks = default_checks(CONFIG.storage_integration, CONFIG.notification_integration)
    report = run_health_checks(snapshot, checks)

    for result in report.results:
        print(f"[{'OK' if result.passed else result.severity.value.upper()}] "
              f"{result.check_name}: {result.message}")


if __name__ == "__main__":
    configure_logging("INFO")
    example_render_ddl()
    example_dry_run_provision()
    example_canned_responses()
    example_check_csv()
    example_health_checks()
