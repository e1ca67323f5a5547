"""
Tests for the provisioning runner, using the dry-run adapters as fakes.
"""

import pytest
from conftest import PUBSUB_SA, STORAGE_SA, pipe_status_json

from snowlink.core import IntegerField, LandingTable
from snowlink.engine import DryRunWarehouseAdapter, ProvisioningError, ProvisioningRunner
from snowlink.engine.runner import (
    FAILED,
    MANUAL,
    OK,
    PUBSUB_SA_PLACEHOLDER,
    SKIPPED,
    STORAGE_SA_PLACEHOLDER,
    WARN,
)
from snowlink.infra import ddl


class AuditEvents(LandingTable):
    event_id = IntegerField(nullable=False)


def _runner(config, contracts, warehouse, cloud, **kwargs):
    return ProvisioningRunner(config, contracts, warehouse=warehouse, cloud=cloud, **kwargs)


class TestConstruction:
    """Argument checks and target table selection."""

    def test_requires_contracts_and_adapters(self, config, orders_contract, warehouse, cloud):
        with pytest.raises(ValueError, match="contract"):
            ProvisioningRunner(config, [], warehouse=warehouse, cloud=cloud)
        with pytest.raises(ValueError, match="warehouse"):
            ProvisioningRunner(config, [orders_contract], cloud=cloud)
        with pytest.raises(ValueError, match="cloud"):
            ProvisioningRunner(config, [orders_contract], warehouse=warehouse)

        # Adapters are optional for the side that is skipped
        ProvisioningRunner(config, [orders_contract], skip_gcp=True, skip_snowflake=True)

    def test_target_table_follows_setting(self, config, orders_contract, warehouse, cloud):
        config.target_table = "ORDERS_DATA_LZ"
        runner = _runner(config, [AuditEvents, orders_contract], warehouse, cloud)
        assert runner.target_table is orders_contract

        config.target_table = None
        runner = _runner(config, [AuditEvents, orders_contract], warehouse, cloud)
        assert runner.target_table is AuditEvents

    def test_unknown_target_table_fails_before_any_step(self, config, orders_contract,
                                                        warehouse, cloud):
        config.target_table = "missing_table"
        with pytest.raises(ValueError, match="TARGET_TABLE 'missing_table'"):
            _runner(config, [orders_contract], warehouse, cloud)

        assert warehouse.statements == []
        assert cloud.commands == []


class TestProvision:
    """Full provisioning flow."""

    def test_provision_runs_steps_in_dependency_order(self, config, orders_contract,
                                                      warehouse, cloud):
        runner = _runner(config, [orders_contract], warehouse, cloud)
        results = runner.provision()

        assert [r.status for r in results] == [
            OK, OK, OK, OK, OK, OK, OK, MANUAL, OK, OK, OK,
        ]

        created = [s.split("\n")[0] for s in warehouse.statements if s.startswith("CREATE")]
        assert created == [
            "CREATE TABLE IF NOT EXISTS orders_data_lz (",
            "CREATE STORAGE INTEGRATION IF NOT EXISTS gcs_bucket_read_int",
            "CREATE NOTIFICATION INTEGRATION IF NOT EXISTS gcs_notification_int",
            "CREATE STAGE IF NOT EXISTS gcs_orders_stage",
            "CREATE PIPE IF NOT EXISTS gcs_orders_pipe",
        ]
        assert runner.storage_service_account == STORAGE_SA
        assert runner.pubsub_service_account == PUBSUB_SA
        assert runner.pipe_status.execution_state.is_running

    def test_grants_use_service_accounts_from_desc_integration(self, config, orders_contract,
                                                                warehouse, cloud):
        _runner(config, [orders_contract], warehouse, cloud).provision()

        assert cloud.commands == [
            "gcloud storage buckets add-iam-policy-binding gs://acme-landing "
            f"--member=serviceAccount:{STORAGE_SA} --role=roles/storage.objectViewer",
            "gcloud pubsub topics create snowpipe-orders-topic --project=acme-data",
            "gcloud storage buckets notifications create gs://acme-landing "
            "--topic=projects/acme-data/topics/snowpipe-orders-topic --payload-format=json "
            "--event-types=OBJECT_FINALIZE --object-prefix=orders/",
            "gcloud pubsub subscriptions create snowpipe-orders-sub "
            "--topic=snowpipe-orders-topic --project=acme-data",
            "gcloud pubsub subscriptions add-iam-policy-binding snowpipe-orders-sub "
            f"--member=serviceAccount:{PUBSUB_SA} --role=roles/pubsub.subscriber "
            "--project=acme-data",
        ]

    def test_monitoring_viewer_grant_is_reported_as_manual(self, config, orders_contract,
                                                          warehouse, cloud):
        results = _runner(config, [orders_contract], warehouse, cloud).provision()
        manual = [r for r in results if r.status == MANUAL]
        assert len(manual) == 1
        assert "roles/monitoring.viewer" in manual[0].detail

    def test_pipe_uses_skip_header_setting(self, config, orders_contract, warehouse, cloud):
        config.skip_header = 1
        _runner(config, [orders_contract], warehouse, cloud).provision()
        pipe = [s for s in warehouse.statements if s.startswith("CREATE PIPE")][0]
        assert pipe.endswith("FILE_FORMAT = (TYPE = 'CSV' SKIP_HEADER = 1);")

    def test_or_replace_mode(self, config, orders_contract, warehouse, cloud, caplog):
        runner = _runner(config, [orders_contract], warehouse, cloud,
                         mode=ddl.CreateMode.OR_REPLACE)
        runner.provision()

        assert any(s.startswith("CREATE OR REPLACE PIPE") for s in warehouse.statements)
        assert any(s.startswith("CREATE OR REPLACE TABLE") for s in warehouse.statements)
        assert "new GCS service account" in caplog.text

    def test_paused_pipe_is_a_warning(self, config, orders_contract, warehouse, cloud):
        warehouse.add_response("SELECT SYSTEM$PIPE_STATUS",
                               [{"PIPE_STATUS": pipe_status_json("PAUSED")}])
        results = _runner(config, [orders_contract], warehouse, cloud).provision()
        assert results[-1].status == WARN
        assert results[-1].detail == "PAUSED"

    def test_missing_service_account_stops_provisioning(self, config, orders_contract, cloud):
        warehouse = DryRunWarehouseAdapter()
        runner = _runner(config, [orders_contract], warehouse, cloud)

        with pytest.raises(ProvisioningError) as excinfo:
            runner.provision()

        error = excinfo.value
        assert error.step == "read storage service account"
        assert "step 3/11" in str(error)
        assert [r.status for r in error.results] == [OK, OK, FAILED]
        # Nothing on GCP was touched
        assert cloud.commands == []

    def test_failed_statement_stops_provisioning(self, config, orders_contract, warehouse, cloud):
        warehouse.add_failure("CREATE STAGE", "Insufficient privileges")
        with pytest.raises(ProvisioningError) as excinfo:
            _runner(config, [orders_contract], warehouse, cloud).provision()

        assert excinfo.value.step == "create stage"
        assert "Insufficient privileges" in str(excinfo.value)
        assert not any(s.startswith("CREATE PIPE") for s in warehouse.statements)

    def test_dry_run_uses_placeholders(self, config, orders_contract, cloud):
        warehouse = DryRunWarehouseAdapter()
        runner = _runner(config, [orders_contract], warehouse, cloud, dry_run=True)
        results = runner.provision()

        assert runner.storage_service_account == STORAGE_SA_PLACEHOLDER
        assert runner.pubsub_service_account == PUBSUB_SA_PLACEHOLDER
        assert any("serviceAccount:${STORAGE_SERVICE_ACCOUNT}" in c for c in cloud.commands)
        assert results[-1].status == SKIPPED

    def test_skip_gcp(self, config, orders_contract, warehouse):
        results = ProvisioningRunner(config, [orders_contract], warehouse=warehouse,
                                     skip_gcp=True).provision()
        gcp = [r for r in results if r.target == "gcp"]
        assert {r.status for r in gcp} == {SKIPPED}
        assert any(s.startswith("CREATE PIPE") for s in warehouse.statements)

    def test_skip_snowflake(self, config, orders_contract, cloud):
        results = ProvisioningRunner(config, [orders_contract], cloud=cloud,
                                     skip_snowflake=True).provision()
        statuses = {r.name: r.status for r in results}

        assert statuses["bucket IAM"] == SKIPPED
        assert statuses["pub/sub channel"] == OK
        assert statuses["subscription IAM"] == SKIPPED
        assert len(cloud.commands) == 3


class TestTeardown:
    """Reverse-order removal."""

    def test_teardown_drops_objects_and_gcp_channel(self, config, orders_contract,
                                                    warehouse, cloud):
        results = _runner(config, [orders_contract], warehouse, cloud).teardown()

        assert warehouse.statements == [
            "DROP PIPE IF EXISTS gcs_orders_pipe;",
            "DROP STAGE IF EXISTS gcs_orders_stage;",
            "DROP INTEGRATION IF EXISTS gcs_notification_int;",
            "DROP INTEGRATION IF EXISTS gcs_bucket_read_int;",
        ]
        assert [r.name for r in results if r.target == "gcp"] == [
            "delete bucket notifications", "delete subscription", "delete topic",
        ]
        assert all(r.status == OK for r in results)

    def test_teardown_keeps_going_after_failures(self, config, orders_contract,
                                                 warehouse, cloud):
        warehouse.add_failure("DROP STAGE", "Stage does not exist or not authorized")
        results = _runner(config, [orders_contract], warehouse, cloud).teardown(drop_table=True)

        assert [r.status for r in results if r.target == "snowflake"] == [
            OK, FAILED, OK, OK, OK,
        ]
        assert warehouse.statements[-1] == "DROP TABLE IF EXISTS orders_data_lz;"
        assert len(cloud.commands) == 3
