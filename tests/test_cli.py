"""
Tests for the snowlink command-line interface.
"""

import pytest
from click.testing import CliRunner
from conftest import pipe_status_json

from snowlink import __version__, cli
from snowlink.cli import main


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def in_project(project_dir, monkeypatch):
    """Run commands from inside the sample project."""
    monkeypatch.chdir(project_dir)
    return project_dir


@pytest.fixture
def live(monkeypatch, warehouse, cloud):
    """Route commands that would connect to Snowflake and GCP to the dry-run fakes."""
    monkeypatch.setattr(cli, "_warehouse", lambda config, dry_run=False: warehouse)
    monkeypatch.setattr(cli, "_cloud", lambda config, dry_run=False: cloud)
    return warehouse, cloud


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


class TestInit:
    """snowlink init"""

    def test_creates_project_from_template(self, runner, tmp_path):
        result = runner.invoke(main, ["init", "orders_ingest", "--path", str(tmp_path)])

        assert result.exit_code == 0, result.output
        project = tmp_path / "orders_ingest"
        settings = (project / "config" / "settings.py").read_text()
        assert "orders_ingest" in settings
        assert "PROJECT_NAME" not in settings
        assert (project / "contracts" / "landing.py").exists()
        assert (project / "data" / "orders_sample.csv").exists()
        assert "[SUCCESS]" in result.output

    def test_existing_directory(self, runner, tmp_path):
        (tmp_path / "orders_ingest").mkdir()
        result = runner.invoke(main, ["init", "orders_ingest", "--path", str(tmp_path)])
        assert result.exit_code == 1
        assert "already exists" in result.output


class TestValidate:
    """snowlink validate"""

    def test_valid_project(self, runner, in_project):
        result = runner.invoke(main, ["validate"])

        assert result.exit_code == 0, result.output
        assert "[OK] OrdersDataLz (orders_data_lz): 5 fields" in result.output
        assert "[OK] 8 files rendered" in result.output
        assert "SKIP_HEADER is 0" in result.output
        assert "[OK] Validation passed!" in result.output

    def test_invalid_settings(self, runner, in_project):
        settings = in_project / "config" / "settings.py"
        settings.write_text(settings.read_text().replace('"acme-data"', '""'))

        result = runner.invoke(main, ["validate"])

        assert result.exit_code == 1
        assert "Missing required setting: GCP_PROJECT_ID" in result.output
        assert "[FAILED] Validation failed" in result.output

    def test_outside_a_project(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(main, ["validate"])
        assert result.exit_code == 1
        assert "Settings file not found" in result.output


def test_list(runner, in_project):
    result = runner.invoke(main, ["list", "--verbose"])

    assert result.exit_code == 0, result.output
    assert "order_id: INT NOT NULL" in result.output
    assert "projects/acme-data/subscriptions/snowpipe-orders-sub" in result.output
    assert "gcs_orders_pipe" in result.output


def test_generate(runner, in_project):
    result = runner.invoke(main, ["generate", "--output", "out"])

    assert result.exit_code == 0, result.output
    assert (in_project / "out" / "06_stage_and_pipe.sql").exists()
    assert "Generated: 05_gcp_iam.sh" in result.output


class TestProvision:
    """snowlink provision"""

    def test_dry_run_prints_plan(self, runner, in_project):
        result = runner.invoke(main, ["provision", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "CREATE PIPE IF NOT EXISTS gcs_orders_pipe" in result.output
        assert "gcloud pubsub topics create snowpipe-orders-topic" in result.output
        assert "serviceAccount:${STORAGE_SERVICE_ACCOUNT}" in result.output
        assert "1 manual step(s) remain" in result.output

    def test_live_run(self, runner, in_project, live):
        warehouse, cloud = live
        result = runner.invoke(main, ["provision"])

        assert result.exit_code == 0, result.output
        assert "[OK] Provisioning completed!" in result.output
        assert len(cloud.commands) == 5

    def test_failure_exits_non_zero(self, runner, in_project, live):
        warehouse, _ = live
        warehouse.add_failure("CREATE NOTIFICATION INTEGRATION", "Insufficient privileges")

        result = runner.invoke(main, ["provision"])

        assert result.exit_code == 1
        assert "[FAILED ] snowflake create notification integration" in result.output
        assert "Provisioning stopped at step 6/11" in result.output


class TestMonitoringCommands:
    """status, history, health and describe against the fake warehouse."""

    def test_status_running(self, runner, in_project, live):
        result = runner.invoke(main, ["status"])
        assert result.exit_code == 0, result.output
        assert "Execution state:      RUNNING" in result.output

    def test_status_paused_exits_non_zero(self, runner, in_project, live):
        warehouse, _ = live
        warehouse.add_response("SELECT SYSTEM$PIPE_STATUS",
                               [{"PIPE_STATUS": pipe_status_json("PAUSED")}])
        result = runner.invoke(main, ["status"])
        assert result.exit_code == 1
        assert "PAUSED" in result.output

    def test_history_failed_only(self, runner, in_project, live):
        warehouse, _ = live
        warehouse.add_response("SELECT FILE_NAME", [
            {"FILE_NAME": "orders/good.csv", "STATUS": "Loaded", "ROW_COUNT": 5},
            {"FILE_NAME": "orders/bad.csv", "STATUS": "Load failed",
             "FIRST_ERROR_MESSAGE": "Numeric value 'abc' is not recognized"},
        ])

        result = runner.invoke(main, ["history", "--failed-only"])

        assert result.exit_code == 0, result.output
        assert "orders/bad.csv" in result.output
        assert "Numeric value 'abc' is not recognized" in result.output
        assert "orders/good.csv" not in result.output

    def test_history_rejects_bad_window(self, runner, in_project, live):
        result = runner.invoke(main, ["history", "--hours", "0"])
        assert result.exit_code == 1

    def test_health(self, runner, in_project, live):
        result = runner.invoke(main, ["health"])
        assert result.exit_code == 0, result.output
        assert "pipe_is_running" in result.output

    def test_describe_storage(self, runner, in_project, live):
        result = runner.invoke(main, ["describe", "--kind", "storage"])
        assert result.exit_code == 0, result.output
        assert "-> service account: abc123@" in result.output


class TestCheckFile:
    """snowlink check-file"""

    def test_good_file(self, runner, in_project):
        result = runner.invoke(main, ["check-file", "data/orders.csv"])
        assert result.exit_code == 0, result.output
        assert "orders_data_lz: 3 data row(s)" in result.output

    def test_bad_file(self, runner, in_project):
        (in_project / "data" / "bad.csv").write_text("1001,Mouse\n")
        result = runner.invoke(main, ["check-file", "data/bad.csv"])
        assert result.exit_code == 1
        assert "expected 5 columns, found 2" in result.output

    def test_unknown_contract(self, runner, in_project):
        result = runner.invoke(main, ["check-file", "data/orders.csv", "--contract", "nope"])
        assert result.exit_code == 1
        assert "Unknown contract 'nope'" in result.output


def test_verify_uploads_and_waits(runner, in_project, live):
    warehouse, cloud = live
    warehouse.add_response("SELECT FILE_NAME", lambda sql: [
        {"FILE_NAME": uri.split("/", 3)[3], "STATUS": "Loaded", "ROW_COUNT": 3}
        for uri in cloud.uploads
    ])

    result = runner.invoke(main, ["verify", "data/orders.csv", "--poll-interval", "1"])

    assert result.exit_code == 0, result.output
    assert "(3/3 rows" in result.output
    assert "[OK] Ingestion verified" in result.output


class TestVerifyMalformedFile:
    """snowlink verify on files that do not match the contract."""

    BAD_ROW = "1001,Mouse,two,PLACED,2024-06-01\n"

    def test_preflight_blocks_the_upload(self, runner, in_project, live):
        _, cloud = live
        (in_project / "data" / "bad.csv").write_text(self.BAD_ROW)

        result = runner.invoke(main, ["verify", "data/bad.csv"])

        assert result.exit_code == 1
        assert "column 'quantity'" in result.output
        assert "not uploading" in result.output
        assert cloud.uploads == {}

    def test_expect_failure_uploads_and_passes_on_rejection(self, runner, in_project, live):
        warehouse, cloud = live
        (in_project / "data" / "bad.csv").write_text(self.BAD_ROW)
        warehouse.add_response("SELECT COUNT(*)", [{"ROW_COUNT": 3}])
        warehouse.add_response("SELECT FILE_NAME", lambda sql: [
            {"FILE_NAME": uri.split("/", 3)[3], "STATUS": "Load failed",
             "FIRST_ERROR_MESSAGE": "Numeric value 'two' is not recognized"}
            for uri in cloud.uploads
        ])

        result = runner.invoke(main, ["verify", "data/bad.csv", "--expect-failure",
                                      "--poll-interval", "1"])

        assert result.exit_code == 0, result.output
        assert len(cloud.uploads) == 1
        assert "Numeric value 'two' is not recognized" in result.output
        assert "Rows: 3 -> 3" in result.output
        assert "[OK] Malformed file was rejected" in result.output

    def test_expect_failure_fails_when_the_file_loads(self, runner, in_project, live):
        warehouse, cloud = live
        counts = iter([3, 6])
        warehouse.add_response("SELECT COUNT(*)", lambda sql: [{"ROW_COUNT": next(counts)}])
        warehouse.add_response("SELECT FILE_NAME", lambda sql: [
            {"FILE_NAME": uri.split("/", 3)[3], "STATUS": "Loaded", "ROW_COUNT": 3}
            for uri in cloud.uploads
        ])

        result = runner.invoke(main, ["verify", "data/orders.csv", "--expect-failure",
                                      "--poll-interval", "1"])

        assert result.exit_code == 1
        assert "Preflight found no problems" in result.output
        assert "Expected the pipe to reject the file, got loaded" in result.output


def test_bad_target_table_creates_nothing(runner, in_project, live):
    warehouse, cloud = live
    settings = in_project / "config" / "settings.py"
    settings.write_text(settings.read_text().replace(
        'TARGET_TABLE = "orders_data_lz"', 'TARGET_TABLE = "customers_lz"'))

    result = runner.invoke(main, ["provision"])

    assert result.exit_code == 1
    assert "TARGET_TABLE 'customers_lz'" in result.output
    assert warehouse.statements == []
    assert cloud.commands == []


def test_non_integer_skip_header_is_reported(runner, in_project):
    settings = in_project / "config" / "settings.py"
    settings.write_text(settings.read_text() + 'SKIP_HEADER = "yes"\n')

    result = runner.invoke(main, ["validate"])

    assert result.exit_code == 1
    assert "SKIP_HEADER must be an integer, got 'yes'" in result.output
    assert "Traceback" not in result.output


def test_refresh_with_prefix(runner, in_project, live):
    warehouse, _ = live
    warehouse.add_response("ALTER PIPE", [{"File": "2024/06/a.csv", "Status": "SENT"}])

    result = runner.invoke(main, ["refresh", "--prefix", "2024/06/"])

    assert result.exit_code == 0, result.output
    assert warehouse.statements == ["ALTER PIPE gcs_orders_pipe REFRESH PREFIX = '2024/06/';"]
    assert "Queued 1 file(s)" in result.output
    assert "2024/06/a.csv" in result.output


def test_pause_and_resume(runner, in_project, live):
    warehouse, _ = live
    assert runner.invoke(main, ["pause"]).exit_code == 0
    assert runner.invoke(main, ["resume"]).exit_code == 0
    assert warehouse.statements == [
        "ALTER PIPE gcs_orders_pipe SET PIPE_EXECUTION_PAUSED = TRUE;",
        "ALTER PIPE gcs_orders_pipe SET PIPE_EXECUTION_PAUSED = FALSE;",
    ]


class TestTeardown:
    """snowlink teardown"""

    def test_dry_run(self, runner, in_project):
        result = runner.invoke(main, ["teardown", "--dry-run"])
        assert result.exit_code == 0, result.output
        assert "DROP PIPE IF EXISTS gcs_orders_pipe" in result.output
        assert "[OK] Teardown completed" in result.output

    def test_confirmation_can_cancel(self, runner, in_project, live):
        warehouse, _ = live
        result = runner.invoke(main, ["teardown"], input="n\n")
        assert "Teardown cancelled" in result.output
        assert warehouse.statements == []

    def test_failures_exit_non_zero(self, runner, in_project, live):
        warehouse, _ = live
        warehouse.add_failure("DROP STAGE", "not authorized")
        result = runner.invoke(main, ["teardown", "--auto-approve"])
        assert result.exit_code == 1
        assert "delete topic" in result.output
