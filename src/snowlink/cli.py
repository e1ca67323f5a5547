"""
Command-line interface for snowlink.
"""

import click
import shutil
import sys
from pathlib import Path

from . import __version__
from .config import ConfigError, configure_logging, load_config
from .engine import (
    DryRunCloudAdapter,
    DryRunWarehouseAdapter,
    GCPAdapter,
    ProvisioningError,
    ProvisioningRunner,
    SnowflakeAdapter,
    WarehouseError,
    CloudError,
)
from .engine.runner import FAILED, MANUAL, WARN
from .infra import InfrastructureGenerator, ddl
from .monitoring import collect_snapshot, default_checks, run_health_checks
from .monitoring.status import IntegrationDescription, PipeStatus, parse_copy_history
from .verification import IngestionVerifier, VerificationStatus, validate_csv_bytes


def _banner(title: str) -> None:
    click.echo("=" * 60)
    click.echo(title)
    click.echo("=" * 60)


def _fail(message: str) -> None:
    click.echo(f"[ERROR] {message}", err=True)
    sys.exit(1)


def _load_project(validate: bool = True):
    """Load settings and contracts from the project in the current directory."""
    generator = InfrastructureGenerator(Path.cwd())
    try:
        config = load_config(generator.project_root)
        if validate:
            config.require_valid()
    except ConfigError as e:
        _fail(str(e))
    generator.config = config
    return config, generator


def _contracts(generator):
    try:
        contracts = generator.scan_contracts()
    except Exception as e:
        _fail(f"Failed to import contracts: {str(e)}")
    if not contracts:
        _fail(f"No LandingTable contracts found in {generator.contracts_dir}")
    return contracts


def _select_contract(generator, contracts, name=None):
    if name:
        for class_name, contract in contracts.items():
            if name in (class_name, contract.get_table_name()):
                return contract
        _fail(f"Unknown contract '{name}'. Available: {', '.join(contracts)}")
    try:
        return generator.target_contract(contracts)
    except ValueError as e:
        _fail(str(e))


def _warehouse(config, dry_run: bool = False):
    if dry_run:
        return DryRunWarehouseAdapter()
    try:
        return SnowflakeAdapter(config.snowflake_connection_params())
    except ConfigError as e:
        _fail(str(e))


def _cloud(config, dry_run: bool = False):
    if dry_run:
        return DryRunCloudAdapter(config.gcp_project_id)
    return GCPAdapter(config.gcp_project_id)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """
    snowlink - Snowpipe auto-ingest from Google Cloud Storage.

    Use 'snowlink --help' to see available commands.
    """
    configure_logging("DEBUG" if verbose else "INFO")


@main.command()
@click.argument("project_name")
@click.option(
    "--path",
    default=".",
    help="Directory where the project should be created (default: current directory)",
)
def init(project_name: str, path: str):
    """
    Initialize a new snowlink project.

    Creates a project directory with settings, a sample landing contract and
    a sample CSV file.

    Example:
        snowlink init orders_ingest
    """
    target_dir = Path(path) / project_name
    template_dir = Path(__file__).parent / "templates" / "project"

    if target_dir.exists():
        _fail(f"Directory '{target_dir}' already exists!")

    click.echo(f"Creating new snowlink project: {project_name}")
    target_dir.mkdir(parents=True, exist_ok=True)

    try:
        for item in sorted(template_dir.rglob("*")):
            if not item.is_file() or "__pycache__" in item.parts:
                continue
            relative_path = item.relative_to(template_dir)
            target_file = target_dir / relative_path
            target_file.parent.mkdir(parents=True, exist_ok=True)

            if item.suffix in (".py", ".md"):
                content = item.read_text().replace("PROJECT_NAME", project_name)
                target_file.write_text(content)
            else:
                shutil.copy2(item, target_file)

            click.echo(f"  Created: {relative_path}")
    except OSError as e:
        if target_dir.exists():
            shutil.rmtree(target_dir)
        _fail(f"Error creating project: {str(e)}")

    click.echo(f"\n[SUCCESS] Project '{project_name}' created successfully!")
    click.echo("\nNext steps:")
    click.echo(f"  cd {target_dir}")
    click.echo("  # Set SNOWLINK_* variables or edit config/settings.py")
    click.echo("  snowlink validate")
    click.echo("  snowlink provision --dry-run")


@main.command()
def validate():
    """
    Validate settings and contracts before provisioning.

    Checks for:
    - Missing or invalid settings
    - Contract import errors
    - Provisioning script rendering
    """
    _banner("SNOWLINK VALIDATE")

    errors = []
    warnings = []

    click.echo("\n[1/3] Validating configuration...")
    config, generator = _load_project(validate=False)
    config_errors = config.validate()
    errors.extend(config_errors)
    if not config_errors:
        click.echo(f"  [OK] Stage URL: {config.gcs_url}")
        click.echo(f"  [OK] Subscription: {config.subscription_path}")

    click.echo("\n[2/3] Validating contracts...")
    contracts = {}
    try:
        contracts = generator.scan_contracts()
    except Exception as e:
        errors.append(f"Failed to import contracts: {str(e)}")
    else:
        if not contracts:
            errors.append(f"No LandingTable contracts found in {generator.contracts_dir}")
        for name, contract in contracts.items():
            click.echo(f"  [OK] {name} ({contract.get_table_name()}): "
                       f"{len(contract.get_fields())} fields")
        if config.skip_header == 0:
            warnings.append("SKIP_HEADER is 0; files with a header row will fail to load")

    click.echo("\n[3/3] Rendering provisioning scripts...")
    if config_errors or not contracts:
        click.echo("  Skipped (fix the errors above first)")
    else:
        try:
            files = generator.generate_files()
            click.echo(f"  [OK] {len(files)} files rendered")
        except ValueError as e:
            errors.append(f"Script generation failed: {str(e)}")

    click.echo("")
    _banner("VALIDATION SUMMARY")

    if warnings:
        click.echo(f"\n{len(warnings)} warning(s):")
        for warning in warnings:
            click.echo(f"  - {warning}")

    if errors:
        click.echo(f"\n{len(errors)} error(s):")
        for error in errors:
            click.echo(f"  - {error}")
        click.echo("\n[FAILED] Validation failed")
        sys.exit(1)

    click.echo("\n[OK] Validation passed!")


@main.command(name="list")
@click.option("--verbose", "-v", is_flag=True, help="Show column details")
def list_objects(verbose: bool):
    """
    List contracts and the objects the pipeline uses.

    Example:
        snowlink list
        snowlink list --verbose
    """
    config, generator = _load_project(validate=False)
    contracts = _contracts(generator)

    _banner("SNOWLINK CONTRACTS & OBJECTS")

    click.echo(f"\nLANDING TABLES ({len(contracts)})")
    click.echo("-" * 60)
    for name, contract in contracts.items():
        fields = contract.get_fields()
        if verbose:
            click.echo(f"  * {name} ({contract.get_table_name()})")
            for field_name, field in fields.items():
                null = "" if field.nullable else " NOT NULL"
                click.echo(f"      - {field_name}: {field.to_sql_type()}{null}")
        else:
            click.echo(f"  * {name} ({contract.get_table_name()}) - {len(fields)} fields")

    click.echo("\nPIPELINE OBJECTS")
    click.echo("-" * 60)
    click.echo(f"  Bucket:                   gs://{config.gcs_bucket}/{config.normalized_prefix}")
    click.echo(f"  Pub/Sub topic:            {config.topic_path}")
    click.echo(f"  Pub/Sub subscription:     {config.subscription_path}")
    click.echo(f"  Storage integration:      {config.storage_integration}")
    click.echo(f"  Notification integration: {config.notification_integration}")
    click.echo(f"  Stage:                    {config.stage_name}")
    click.echo(f"  Pipe:                     {config.pipe_name}")
    click.echo("")


@main.command()
@click.option("--output", default="provisioning", help="Output directory for generated scripts")
@click.option("--replace", is_flag=True, help="Use CREATE OR REPLACE instead of IF NOT EXISTS")
def generate(output: str, replace: bool):
    """
    Generate SQL and gcloud provisioning scripts.

    Example:
        snowlink generate
        snowlink generate --output ./infrastructure
    """
    config, generator = _load_project()
    if replace:
        generator.mode = ddl.CreateMode.OR_REPLACE

    click.echo(f"Generating provisioning scripts in: {output}")
    try:
        written = generator.generate_all(Path(output))
    except ValueError as e:
        _fail(str(e))

    for path in written:
        click.echo(f"  Generated: {path.name}")

    click.echo("\n[OK] Run the files in numeric order.")
    click.echo("  Set STORAGE_SERVICE_ACCOUNT and PUBSUB_SERVICE_ACCOUNT from the")
    click.echo("  DESC INTEGRATION output before running 05_gcp_iam.sh.")


def _print_results(results) -> None:
    for result in results:
        line = f"  [{result.status.upper():7}] {result.target:9} {result.name}"
        if result.detail:
            line += f": {result.detail}"
        click.echo(line)


@main.command()
@click.option("--dry-run", is_flag=True, help="Print statements and commands without running them")
@click.option("--replace", is_flag=True, help="Use CREATE OR REPLACE (recreates existing objects)")
@click.option("--skip-gcp", is_flag=True, help="Skip Pub/Sub and IAM steps")
@click.option("--skip-snowflake", is_flag=True, help="Skip Snowflake steps")
def provision(dry_run: bool, replace: bool, skip_gcp: bool, skip_snowflake: bool):
    """
    Create the full GCS -> Pub/Sub -> Snowpipe integration.

    Runs the steps in dependency order and stops at the first failure.

    Example:
        snowlink provision --dry-run
        snowlink provision
    """
    config, generator = _load_project()
    contracts = _contracts(generator)

    _banner(f"SNOWLINK PROVISION - Environment: {config.environment}")
    if dry_run:
        click.echo("(dry run: nothing will be changed)")

    warehouse = None if skip_snowflake else _warehouse(config, dry_run)
    cloud = None if skip_gcp else _cloud(config, dry_run)

    try:
        runner = ProvisioningRunner(
            config,
            list(contracts.values()),
            warehouse=warehouse,
            cloud=cloud,
            mode=ddl.CreateMode.OR_REPLACE if replace else ddl.CreateMode.IF_NOT_EXISTS,
            dry_run=dry_run,
            skip_gcp=skip_gcp,
            skip_snowflake=skip_snowflake,
        )
    except ValueError as e:
        _fail(str(e))

    try:
        results = runner.provision()
    except ProvisioningError as e:
        click.echo("")
        _print_results(e.results)
        _fail(str(e))
    finally:
        if warehouse is not None:
            warehouse.close()

    click.echo("")
    _print_results(results)

    if dry_run:
        if warehouse is not None:
            click.echo("\nSnowflake statements:")
            for sql in warehouse.statements:
                click.echo(f"\n{sql}")
        if cloud is not None:
            click.echo("\ngcloud commands:")
            for command in cloud.commands:
                click.echo(f"  {command}")

    manual = [r for r in results if r.status == MANUAL]
    warned = [r for r in results if r.status in (WARN, FAILED)]
    if manual:
        click.echo(f"\n{len(manual)} manual step(s) remain; see the log above.")
    if warned:
        click.echo(f"\n[WARN] {len(warned)} step(s) need attention")
    else:
        click.echo("\n[OK] Provisioning completed!")


@main.command()
@click.option("--kind", type=click.Choice(["storage", "notification"]),
              help="Only describe one integration")
def describe(kind: str):
    """
    Show integration properties and their GCP service accounts.

    Example:
        snowlink describe --kind storage
    """
    config, _ = _load_project()
    names = {
        "storage": config.storage_integration,
        "notification": config.notification_integration,
    }
    selected = [names[kind]] if kind else list(names.values())

    try:
        with _warehouse(config) as warehouse:
            for name in selected:
                rows = warehouse.execute(ddl.describe_integration_sql(name))
                description = IntegrationDescription.from_rows(name, rows)
                click.echo(f"\n{name}")
                click.echo("-" * 60)
                for key, value in description.properties.items():
                    click.echo(f"  {key}: {value}")
                click.echo(f"  -> service account: {description.service_account or '(none)'}")
    except WarehouseError as e:
        _fail(str(e))


@main.command()
def status():
    """
    Show SYSTEM$PIPE_STATUS for the configured pipe.

    Example:
        snowlink status
    """
    config, _ = _load_project()

    try:
        with _warehouse(config) as warehouse:
            raw = warehouse.scalar(ddl.pipe_status_sql(config.pipe_name))
    except WarehouseError as e:
        _fail(str(e))

    if raw is None:
        _fail(f"No status returned for pipe {config.pipe_name}")

    try:
        pipe_status = PipeStatus.from_json(raw)
    except ValueError as e:
        _fail(str(e))
    _banner(f"PIPE STATUS - {config.pipe_name}")
    click.echo(f"  Execution state:      {pipe_status.execution_state.value}")
    click.echo(f"  Pending files:        {pipe_status.pending_file_count}")
    click.echo(f"  Notification channel: {pipe_status.notification_channel_name or '(none)'}")
    if pipe_status.last_received_message_timestamp:
        click.echo(f"  Last message:         {pipe_status.last_received_message_timestamp}")
    if pipe_status.last_ingested_timestamp:
        click.echo(f"  Last ingested:        {pipe_status.last_ingested_timestamp} "
                   f"({pipe_status.last_ingested_file_path})")
    if pipe_status.error:
        click.echo(f"  Error:                {pipe_status.error}")

    if not pipe_status.healthy:
        sys.exit(1)


@main.command()
@click.option("--hours", default=24, type=int, help="History window in hours (max 336)")
@click.option("--failed-only", is_flag=True, help="Only show failed loads")
@click.option("--table", default=None, help="Landing table (default: the pipe's target)")
def history(hours: int, failed_only: bool, table: str):
    """
    Show per-file load outcomes from COPY_HISTORY.

    Example:
        snowlink history --hours 48 --failed-only
    """
    config, generator = _load_project()
    table = table or _select_contract(generator, _contracts(generator)).get_table_name()

    try:
        sql = ddl.copy_history_sql(table, hours)
        with _warehouse(config) as warehouse:
            entries = parse_copy_history(warehouse.execute(sql))
    except (ValueError, WarehouseError) as e:
        _fail(str(e))

    if failed_only:
        entries = [e for e in entries if e.failed]

    _banner(f"COPY HISTORY - {table} (last {hours}h)")
    if not entries:
        click.echo("  No files")
        return

    for entry in entries:
        loaded_at = entry.last_load_time.isoformat() if entry.last_load_time else "-"
        click.echo(f"  {entry.status.value:17} {entry.row_count:>8} rows  {loaded_at}  {entry.file_name}")
        if entry.first_error_message:
            click.echo(f"      {entry.first_error_message}")


@main.command()
@click.option("--hours", default=24, type=int, help="History window in hours")
@click.option("--max-pending", default=100, type=int, help="Warn above this many pending files")
@click.option("--max-age-hours", default=None, type=int,
              help="Warn when no file loaded within this many hours")
def health(hours: int, max_pending: int, max_age_hours: int):
    """
    Run health checks against the live pipeline.

    Exits with status 1 when an ERROR-severity check fails.

    Example:
        snowlink health --max-age-hours 6
    """
    config, generator = _load_project()
    table = _select_contract(generator, _contracts(generator)).get_table_name()

    try:
        with _warehouse(config) as warehouse:
            snapshot = collect_snapshot(warehouse, config, table=table, hours=hours)
    except (ValueError, WarehouseError) as e:
        _fail(str(e))

    checks = default_checks(config.storage_integration, config.notification_integration,
                            max_pending=max_pending, max_age_hours=max_age_hours)
    report = run_health_checks(snapshot, checks)

    _banner(f"HEALTH - {config.pipe_name}")
    for result in report.results:
        mark = "OK" if result.passed else result.severity.value.upper()
        click.echo(f"  [{mark:5}] {result.check_name}: {result.message}")

    if not report.ok:
        click.echo(f"\n[FAILED] {len(report.failures)} check(s) failed")
        sys.exit(1)
    if report.warnings:
        click.echo(f"\n[OK] Healthy with {len(report.warnings)} warning(s)")
    else:
        click.echo("\n[OK] All checks passed")


@main.command(name="check-file")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--contract", default=None, help="Contract class or table name")
def check_file(csv_path: str, contract: str):
    """
    Check a CSV file against a landing contract before uploading it.

    Example:
        snowlink check-file data/orders_sample.csv
    """
    config, generator = _load_project(validate=False)
    table = _select_contract(generator, _contracts(generator), contract)

    result = validate_csv_bytes(Path(csv_path).read_bytes(), table,
                                file_format=ddl.FileFormat(skip_header=config.skip_header))

    click.echo(f"{csv_path} -> {table.get_table_name()}: {result.row_count} data row(s)")
    if result.ok:
        click.echo(f"[OK] {result.sampled_rows} row(s) type-checked")
        return

    for error in result.errors:
        click.echo(f"  - {error}")
    click.echo("[FAILED] File does not match the contract")
    sys.exit(1)


def _verify_rejected(verifier, csv_path: str) -> None:
    result = verifier.verify_rejected(csv_path)
    load = result.load
    click.echo(f"{load.blob_name}: {load.status.value} ({load.waited_seconds:.0f}s)")
    if load.error:
        click.echo(f"  {load.error}")
    click.echo(f"Rows: {result.rows_before} -> {result.rows_after}")

    if load.status is not VerificationStatus.FAILED:
        _fail(f"Expected the pipe to reject the file, got {load.status.value}")
    if not result.ok:
        _fail("Rejected file still added rows")
    click.echo("[OK] Malformed file was rejected")


@main.command()
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--timeout", default=600, type=int, help="Seconds to wait for the load")
@click.option("--poll-interval", default=15, type=int, help="Seconds between COPY_HISTORY polls")
@click.option("--check-duplicates", is_flag=True,
              help="Re-upload the same file and confirm the row count is unchanged")
@click.option("--settle-seconds", default=60, type=int,
              help="Wait after the re-upload before recounting")
@click.option("--expect-failure", is_flag=True,
              help="Upload a malformed file anyway and require the pipe to reject it "
                   "without adding rows")
def verify(csv_path: str, timeout: int, poll_interval: int, check_duplicates: bool,
           settle_seconds: int, expect_failure: bool):
    """
    Upload a file to the bucket and wait for Snowpipe to load it.

    Example:
        snowlink verify data/orders_sample.csv --check-duplicates
        snowlink verify data/bad_rows.csv --expect-failure
    """
    config, generator = _load_project()
    contract = _select_contract(generator, _contracts(generator))

    preflight = validate_csv_bytes(Path(csv_path).read_bytes(), contract,
                                   file_format=ddl.FileFormat(skip_header=config.skip_header))
    if not preflight.ok:
        for error in preflight.errors:
            click.echo(f"  - {error}")
        if not expect_failure:
            _fail("File does not match the contract; not uploading")
    elif expect_failure:
        click.echo("[WARN] Preflight found no problems; the pipe may load this file")

    try:
        with _warehouse(config) as warehouse:
            verifier = IngestionVerifier(config, contract, warehouse, _cloud(config),
                                         poll_interval=poll_interval, timeout=timeout)
            if expect_failure:
                _verify_rejected(verifier, csv_path)
                return

            result = verifier.verify_file(csv_path)
            click.echo(f"{result.blob_name}: {result.status.value} "
                       f"({result.loaded_rows}/{result.expected_rows} rows, "
                       f"{result.waited_seconds:.0f}s)")
            if not result.ok:
                _fail(result.error or result.status.value)

            if check_duplicates:
                file_name = result.blob_name.rsplit("/", 1)[-1]
                dedup = verifier.verify_no_duplicates(csv_path, file_name,
                                                      settle_seconds=settle_seconds)
                click.echo(f"Re-upload: {dedup.rows_before} -> {dedup.rows_after} rows")
                if not dedup.ok:
                    _fail("Re-uploaded file was loaded twice")
    except (WarehouseError, CloudError) as e:
        _fail(str(e))

    click.echo("[OK] Ingestion verified")


@main.command()
@click.option("--prefix", default=None, help="Only refresh files under this path in the stage")
def refresh(prefix: str):
    """
    Queue staged files (last 7 days) the pipe has not loaded yet.

    Example:
        snowlink refresh --prefix 2024/06/
    """
    config, _ = _load_project()
    try:
        with _warehouse(config) as warehouse:
            rows = warehouse.execute(ddl.alter_pipe_refresh_sql(config.pipe_name, prefix))
    except WarehouseError as e:
        _fail(str(e))

    click.echo(f"[OK] Queued {len(rows)} file(s) for {config.pipe_name}")
    for row in rows:
        click.echo(f"  {row.get('File') or row.get('FILE') or row}")


def _set_paused(paused: bool) -> None:
    config, _ = _load_project()
    try:
        with _warehouse(config) as warehouse:
            warehouse.execute(ddl.alter_pipe_paused_sql(config.pipe_name, paused))
    except WarehouseError as e:
        _fail(str(e))
    click.echo(f"[OK] Pipe {config.pipe_name} {'paused' if paused else 'resumed'}")


@main.command()
def pause():
    """Pause the pipe (notifications keep queueing)."""
    _set_paused(True)


@main.command()
def resume():
    """Resume a paused pipe."""
    _set_paused(False)


@main.command()
@click.option("--drop-table", is_flag=True, help="Also drop the landing tables (data is lost)")
@click.option("--auto-approve", is_flag=True, help="Do not ask for confirmation")
@click.option("--dry-run", is_flag=True, help="Print what would be removed")
@click.option("--skip-gcp", is_flag=True, help="Keep the Pub/Sub topic, subscription and notification")
def teardown(drop_table: bool, auto_approve: bool, dry_run: bool, skip_gcp: bool):
    """
    Remove the pipe, stage, integrations and the Pub/Sub channel.

    Example:
        snowlink teardown --auto-approve
    """
    config, generator = _load_project()
    contracts = _contracts(generator)

    _banner(f"SNOWLINK TEARDOWN - Environment: {config.environment}")

    if not auto_approve and not dry_run:
        click.echo("\nWARNING: This will remove:")
        click.echo(f"  - pipe {config.pipe_name} and stage {config.stage_name}")
        click.echo(f"  - integrations {config.notification_integration}, {config.storage_integration}")
        if not skip_gcp:
            click.echo(f"  - bucket notifications, {config.subscription_path}, {config.topic_path}")
        if drop_table:
            click.echo(f"  - tables {', '.join(c.get_table_name() for c in contracts.values())} "
                       f"(data will be lost)")
        if not click.confirm("\nAre you sure you want to continue?"):
            click.echo("Teardown cancelled")
            return

    warehouse = _warehouse(config, dry_run)
    cloud = None if skip_gcp else _cloud(config, dry_run)
    try:
        runner = ProvisioningRunner(config, list(contracts.values()), warehouse=warehouse,
                                    cloud=cloud, dry_run=dry_run, skip_gcp=skip_gcp)
    except ValueError as e:
        warehouse.close()
        _fail(str(e))
    try:
        results = runner.teardown(drop_table=drop_table)
    finally:
        warehouse.close()

    click.echo("")
    _print_results(results)

    if any(r.status == FAILED for r in results):
        click.echo("\n[FAILED] Some objects could not be removed", err=True)
        sys.exit(1)
    click.echo("\n[OK] Teardown completed")


if __name__ == "__main__":
    main()
