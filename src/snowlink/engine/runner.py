"""
Provisioning engine for snowlink.
Runs the integration setup in dependency order across Snowflake and GCP.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple, Type
import logging

from snowlink.config import ProjectConfig
from snowlink.core.contracts import LandingTable, select_target_table
from snowlink.infra import ddl, gcloud
from snowlink.monitoring.status import IntegrationDescription, PipeStatus
from .adapter import WarehouseAdapter
from .cloud import CloudAdapter

logger = logging.getLogger('snowlink')

STORAGE_SA_PLACEHOLDER = "${STORAGE_SERVICE_ACCOUNT}"
PUBSUB_SA_PLACEHOLDER = "${PUBSUB_SERVICE_ACCOUNT}"

OK = "ok"
SKIPPED = "skipped"
MANUAL = "manual"
WARN = "warn"
FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of one provisioning step."""

    name: str
    target: str
    status: str
    detail: str = ""
    statements: List[str] = field(default_factory=list)


class ProvisioningError(RuntimeError):
    """Raised when a provisioning step fails. Carries the steps completed so far."""

    def __init__(self, message: str, step: str, results: List[StepResult]):
        super().__init__(message)
        self.step = step
        self.results = results


class ProvisioningRunner:
    """Creates (and tears down) the GCS -> Pub/Sub -> Snowpipe integration."""

    def __init__(
        self,
        config: ProjectConfig,
        contracts: Sequence[Type[LandingTable]],
        warehouse: Optional[WarehouseAdapter] = None,
        cloud: Optional[CloudAdapter] = None,
        mode: ddl.CreateMode = ddl.CreateMode.IF_NOT_EXISTS,
        dry_run: bool = False,
        skip_gcp: bool = False,
        skip_snowflake: bool = False,
    ):
        """
        Initialize the runner.

        Args:
            config: Project settings
            contracts: Landing-table contracts to create
            warehouse: Warehouse adapter (required unless skip_snowflake)
            cloud: Cloud adapter (required unless skip_gcp)
            mode: CREATE behaviour for existing objects
            dry_run: Use placeholder service accounts instead of DESC INTEGRATION output
        """
        if not contracts:
            raise ValueError("At least one landing-table contract is required")
        if warehouse is None and not skip_snowflake:
            raise ValueError("A warehouse adapter is required unless skip_snowflake is set")
        if cloud is None and not skip_gcp:
            raise ValueError("A cloud adapter is required unless skip_gcp is set")

        self.config = config
        self.contracts = list(contracts)
        self.warehouse = warehouse
        self.cloud = cloud
        self.mode = mode
        self.dry_run = dry_run
        self.skip_gcp = skip_gcp
        self.skip_snowflake = skip_snowflake

        # Contract the pipe loads into; a bad TARGET_TABLE fails before anything is created
        self.target_table: Type[LandingTable] = select_target_table(
            self.contracts, config.target_table
        )

        self.storage_service_account: Optional[str] = None
        self.pubsub_service_account: Optional[str] = None
        self.pipe_status: Optional[PipeStatus] = None

    # Helpers

    @property
    def file_format(self) -> ddl.FileFormat:
        return ddl.FileFormat(skip_header=self.config.skip_header)

    def _sql(self, statements: List[str]) -> List[str]:
        for sql in statements:
            self.warehouse.execute(sql)
        return statements

    def _describe(self, name: str) -> IntegrationDescription:
        rows = self.warehouse.execute(ddl.describe_integration_sql(name))
        return IntegrationDescription.from_rows(name, rows)

    # Steps

    def create_landing_tables(self) -> StepResult:
        or_replace = self.mode == ddl.CreateMode.OR_REPLACE
        if or_replace:
            logger.warning("CREATE OR REPLACE TABLE drops existing landing-zone rows")
        statements = self._sql([
            contract.to_create_table_sql(
                if_not_exists=self.mode == ddl.CreateMode.IF_NOT_EXISTS,
                or_replace=or_replace,
            )
            for contract in self.contracts
        ])
        tables = ", ".join(c.get_table_name() for c in self.contracts)
        return StepResult("landing tables", "snowflake", OK, tables, statements)

    def create_storage_integration(self) -> StepResult:
        if self.mode == ddl.CreateMode.OR_REPLACE:
            logger.warning(
                "Replacing the storage integration issues a new GCS service account; "
                "bucket IAM bindings for the old one stop working"
            )
        statements = self._sql([ddl.create_storage_integration_sql(
            self.config.storage_integration, [self.config.gcs_url], mode=self.mode,
        )])
        return StepResult("storage integration", "snowflake", OK,
                          self.config.storage_integration, statements)

    def read_storage_service_account(self) -> StepResult:
        description = self._describe(self.config.storage_integration)
        account = description.storage_service_account
        if not account:
            if not self.dry_run:
                raise RuntimeError(
                    f"DESC INTEGRATION {self.config.storage_integration} returned no "
                    f"STORAGE_GCP_SERVICE_ACCOUNT"
                )
            account = STORAGE_SA_PLACEHOLDER
        self.storage_service_account = account
        return StepResult("storage service account", "snowflake", OK, account,
                          [ddl.describe_integration_sql(self.config.storage_integration)])

    def grant_bucket_access(self) -> StepResult:
        if not self.storage_service_account:
            return StepResult("bucket IAM", "gcp", SKIPPED,
                              "storage service account unknown (Snowflake steps skipped)")
        self.cloud.grant_bucket_reader(self.config.gcs_bucket, self.storage_service_account)
        return StepResult(
            "bucket IAM", "gcp", OK,
            f"{gcloud.STORAGE_READER_ROLE} on gs://{self.config.gcs_bucket}",
        )

    def create_notification_channel(self) -> StepResult:
        config = self.config
        self.cloud.ensure_topic(config.pubsub_topic)
        self.cloud.ensure_bucket_notification(
            config.gcs_bucket, config.pubsub_topic, config.normalized_prefix or None
        )
        self.cloud.ensure_subscription(config.pubsub_subscription, config.pubsub_topic)
        return StepResult(
            "pub/sub channel", "gcp", OK,
            f"gs://{config.gcs_bucket} -> {config.topic_path} -> {config.subscription_path}",
        )

    def create_notification_integration(self) -> StepResult:
        statements = self._sql([ddl.create_notification_integration_sql(
            self.config.notification_integration, self.config.subscription_path, mode=self.mode,
        )])
        return StepResult("notification integration", "snowflake", OK,
                          self.config.notification_integration, statements)

    def read_pubsub_service_account(self) -> StepResult:
        description = self._describe(self.config.notification_integration)
        account = description.pubsub_service_account
        if not account:
            if not self.dry_run:
                raise RuntimeError(
                    f"DESC INTEGRATION {self.config.notification_integration} returned no "
                    f"GCP_PUBSUB_SERVICE_ACCOUNT"
                )
            account = PUBSUB_SA_PLACEHOLDER
        self.pubsub_service_account = account
        return StepResult("pub/sub service account", "snowflake", OK, account,
                          [ddl.describe_integration_sql(self.config.notification_integration)])

    def grant_subscription_access(self) -> StepResult:
        if not self.pubsub_service_account:
            return StepResult("subscription IAM", "gcp", SKIPPED,
                              "pub/sub service account unknown (Snowflake steps skipped)")
        self.cloud.grant_subscription_subscriber(
            self.config.pubsub_subscription, self.pubsub_service_account
        )
        manual = gcloud.grant_monitoring_viewer_cmd(
            self.config.gcp_project_id, self.pubsub_service_account
        )
        logger.warning(f"Manual step (project-level IAM): {manual}")
        return StepResult(
            "subscription IAM", "gcp", MANUAL,
            f"{gcloud.PUBSUB_SUBSCRIBER_ROLE} granted; run manually: {manual}",
        )

    def create_stage(self) -> StepResult:
        statements = self._sql([ddl.create_stage_sql(
            self.config.stage_name, self.config.gcs_url, self.config.storage_integration,
            mode=self.mode,
        )])
        return StepResult("stage", "snowflake", OK, self.config.stage_name, statements)

    def create_pipe(self) -> StepResult:
        if self.mode == ddl.CreateMode.OR_REPLACE:
            logger.warning(
                "Replacing the pipe resets its load history; files already in the stage "
                "may load again after ALTER PIPE ... REFRESH"
            )
        statements = self._sql([ddl.create_pipe_sql(
            self.config.pipe_name,
            self.target_table.get_table_name(),
            self.config.stage_name,
            self.config.notification_integration,
            file_format=self.file_format,
            mode=self.mode,
        )])
        return StepResult("pipe", "snowflake", OK, self.config.pipe_name, statements)

    def check_pipe_status(self) -> StepResult:
        sql = ddl.pipe_status_sql(self.config.pipe_name)
        raw = self.warehouse.scalar(sql)
        if raw is None:
            return StepResult("pipe status", "snowflake", SKIPPED, "no status returned", [sql])

        self.pipe_status = PipeStatus.from_json(raw)
        state = self.pipe_status.execution_state.value
        if not self.pipe_status.execution_state.is_running:
            logger.warning(f"Pipe {self.config.pipe_name} is {state}, expected RUNNING")
            return StepResult("pipe status", "snowflake", WARN, state, [sql])
        return StepResult("pipe status", "snowflake", OK, state, [sql])

    # Orchestration

    def plan(self) -> List[Tuple[str, Callable[[], StepResult]]]:
        """Ordered steps; each depends on the ones before it."""
        return [
            ("snowflake", self.create_landing_tables),
            ("snowflake", self.create_storage_integration),
            ("snowflake", self.read_storage_service_account),
            ("gcp", self.grant_bucket_access),
            ("gcp", self.create_notification_channel),
            ("snowflake", self.create_notification_integration),
            ("snowflake", self.read_pubsub_service_account),
            ("gcp", self.grant_subscription_access),
            ("snowflake", self.create_stage),
            ("snowflake", self.create_pipe),
            ("snowflake", self.check_pipe_status),
        ]

    def provision(self) -> List[StepResult]:
        """
        Run every step in order and stop at the first failure.

        Returns:
            One StepResult per step

        Raises:
            ProvisioningError: When a step fails (no retries are attempted)
        """
        results: List[StepResult] = []
        steps = self.plan()

        for index, (target, step) in enumerate(steps, 1):
            step_name = step.__name__.replace("_", " ")
            if (target == "gcp" and self.skip_gcp) or (target == "snowflake" and self.skip_snowflake):
                logger.info(f"[{index}/{len(steps)}] Skipping {step_name} ({target} skipped)")
                results.append(StepResult(step_name, target, SKIPPED, f"{target} skipped"))
                continue

            logger.info(f"[{index}/{len(steps)}] {step_name}...")
            try:
                result = step()
            except Exception as e:
                logger.error(f"Step '{step_name}' failed: {e}")
                results.append(StepResult(step_name, target, FAILED, str(e)))
                raise ProvisioningError(
                    f"Provisioning stopped at step {index}/{len(steps)} ({step_name}): {e}",
                    step=step_name,
                    results=results,
                ) from e

            results.append(result)
            logger.info(f"  [{result.status.upper()}] {result.name}: {result.detail}")

        return results

    def teardown(self, drop_table: bool = False) -> List[StepResult]:
        """
        Remove the integration objects. Continues past failures and reports them.

        Args:
            drop_table: Also drop the landing tables (their data is lost)
        """
        results: List[StepResult] = []
        config = self.config

        if not self.skip_snowflake:
            tables = [c.get_table_name() for c in self.contracts] if drop_table else []
            for sql in ddl.teardown_sql(config.pipe_name, config.stage_name,
                                        config.notification_integration,
                                        config.storage_integration, tables):
                try:
                    self.warehouse.execute(sql)
                    results.append(StepResult(sql.rstrip(";"), "snowflake", OK, statements=[sql]))
                except Exception as e:
                    logger.error(f"Teardown statement failed: {sql}: {e}")
                    results.append(StepResult(sql.rstrip(";"), "snowflake", FAILED, str(e), [sql]))

        if not self.skip_gcp:
            actions = [
                ("bucket notifications",
                 lambda: self.cloud.delete_bucket_notifications(config.gcs_bucket, config.pubsub_topic)),
                ("subscription", lambda: self.cloud.delete_subscription(config.pubsub_subscription)),
                ("topic", lambda: self.cloud.delete_topic(config.pubsub_topic)),
            ]
            for name, action in actions:
                try:
                    action()
                    results.append(StepResult(f"delete {name}", "gcp", OK))
                except Exception as e:
                    logger.error(f"Teardown of {name} failed: {e}")
                    results.append(StepResult(f"delete {name}", "gcp", FAILED, str(e)))

        return results


__all__ = [
    "StepResult",
    "ProvisioningError",
    "ProvisioningRunner",
    "STORAGE_SA_PLACEHOLDER",
    "PUBSUB_SA_PLACEHOLDER",
]
