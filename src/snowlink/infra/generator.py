"""
Provisioning script generation for snowlink projects.

This module scans your contracts and settings, then writes the numbered SQL
and gcloud scripts that set up GCS -> Pub/Sub -> Snowpipe auto-ingest by hand.
Run them in order; the service accounts in the IAM script come from the
DESC INTEGRATION output of the steps before it.
"""

import importlib.util
import logging
from pathlib import Path
from typing import Dict, List, Optional, Type

from snowlink.config import ProjectConfig, load_config
from snowlink.core.contracts import BaseTable, LandingTable, select_target_table
from . import ddl, gcloud

logger = logging.getLogger('snowlink')

STORAGE_SA_VAR = "STORAGE_SERVICE_ACCOUNT"
PUBSUB_SA_VAR = "PUBSUB_SERVICE_ACCOUNT"

HEADER = "Auto-generated by snowlink - do not edit manually"


class InfrastructureGenerator:
    """Generates the complete provisioning script set from a snowlink project."""

    def __init__(self, project_root: Path, mode: ddl.CreateMode = ddl.CreateMode.IF_NOT_EXISTS):
        self.project_root = Path(project_root)
        self.contracts_dir = self.project_root / "contracts"
        self.mode = mode
        self.config: Optional[ProjectConfig] = None

    def load_config(self) -> ProjectConfig:
        """Load and validate project configuration."""
        self.config = load_config(self.project_root).require_valid()
        return self.config

    def scan_contracts(self) -> Dict[str, Type[LandingTable]]:
        """Scan the contracts directory for LandingTable definitions."""
        contracts: Dict[str, Type[LandingTable]] = {}

        if not self.contracts_dir.exists():
            return contracts

        for py_file in sorted(self.contracts_dir.glob("*.py")):
            if py_file.name.startswith("_"):
                continue

            module_name = f"contracts.{py_file.stem}"
            spec = importlib.util.spec_from_file_location(module_name, py_file)
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)

            # Only classes defined in this file, not ones it imported
            for attr_name in dir(module):
                attr = getattr(module, attr_name)
                if (isinstance(attr, type) and
                    issubclass(attr, LandingTable) and
                    attr not in (BaseTable, LandingTable) and
                    attr.__module__ == module_name):
                    contracts[attr.__name__] = attr

        return contracts

    def target_contract(self, contracts: Dict[str, Type[LandingTable]]) -> Type[LandingTable]:
        """The contract the pipe loads into (TARGET_TABLE, else the first found)."""
        if not contracts:
            raise ValueError(
                f"No LandingTable contracts found in {self.contracts_dir}\n"
                f"Define one, e.g. class OrdersDataLz(LandingTable) in contracts/landing.py"
            )
        return select_target_table(contracts.values(), self.config.target_table)

    def _context_sql(self) -> str:
        config = self.config
        lines = []
        if config.snowflake_role:
            lines.append(f"USE ROLE {config.snowflake_role};")
        if config.snowflake_warehouse:
            lines.append(f"USE WAREHOUSE {config.snowflake_warehouse};")
        lines.append(f"USE SCHEMA {config.snowflake_database}.{config.snowflake_schema};")
        return "\n".join(lines)

    def generate_landing_tables_sql(self, contracts: Dict[str, Type[LandingTable]]) -> str:
        """Generate CREATE TABLE statements for every landing contract."""
        or_replace = self.mode == ddl.CreateMode.OR_REPLACE
        tables = "\n\n".join(
            contract.to_create_table_sql(
                if_not_exists=self.mode == ddl.CreateMode.IF_NOT_EXISTS,
                or_replace=or_replace,
            )
            for contract in contracts.values()
        )
        return f"""-- Landing tables
-- {HEADER}

{self._context_sql()}

{tables}
"""

    def generate_storage_integration_sql(self) -> str:
        """Generate the storage integration and the DESC that reveals its service account."""
        config = self.config
        create = ddl.create_storage_integration_sql(
            config.storage_integration, [config.gcs_url], mode=self.mode,
        )
        return f"""-- Storage integration: lets Snowflake read {config.gcs_url}
-- {HEADER}
-- Requires ACCOUNTADMIN (or CREATE INTEGRATION privilege).

{create}

-- Copy STORAGE_GCP_SERVICE_ACCOUNT from the output below into
-- {STORAGE_SA_VAR} before running 05_gcp_iam.sh
{ddl.describe_integration_sql(config.storage_integration)}
"""

    def generate_pubsub_sh(self) -> str:
        """Generate the gcloud commands for topic, bucket notification and subscription."""
        config = self.config
        prefix = config.normalized_prefix or None
        notification = gcloud.create_bucket_notification_cmd(
            config.gcp_project_id, config.gcs_bucket, config.pubsub_topic, prefix,
        )
        subscription = gcloud.create_subscription_cmd(
            config.gcp_project_id, config.pubsub_subscription, config.pubsub_topic,
        )
        return f"""#!/usr/bin/env bash
# Pub/Sub notification channel for gs://{config.gcs_bucket}
# {HEADER}
set -euo pipefail

{gcloud.create_topic_cmd(config.gcp_project_id, config.pubsub_topic)}

# OBJECT_FINALIZE events only, JSON payload
{notification}

{subscription}
"""

    def generate_notification_integration_sql(self) -> str:
        """Generate the notification integration bound to the Pub/Sub subscription."""
        config = self.config
        create = ddl.create_notification_integration_sql(
            config.notification_integration, config.subscription_path, mode=self.mode,
        )
        return f"""-- Notification integration: Snowflake consumes {config.subscription_path}
-- {HEADER}

{self._context_sql()}

{create}

-- Copy GCP_PUBSUB_SERVICE_ACCOUNT from the output below into
-- {PUBSUB_SA_VAR} before running 05_gcp_iam.sh
{ddl.describe_integration_sql(config.notification_integration)}
"""

    def generate_iam_sh(self) -> str:
        """Generate IAM grants for the Snowflake-managed service accounts."""
        config = self.config
        storage_sa = f"${{{STORAGE_SA_VAR}}}"
        pubsub_sa = f"${{{PUBSUB_SA_VAR}}}"
        subscriber_grant = gcloud.grant_subscription_subscriber_cmd(
            config.gcp_project_id, config.pubsub_subscription, pubsub_sa,
        )
        return f"""#!/usr/bin/env bash
# IAM grants for Snowflake's service accounts
# {HEADER}
#
# {STORAGE_SA_VAR}: STORAGE_GCP_SERVICE_ACCOUNT from
#   DESC INTEGRATION {config.storage_integration};
# {PUBSUB_SA_VAR}: GCP_PUBSUB_SERVICE_ACCOUNT from
#   DESC INTEGRATION {config.notification_integration};
set -euo pipefail

: "${{{STORAGE_SA_VAR}:?set {STORAGE_SA_VAR} from DESC INTEGRATION {config.storage_integration}}}"
: "${{{PUBSUB_SA_VAR}:?set {PUBSUB_SA_VAR} from DESC INTEGRATION {config.notification_integration}}}"

# Read access to the bucket
{gcloud.grant_bucket_reader_cmd(config.gcs_bucket, storage_sa)}

# Consume notifications from the subscription
{subscriber_grant}

# Monitoring viewer lets Snowflake report the subscription backlog
{gcloud.grant_monitoring_viewer_cmd(config.gcp_project_id, pubsub_sa)}
"""

    def generate_stage_and_pipe_sql(self, contracts: Dict[str, Type[LandingTable]]) -> str:
        """Generate the external stage and the auto-ingest pipe."""
        config = self.config
        target = self.target_contract(contracts)
        stage = ddl.create_stage_sql(
            config.stage_name, config.gcs_url, config.storage_integration, mode=self.mode,
        )
        pipe = ddl.create_pipe_sql(
            config.pipe_name,
            target.get_table_name(),
            config.stage_name,
            config.notification_integration,
            file_format=ddl.FileFormat(skip_header=config.skip_header),
            mode=self.mode,
        )
        return f"""-- External stage and auto-ingest pipe
-- {HEADER}
-- Run after 05_gcp_iam.sh: the pipe needs the subscription grant to start.

{self._context_sql()}

{stage}

{pipe}

-- Expect "executionState": "RUNNING"
{ddl.pipe_status_sql(config.pipe_name)}
"""

    def generate_monitoring_sql(self, contracts: Dict[str, Type[LandingTable]]) -> str:
        """Generate the queries used to check the pipeline after files arrive."""
        config = self.config
        table = self.target_contract(contracts).get_table_name()
        return f"""-- Monitoring queries
-- {HEADER}

{self._context_sql()}

{ddl.pipe_status_sql(config.pipe_name)}

{ddl.copy_history_sql(table, 24)}

{ddl.count_rows_sql(table)}

-- Load files already in the stage (last 7 days) that the pipe missed
-- {ddl.alter_pipe_refresh_sql(config.pipe_name)}
"""

    def generate_teardown_sql(self, contracts: Dict[str, Type[LandingTable]]) -> str:
        """Generate DROP statements in reverse dependency order."""
        config = self.config
        statements = ddl.teardown_sql(
            config.pipe_name, config.stage_name,
            config.notification_integration, config.storage_integration,
        )
        drops = "\n".join(statements)
        notifications = gcloud.delete_bucket_notifications_cmd(
            config.gcp_project_id, config.gcs_bucket, config.pubsub_topic)
        tables = "\n".join(
            f"-- {ddl.drop_table_sql(c.get_table_name())}" for c in contracts.values()
        )
        return f"""-- Teardown
-- {HEADER}
-- Landing tables are kept; uncomment to drop them with their data.

{self._context_sql()}

{drops}

{tables}

-- GCP side:
-- {notifications}
-- {gcloud.delete_subscription_cmd(config.gcp_project_id, config.pubsub_subscription)}
-- {gcloud.delete_topic_cmd(config.gcp_project_id, config.pubsub_topic)}
"""

    def generate_files(self) -> Dict[str, str]:
        """Render every provisioning file, keyed by file name."""
        if self.config is None:
            self.load_config()
        contracts = self.scan_contracts()
        # Raises early when there is nothing to load into
        self.target_contract(contracts)

        return {
            "01_landing_tables.sql": self.generate_landing_tables_sql(contracts),
            "02_storage_integration.sql": self.generate_storage_integration_sql(),
            "03_gcp_pubsub.sh": self.generate_pubsub_sh(),
            "04_notification_integration.sql": self.generate_notification_integration_sql(),
            "05_gcp_iam.sh": self.generate_iam_sh(),
            "06_stage_and_pipe.sql": self.generate_stage_and_pipe_sql(contracts),
            "07_monitoring.sql": self.generate_monitoring_sql(contracts),
            "99_teardown.sql": self.generate_teardown_sql(contracts),
        }

    def generate_all(self, output_dir: Path) -> List[Path]:
        """Write all provisioning files and return their paths."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        written = []
        for filename, content in self.generate_files().items():
            filepath = output_dir / filename
            filepath.write_text(content)
            if filepath.suffix == ".sh":
                filepath.chmod(0o755)
            logger.debug(f"Generated: {filepath}")
            written.append(filepath)

        return written
