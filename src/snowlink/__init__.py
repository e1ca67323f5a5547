"""
snowlink - Snowpipe auto-ingest from Google Cloud Storage.

snowlink provisions and checks the event-driven path that loads CSV files
dropped into a GCS bucket into a Snowflake landing table:

- Declarative landing-table contracts with typed fields
- Storage and notification integrations, stage and AUTO_INGEST pipe DDL
- Pub/Sub topic, bucket notification, subscription and IAM grants on GCP
- Generated provisioning scripts for teams that apply changes by hand
- Pipe status, COPY_HISTORY and health checks after files start arriving

Each Snowflake integration is backed by a Snowflake-managed GCP service
account. Its email is only known after the integration exists, so the setup
runs in a fixed order: create, DESC INTEGRATION, grant, continue.
"""

__version__ = "0.1.0"

from .core import (
    BaseTable,
    LandingTable,
    Field,
    StringField,
    IntegerField,
    LongField,
    DoubleField,
    BooleanField,
    TimestampField,
    DateField,
    DecimalField,
    VariantField,
)

from .config import ConfigError, ProjectConfig, load_config, configure_logging

from .engine import (
    SnowflakeAdapter,
    DryRunWarehouseAdapter,
    GCPAdapter,
    DryRunCloudAdapter,
    ProvisioningRunner,
)

from .monitoring import (
    expect,
    HealthRegistry,
    Severity,
    run_health_checks,
    collect_snapshot,
)

from .verification import IngestionVerifier, validate_csv_bytes

__all__ = [
    "__version__",
    # Contracts
    "BaseTable",
    "LandingTable",
    # Fields
    "Field",
    "StringField",
    "IntegerField",
    "LongField",
    "DoubleField",
    "BooleanField",
    "TimestampField",
    "DateField",
    "DecimalField",
    "VariantField",
    # Config
    "ConfigError",
    "ProjectConfig",
    "load_config",
    "configure_logging",
    # Engine
    "SnowflakeAdapter",
    "DryRunWarehouseAdapter",
    "GCPAdapter",
    "DryRunCloudAdapter",
    "ProvisioningRunner",
    # Health
    "expect",
    "HealthRegistry",
    "Severity",
    "run_health_checks",
    "collect_snapshot",
    # Verification
    "IngestionVerifier",
    "validate_csv_bytes",
]
