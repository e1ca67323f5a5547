"""
Project configuration loading.

A snowlink project keeps its settings in config/settings.py as plain module
constants (usually read from SNOWLINK_* environment variables). This module
loads that file by path and turns it into a validated ProjectConfig.
"""

import importlib.util
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core.sql import validate_identifier

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

logger = logging.getLogger("snowlink")


class ConfigError(ValueError):
    """Raised when project settings are missing or invalid."""


REQUIRED_SETTINGS = [
    "GCP_PROJECT_ID",
    "GCS_BUCKET",
    "PUBSUB_TOPIC",
    "PUBSUB_SUBSCRIPTION",
    "SNOWFLAKE_ACCOUNT",
    "SNOWFLAKE_USER",
    "SNOWFLAKE_DATABASE",
    "SNOWFLAKE_SCHEMA",
]

# Settings that name Snowflake objects and end up in DDL unquoted
IDENTIFIER_SETTINGS = [
    "SNOWFLAKE_DATABASE",
    "SNOWFLAKE_SCHEMA",
    "SNOWFLAKE_WAREHOUSE",
    "SNOWFLAKE_ROLE",
    "STORAGE_INTEGRATION",
    "NOTIFICATION_INTEGRATION",
    "STAGE_NAME",
    "PIPE_NAME",
    "TARGET_TABLE",
]


def configure_logging(level: str = "INFO") -> None:
    """Configure the 'snowlink' logger for CLI and script use."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logger.setLevel(level.upper())


def _int_setting(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


@dataclass
class ProjectConfig:
    """Settings for one GCS -> Pub/Sub -> Snowpipe ingestion setup."""

    gcp_project_id: str = ""
    gcs_bucket: str = ""
    gcs_prefix: str = ""
    pubsub_topic: str = ""
    pubsub_subscription: str = ""

    snowflake_account: str = ""
    snowflake_user: str = ""
    snowflake_role: Optional[str] = None
    snowflake_warehouse: Optional[str] = None
    snowflake_database: str = ""
    snowflake_schema: str = ""

    storage_integration: str = "gcs_bucket_read_int"
    notification_integration: str = "gcs_notification_int"
    stage_name: str = "gcs_orders_stage"
    pipe_name: str = "gcs_orders_pipe"
    target_table: Optional[str] = None
    skip_header: int = 0

    environment: str = "dev"
    log_level: str = "INFO"

    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_module(cls, module: Any) -> "ProjectConfig":
        """Build a config from a settings module (or any object with UPPER_CASE attributes)."""
        def setting(name, default):
            value = getattr(module, name, default)
            return default if value is None else value

        defaults = cls()
        config = cls(
            gcp_project_id=setting("GCP_PROJECT_ID", ""),
            gcs_bucket=setting("GCS_BUCKET", ""),
            gcs_prefix=setting("GCS_PREFIX", ""),
            pubsub_topic=setting("PUBSUB_TOPIC", ""),
            pubsub_subscription=setting("PUBSUB_SUBSCRIPTION", ""),
            snowflake_account=setting("SNOWFLAKE_ACCOUNT", ""),
            snowflake_user=setting("SNOWFLAKE_USER", ""),
            snowflake_role=getattr(module, "SNOWFLAKE_ROLE", None) or None,
            snowflake_warehouse=getattr(module, "SNOWFLAKE_WAREHOUSE", None) or None,
            snowflake_database=setting("SNOWFLAKE_DATABASE", ""),
            snowflake_schema=setting("SNOWFLAKE_SCHEMA", ""),
            storage_integration=setting("STORAGE_INTEGRATION", defaults.storage_integration),
            notification_integration=setting(
                "NOTIFICATION_INTEGRATION", defaults.notification_integration
            ),
            stage_name=setting("STAGE_NAME", defaults.stage_name),
            pipe_name=setting("PIPE_NAME", defaults.pipe_name),
            target_table=getattr(module, "TARGET_TABLE", None) or None,
            skip_header=_int_setting("SKIP_HEADER", setting("SKIP_HEADER", 0)),
            environment=setting("ENVIRONMENT", "dev"),
            log_level=setting("LOG_LEVEL", "INFO"),
        )

        known = {f"{name.upper()}" for name in cls.__dataclass_fields__}
        config.extra = {
            name: getattr(module, name)
            for name in dir(module)
            if name.isupper() and name not in known
        }
        return config

    # Derived locations

    @property
    def normalized_prefix(self) -> str:
        """GCS prefix without surrounding slashes ('' for the bucket root)."""
        return (self.gcs_prefix or "").strip("/")

    @property
    def gcs_url(self) -> str:
        """Stage URL, e.g. gcs://my-bucket/orders/."""
        prefix = self.normalized_prefix
        if prefix:
            return f"gcs://{self.gcs_bucket}/{prefix}/"
        return f"gcs://{self.gcs_bucket}/"

    @property
    def topic_path(self) -> str:
        return f"projects/{self.gcp_project_id}/topics/{self.pubsub_topic}"

    @property
    def subscription_path(self) -> str:
        return f"projects/{self.gcp_project_id}/subscriptions/{self.pubsub_subscription}"

    def blob_name(self, file_name: str) -> str:
        """Object name for a file uploaded under the bound prefix."""
        prefix = self.normalized_prefix
        return f"{prefix}/{file_name}" if prefix else file_name

    def validate(self) -> List[str]:
        """
        Check settings for missing or invalid values.

        Returns:
            List of human-readable problems (empty when valid)
        """
        errors: List[str] = []

        for name in REQUIRED_SETTINGS:
            if not getattr(self, name.lower()):
                errors.append(f"Missing required setting: {name}")

        for name in IDENTIFIER_SETTINGS:
            value = getattr(self, name.lower())
            if not value:
                continue
            try:
                validate_identifier(value, kind=name)
            except ValueError as e:
                errors.append(str(e))

        if self.gcs_bucket and ("/" in self.gcs_bucket or self.gcs_bucket.startswith("gs:")):
            errors.append(
                f"GCS_BUCKET must be a bare bucket name, got {self.gcs_bucket!r}"
            )

        if self.skip_header < 0:
            errors.append(f"SKIP_HEADER must be >= 0, got {self.skip_header}")

        return errors

    def require_valid(self) -> "ProjectConfig":
        """Raise ConfigError listing every problem, or return self."""
        errors = self.validate()
        if errors:
            details = "\n".join(f"  - {e}" for e in errors)
            raise ConfigError(
                f"Invalid snowlink settings:\n{details}\n\n"
                f"Edit config/settings.py or set the matching SNOWLINK_* environment variables."
            )
        return self

    def snowflake_connection_params(self) -> Dict[str, Any]:
        """
        Connection parameters for snowflake.connector.connect().

        Credentials come from the environment only: SNOWFLAKE_PASSWORD, or
        SNOWFLAKE_PRIVATE_KEY_PATH for key-pair authentication.
        """
        params: Dict[str, Any] = {
            "account": self.snowflake_account,
            "user": self.snowflake_user,
            "database": self.snowflake_database,
            "schema": self.snowflake_schema,
        }
        if self.snowflake_role:
            params["role"] = self.snowflake_role
        if self.snowflake_warehouse:
            params["warehouse"] = self.snowflake_warehouse

        private_key_path = os.getenv("SNOWFLAKE_PRIVATE_KEY_PATH")
        password = os.getenv("SNOWFLAKE_PASSWORD")
        if private_key_path:
            params["authenticator"] = "SNOWFLAKE_JWT"
            params["private_key_file"] = private_key_path
        elif password:
            params["password"] = password
        else:
            raise ConfigError(
                "No Snowflake credentials found.\n"
                "Set SNOWFLAKE_PASSWORD or SNOWFLAKE_PRIVATE_KEY_PATH in the environment."
            )
        return params


def load_settings_module(project_root: Path):
    """Import <project_root>/config/settings.py by path."""
    settings_path = Path(project_root) / "config" / "settings.py"
    if not settings_path.exists():
        raise ConfigError(
            f"Settings file not found: {settings_path}\n"
            f"Run 'snowlink init <name>' to create a project, or cd into one."
        )

    try:
        spec = importlib.util.spec_from_file_location("snowlink_project_settings", settings_path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    except Exception as e:
        raise ConfigError(f"Failed to load {settings_path}: {e}") from e
    return module


def load_config(project_root: Path) -> ProjectConfig:
    """Load and return the ProjectConfig for a project directory (not validated)."""
    module = load_settings_module(project_root)
    config = ProjectConfig.from_module(module)
    logger.debug(f"Loaded settings for environment '{config.environment}'")
    return config


__all__ = [
    "ConfigError",
    "ProjectConfig",
    "REQUIRED_SETTINGS",
    "configure_logging",
    "load_config",
    "load_settings_module",
]
