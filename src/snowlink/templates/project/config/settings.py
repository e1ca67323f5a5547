"""
Configuration settings for PROJECT_NAME.
Edit these values to match your environment.

Environment variables override these settings:
- SNOWLINK_GCP_PROJECT_ID, SNOWLINK_GCS_BUCKET, SNOWLINK_GCS_PREFIX
- SNOWLINK_PUBSUB_TOPIC, SNOWLINK_PUBSUB_SUBSCRIPTION
- SNOWLINK_SNOWFLAKE_ACCOUNT, SNOWLINK_SNOWFLAKE_USER, SNOWLINK_SNOWFLAKE_ROLE
- SNOWLINK_SNOWFLAKE_WAREHOUSE, SNOWLINK_SNOWFLAKE_DATABASE, SNOWLINK_SNOWFLAKE_SCHEMA
- SNOWLINK_ENV (dev/staging/production)

Credentials are never read from this file. Set SNOWFLAKE_PASSWORD, or
SNOWFLAKE_PRIVATE_KEY_PATH for key-pair authentication. GCP calls use
Application Default Credentials (gcloud auth application-default login).
"""

import os

# GCP Configuration
GCP_PROJECT_ID = os.getenv("SNOWLINK_GCP_PROJECT_ID", "")
GCS_BUCKET = os.getenv("SNOWLINK_GCS_BUCKET", "")  # Bare name, no gs:// prefix
GCS_PREFIX = os.getenv("SNOWLINK_GCS_PREFIX", "orders/")  # Only files under this path are loaded

# Pub/Sub notification channel
PUBSUB_TOPIC = os.getenv("SNOWLINK_PUBSUB_TOPIC", "snowpipe-orders-topic")
PUBSUB_SUBSCRIPTION = os.getenv("SNOWLINK_PUBSUB_SUBSCRIPTION", "snowpipe-orders-sub")

# Snowflake Connection
SNOWFLAKE_ACCOUNT = os.getenv("SNOWLINK_SNOWFLAKE_ACCOUNT", "")  # <org>-<account>
SNOWFLAKE_USER = os.getenv("SNOWLINK_SNOWFLAKE_USER", "")
SNOWFLAKE_ROLE = os.getenv("SNOWLINK_SNOWFLAKE_ROLE", "ACCOUNTADMIN")  # Integrations need ACCOUNTADMIN
SNOWFLAKE_WAREHOUSE = os.getenv("SNOWLINK_SNOWFLAKE_WAREHOUSE", "COMPUTE_WH")
SNOWFLAKE_DATABASE = os.getenv("SNOWLINK_SNOWFLAKE_DATABASE", "RAW")
SNOWFLAKE_SCHEMA = os.getenv("SNOWLINK_SNOWFLAKE_SCHEMA", "LANDING")

# Snowflake objects
STORAGE_INTEGRATION = "gcs_bucket_read_int"
NOTIFICATION_INTEGRATION = "gcs_notification_int"
STAGE_NAME = "gcs_orders_stage"
PIPE_NAME = "gcs_orders_pipe"
TARGET_TABLE = "orders_data_lz"

# CSV files
SKIP_HEADER = os.getenv("SNOWLINK_SKIP_HEADER", "0")

# Environment
ENVIRONMENT = os.getenv("SNOWLINK_ENV", "dev")  # dev, staging, production
LOG_LEVEL = os.getenv("SNOWLINK_LOG_LEVEL", "INFO")
