"""
gcloud command rendering for the GCP side of the integration.

Used for generated provisioning scripts and for dry runs. The live
provisioning path goes through engine.cloud.GCPAdapter instead.
"""

import shlex
from typing import List, Optional

STORAGE_READER_ROLE = "roles/storage.objectViewer"
PUBSUB_SUBSCRIBER_ROLE = "roles/pubsub.subscriber"
MONITORING_VIEWER_ROLE = "roles/monitoring.viewer"

NOTIFICATION_EVENT_TYPE = "OBJECT_FINALIZE"
NOTIFICATION_PAYLOAD_FORMAT = "json"


def service_account_member(service_account: str) -> str:
    """IAM member string for a service account email (passes through placeholders)."""
    if service_account.startswith("serviceAccount:"):
        return service_account
    return f"serviceAccount:{service_account}"


def _join(args: List[str]) -> str:
    # Placeholders like ${STORAGE_SERVICE_ACCOUNT} must stay expandable by the shell
    return " ".join(a if "${" in a else shlex.quote(a) for a in args)


def create_topic_cmd(project_id: str, topic: str) -> str:
    return _join(["gcloud", "pubsub", "topics", "create", topic, f"--project={project_id}"])


def create_bucket_notification_cmd(project_id: str, bucket: str, topic: str,
                                   prefix: Optional[str] = None) -> str:
    """Bucket -> topic binding for object-finalize events with a JSON payload."""
    args = [
        "gcloud", "storage", "buckets", "notifications", "create", f"gs://{bucket}",
        f"--topic=projects/{project_id}/topics/{topic}",
        f"--payload-format={NOTIFICATION_PAYLOAD_FORMAT}",
        f"--event-types={NOTIFICATION_EVENT_TYPE}",
    ]
    if prefix:
        args.append(f"--object-prefix={prefix.strip('/')}/")
    return _join(args)


def create_subscription_cmd(project_id: str, subscription: str, topic: str) -> str:
    return _join([
        "gcloud", "pubsub", "subscriptions", "create", subscription,
        f"--topic={topic}", f"--project={project_id}",
    ])


def grant_bucket_reader_cmd(bucket: str, service_account: str) -> str:
    return _join([
        "gcloud", "storage", "buckets", "add-iam-policy-binding", f"gs://{bucket}",
        f"--member={service_account_member(service_account)}",
        f"--role={STORAGE_READER_ROLE}",
    ])


def grant_subscription_subscriber_cmd(project_id: str, subscription: str,
                                      service_account: str) -> str:
    return _join([
        "gcloud", "pubsub", "subscriptions", "add-iam-policy-binding", subscription,
        f"--member={service_account_member(service_account)}",
        f"--role={PUBSUB_SUBSCRIBER_ROLE}",
        f"--project={project_id}",
    ])


def grant_monitoring_viewer_cmd(project_id: str, service_account: str) -> str:
    return _join([
        "gcloud", "projects", "add-iam-policy-binding", project_id,
        f"--member={service_account_member(service_account)}",
        f"--role={MONITORING_VIEWER_ROLE}",
    ])


def upload_file_cmd(local_path: str, bucket: str, blob_name: str) -> str:
    return _join(["gcloud", "storage", "cp", local_path, f"gs://{bucket}/{blob_name}"])


def list_bucket_notifications_cmd(project_id: str, bucket: str, topic: str) -> str:
    """IDs of the bucket's notifications that publish to the topic, one per line."""
    return _join([
        "gcloud", "storage", "buckets", "notifications", "list", f"gs://{bucket}",
        f"--filter=notification_configuration.topic="
        f"//pubsub.googleapis.com/projects/{project_id}/topics/{topic}",
        "--format=value(notification_configuration.id)",
    ])


def delete_bucket_notifications_cmd(project_id: str, bucket: str, topic: str) -> str:
    """
    Delete the bucket notifications that publish to the topic, and no others.

    Passing the bare gs://<bucket> URL to delete would remove every
    notification on the bucket, so each one is deleted by ID.
    """
    delete = _join([
        "gcloud", "storage", "buckets", "notifications", "delete",
        f"gs://{bucket}/notificationConfigs/",
    ])
    return (f"for id in $({list_bucket_notifications_cmd(project_id, bucket, topic)}); "
            f"do {delete}\"$id\"; done")


def delete_subscription_cmd(project_id: str, subscription: str) -> str:
    return _join(["gcloud", "pubsub", "subscriptions", "delete", subscription,
                  f"--project={project_id}"])


def delete_topic_cmd(project_id: str, topic: str) -> str:
    return _join(["gcloud", "pubsub", "topics", "delete", topic, f"--project={project_id}"])


__all__ = [
    "STORAGE_READER_ROLE",
    "PUBSUB_SUBSCRIBER_ROLE",
    "MONITORING_VIEWER_ROLE",
    "NOTIFICATION_EVENT_TYPE",
    "service_account_member",
    "create_topic_cmd",
    "create_bucket_notification_cmd",
    "create_subscription_cmd",
    "grant_bucket_reader_cmd",
    "grant_subscription_subscriber_cmd",
    "grant_monitoring_viewer_cmd",
    "upload_file_cmd",
    "list_bucket_notifications_cmd",
    "delete_bucket_notifications_cmd",
    "delete_subscription_cmd",
    "delete_topic_cmd",
]
