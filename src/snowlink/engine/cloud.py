"""
Cloud adapters for the GCP side of the integration.

GCPAdapter talks to Cloud Storage and Pub/Sub through the Google client
libraries; DryRunCloudAdapter records the equivalent gcloud commands.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import logging

from google.api_core import exceptions as gcp_exceptions

from snowlink.infra import gcloud

logger = logging.getLogger('snowlink')

JSON_API_V1_PAYLOAD_FORMAT = "JSON_API_V1"
OBJECT_FINALIZE_EVENT_TYPE = "OBJECT_FINALIZE"
PUBSUB_PUBLISHER_ROLE = "roles/pubsub.publisher"


class CloudError(RuntimeError):
    """Raised when a GCP call fails."""


class CloudAdapter(ABC):
    """Abstract base class for cloud adapters."""

    def __init__(self, project_id: str):
        self.project_id = project_id

    def topic_path(self, topic: str) -> str:
        return f"projects/{self.project_id}/topics/{topic}"

    def subscription_path(self, subscription: str) -> str:
        return f"projects/{self.project_id}/subscriptions/{subscription}"

    @abstractmethod
    def ensure_topic(self, topic: str) -> str:
        """Create the topic if missing. Returns its full path."""
        pass

    @abstractmethod
    def ensure_subscription(self, subscription: str, topic: str) -> str:
        """Create a pull subscription on the topic if missing. Returns its full path."""
        pass

    @abstractmethod
    def ensure_bucket_notification(self, bucket: str, topic: str,
                                   prefix: Optional[str] = None) -> str:
        """Bind object-finalize events of the bucket (and prefix) to the topic."""
        pass

    @abstractmethod
    def grant_bucket_reader(self, bucket: str, service_account: str) -> None:
        pass

    @abstractmethod
    def grant_subscription_subscriber(self, subscription: str, service_account: str) -> None:
        pass

    @abstractmethod
    def upload_file(self, bucket: str, blob_name: str, data: bytes,
                    content_type: str = "text/csv") -> str:
        """Upload bytes as an object. Returns the gs:// URI."""
        pass

    @abstractmethod
    def delete_bucket_notifications(self, bucket: str, topic: str) -> int:
        """Delete notifications of the bucket that target the topic. Returns how many."""
        pass

    @abstractmethod
    def delete_subscription(self, subscription: str) -> None:
        pass

    @abstractmethod
    def delete_topic(self, topic: str) -> None:
        pass


class GCPAdapter(CloudAdapter):
    """Adapter using google-cloud-storage and google-cloud-pubsub."""

    def __init__(self, project_id: str, storage_client=None, publisher=None, subscriber=None):
        """
        Initialize GCPAdapter.

        Args:
            project_id: GCP project that owns the topic and subscription
            storage_client: Optional google.cloud.storage.Client
            publisher: Optional pubsub_v1.PublisherClient
            subscriber: Optional pubsub_v1.SubscriberClient
        """
        super().__init__(project_id)
        self._storage = storage_client
        self._publisher = publisher
        self._subscriber = subscriber

    def _storage_client(self):
        if self._storage is None:
            from google.cloud import storage

            self._storage = storage.Client(project=self.project_id)
        return self._storage

    def _publisher_client(self):
        if self._publisher is None:
            from google.cloud import pubsub_v1

            self._publisher = pubsub_v1.PublisherClient()
        return self._publisher

    def _subscriber_client(self):
        if self._subscriber is None:
            from google.cloud import pubsub_v1

            self._subscriber = pubsub_v1.SubscriberClient()
        return self._subscriber

    def _wrap(self, action: str, resource: str, error: Exception) -> CloudError:
        if isinstance(error, gcp_exceptions.NotFound):
            hint = f"{resource} does not exist (check GCP_PROJECT_ID and names in settings)"
        elif isinstance(error, (gcp_exceptions.PermissionDenied, gcp_exceptions.Forbidden)):
            hint = (f"the active credentials cannot {action} on {resource} "
                    f"(run 'gcloud auth application-default login' or grant the role)")
        else:
            hint = f"unexpected {type(error).__name__}"
        logger.error(f"GCP call failed: {action} {resource}: {error}")
        return CloudError(f"Failed to {action} {resource}: {hint}\nOriginal error: {error}")

    # Pub/Sub

    def ensure_topic(self, topic: str) -> str:
        path = self.topic_path(topic)
        try:
            self._publisher_client().create_topic(request={"name": path})
            logger.info(f"Created topic {path}")
        except gcp_exceptions.AlreadyExists:
            logger.info(f"Topic already exists: {path}")
        except gcp_exceptions.GoogleAPICallError as e:
            raise self._wrap("create topic", path, e) from e
        return path

    def ensure_subscription(self, subscription: str, topic: str) -> str:
        path = self.subscription_path(subscription)
        try:
            self._subscriber_client().create_subscription(
                request={"name": path, "topic": self.topic_path(topic)}
            )
            logger.info(f"Created subscription {path}")
        except gcp_exceptions.AlreadyExists:
            logger.info(f"Subscription already exists: {path}")
        except gcp_exceptions.GoogleAPICallError as e:
            raise self._wrap("create subscription", path, e) from e
        return path

    def _add_pubsub_binding(self, client, resource: str, role: str, member: str) -> bool:
        """Add a member to a role on a Pub/Sub resource. Returns False if already bound."""
        policy = client.get_iam_policy(request={"resource": resource})
        for binding in policy.bindings:
            if binding.role == role and member in binding.members:
                return False
        policy.bindings.add(role=role, members=[member])
        client.set_iam_policy(request={"resource": resource, "policy": policy})
        return True

    def grant_subscription_subscriber(self, subscription: str, service_account: str) -> None:
        path = self.subscription_path(subscription)
        member = gcloud.service_account_member(service_account)
        try:
            added = self._add_pubsub_binding(
                self._subscriber_client(), path, gcloud.PUBSUB_SUBSCRIBER_ROLE, member
            )
        except gcp_exceptions.GoogleAPICallError as e:
            raise self._wrap("set IAM policy", path, e) from e
        if added:
            logger.info(f"Granted {gcloud.PUBSUB_SUBSCRIBER_ROLE} on {path} to {member}")
        else:
            logger.info(f"{member} already has {gcloud.PUBSUB_SUBSCRIBER_ROLE} on {path}")

    # Cloud Storage

    def ensure_bucket_notification(self, bucket: str, topic: str,
                                   prefix: Optional[str] = None) -> str:
        client = self._storage_client()
        topic_path = self.topic_path(topic)
        blob_prefix = f"{prefix.strip('/')}/" if prefix and prefix.strip("/") else None

        try:
            # Cloud Storage publishes as its project service agent
            agent = client.get_service_account_email(project=self.project_id)
            self._add_pubsub_binding(
                self._publisher_client(), topic_path, PUBSUB_PUBLISHER_ROLE,
                gcloud.service_account_member(agent),
            )

            gcs_bucket = client.bucket(bucket)
            for existing in gcs_bucket.list_notifications():
                if (existing.topic_name == topic
                        and (existing.topic_project or self.project_id) == self.project_id
                        and existing.blob_name_prefix == blob_prefix):
                    logger.info(
                        f"Bucket notification already exists: gs://{bucket} -> {topic_path}"
                    )
                    return existing.notification_id

            notification = gcs_bucket.notification(
                topic_name=topic,
                topic_project=self.project_id,
                event_types=[OBJECT_FINALIZE_EVENT_TYPE],
                blob_name_prefix=blob_prefix,
                payload_format=JSON_API_V1_PAYLOAD_FORMAT,
            )
            notification.create()
        except gcp_exceptions.GoogleAPICallError as e:
            raise self._wrap("create notification", f"gs://{bucket}", e) from e

        logger.info(f"Created bucket notification gs://{bucket} -> {topic_path}")
        return notification.notification_id

    def grant_bucket_reader(self, bucket: str, service_account: str) -> None:
        member = gcloud.service_account_member(service_account)
        role = gcloud.STORAGE_READER_ROLE
        try:
            gcs_bucket = self._storage_client().bucket(bucket)
            policy = gcs_bucket.get_iam_policy(requested_policy_version=3)
            for binding in policy.bindings:
                if binding.get("role") == role and member in binding.get("members", ()):
                    logger.info(f"{member} already has {role} on gs://{bucket}")
                    return
            policy.bindings.append({"role": role, "members": {member}})
            gcs_bucket.set_iam_policy(policy)
        except gcp_exceptions.GoogleAPICallError as e:
            raise self._wrap("set IAM policy", f"gs://{bucket}", e) from e
        logger.info(f"Granted {role} on gs://{bucket} to {member}")

    def upload_file(self, bucket: str, blob_name: str, data: bytes,
                    content_type: str = "text/csv") -> str:
        uri = f"gs://{bucket}/{blob_name}"
        try:
            blob = self._storage_client().bucket(bucket).blob(blob_name)
            blob.upload_from_string(data, content_type=content_type)
        except gcp_exceptions.GoogleAPICallError as e:
            raise self._wrap("upload", uri, e) from e
        logger.info(f"Uploaded {len(data)} bytes to {uri}")
        return uri

    # Teardown

    def delete_bucket_notifications(self, bucket: str, topic: str) -> int:
        deleted = 0
        try:
            for notification in self._storage_client().bucket(bucket).list_notifications():
                if (notification.topic_name == topic
                        and (notification.topic_project or self.project_id) == self.project_id):
                    notification.delete()
                    deleted += 1
        except gcp_exceptions.GoogleAPICallError as e:
            raise self._wrap("delete notifications", f"gs://{bucket}", e) from e
        logger.info(f"Deleted {deleted} notification(s) on gs://{bucket} for topic {topic}")
        return deleted

    def delete_subscription(self, subscription: str) -> None:
        path = self.subscription_path(subscription)
        try:
            self._subscriber_client().delete_subscription(request={"subscription": path})
            logger.info(f"Deleted subscription {path}")
        except gcp_exceptions.NotFound:
            logger.info(f"Subscription not found, nothing to delete: {path}")
        except gcp_exceptions.GoogleAPICallError as e:
            raise self._wrap("delete subscription", path, e) from e

    def delete_topic(self, topic: str) -> None:
        path = self.topic_path(topic)
        try:
            self._publisher_client().delete_topic(request={"topic": path})
            logger.info(f"Deleted topic {path}")
        except gcp_exceptions.NotFound:
            logger.info(f"Topic not found, nothing to delete: {path}")
        except gcp_exceptions.GoogleAPICallError as e:
            raise self._wrap("delete topic", path, e) from e


class DryRunCloudAdapter(CloudAdapter):
    """Adapter that records the equivalent gcloud commands instead of calling GCP."""

    def __init__(self, project_id: str):
        super().__init__(project_id)
        self.commands: List[str] = []
        self.uploads: Dict[str, bytes] = {}

    def _record(self, command: str) -> None:
        self.commands.append(command)
        logger.info(f"[dry-run] {command}")

    def ensure_topic(self, topic: str) -> str:
        self._record(gcloud.create_topic_cmd(self.project_id, topic))
        return self.topic_path(topic)

    def ensure_subscription(self, subscription: str, topic: str) -> str:
        self._record(gcloud.create_subscription_cmd(self.project_id, subscription, topic))
        return self.subscription_path(subscription)

    def ensure_bucket_notification(self, bucket: str, topic: str,
                                   prefix: Optional[str] = None) -> str:
        self._record(gcloud.create_bucket_notification_cmd(self.project_id, bucket, topic, prefix))
        return "dry-run"

    def grant_bucket_reader(self, bucket: str, service_account: str) -> None:
        self._record(gcloud.grant_bucket_reader_cmd(bucket, service_account))

    def grant_subscription_subscriber(self, subscription: str, service_account: str) -> None:
        self._record(gcloud.grant_subscription_subscriber_cmd(
            self.project_id, subscription, service_account))

    def upload_file(self, bucket: str, blob_name: str, data: bytes,
                    content_type: str = "text/csv") -> str:
        self._record(gcloud.upload_file_cmd("<local file>", bucket, blob_name))
        uri = f"gs://{bucket}/{blob_name}"
        self.uploads[uri] = data
        return uri

    def delete_bucket_notifications(self, bucket: str, topic: str) -> int:
        self._record(gcloud.delete_bucket_notifications_cmd(self.project_id, bucket, topic))
        return 0

    def delete_subscription(self, subscription: str) -> None:
        self._record(gcloud.delete_subscription_cmd(self.project_id, subscription))

    def delete_topic(self, topic: str) -> None:
        self._record(gcloud.delete_topic_cmd(self.project_id, topic))


__all__ = [
    "CloudError",
    "CloudAdapter",
    "GCPAdapter",
    "DryRunCloudAdapter",
]
