"""
Tests for gcloud command rendering.
"""

from snowlink.infra import gcloud


def test_bucket_notification_uses_json_payload_and_finalize_events():
    cmd = gcloud.create_bucket_notification_cmd("acme-data", "acme-landing",
                                                "snowpipe-orders-topic", "orders")
    assert cmd == (
        "gcloud storage buckets notifications create gs://acme-landing "
        "--topic=projects/acme-data/topics/snowpipe-orders-topic "
        "--payload-format=json --event-types=OBJECT_FINALIZE "
        "--object-prefix=orders/"
    )


def test_bucket_notification_without_prefix():
    cmd = gcloud.create_bucket_notification_cmd("p", "b", "t")
    assert "--object-prefix" not in cmd


def test_topic_and_subscription():
    assert gcloud.create_topic_cmd("acme-data", "t") == \
        "gcloud pubsub topics create t --project=acme-data"
    assert gcloud.create_subscription_cmd("acme-data", "s", "t") == \
        "gcloud pubsub subscriptions create s --topic=t --project=acme-data"


def test_iam_grants_use_service_account_members():
    sa = "abc@gcpuscentral1-1dfa.iam.gserviceaccount.com"
    bucket = gcloud.grant_bucket_reader_cmd("acme-landing", sa)
    assert f"--member=serviceAccount:{sa}" in bucket
    assert "--role=roles/storage.objectViewer" in bucket

    sub = gcloud.grant_subscription_subscriber_cmd("acme-data", "s", sa)
    assert "--role=roles/pubsub.subscriber" in sub

    monitoring = gcloud.grant_monitoring_viewer_cmd("acme-data", sa)
    assert monitoring.startswith("gcloud projects add-iam-policy-binding acme-data")
    assert "--role=roles/monitoring.viewer" in monitoring


def test_placeholders_stay_expandable():
    cmd = gcloud.grant_bucket_reader_cmd("b", "${STORAGE_SERVICE_ACCOUNT}")
    assert "--member=serviceAccount:${STORAGE_SERVICE_ACCOUNT}" in cmd
    assert "'" not in cmd


def test_arguments_with_spaces_are_quoted():
    cmd = gcloud.upload_file_cmd("my file.csv", "b", "orders/my file.csv")
    assert cmd == "gcloud storage cp 'my file.csv' 'gs://b/orders/my file.csv'"


def test_member_prefix_is_not_doubled():
    assert gcloud.service_account_member("serviceAccount:x@y") == "serviceAccount:x@y"


def test_notification_teardown_is_scoped_to_the_topic():
    cmd = gcloud.delete_bucket_notifications_cmd("acme-data", "acme-landing",
                                                 "snowpipe-orders-topic")
    assert cmd == (
        "for id in $(gcloud storage buckets notifications list gs://acme-landing "
        "--filter=notification_configuration.topic="
        "//pubsub.googleapis.com/projects/acme-data/topics/snowpipe-orders-topic "
        "'--format=value(notification_configuration.id)'); "
        "do gcloud storage buckets notifications delete "
        "gs://acme-landing/notificationConfigs/\"$id\"; done"
    )
    # The bare bucket URL would delete every notification on the bucket
    assert "delete gs://acme-landing " not in cmd
    assert not cmd.endswith("delete gs://acme-landing")


def test_dry_run_notification_teardown_names_the_topic(cloud):
    assert cloud.delete_bucket_notifications("acme-landing", "snowpipe-orders-topic") == 0
    assert cloud.commands == [
        gcloud.delete_bucket_notifications_cmd("acme-data", "acme-landing",
                                               "snowpipe-orders-topic")
    ]


def test_teardown_commands():
    assert gcloud.delete_subscription_cmd("p", "s") == \
        "gcloud pubsub subscriptions delete s --project=p"
    assert gcloud.delete_topic_cmd("p", "t") == "gcloud pubsub topics delete t --project=p"
