"""S3 preflight tests."""

from __future__ import annotations

import unittest
from unittest import mock

from botocore.exceptions import ClientError, EndpointConnectionError

from forge_backup.conffiles import S3Credentials
from forge_backup.s3 import S3Error, check_bucket, ensure_bucket, get_s3_client


def _client_error(code: str, operation: str = "HeadBucket") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class S3Tests(unittest.TestCase):
    def test_get_s3_client_uses_stored_credentials(self) -> None:
        credentials = S3Credentials("AKIA", "secret", "bucket", "eu-west-1")
        with mock.patch("forge_backup.s3.boto3.client", return_value="client") as client:
            self.assertEqual(get_s3_client(credentials), "client")
        client.assert_called_once_with(
            "s3",
            region_name="eu-west-1",
            aws_access_key_id="AKIA",
            aws_secret_access_key="secret",
        )

    def test_check_bucket_ok(self) -> None:
        client = mock.Mock()
        check_bucket(client, "bucket")
        client.head_bucket.assert_called_once_with(Bucket="bucket")

    def test_check_bucket_missing(self) -> None:
        client = mock.Mock()
        client.head_bucket.side_effect = _client_error("404")
        with self.assertRaises(S3Error) as context:
            check_bucket(client, "bucket")
        self.assertIn("not found", str(context.exception))

    def test_check_bucket_denied(self) -> None:
        client = mock.Mock()
        client.head_bucket.side_effect = _client_error("403")
        with self.assertRaises(S3Error) as context:
            check_bucket(client, "bucket")
        self.assertIn("access denied", str(context.exception))

    def test_check_bucket_connection_error(self) -> None:
        client = mock.Mock()
        client.head_bucket.side_effect = EndpointConnectionError(
            endpoint_url="https://s3.amazonaws.com"
        )
        with self.assertRaises(S3Error):
            check_bucket(client, "bucket")

    def test_ensure_bucket_existing(self) -> None:
        client = mock.Mock()
        self.assertFalse(ensure_bucket(client, "bucket", "eu-west-1", create=True))
        client.create_bucket.assert_not_called()

    def test_ensure_bucket_creates_with_location(self) -> None:
        client = mock.Mock()
        client.head_bucket.side_effect = _client_error("404")
        self.assertTrue(ensure_bucket(client, "bucket", "eu-west-1", create=True))
        client.create_bucket.assert_called_once_with(
            Bucket="bucket",
            CreateBucketConfiguration={"LocationConstraint": "eu-west-1"},
        )

    def test_ensure_bucket_us_east_1_has_no_location(self) -> None:
        client = mock.Mock()
        client.head_bucket.side_effect = _client_error("NoSuchBucket")
        ensure_bucket(client, "bucket", "us-east-1", create=True)
        client.create_bucket.assert_called_once_with(Bucket="bucket")

    def test_ensure_bucket_without_create_raises(self) -> None:
        client = mock.Mock()
        client.head_bucket.side_effect = _client_error("404")
        with self.assertRaises(S3Error):
            ensure_bucket(client, "bucket", "eu-west-1")
        client.create_bucket.assert_not_called()

    def test_ensure_bucket_does_not_create_on_denied(self) -> None:
        client = mock.Mock()
        client.head_bucket.side_effect = _client_error("403")
        with self.assertRaises(S3Error):
            ensure_bucket(client, "bucket", "eu-west-1", create=True)
        client.create_bucket.assert_not_called()


if __name__ == "__main__":
    unittest.main()
