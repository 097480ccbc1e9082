"""S3 bucket preflight checks."""

from __future__ import annotations

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from forge_backup.conffiles import S3Credentials

_MISSING_CODES = {"404", "NoSuchBucket", "NotFound"}
_DENIED_CODES = {"403", "AccessDenied", "Forbidden"}


class S3Error(RuntimeError):
    """Raised when the backup bucket is unusable."""


def get_s3_client(credentials: S3Credentials):
    return boto3.client(
        "s3",
        region_name=credentials.region,
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
    )


def check_bucket(client, bucket: str) -> None:
    try:
        client.head_bucket(Bucket=bucket)
    except ClientError as exc:
        code = _error_code(exc)
        if code in _MISSING_CODES:
            raise S3Error(f"bucket not found: {bucket}") from exc
        if code in _DENIED_CODES:
            raise S3Error(f"access denied to bucket: {bucket}") from exc
        raise S3Error(f"bucket check failed for {bucket}: {exc}") from exc
    except BotoCoreError as exc:
        raise S3Error(f"bucket check failed for {bucket}: {exc}") from exc


def ensure_bucket(client, bucket: str, region: str, create: bool = False) -> bool:
    """Return True when the bucket had to be created."""
    try:
        check_bucket(client, bucket)
        return False
    except S3Error as exc:
        cause = exc.__cause__
        if not create or not isinstance(cause, ClientError):
            raise
        if _error_code(cause) not in _MISSING_CODES:
            raise
    params: dict[str, object] = {"Bucket": bucket}
    if region and region != "us-east-1":
        params["CreateBucketConfiguration"] = {"LocationConstraint": region}
    try:
        client.create_bucket(**params)
    except (ClientError, BotoCoreError) as exc:
        raise S3Error(f"failed to create bucket {bucket}: {exc}") from exc
    return True


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))
