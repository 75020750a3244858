"""
S3-compatible content store used for both source audio and published archives.

Every call is a single synchronous attempt: botocore retries are disabled and
connect/read timeouts are bounded, so an unresponsive store fails the step
instead of hanging the run.
"""

import logging
import os
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from runpod_exceptions import AssetNotFoundError, StorageError, TransientAssetError

logger = logging.getLogger("AlbumZipWorker.storage")

STORAGE_CONNECT_TIMEOUT_SECONDS = int(os.environ.get("STORAGE_CONNECT_TIMEOUT_SECONDS", "10"))
STORAGE_READ_TIMEOUT_SECONDS = int(os.environ.get("STORAGE_READ_TIMEOUT_SECONDS", "120"))

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class ObjectStore:
    """Fetcher and publisher over a boto3 S3 client."""

    def __init__(self, s3_client) -> None:
        self.s3_client = s3_client

    @classmethod
    def from_env(cls) -> "ObjectStore":
        endpoint = os.environ.get("STORAGE_ENDPOINT_URL")
        if not endpoint:
            logger.warning("STORAGE_ENDPOINT_URL not set - using default AWS S3 endpoint.")
        client = boto3.client(
            service_name="s3",
            endpoint_url=endpoint or None,
            aws_access_key_id=os.environ.get("STORAGE_ACCESS_KEY_ID"),
            aws_secret_access_key=os.environ.get("STORAGE_SECRET_ACCESS_KEY"),
            region_name=os.environ.get("STORAGE_REGION", "auto"),
            config=Config(
                signature_version="s3v4",
                connect_timeout=STORAGE_CONNECT_TIMEOUT_SECONDS,
                read_timeout=STORAGE_READ_TIMEOUT_SECONDS,
                retries={"total_max_attempts": 1},
            ),
        )
        return cls(client)

    # ----- Fetcher -----

    def download(self, bucket: str, key: str) -> bytes:
        """Return the object's bytes; missing or empty objects raise."""
        try:
            resp = self.s3_client.get_object(Bucket=bucket, Key=key)
            data = resp["Body"].read()
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                raise AssetNotFoundError(f"Not found: {bucket}/{key}") from exc
            raise TransientAssetError(f"Download failed ({bucket}/{key}): {exc}") from exc
        except BotoCoreError as exc:
            raise TransientAssetError(f"Download failed ({bucket}/{key}): {exc}") from exc

        if not data:
            raise TransientAssetError(f"Empty object: {bucket}/{key}")
        logger.info(f"Downloaded {bucket}/{key} ({len(data)} bytes)")
        return data

    # ----- Publisher -----

    def upload(
        self, bucket: str, key: str, data: bytes,
        content_type: Optional[str] = None,
    ) -> None:
        """Put the object, replacing any existing object under the same key."""
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.s3_client.put_object(Bucket=bucket, Key=key, Body=data, **extra)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Upload failed ({bucket}/{key}): {exc}") from exc
        logger.info(f"Uploaded {bucket}/{key} ({len(data)} bytes)")

    def sign(self, bucket: str, key: str, ttl_seconds: int) -> str:
        try:
            url = self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Signing failed ({bucket}/{key}): {exc}") from exc
        if not url:
            raise StorageError(f"Signing returned no URL ({bucket}/{key})")
        return url
