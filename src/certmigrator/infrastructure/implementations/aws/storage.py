"""
AWS S3 implementation for certificate storage.

This module provides certificate storage using AWS S3 (or any
S3-compatible store such as MinIO) with:
- Automatic encryption at rest (AES-256)
- Configurable bucket and key prefix
- Lock objects written with conditional puts (If-None-Match) under
  lock_prefix, outside the key prefix
"""

import time
from datetime import UTC, datetime

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import Field

from certmigrator.core.exceptions import (
    KeyNotFoundError,
    LockError,
    StorageIOError,
)
from certmigrator.core.logging import logger
from certmigrator.infrastructure.repositories import (
    KeyInfo,
    ProvisionContext,
    SettingsStorage,
)
from certmigrator.models.config import BackendSettings

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
LOCK_HELD_CODES = {"PreconditionFailed", "ConditionalRequestConflict", "412", "409"}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class S3Settings(BackendSettings):
    """
    Settings for S3Storage.

    Attributes:
        bucket: S3 bucket name (required)
        region: AWS region
        prefix: Prefix for all S3 keys (like a folder)
        lock_prefix: Bucket-level prefix for lock objects
        endpoint_url: Custom endpoint for MinIO/compatible stores
        access_key: AWS access key (optional, uses default credentials)
        secret_key: AWS secret key (optional, uses default credentials)
        server_side_encryption: SSE algorithm ("" disables it)
        auto_create_bucket: Create the bucket if it doesn't exist
        lock_expiry: Seconds after which a lock object is considered stale
    """

    bucket: str = ""
    region: str = "us-east-1"
    prefix: str = ""
    lock_prefix: str = "certmigrator-locks"
    endpoint_url: str = ""
    access_key: str = ""
    secret_key: str = ""
    server_side_encryption: str = "AES256"
    auto_create_bucket: bool = False
    lock_expiry: float = Field(default=2 * 3600.0, gt=0)


class S3Storage(SettingsStorage):
    """AWS S3 implementation of CertificateStorage."""

    settings_model = S3Settings

    def __init__(self) -> None:
        super().__init__()
        self.client = None
        self._held_locks: set[str] = set()

    def provision(self, context: ProvisionContext) -> None:
        """Create the S3 client and optionally the bucket."""
        client_kwargs = {"region_name": self.settings.region}
        if self.settings.endpoint_url:
            client_kwargs["endpoint_url"] = self.settings.endpoint_url
        if self.settings.access_key and self.settings.secret_key:
            client_kwargs["aws_access_key_id"] = self.settings.access_key
            client_kwargs["aws_secret_access_key"] = self.settings.secret_key

        self.client = boto3.client("s3", **client_kwargs)

        if self.settings.auto_create_bucket and self.settings.bucket:
            self._ensure_bucket_exists()

        context.logger("storage.s3").info(
            f"Initialized S3Storage with bucket={self.settings.bucket}, "
            f"region={self.settings.region}, prefix={self.settings.prefix}"
        )

    def validate(self) -> None:
        """Check that a bucket is configured and reachable."""
        if not self.settings.bucket:
            raise ValueError("S3 backend requires 'bucket' in configuration")
        if not self.settings.lock_prefix.strip("/"):
            raise ValueError("lock_prefix must not be empty")
        try:
            self._client().head_bucket(Bucket=self.settings.bucket)
        except (ClientError, BotoCoreError) as e:
            raise ConnectionError(
                f"Bucket {self.settings.bucket} is not accessible: {e}"
            ) from e

    def close(self) -> None:
        """Close the client's HTTP connections."""
        if self.client is not None:
            self.client.close()
            self.client = None

    def _client(self):
        if self.client is None:
            raise StorageIOError("S3Storage used before provision()")
        return self.client

    def _ensure_bucket_exists(self) -> None:
        """Create S3 bucket if it doesn't exist."""
        client = self._client()
        bucket = self.settings.bucket
        try:
            client.head_bucket(Bucket=bucket)
            logger.debug(f"Bucket {bucket} already exists")
            return
        except ClientError as e:
            if _error_code(e) not in NOT_FOUND_CODES:
                raise

        logger.info(f"Creating S3 bucket: {bucket}")

        if self.settings.region == "us-east-1":
            # us-east-1 doesn't accept a LocationConstraint
            client.create_bucket(Bucket=bucket)
        else:
            client.create_bucket(
                Bucket=bucket,
                CreateBucketConfiguration={"LocationConstraint": self.settings.region},
            )

        if self.settings.server_side_encryption:
            client.put_bucket_encryption(
                Bucket=bucket,
                ServerSideEncryptionConfiguration={
                    "Rules": [
                        {
                            "ApplyServerSideEncryptionByDefault": {
                                "SSEAlgorithm": self.settings.server_side_encryption
                            }
                        }
                    ]
                },
            )

        logger.info(f"Bucket {bucket} created successfully")

    def _get_s3_key(self, path: str) -> str:
        """Generate full S3 key with prefix."""
        path = path.lstrip("/")
        prefix = self.settings.prefix.strip("/")
        return f"{prefix}/{path}" if prefix else path

    def _relative_key(self, s3_key: str) -> str:
        """Strip the configured prefix from an S3 key."""
        prefix = self.settings.prefix.strip("/")
        if prefix and s3_key.startswith(f"{prefix}/"):
            return s3_key[len(prefix) + 1 :]
        return s3_key

    def _is_lock_object(self, s3_key: str) -> bool:
        return s3_key.startswith(self.settings.lock_prefix.strip("/") + "/")

    def store(self, key: str, value: bytes) -> None:
        """Upload a value as an object."""
        s3_key = self._get_s3_key(key)
        if self._is_lock_object(s3_key):
            raise StorageIOError(
                f"Key {key} would land among lock objects under "
                f"'{self.settings.lock_prefix}'; use a different prefix or lock_prefix"
            )

        put_kwargs = {
            "Bucket": self.settings.bucket,
            "Key": s3_key,
            "Body": value,
        }
        if self.settings.server_side_encryption:
            put_kwargs["ServerSideEncryption"] = self.settings.server_side_encryption

        try:
            self._client().put_object(**put_kwargs)
        except (ClientError, BotoCoreError) as e:
            raise StorageIOError(f"Failed to store {key} in S3: {e}") from e

        logger.debug(f"Uploaded {key} to s3://{self.settings.bucket}/{put_kwargs['Key']}")

    def load(self, key: str) -> bytes:
        """Download an object."""
        try:
            response = self._client().get_object(
                Bucket=self.settings.bucket,
                Key=self._get_s3_key(key),
            )
            return response["Body"].read()
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise KeyNotFoundError(key) from e
            raise StorageIOError(f"Failed to load {key} from S3: {e}") from e
        except BotoCoreError as e:
            raise StorageIOError(f"Failed to load {key} from S3: {e}") from e

    def delete(self, key: str) -> None:
        """Delete an object.

        Note: If versioning is enabled, this creates a delete marker
        rather than permanently deleting the object.
        """
        try:
            self._client().delete_object(
                Bucket=self.settings.bucket,
                Key=self._get_s3_key(key),
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageIOError(f"Failed to delete {key} from S3: {e}") from e
        logger.debug(f"Deleted {key} from S3")

    def _head(self, key: str, s3_key: str | None = None) -> dict:
        try:
            return self._client().head_object(
                Bucket=self.settings.bucket,
                Key=s3_key or self._get_s3_key(key),
            )
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise KeyNotFoundError(key) from e
            raise StorageIOError(f"Failed to stat {key} in S3: {e}") from e
        except BotoCoreError as e:
            raise StorageIOError(f"Failed to stat {key} in S3: {e}") from e

    def exists(self, key: str) -> bool:
        """Check if an object exists."""
        try:
            self._head(key)
        except KeyNotFoundError:
            return False
        return True

    def stat(self, key: str) -> KeyInfo:
        """Get size and modification time from the object's headers."""
        head = self._head(key)
        return KeyInfo(
            key=key,
            modified=head.get("LastModified"),
            size=head.get("ContentLength", 0),
            is_terminal=True,
        )

    def _lock_key(self, key: str) -> str:
        """Bucket-level key of a lock object (not under prefix)."""
        return f"{self.settings.lock_prefix.strip('/')}/{key.lstrip('/')}.lock"

    def _delete_lock_object(self, lock_key: str) -> None:
        try:
            self._client().delete_object(Bucket=self.settings.bucket, Key=lock_key)
        except (ClientError, BotoCoreError) as e:
            raise StorageIOError(f"Failed to delete lock object {lock_key}: {e}") from e

    def lock(self, key: str) -> None:
        """
        Acquire a lock by creating a lock object that must not exist yet.

        Lock objects older than lock_expiry are deleted and retried.
        """
        lock_key = self._lock_key(key)
        deadline = time.monotonic() + self.settings.lock_timeout

        while True:
            try:
                self._client().put_object(
                    Bucket=self.settings.bucket,
                    Key=lock_key,
                    Body=datetime.now(UTC).isoformat().encode(),
                    IfNoneMatch="*",
                )
            except ClientError as e:
                if _error_code(e) not in LOCK_HELD_CODES:
                    raise LockError(f"Failed to acquire lock on {key}: {e}") from e
                self._break_stale_lock(lock_key)
            except BotoCoreError as e:
                raise LockError(f"Failed to acquire lock on {key}: {e}") from e
            else:
                self._held_locks.add(key)
                logger.debug(f"Acquired lock on {key}")
                return

            if time.monotonic() >= deadline:
                raise LockError(f"Timed out waiting for lock on {key}")
            time.sleep(self.settings.lock_poll_interval)

    def _break_stale_lock(self, lock_key: str) -> None:
        try:
            modified = self._head(lock_key, s3_key=lock_key).get("LastModified")
        except KeyNotFoundError:
            return
        if modified is None:
            return
        age = (datetime.now(UTC) - modified).total_seconds()
        if age > self.settings.lock_expiry:
            logger.warning(f"Removing stale lock {lock_key} ({age:.0f}s old)")
            self._delete_lock_object(lock_key)

    def unlock(self, key: str) -> None:
        """Release a lock held by this instance."""
        if key not in self._held_locks:
            raise LockError(f"Lock on {key} is not held")
        try:
            self._delete_lock_object(self._lock_key(key))
        except StorageIOError as e:
            raise LockError(f"Failed to release lock on {key}: {e}") from e
        self._held_locks.discard(key)
        logger.debug(f"Released lock on {key}")

    def list(self, prefix: str, recursive: bool) -> list[str]:
        """
        List objects with the list_objects_v2 paginator.

        Folder markers (zero-byte "dir/" objects written by consoles and
        sync tools) and lock objects are not keys and are skipped.
        """
        base = prefix.strip("/")
        s3_prefix = self._get_s3_key(f"{base}/" if base else "")

        paginate_kwargs = {"Bucket": self.settings.bucket, "Prefix": s3_prefix}
        if not recursive:
            paginate_kwargs["Delimiter"] = "/"

        keys = []
        try:
            paginator = self._client().get_paginator("list_objects_v2")
            for page in paginator.paginate(**paginate_kwargs):
                for obj in page.get("Contents", []):
                    s3_key = obj["Key"]
                    if s3_key.endswith("/") or self._is_lock_object(s3_key):
                        continue
                    keys.append(self._relative_key(s3_key))
                for common in page.get("CommonPrefixes", []):
                    if self._is_lock_object(common["Prefix"]):
                        continue
                    keys.append(self._relative_key(common["Prefix"]).rstrip("/"))
        except (ClientError, BotoCoreError) as e:
            raise StorageIOError(f"Failed to list '{prefix}' in S3: {e}") from e

        logger.debug(f"Listed {len(keys)} keys with prefix: {s3_prefix}")
        return keys

    def __repr__(self) -> str:
        return f"<S3Storage bucket={self.settings.bucket} prefix={self.settings.prefix}>"
