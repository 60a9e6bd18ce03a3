"""Append-only persistence of mapping audit trails in S3-compatible storage.

Each processing run writes one new JSON object holding the run's audit rows:

    audit/<document_id>/<timestamp>-<uuid>.json

Objects are never overwritten or updated, so a document's history is the list
of objects under its prefix. Persistence failures are reported through
``StorageResult`` and never raised, so they cannot affect a mapping result.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import json
import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ledgerflow.mapping.schema import AuditLogEntry
from ledgerflow.shared.config import Settings

logger = logging.getLogger(__name__)

AUDIT_PREFIX = "audit"


class StorageResult(BaseModel):
    """Result of storage operation.

    Attributes:
        success: Whether operation succeeded
        object_name: Full object path in storage
        bucket: Bucket name
        error: Error message if operation failed
        etag: Object ETag (hash) if available
        size: Object size in bytes if available
        records: Number of audit rows written
    """

    success: bool
    object_name: str | None = None
    bucket: str | None = None
    error: str | None = None
    etag: str | None = None
    size: int | None = None
    records: int = 0


class AuditTrailStore:
    """Writes audit trails to a MinIO (or other S3-compatible) bucket."""

    def __init__(self, settings: Settings, client: Minio | None = None) -> None:
        """Initialize the store.

        Args:
            settings: Application settings with storage configuration
            client: Pre-built MinIO client (created lazily if omitted)
        """
        self.settings = settings
        self.bucket = settings.storage_bucket
        self._client = client
        self._bucket_ready = False

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Raises:
            ValueError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key or not self.settings.storage_secret_key:
                raise ValueError(
                    "Storage credentials not configured. "
                    "Set APP_STORAGE_ACCESS_KEY and APP_STORAGE_SECRET_KEY environment variables."
                )
            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")
        return self._client

    def is_available(self) -> bool:
        """True if audit storage is enabled and credentials are set."""
        if not self.settings.storage_enabled:
            return False
        return self._client is not None or bool(
            self.settings.storage_access_key and self.settings.storage_secret_key
        )

    def health_check(self) -> bool:
        if not self.is_available():
            return False
        try:
            self._get_client().list_buckets()
            return True
        except Exception as e:
            logger.warning(f"Audit storage health check failed: {e}")
            return False

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        client = self._get_client()
        if not client.bucket_exists(self.bucket):
            client.make_bucket(self.bucket)
            logger.info(f"Created bucket: {self.bucket}")
        self._bucket_ready = True

    @staticmethod
    def object_name_for(document_id: str, now: datetime | None = None) -> str:
        """Unique object name for one run's audit rows."""
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%S%fZ")
        return f"{AUDIT_PREFIX}/{document_id}/{stamp}-{uuid.uuid4().hex}.json"

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put(self, object_name: str, payload: bytes) -> Any:
        self._ensure_bucket()
        return self._get_client().put_object(
            bucket_name=self.bucket,
            object_name=object_name,
            data=io.BytesIO(payload),
            length=len(payload),
            content_type="application/json",
        )

    def save(self, document_id: str, entries: Sequence[AuditLogEntry]) -> StorageResult:
        """Persist one run's audit entries as a new object.

        Args:
            document_id: Document the entries belong to
            entries: Audit entries in decision order

        Returns:
            StorageResult describing the write; failures are reported, not raised
        """
        if not entries:
            return StorageResult(success=True, bucket=self.bucket, records=0)

        object_name = self.object_name_for(document_id)
        records = [entry.to_record(document_id) for entry in entries]
        payload = json.dumps(records, default=str).encode("utf-8")

        try:
            result = self._put(object_name, payload)
        except S3Error as e:
            logger.error(f"S3 error saving audit trail {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=self.bucket,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error saving audit trail {object_name}: {e}")
            return StorageResult(
                success=False, object_name=object_name, bucket=self.bucket, error=str(e)
            )

        logger.info(f"Saved {len(records)} audit entries to {self.bucket}/{object_name}")
        etag = getattr(result, "etag", None)
        return StorageResult(
            success=True,
            object_name=object_name,
            bucket=self.bucket,
            etag=str(etag) if etag is not None else None,
            size=len(payload),
            records=len(records),
        )

    def load(self, document_id: str) -> list[dict[str, Any]]:
        """Read back every persisted audit row for a document, oldest run first."""
        client = self._get_client()
        rows: list[dict[str, Any]] = []
        objects = client.list_objects(
            self.bucket, prefix=f"{AUDIT_PREFIX}/{document_id}/", recursive=True
        )
        for obj in sorted(objects, key=lambda o: o.object_name):
            response = client.get_object(self.bucket, obj.object_name)
            try:
                rows.extend(json.loads(response.read()))
            finally:
                response.close()
                response.release_conn()
        return rows
