#!/usr/bin/env python3
# CUI // SP-CTI
"""Object Storage — bucket bootstrap and bucket-policy transport.

Talks to the provider's S3-compatible endpoint (Scaleway Object Storage,
Exoscale SOS) through boto3 with path-style addressing.

Bucket-policy updates are read-modify-write. Concurrent writers to the same
bucket would drop each other's statements, so apply_bucket_statement holds a
per-(endpoint, bucket) lock for the whole cycle. The lock is process-local.
"""

import json
import logging
import threading
from typing import Dict, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from proprion.cloud.policy import merge_bucket_policy
from proprion.errors import ConfigurationError, ProtocolError, StorageError, TransportError

logger = logging.getLogger("proprion.cloud.storage")

NO_POLICY_ERROR_CODES = {"NoSuchBucketPolicy"}

_BUCKET_LOCKS: Dict[Tuple[str, str], threading.Lock] = {}
_BUCKET_LOCKS_GUARD = threading.Lock()


def bucket_lock(endpoint: str, bucket: str) -> threading.Lock:
    """Return the lock serializing policy writes to one bucket."""
    with _BUCKET_LOCKS_GUARD:
        return _BUCKET_LOCKS.setdefault((endpoint, bucket), threading.Lock())


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class ObjectStorage:
    """S3-compatible bucket operations for one provider endpoint.

    Args:
        endpoint: S3 endpoint URL (e.g. https://sos-de-fra-1.exo.io).
        region: Region or zone name, used as the signing region.
        access_key / secret_key: Provider credentials.
        client: Pre-built boto3 S3 client; for tests.
    """

    def __init__(self, endpoint: str, region: str, access_key: str = "",
                 secret_key: str = "", client=None):
        self._endpoint = endpoint
        self._region = region
        if client is None:
            try:
                client = boto3.client(
                    "s3",
                    endpoint_url=endpoint,
                    region_name=region,
                    aws_access_key_id=access_key,
                    aws_secret_access_key=secret_key,
                    config=BotoConfig(s3={"addressing_style": "path"}),
                )
            except (BotoCoreError, ValueError) as exc:
                raise ConfigurationError(
                    f"Cannot build S3 client for {endpoint} (region '{region}'): {exc}",
                    config_key="region") from exc
        self._client = client

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def ensure_bucket(self, bucket: str) -> bool:
        """Create the bucket unless it already exists and is listable.

        Returns:
            True if the bucket was created, False if it already existed.
        """
        try:
            self._client.list_objects_v2(Bucket=bucket, Delimiter="/", MaxKeys=1)
            logger.info("Bucket %s exists on %s", bucket, self._endpoint)
            return False
        except ClientError as exc:
            logger.info("Bucket %s not listable (%s) — creating", bucket, _error_code(exc))
        except BotoCoreError as exc:
            raise TransportError(f"Listing bucket {bucket} failed: {exc}",
                                 service="storage") from exc

        try:
            self._client.create_bucket(Bucket=bucket)
        except ClientError as exc:
            raise StorageError(f"Failed to create bucket {bucket}: {exc}",
                               service="storage") from exc
        except BotoCoreError as exc:
            raise TransportError(f"Creating bucket {bucket} failed: {exc}",
                                 service="storage") from exc
        logger.info("Bucket %s created on %s", bucket, self._endpoint)
        return True

    def get_bucket_policy(self, bucket: str) -> Optional[Dict]:
        """Current policy document, or None when the bucket has no policy."""
        try:
            resp = self._client.get_bucket_policy(Bucket=bucket)
        except ClientError as exc:
            if _error_code(exc) in NO_POLICY_ERROR_CODES:
                return None
            raise StorageError(f"Failed to read policy of bucket {bucket}: {exc}",
                               service="storage") from exc
        except BotoCoreError as exc:
            raise TransportError(f"Reading policy of bucket {bucket} failed: {exc}",
                                 service="storage") from exc

        raw = resp.get("Policy")
        if not raw:
            return None
        try:
            document = json.loads(raw)
        except ValueError as exc:
            raise ProtocolError(f"Policy of bucket {bucket} is not valid JSON",
                                service="storage") from exc
        if not isinstance(document, dict):
            raise ProtocolError(f"Policy of bucket {bucket} is not a JSON object",
                                service="storage")
        return document

    def put_bucket_policy(self, bucket: str, document: Dict) -> None:
        try:
            self._client.put_bucket_policy(Bucket=bucket, Policy=json.dumps(document, separators=(",", ":")))
        except ClientError as exc:
            raise StorageError(f"Failed to apply bucket policy to {bucket}: {exc}",
                               service="storage") from exc
        except BotoCoreError as exc:
            raise TransportError(f"Writing policy of bucket {bucket} failed: {exc}",
                                 service="storage") from exc

    def apply_bucket_statement(self, bucket: str, statement: Dict) -> Dict:
        """Insert or replace one statement (by Sid) in the bucket policy.

        Returns:
            The document that was written.
        """
        with bucket_lock(self._endpoint, bucket):
            existing = self.get_bucket_policy(bucket)
            document = merge_bucket_policy(existing, statement)
            self.put_bucket_policy(bucket, document)
        logger.info("Bucket policy of %s updated: Sid=%s (%d statement(s))",
                    bucket, statement.get("Sid"), len(document["Statement"]))
        return document
