from __future__ import annotations

import base64
import logging
from typing import Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import BadRequestError, StorageError

logger = logging.getLogger(__name__)


def parse_base64_data(data: str) -> bytes:
    """
    Accepts raw base64 or a data URL (e.g., 'data:application/pdf;base64,....').
    Returns decoded bytes.
    """
    if "," in data and data.lower().startswith("data:"):
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except ValueError as exc:
        raise BadRequestError("File content is not valid base64") from exc


class ObjectStorage:
    """S3-backed object store for client documents.

    With ``mock_storage`` enabled nothing is written; keys are still returned
    so the rest of the workflow can run without AWS credentials.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._s3 = None

    @property
    def mock(self) -> bool:
        return self.settings.mock_storage

    def _client(self):
        if self._s3 is None:
            s = self.settings
            session = boto3.session.Session()
            kwargs = {
                "region_name": s.aws_region,
                "aws_access_key_id": s.aws_key,
                "aws_secret_access_key": s.aws_secret,
                "config": Config(signature_version="s3v4"),
            }
            if s.s3_endpoint:
                kwargs["endpoint_url"] = s.s3_endpoint
            self._s3 = session.client("s3", **kwargs)
        return self._s3

    def _bucket(self) -> str:
        if not self.settings.s3_bucket:
            raise StorageError("S3_BUCKET env is not set")
        return self.settings.s3_bucket

    def put(self, key: str, data: bytes, content_type: Optional[str] = None, metadata: Optional[Dict[str, str]] = None) -> str:
        if self.mock:
            logger.info("[storage] mock put %s (%s bytes)", key, len(data))
            return key
        extra = {"ServerSideEncryption": "AES256"}
        if content_type:
            extra["ContentType"] = content_type
        if metadata:
            extra["Metadata"] = {k: str(v) for k, v in metadata.items() if v is not None}
        try:
            self._client().put_object(Bucket=self._bucket(), Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as exc:
            logger.error("[storage] upload failed for %s: %s", key, exc)
            raise StorageError(f"Failed to store {key}") from exc
        logger.info("[storage] uploaded %s (%s bytes)", key, len(data))
        return key

    def signed_url(self, key: str, ttl: Optional[int] = None) -> str:
        if self.mock:
            return f"mock://{key}"
        try:
            return self._client().generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket(), "Key": key},
                ExpiresIn=ttl or self.settings.signed_url_ttl_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("[storage] could not sign %s: %s", key, exc)
            raise StorageError(f"Failed to sign {key}") from exc

    def delete(self, key: str) -> None:
        if self.mock:
            return
        try:
            self._client().delete_object(Bucket=self._bucket(), Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to delete {key}") from exc

    def list(self, prefix: str) -> List[str]:
        if self.mock:
            return []
        keys: List[str] = []
        try:
            paginator = self._client().get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket(), Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to list {prefix}") from exc
        return keys
