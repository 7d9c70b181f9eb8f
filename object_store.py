"""
Object storage access.

Key layout used by the web app:

    mods/<discord_id>/<name>.zip
    config/<discord_id>/<file>
    valheim-backups-auto/<discord_id>/<file>
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

import boto3
from botocore.exceptions import ClientError

from errors import NotFoundError

_log = logging.getLogger(__name__)

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class ObjectStore(ABC):
    """Read-only view of the bucket the web app uploads into.

    Implementations: S3ObjectStore.
    """

    @abstractmethod
    def fetch(self, key: str) -> bytes:
        """Return the object's bytes. Raises NotFoundError if the key is absent."""

    def download(self, key: str, path: Path) -> int:
        """Write the object to ``path`` (overwriting) and return its size.

        The parent directory must already exist.
        """
        body = self.fetch(key)
        _log.info("creating file with name: %s in %s", path.name, path)
        path.write_bytes(body)
        return len(body)


class S3ObjectStore(ObjectStore):
    def __init__(self, bucket_name: str, client=None):
        self.bucket_name = bucket_name
        self._client = client or boto3.client("s3")

    def fetch(self, key: str) -> bytes:
        try:
            result = self._client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _MISSING_CODES:
                _log.warning("can't get object %s from bucket %s. no such key exists", key, self.bucket_name)
                raise NotFoundError(key, self.bucket_name) from exc
            _log.error("failed to get object %s:%s err: %s", self.bucket_name, key, exc)
            raise
        body = result["Body"]
        try:
            return body.read()
        finally:
            body.close()
