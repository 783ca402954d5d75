"""
Artifact storage for produced DOCX and PDF files.

This module provides two interchangeable backends:
- LocalArtifactStore: files under a directory, served by the API at /files/<name>
- S3ArtifactStore: objects in an S3 bucket, exposed through presigned URLs

Both expose ``save(name, data) -> location``, ``read(location)`` and
``url_for(location)``. Locations are opaque strings recorded on the job;
URLs are derived from them each time a status is reported, so presigned
URLs never go stale in the job record.

The S3 bucket name is configured via the S3_BUCKET_NAME environment variable.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .configuration import Settings
from .errors import StorageError
from .utils import ensure_directory

logger = logging.getLogger(__name__)

S3_SCHEME = "s3://"

CONTENT_TYPES = {
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".pdf": "application/pdf",
}


class ArtifactStore(Protocol):
    def save(self, name: str, data: bytes) -> str:
        ...

    def read(self, location: str) -> bytes:
        ...

    def url_for(self, location: str) -> str:
        ...


def content_type_for(name: str) -> str:
    return CONTENT_TYPES.get(Path(name).suffix.lower(), "application/octet-stream")


class LocalArtifactStore:
    """
    Stores artifacts as files in a single directory.

    Writes go to a temporary sibling file first and are then renamed, so a
    reader never sees a half-written artifact and a retried job simply
    overwrites its earlier output.
    """

    def __init__(self, root: Path, base_public_url: str) -> None:
        self.root = ensure_directory(Path(root)).resolve()
        self.base_public_url = base_public_url.rstrip("/")

    def path_for(self, name: str) -> Path:
        path = (self.root / name).resolve()
        if path.parent != self.root:
            raise StorageError(f"Invalid artifact name: {name}")
        return path

    def save(self, name: str, data: bytes) -> str:
        path = self.path_for(name)
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {name}: {exc}") from exc
        logger.info(f"Stored artifact {path} ({len(data)} bytes)")
        return name

    def read(self, location: str) -> bytes:
        path = self.path_for(location)
        if not path.is_file():
            raise FileNotFoundError(f"Artifact not found: {location}")
        return path.read_bytes()

    def exists(self, location: str) -> bool:
        try:
            return self.path_for(location).is_file()
        except StorageError:
            return False

    def url_for(self, location: str) -> str:
        return f"{self.base_public_url}/files/{quote(location)}"


class S3ArtifactStore:
    """
    Stores artifacts as S3 objects under a key prefix.

    Locations have the form ``s3://<bucket>/<key>``; ``url_for`` returns a
    presigned GET URL valid for ``expiration`` seconds.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        expiration: int = 3600,
        client=None,
    ) -> None:
        if not bucket:
            raise StorageError("S3_BUCKET_NAME not configured")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.expiration = expiration
        self._client = client

    def _get_s3_client(self):
        """
        Get or create the S3 client.

        Note:
            Credentials are not checked here; credential errors surface
            during the first upload.
        """
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def _key(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    def _split_location(self, location: str) -> str:
        if not location.startswith(S3_SCHEME):
            raise StorageError(f"Not an S3 location: {location}")
        bucket, _, key = location[len(S3_SCHEME):].partition("/")
        if bucket != self.bucket or not key:
            raise StorageError(f"Location outside bucket {self.bucket}: {location}")
        return key

    def save(self, name: str, data: bytes) -> str:
        key = self._key(name)
        try:
            logger.info(f"Uploading {name} to s3://{self.bucket}/{key}")
            self._get_s3_client().put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type_for(name),
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"S3 upload failed: {exc}")
            raise StorageError(f"Failed to upload {name}: {exc}") from exc
        return f"{S3_SCHEME}{self.bucket}/{key}"

    def read(self, location: str) -> bytes:
        key = self._split_location(location)
        try:
            response = self._get_s3_client().get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            raise FileNotFoundError(f"Artifact not found: {location}") from exc
        return response["Body"].read()

    def url_for(self, location: str) -> str:
        key = self._split_location(location)
        try:
            url = self._get_s3_client().generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.expiration,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to generate presigned URL: {exc}")
            raise StorageError(f"Failed to sign {location}: {exc}") from exc
        return url


def build_artifact_store(settings: Settings, client=None) -> ArtifactStore:
    """Create the artifact store selected by ``storage.backend``."""
    if settings.storage_backend == "s3":
        return S3ArtifactStore(
            bucket=settings.s3_bucket,
            prefix=settings.s3_prefix,
            expiration=settings.presign_expiration,
            client=client,
        )
    if settings.storage_backend != "local":
        raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
    return LocalArtifactStore(settings.output_dir, settings.base_public_url)
