"""Versioned secret storage on an S3 bucket with object versioning enabled.

Each secret is one object key; each write creates a new object version.
Destroying a version permanently deletes it (``DeleteObject`` with a
``VersionId``), after which S3 serves the next newest version as current.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from src.config import Settings

logger = logging.getLogger("scalesync.secrets")

_MISSING_CODES = {"NoSuchKey", "NoSuchVersion", "404"}


class SecretNotFoundError(LookupError):
    """Raised when a secret has no live version."""


class SecretStore(ABC):
    """Versioned secret storage used by the credential rotation protocol."""

    @abstractmethod
    async def get_latest_version(self, name: str) -> bytes:
        """Return the newest live version's payload.

        Raises:
            SecretNotFoundError: If no live version exists.
        """

    @abstractmethod
    async def add_version(self, name: str, data: bytes) -> str:
        """Store ``data`` as a new version and return its version id."""

    @abstractmethod
    async def list_versions(self, name: str) -> list[str]:
        """Return the ids of every non-destroyed version, newest first."""

    @abstractmethod
    async def destroy_version(self, name: str, version_id: str) -> None:
        """Permanently destroy one version."""


def create_s3_client(settings: Settings):
    """Build the boto3 S3 client for the secret bucket."""
    kwargs = {}
    if settings.secret_endpoint_url:
        kwargs["endpoint_url"] = settings.secret_endpoint_url
    if settings.secret_access_key_id:
        kwargs["aws_access_key_id"] = settings.secret_access_key_id
        kwargs["aws_secret_access_key"] = settings.secret_secret_access_key
    return boto3.client(
        "s3",
        region_name=settings.secret_region,
        config=BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
        ),
        **kwargs,
    )


class S3SecretStore(SecretStore):
    """SecretStore backed by a versioned S3 bucket."""

    def __init__(self, bucket: str, client) -> None:
        self._bucket = bucket
        self._client = client

    async def get_latest_version(self, name: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=name)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                raise SecretNotFoundError(f"No live version of secret {name!r}") from exc
            raise
        return response["Body"].read()

    async def add_version(self, name: str, data: bytes) -> str:
        response = self._client.put_object(
            Bucket=self._bucket,
            Key=name,
            Body=data,
            ContentType="application/json",
            ServerSideEncryption="AES256",
        )
        version_id = response.get("VersionId")
        if not version_id or version_id == "null":
            raise RuntimeError(
                f"Bucket {self._bucket!r} did not return a version id; is versioning enabled?"
            )
        logger.info("Added secret version %s for %s (%d bytes)", version_id, name, len(data))
        return version_id

    async def list_versions(self, name: str) -> list[str]:
        paginator = self._client.get_paginator("list_object_versions")
        version_ids: list[str] = []
        for page in paginator.paginate(Bucket=self._bucket, Prefix=name):
            for version in page.get("Versions", []):
                # Prefix also matches longer keys
                if version["Key"] == name:
                    version_ids.append(version["VersionId"])
        return version_ids

    async def destroy_version(self, name: str, version_id: str) -> None:
        self._client.delete_object(Bucket=self._bucket, Key=name, VersionId=version_id)
        logger.info("Destroyed secret version %s for %s", version_id, name)
