# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3-compatible storage adapter built on aiobotocore.

Config keys: bucket, region, endpoint_url, access_key_id,
secret_access_key, prefix. Clients are created per operation via the
session's context manager.
"""

from pathlib import Path
from typing import Any, List

import aiofiles
import structlog
from botocore.exceptions import ClientError

from dbrestore.adapters.base import (
    Capability,
    ConnectionTestResult,
    FileInfo,
    ProgressCallback,
)
from dbrestore.config import AdapterKind

logger = structlog.get_logger()

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3StorageAdapter:
    """Stores backups in an S3 (or S3-compatible) bucket."""

    id = "s3"
    name = "Amazon S3"
    kind = AdapterKind.STORAGE
    capabilities = frozenset({Capability.READ})

    def __init__(self, session: Any = None):
        self._session = session

    def _get_session(self) -> Any:
        if self._session is None:
            from aiobotocore.session import get_session

            self._session = get_session()
        return self._session

    def _client(self, config: dict) -> Any:
        return self._get_session().create_client(
            "s3",
            region_name=config.get("region", "us-east-1"),
            endpoint_url=config.get("endpoint_url"),
            aws_access_key_id=config.get("access_key_id"),
            aws_secret_access_key=config.get("secret_access_key"),
        )

    @staticmethod
    def _key(config: dict, remote_path: str) -> str:
        prefix = (config.get("prefix") or "").strip("/")
        path = remote_path.lstrip("/")
        return f"{prefix}/{path}" if prefix else path

    async def list(self, config: dict, directory: str) -> List[FileInfo]:
        files: List[FileInfo] = []
        prefix = self._key(config, directory)
        if prefix and not prefix.endswith("/"):
            prefix += "/"

        async with self._client(config) as client:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=config["bucket"], Prefix=prefix):
                for obj in page.get("Contents", []):
                    files.append(
                        FileInfo(
                            name=obj["Key"].rsplit("/", 1)[-1],
                            path=obj["Key"],
                            size=obj["Size"],
                            last_modified=obj["LastModified"],
                        )
                    )
        return files

    async def download(
        self,
        config: dict,
        remote_path: str,
        local_path: str,
        on_progress: ProgressCallback | None = None,
    ) -> bool:
        key = self._key(config, remote_path)
        try:
            async with self._client(config) as client:
                response = await client.get_object(Bucket=config["bucket"], Key=key)
                total = response.get("ContentLength") or 0
                received = 0
                Path(local_path).parent.mkdir(parents=True, exist_ok=True)

                async with response["Body"] as stream, aiofiles.open(
                    local_path, "wb"
                ) as f:
                    while chunk := await stream.read(64 * 1024):
                        await f.write(chunk)
                        received += len(chunk)
                        if on_progress and total:
                            on_progress(received / total * 100)
            return True

        except (ClientError, OSError) as e:
            logger.error("s3_download_failed", key=key, error=str(e))
            return False

    async def upload(self, config: dict, local_path: str, remote_path: str) -> bool:
        key = self._key(config, remote_path)
        try:
            async with aiofiles.open(local_path, "rb") as f:
                body = await f.read()
            async with self._client(config) as client:
                await client.put_object(Bucket=config["bucket"], Key=key, Body=body)
            return True

        except (ClientError, OSError) as e:
            logger.error("s3_upload_failed", key=key, error=str(e))
            return False

    async def delete(self, config: dict, remote_path: str) -> bool:
        # S3 DeleteObject succeeds for missing keys
        key = self._key(config, remote_path)
        try:
            async with self._client(config) as client:
                await client.delete_object(Bucket=config["bucket"], Key=key)
            return True

        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return True
            logger.error("s3_delete_failed", key=key, error=str(e))
            return False

    async def read(self, config: dict, remote_path: str) -> str | None:
        key = self._key(config, remote_path)
        try:
            async with self._client(config) as client:
                response = await client.get_object(Bucket=config["bucket"], Key=key)
                async with response["Body"] as stream:
                    return (await stream.read()).decode("utf-8")

        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise

    async def test(self, config: dict) -> ConnectionTestResult:
        try:
            async with self._client(config) as client:
                await client.head_bucket(Bucket=config["bucket"])
            return ConnectionTestResult(True, f"Bucket accessible: {config['bucket']}")
        except ClientError as e:
            return ConnectionTestResult(False, f"Bucket check failed: {e}")
