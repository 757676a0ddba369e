# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3-compatible storage backend (AWS, MinIO, Wasabi).

Uses aiobotocore. Block uploads are mapped onto S3 multipart uploads: the
first staged block opens the multipart upload, each block becomes a part,
and committing the manifest completes the upload with the parts in block
order. An empty manifest is published as a zero-byte object since S3
refuses to complete a multipart upload without parts.
"""

import asyncio
from contextlib import AsyncExitStack, contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Sequence

import structlog
from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from kvsnap.config import MiB, S3Spec
from kvsnap.exceptions import (
    BackendAuthFailed,
    BackendUnavailable,
    ConfigurationError,
    KVSnapError,
)
from kvsnap.storage import StoredObject

logger = structlog.get_logger()

# Multipart limits
S3_MIN_PART_SIZE = 5 * MiB
S3_MAX_PART_SIZE = 5 * 1024 * MiB
S3_MAX_PARTS = 10_000

_AUTH_ERROR_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
    "AllAccessDisabled",
}

_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}


def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


def _status_code(e: ClientError) -> int | None:
    return e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


@contextmanager
def _translate_errors(operation: str, **details: Any) -> Iterator[None]:
    """Map botocore exceptions onto the kvsnap error kinds."""
    try:
        yield
    except KVSnapError:
        raise
    except ClientError as e:
        code = _error_code(e)
        status = _status_code(e)
        info = {"backend": "s3", "operation": operation, "code": code, "status": status, **details}
        if code in _AUTH_ERROR_CODES or status in (401, 403):
            raise BackendAuthFailed(f"S3 {operation} rejected credentials: {e}", details=info) from e
        raise BackendUnavailable(f"S3 {operation} failed: {e}", details=info) from e
    except NoCredentialsError as e:
        raise BackendAuthFailed(
            f"S3 {operation} has no credentials: {e}",
            details={"backend": "s3", "operation": operation, **details},
        ) from e
    except (BotoCoreError, OSError) as e:
        raise BackendUnavailable(
            f"S3 {operation} failed: {e}",
            details={"backend": "s3", "operation": operation, **details},
        ) from e


@dataclass
class _MultipartUpload:
    upload_id: str
    # block_id -> {"PartNumber": n, "ETag": etag}
    parts: Dict[str, Dict[str, Any]] = field(default_factory=dict)


class S3Backend:
    """Store backups as objects in one S3 bucket."""

    name = "s3"
    max_block_size = S3_MAX_PART_SIZE
    min_block_size = S3_MIN_PART_SIZE

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        client_kwargs: Dict[str, Any] | None = None,
        client: Any = None,
    ) -> None:
        self.container = bucket
        self.region = region
        self._client_kwargs = client_kwargs or {}
        self._s3 = client
        self._exit_stack: AsyncExitStack | None = None
        self._client_lock = asyncio.Lock()
        self._uploads: Dict[str, _MultipartUpload] = {}

    @classmethod
    def from_spec(cls, spec: S3Spec) -> "S3Backend":
        kwargs: Dict[str, Any] = {}
        if spec.endpoint_url:
            kwargs["endpoint_url"] = spec.endpoint_url
        if spec.access_key_id:
            kwargs["aws_access_key_id"] = spec.access_key_id
            kwargs["aws_secret_access_key"] = spec.secret_access_key
        return cls(spec.bucket, region=spec.region, client_kwargs=kwargs)

    async def _client(self) -> Any:
        """Return the shared aiobotocore client, creating it on first use."""
        if self._s3 is not None:
            return self._s3
        async with self._client_lock:
            if self._s3 is None:
                stack = AsyncExitStack()
                session = get_session()
                self._s3 = await stack.enter_async_context(
                    session.create_client("s3", region_name=self.region, **self._client_kwargs)
                )
                self._exit_stack = stack
        return self._s3

    async def ensure_container(self, name: str | None = None) -> None:
        bucket = name or self.container
        s3 = await self._client()
        kwargs: Dict[str, Any] = {"Bucket": bucket}
        if self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        with _translate_errors("create_bucket", container=bucket):
            try:
                await s3.create_bucket(**kwargs)
                logger.info("container_created", backend=self.name, container=bucket)
                return
            except ClientError as e:
                if _error_code(e) not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                    raise
        # The name is taken; it only counts as ours if we can reach it
        if not await self.container_exists(bucket):
            raise BackendAuthFailed(
                f"Bucket {bucket} exists but is not accessible",
                details={"backend": self.name, "container": bucket},
            )
        logger.debug("container_exists", backend=self.name, container=bucket)

    async def container_exists(self, name: str | None = None) -> bool:
        bucket = name or self.container
        s3 = await self._client()
        with _translate_errors("head_bucket", container=bucket):
            try:
                await s3.head_bucket(Bucket=bucket)
                return True
            except ClientError as e:
                if _error_code(e) in _MISSING_BUCKET_CODES:
                    return False
                raise

    async def list_keys(self, prefix: str) -> List[StoredObject]:
        s3 = await self._client()
        objects: List[StoredObject] = []
        with _translate_errors("list_objects_v2", prefix=prefix):
            paginator = s3.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.container, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects.append(StoredObject(key=obj["Key"], size=obj.get("Size", 0)))
        objects.sort(key=lambda o: o.key)
        return objects

    async def delete(self, key: str) -> None:
        s3 = await self._client()
        with _translate_errors("delete_object", key=key):
            await s3.delete_object(Bucket=self.container, Key=key)
        logger.info("object_deleted", backend=self.name, container=self.container, key=key)

    async def copy(self, source_key: str, dest_key: str) -> None:
        s3 = await self._client()
        with _translate_errors("copy_object", source_key=source_key, dest_key=dest_key):
            await s3.copy_object(
                Bucket=self.container,
                Key=dest_key,
                CopySource={"Bucket": self.container, "Key": source_key},
            )

    async def stage_block(self, key: str, block_id: str, data: bytes) -> None:
        s3 = await self._client()
        with _translate_errors("upload_part", key=key, block_id=block_id):
            upload = self._uploads.get(key)
            if upload is None:
                response = await s3.create_multipart_upload(Bucket=self.container, Key=key)
                upload = _MultipartUpload(upload_id=response["UploadId"])
                self._uploads[key] = upload

            part_number = len(upload.parts) + 1
            if part_number > S3_MAX_PARTS:
                raise ConfigurationError(
                    f"Upload of {key} exceeds {S3_MAX_PARTS} parts; raise chunk_size",
                    details={"backend": self.name, "key": key},
                )
            response = await s3.upload_part(
                Bucket=self.container,
                Key=key,
                UploadId=upload.upload_id,
                PartNumber=part_number,
                Body=data,
            )
            upload.parts[block_id] = {"PartNumber": part_number, "ETag": response["ETag"]}

    async def commit_blocks(self, key: str, block_ids: Sequence[str]) -> None:
        s3 = await self._client()
        upload = self._uploads.get(key)
        with _translate_errors("complete_multipart_upload", key=key, blocks=len(block_ids)):
            if not block_ids:
                await s3.put_object(Bucket=self.container, Key=key, Body=b"")
            else:
                if upload is None:
                    raise ValueError(f"No staged blocks for {key}")
                parts = [upload.parts[block_id] for block_id in block_ids]
                await s3.complete_multipart_upload(
                    Bucket=self.container,
                    Key=key,
                    UploadId=upload.upload_id,
                    MultipartUpload={"Parts": parts},
                )
                self._uploads.pop(key, None)
                return
        if upload is not None:
            await self.abort_upload(key)

    async def abort_upload(self, key: str) -> None:
        upload = self._uploads.pop(key, None)
        if upload is None:
            return
        s3 = await self._client()
        with _translate_errors("abort_multipart_upload", key=key):
            await s3.abort_multipart_upload(
                Bucket=self.container,
                Key=key,
                UploadId=upload.upload_id,
            )
        logger.debug("upload_aborted", backend=self.name, key=key, upload_id=upload.upload_id)

    async def close(self) -> None:
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
            self._exit_stack = None
            self._s3 = None
