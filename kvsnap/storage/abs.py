# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Azure Blob Storage backend.

Uses the async azure-storage-blob client. Uploads map directly onto block
blobs: each chunk is a staged block and the manifest is a committed block
list, so a failed upload never becomes visible. Uncommitted blocks are
garbage-collected by the service itself after a week.

Also provides the container SAS helpers used to hand out scoped tokens.
"""

import asyncio
from contextlib import contextmanager
from datetime import datetime, timedelta, UTC
from typing import Any, Iterator, List, Sequence

import structlog
from azure.core.credentials import AzureNamedKeyCredential
from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.storage.blob import BlobBlock, ContainerSasPermissions, generate_container_sas
from azure.storage.blob.aio import BlobServiceClient

from kvsnap.config import ABSSpec, MiB
from kvsnap.exceptions import BackendAuthFailed, BackendUnavailable, KVSnapError
from kvsnap.storage import StoredObject

logger = structlog.get_logger()

# Block size limit of the Put Block operation on older service versions
ABS_MAX_BLOCK_SIZE = 100 * MiB

# Default lifetime of issued container tokens
DEFAULT_SAS_EXPIRY = timedelta(days=5 * 365)

# Seconds between polls of a pending server-side copy
COPY_POLL_INTERVAL = 1.0


def normalize_sas_token(token: str) -> str:
    """
    Return the bare SAS query string.

    Accepts a bare token, a token with a leading '?', or a full container
    URI pasted from the portal.
    """
    token = token.strip()
    index = token.find("?")
    if index != -1:
        token = token[index + 1 :]
    return token


def generate_sas_token(
    container: str,
    account_name: str,
    account_key: str,
    *,
    expiry: datetime | None = None,
    start: datetime | None = None,
) -> str:
    """
    Issue a container-scoped SAS token for backup writers.

    The token grants read, write, delete, list, add and create on the
    container, over HTTPS only.

    Args:
        container: Container the token is scoped to
        account_name: Storage account name
        account_key: Storage account key used to sign the token
        expiry: Expiry time (default: five years from now)
        start: Optional start time

    Returns:
        The bare token (no leading '?')
    """
    permission = ContainerSasPermissions(
        read=True,
        write=True,
        delete=True,
        list=True,
        add=True,
        create=True,
    )
    token = generate_container_sas(
        account_name=account_name,
        container_name=container,
        account_key=account_key,
        permission=permission,
        expiry=expiry or datetime.now(UTC) + DEFAULT_SAS_EXPIRY,
        start=start,
        protocol="https",
    )
    return normalize_sas_token(token)


def _account_url(spec: ABSSpec) -> str:
    if spec.endpoint_url:
        return spec.endpoint_url.rstrip("/")
    return f"https://{spec.account_name}.blob.core.windows.net"


@contextmanager
def _translate_errors(operation: str, **details: Any) -> Iterator[None]:
    """Map azure-core exceptions onto the kvsnap error kinds."""
    try:
        yield
    except KVSnapError:
        raise
    except ClientAuthenticationError as e:
        raise BackendAuthFailed(
            f"ABS {operation} rejected credentials: {e}",
            details={"backend": "abs", "operation": operation, **details},
        ) from e
    except AzureError as e:
        status = getattr(e, "status_code", None)
        if status in (401, 403):
            raise BackendAuthFailed(
                f"ABS {operation} forbidden: {e}",
                details={"backend": "abs", "operation": operation, "status": status, **details},
            ) from e
        raise BackendUnavailable(
            f"ABS {operation} failed: {e}",
            details={"backend": "abs", "operation": operation, "status": status, **details},
        ) from e
    except OSError as e:
        raise BackendUnavailable(
            f"ABS {operation} failed: {e}",
            details={"backend": "abs", "operation": operation, **details},
        ) from e


class AzureBlobBackend:
    """Store backups as block blobs in one Azure container."""

    name = "abs"
    max_block_size = ABS_MAX_BLOCK_SIZE
    min_block_size = 1

    def __init__(self, service: BlobServiceClient, container: str) -> None:
        self.container = container
        self._service = service
        self._container = service.get_container_client(container)

    @classmethod
    def from_spec(cls, spec: ABSSpec) -> "AzureBlobBackend":
        """Build a backend from an ABS spec, preferring the SAS token if present."""
        credential: Any
        if spec.sas_token:
            credential = normalize_sas_token(spec.sas_token)
        else:
            credential = AzureNamedKeyCredential(spec.account_name, spec.account_key or "")
        service = BlobServiceClient(account_url=_account_url(spec), credential=credential)
        return cls(service, spec.container)

    def _container_client(self, name: str | None) -> Any:
        if name is None or name == self.container:
            return self._container
        return self._service.get_container_client(name)

    async def ensure_container(self, name: str | None = None) -> None:
        client = self._container_client(name)
        container = name or self.container
        with _translate_errors("create_container", container=container):
            try:
                await client.create_container()
                logger.info("container_created", backend=self.name, container=container)
            except ResourceExistsError:
                logger.debug("container_exists", backend=self.name, container=container)

    async def container_exists(self, name: str | None = None) -> bool:
        client = self._container_client(name)
        with _translate_errors("container_exists", container=name or self.container):
            return await client.exists()

    async def list_keys(self, prefix: str) -> List[StoredObject]:
        objects: List[StoredObject] = []
        with _translate_errors("list_blobs", prefix=prefix):
            async for blob in self._container.list_blobs(name_starts_with=prefix):
                objects.append(StoredObject(key=blob.name, size=blob.size or 0))
        objects.sort(key=lambda o: o.key)
        return objects

    async def delete(self, key: str) -> None:
        blob = self._container.get_blob_client(key)
        with _translate_errors("delete_blob", key=key):
            try:
                await blob.delete_blob()
            except ResourceNotFoundError:
                logger.warning("blob_already_deleted", backend=self.name, key=key)
                return
        logger.info("blob_deleted", backend=self.name, container=self.container, key=key)

    async def copy(self, source_key: str, dest_key: str) -> None:
        source = self._container.get_blob_client(source_key)
        dest = self._container.get_blob_client(dest_key)
        with _translate_errors("copy_blob", source_key=source_key, dest_key=dest_key):
            result = await dest.start_copy_from_url(source.url)
            status = result.get("copy_status")
            while status == "pending":
                await asyncio.sleep(COPY_POLL_INTERVAL)
                props = await dest.get_blob_properties()
                status = props.copy.status
        if status != "success":
            raise BackendUnavailable(
                f"ABS copy ended with status {status!r}",
                details={"backend": self.name, "source_key": source_key, "dest_key": dest_key},
            )

    async def stage_block(self, key: str, block_id: str, data: bytes) -> None:
        blob = self._container.get_blob_client(key)
        with _translate_errors("stage_block", key=key, block_id=block_id):
            await blob.stage_block(block_id=block_id, data=data, length=len(data))

    async def commit_blocks(self, key: str, block_ids: Sequence[str]) -> None:
        blob = self._container.get_blob_client(key)
        with _translate_errors("commit_block_list", key=key, blocks=len(block_ids)):
            await blob.commit_block_list([BlobBlock(block_id=b) for b in block_ids])

    async def abort_upload(self, key: str) -> None:
        # Uncommitted blocks expire on the service side
        logger.debug("upload_abandoned", backend=self.name, key=key)

    async def close(self) -> None:
        await self._service.close()
