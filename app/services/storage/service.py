import logging
from typing import Any

from starlette.concurrency import run_in_threadpool

from app.core.errors import StorageError
from app.core.settings import settings
from app.services.storage.adapter import GCSStorageAdapter, LocalFileSystemAdapter, StorageAdapter

logger = logging.getLogger(__name__)


def get_storage_adapter() -> StorageAdapter:
    provider = settings.storage_provider

    if provider == "gcs":
        if not settings.gcs_bucket:
            raise StorageError("GCS bucket is not configured", code="storage_not_configured")
        return GCSStorageAdapter(bucket=settings.gcs_bucket)

    return LocalFileSystemAdapter(
        base_path=settings.local_upload_dir,
        base_url=settings.public_base_url,
        signing_key=settings.secret_key,
        api_prefix=settings.api_prefix,
    )


async def put_object(
    adapter: StorageAdapter, object_key: str, content: bytes, content_type: str
) -> str:
    try:
        return await run_in_threadpool(adapter.put_object, object_key, content, content_type)
    except Exception as exc:
        logger.error("Object upload failed", extra={"storage_key": object_key}, exc_info=True)
        raise StorageError("Failed to store file", details={"storage_key": object_key}) from exc


async def delete_object(adapter: StorageAdapter, object_key: str) -> None:
    try:
        await run_in_threadpool(adapter.delete_object, object_key)
    except Exception as exc:
        raise StorageError("Failed to delete file", details={"storage_key": object_key}) from exc


async def generate_download_url(
    adapter: StorageAdapter, object_key: str, expires_in: int | None = None
) -> str:
    expiry = expires_in or settings.signed_url_expiry_seconds
    try:
        return await run_in_threadpool(adapter.generate_download_url, object_key, expiry)
    except Exception as exc:
        logger.error("Download URL generation failed", extra={"storage_key": object_key}, exc_info=True)
        raise StorageError(
            "Failed to generate download URL", details={"storage_key": object_key}
        ) from exc


async def check_storage() -> dict[str, Any]:
    try:
        adapter = get_storage_adapter()
        info = await run_in_threadpool(adapter.check)
    except Exception as exc:
        return {"status": "error", "error": str(exc)}
    return {"status": "ok", **info}
