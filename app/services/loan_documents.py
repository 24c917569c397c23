from __future__ import annotations

import logging
from typing import Sequence

from fastapi import UploadFile
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import (
    DatabaseError,
    DocumentNotFoundError,
    LoanNotFoundError,
    LoanValidationError,
    StorageError,
)
from app.core.settings import settings
from app.models.loan_application import LoanApplication
from app.models.uploaded_document import DOCUMENT_TYPES, UploadedDocument
from app.schemas.documents import (
    DocumentOut,
    DownloadUrlResponse,
    FailedFileResult,
    UploadDocumentsResponse,
    UploadedFileResult,
)
from app.services.audit import record_user_action
from app.services.storage import service as storage_service
from app.services.storage.adapter import StorageAdapter
from app.services.storage.key_generator import KeyGenerator
from app.services.upload_validation import (
    UploadRejected,
    ValidatedUpload,
    read_validated_upload,
    safe_filename,
)

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_TYPE = "other"


def resolve_document_type(document_types: Sequence[str] | None, index: int) -> str:
    """Pick the type for file ``index``: positional match, a single shared value, or ``other``."""
    if not document_types:
        return DEFAULT_DOCUMENT_TYPE
    if len(document_types) == 1:
        value = document_types[0]
    elif index < len(document_types):
        value = document_types[index]
    else:
        return DEFAULT_DOCUMENT_TYPE
    return (value or "").strip() or DEFAULT_DOCUMENT_TYPE


async def _loan_status(db: AsyncSession, loan_id: str) -> str:
    result = await db.execute(
        select(LoanApplication.workflow_status).where(LoanApplication.loan_id == loan_id)
    )
    status = result.scalar_one_or_none()
    if status is None:
        raise LoanNotFoundError(loan_id)
    return status


async def _insert_document_row(
    db: AsyncSession,
    adapter: StorageAdapter,
    *,
    loan_id: str,
    upload: ValidatedUpload,
    document_type: str,
    storage_key: str,
    storage_url: str,
) -> int:
    document = UploadedDocument(
        loan_id=loan_id,
        original_filename=upload.filename,
        file_extension=upload.extension,
        file_size=upload.size,
        mime_type=upload.content_type,
        storage_provider=adapter.provider,
        storage_bucket=adapter.bucket,
        storage_key=storage_key,
        storage_url=storage_url,
        document_type=document_type,
        upload_status="completed",
        processing_status="pending",
        document_metadata={"content_type": upload.content_type},
    )
    db.add(document)
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error(
            "Document row insert failed; removing stored object",
            extra={"loan_id": loan_id, "storage_key": storage_key},
            exc_info=True,
        )
        try:
            await storage_service.delete_object(adapter, storage_key)
        except StorageError:
            logger.warning(
                "Orphaned object could not be removed",
                extra={"loan_id": loan_id, "storage_key": storage_key},
            )
        raise DatabaseError("Failed to save document metadata") from exc
    return document.id


async def upload_documents(
    db: AsyncSession,
    loan_id: str,
    files: Sequence[UploadFile],
    document_types: Sequence[str] | None = None,
    *,
    principal: deps.Principal | None = None,
    ip_address: str | None = None,
) -> UploadDocumentsResponse:
    """Store each file and its metadata row; per-file failures never fail the batch."""
    initial_status = await _loan_status(db, loan_id)
    if not files:
        raise LoanValidationError("No files were uploaded")
    if len(files) > settings.max_files_per_upload:
        raise LoanValidationError(
            f"At most {settings.max_files_per_upload} files can be uploaded at once",
            details={"count": len(files)},
        )

    adapter = storage_service.get_storage_adapter()
    uploaded: list[UploadedFileResult] = []
    failed: list[FailedFileResult] = []

    for index, file in enumerate(files):
        filename = safe_filename(file.filename)
        document_type = resolve_document_type(document_types, index)
        try:
            if document_type not in DOCUMENT_TYPES:
                raise UploadRejected(f"Unknown document type '{document_type}'")
            upload = await read_validated_upload(file, settings.max_upload_size_bytes)
            storage_key = KeyGenerator.loan_document_key(loan_id, document_type, upload.extension)
            storage_url = await storage_service.put_object(
                adapter, storage_key, upload.content, upload.content_type
            )
            document_id = await _insert_document_row(
                db,
                adapter,
                loan_id=loan_id,
                upload=upload,
                document_type=document_type,
                storage_key=storage_key,
                storage_url=storage_url,
            )
        except (UploadRejected, StorageError, DatabaseError) as exc:
            logger.info(
                "Rejected upload %s: %s", filename, exc, extra={"loan_id": loan_id}
            )
            failed.append(FailedFileResult(filename=filename, error=str(exc)))
            continue

        uploaded.append(
            UploadedFileResult(
                document_id=document_id,
                filename=upload.filename,
                storage_key=storage_key,
                url=storage_url,
                size=upload.size,
                type=document_type,
            )
        )

    workflow_status = initial_status
    if uploaded and initial_status == "pending":
        await db.execute(
            update(LoanApplication)
            .where(
                LoanApplication.loan_id == loan_id,
                LoanApplication.workflow_status == "pending",
            )
            .values(workflow_status="processing")
        )
        workflow_status = "processing"
    record_user_action(
        db,
        principal,
        action_type="upload",
        loan_id=loan_id,
        description=f"Uploaded {len(uploaded)} of {len(files)} document(s)",
        after_data={
            "uploaded": [item.model_dump() for item in uploaded],
            "failed": [item.model_dump() for item in failed],
        },
        ip_address=ip_address,
    )
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Post-upload status update failed", extra={"loan_id": loan_id}, exc_info=True)
        raise DatabaseError(
            "Documents were stored but the loan status could not be updated",
            details={"loan_id": loan_id},
        ) from exc

    logger.info(
        "Upload batch finished: %s stored, %s failed",
        len(uploaded),
        len(failed),
        extra={"loan_id": loan_id},
    )
    return UploadDocumentsResponse(
        loan_id=loan_id,
        uploaded_files=uploaded,
        failed_files=failed,
        workflow_status=workflow_status,
    )


async def list_documents(db: AsyncSession, loan_id: str) -> list[DocumentOut]:
    await _loan_status(db, loan_id)
    result = await db.execute(
        select(UploadedDocument)
        .where(UploadedDocument.loan_id == loan_id)
        .order_by(UploadedDocument.created_at.desc(), UploadedDocument.id.desc())
    )
    return [DocumentOut.model_validate(document) for document in result.scalars().all()]


async def get_download_url(db: AsyncSession, loan_id: str, document_id: int) -> DownloadUrlResponse:
    result = await db.execute(
        select(UploadedDocument).where(
            UploadedDocument.id == document_id,
            UploadedDocument.loan_id == loan_id,
        )
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise DocumentNotFoundError(loan_id, document_id)

    adapter = storage_service.get_storage_adapter()
    expires_in = settings.signed_url_expiry_seconds
    url = await storage_service.generate_download_url(adapter, document.storage_key, expires_in)
    return DownloadUrlResponse(
        download_url=url,
        filename=document.original_filename,
        expires_in=expires_in,
    )
