from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.settings import settings
from app.db.session import get_db
from app.models.uploaded_document import UploadedDocument
from app.services.storage.adapter import LocalFileSystemAdapter, verify_local_url_signature

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/local-content", summary="Serve a locally stored document through a signed URL")
async def get_local_content(
    key: str = Query(...),
    expires: int = Query(...),
    signature: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    if settings.storage_provider != "local":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not supported")
    if not verify_local_url_signature(settings.secret_key, key, expires, signature):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired URL signature",
        )

    result = await db.execute(select(UploadedDocument).where(UploadedDocument.storage_key == key))
    document = result.scalars().first()
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    adapter = LocalFileSystemAdapter(base_path=settings.local_upload_dir, base_url="")
    try:
        path = adapter.resolve_path(key)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not path.exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stored file is missing")

    return FileResponse(
        path,
        media_type=document.mime_type or "application/octet-stream",
        filename=document.original_filename,
    )
