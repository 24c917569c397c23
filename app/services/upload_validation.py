from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from fastapi import UploadFile

ALLOWED_EXTENSIONS = {"pdf", "jpg", "jpeg", "png", "doc", "docx", "xls", "xlsx"}

GENERIC_MIME_TYPE = "application/octet-stream"

_ALLOWED_MIME_TYPES: dict[str, set[str]] = {
    "pdf": {"application/pdf"},
    "jpg": {"image/jpeg", "image/jpg", "image/pjpeg"},
    "jpeg": {"image/jpeg", "image/jpg", "image/pjpeg"},
    "png": {"image/png"},
    "doc": {"application/msword"},
    "docx": {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"},
    "xls": {"application/vnd.ms-excel"},
    "xlsx": {"application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"},
}

# Magic byte signatures, checked against the claimed extension
_MAGIC_SIGNATURES: dict[str, list[bytes]] = {
    "pdf": [b"%PDF"],
    "png": [b"\x89PNG\r\n\x1a\n"],
    "jpg": [b"\xff\xd8\xff"],
    "jpeg": [b"\xff\xd8\xff"],
    "doc": [b"\xd0\xcf\x11\xe0"],
    "xls": [b"\xd0\xcf\x11\xe0"],
    "docx": [b"PK\x03\x04", b"PK\x05\x06"],
    "xlsx": [b"PK\x03\x04", b"PK\x05\x06"],
}

_READ_CHUNK = 1024 * 1024


class UploadRejected(ValueError):
    """A single file failed validation; the rest of the batch continues."""


@dataclass(slots=True)
class ValidatedUpload:
    filename: str
    extension: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def safe_filename(filename: str | None, fallback: str = "upload.bin") -> str:
    if not filename:
        return fallback
    return Path(filename.replace("\\", "/")).name or fallback


def file_extension(filename: str) -> str:
    return Path(filename).suffix.lower().lstrip(".")


def _validate_content_type(content_type: str, ext: str) -> str:
    normalized = (content_type or GENERIC_MIME_TYPE).split(";")[0].strip().lower()
    if normalized == GENERIC_MIME_TYPE:
        return normalized
    if normalized not in _ALLOWED_MIME_TYPES.get(ext, set()):
        raise UploadRejected(f"MIME type '{normalized}' does not match file type '.{ext}'")
    return normalized


def _validate_magic_bytes(header_bytes: bytes, ext: str) -> None:
    signatures = _MAGIC_SIGNATURES.get(ext)
    if signatures is None:
        return
    if not any(header_bytes.startswith(sig) for sig in signatures):
        raise UploadRejected(f"File content does not match the expected format for '.{ext}'")


async def read_validated_upload(file: UploadFile, max_size_bytes: int) -> ValidatedUpload:
    """Read ``file`` fully, enforcing extension, MIME type, magic bytes and size."""
    filename = safe_filename(file.filename)
    ext = file_extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise UploadRejected(
            f"File type not allowed. Allowed extensions: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    content_type = _validate_content_type(file.content_type or "", ext)

    chunks: list[bytes] = []
    bytes_read = 0
    try:
        while True:
            chunk = await file.read(_READ_CHUNK)
            if not chunk:
                break
            if not chunks:
                _validate_magic_bytes(chunk, ext)
            bytes_read += len(chunk)
            if max_size_bytes and bytes_read > max_size_bytes:
                raise UploadRejected(
                    f"File exceeds maximum allowed size of {max_size_bytes // (1024 * 1024)} MB"
                )
            chunks.append(chunk)
    finally:
        await file.close()

    if not bytes_read:
        raise UploadRejected("File is empty")
    return ValidatedUpload(
        filename=filename,
        extension=ext,
        content_type=content_type if content_type != GENERIC_MIME_TYPE else _canonical_type(ext),
        content=b"".join(chunks),
    )


def _canonical_type(ext: str) -> str:
    return sorted(_ALLOWED_MIME_TYPES[ext])[0]
