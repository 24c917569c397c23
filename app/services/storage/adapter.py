"""Object store backends for uploaded loan documents.

Adapters are synchronous; ``app.services.storage.service`` runs them in the
threadpool and maps their failures to ``StorageError``.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path, PurePosixPath
from typing import Any, Dict
from urllib.parse import urlencode
import hashlib
import hmac
import time


LOCAL_CONTENT_PATH = "/storage/local-content"


def sign_local_url(secret_key: str, object_key: str, expires: int) -> str:
    message = f"{object_key}:{expires}".encode("utf-8")
    return hmac.new(secret_key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_local_url_signature(
    secret_key: str, object_key: str, expires: int, signature: str
) -> bool:
    """False when the URL has expired or was not signed with ``secret_key``."""
    if int(time.time()) > expires:
        return False
    return hmac.compare_digest(sign_local_url(secret_key, object_key, expires), signature)


class StorageAdapter(ABC):
    provider: str
    scheme: str
    bucket: str | None = None

    @abstractmethod
    def put_object(self, object_key: str, content: bytes, content_type: str) -> str:
        """Store ``content`` and return its stable location (``local://`` or ``gs://``)."""

    @abstractmethod
    def generate_download_url(self, object_key: str, expires_in: int = 3600) -> str:
        """Time-limited URL a browser can fetch the object from."""

    @abstractmethod
    def delete_object(self, object_key: str) -> None:
        pass

    @abstractmethod
    def check(self) -> Dict[str, Any]:
        """Probe the backend; raises on failure."""

    def location(self, object_key: str) -> str:
        return f"{self.scheme}://{self.bucket}/{object_key}"


class LocalFileSystemAdapter(StorageAdapter):
    provider = "local"
    scheme = "local"
    bucket = "local"

    def __init__(
        self,
        base_path: str,
        base_url: str,
        *,
        signing_key: str = "",
        api_prefix: str = "/api",
    ):
        self.base_path = Path(base_path)
        self.content_url = f"{base_url.rstrip('/')}{api_prefix.rstrip('/')}{LOCAL_CONTENT_PATH}"
        self.signing_key = signing_key
        self.base_path.mkdir(parents=True, exist_ok=True)

    def resolve_path(self, object_key: str) -> Path:
        """Map ``object_key`` under ``base_path``; rejects anything that escapes it."""
        key_path = PurePosixPath(object_key)
        if "\\" in object_key or key_path.is_absolute() or ".." in key_path.parts:
            raise ValueError("Invalid object key")
        base = self.base_path.resolve()
        resolved = (base / Path(object_key)).resolve()
        if base not in resolved.parents:
            raise ValueError("Invalid object key")
        return resolved

    def put_object(self, object_key: str, content: bytes, content_type: str) -> str:
        path = self.resolve_path(object_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return self.location(object_key)

    def generate_download_url(self, object_key: str, expires_in: int = 3600) -> str:
        expires = int(time.time()) + expires_in
        query = urlencode(
            {
                "key": object_key,
                "expires": expires,
                "signature": sign_local_url(self.signing_key, object_key, expires),
            }
        )
        return f"{self.content_url}?{query}"

    def delete_object(self, object_key: str) -> None:
        self.resolve_path(object_key).unlink(missing_ok=True)

    def check(self) -> Dict[str, Any]:
        base = self.base_path.resolve()
        if not base.is_dir():
            raise OSError(f"Upload directory {base} is missing")
        return {"provider": self.provider, "bucket": self.bucket}


class GCSStorageAdapter(StorageAdapter):
    provider = "gcs"
    scheme = "gs"

    def __init__(self, bucket: str):
        # Imported lazily so local deployments need no Google credentials
        from google.cloud import storage
        import google.auth
        import google.auth.transport.requests

        self.bucket = bucket
        self.credentials, _ = google.auth.default()
        self._auth_request = google.auth.transport.requests.Request()
        self._bucket_ref = storage.Client(credentials=self.credentials).bucket(bucket)

    def _signing_kwargs(self) -> Dict[str, Any]:
        # Service account keys sign locally; other ADC credentials go through IAM SignBlob
        if hasattr(self.credentials, "sign_bytes"):
            return {"credentials": self.credentials}

        if not self.credentials.valid or not self.credentials.token:
            self.credentials.refresh(self._auth_request)
        service_account_email = getattr(self.credentials, "service_account_email", None)
        if not service_account_email:
            raise RuntimeError("GCS signed URLs need a service account email from ADC")
        return {
            "service_account_email": service_account_email,
            "access_token": self.credentials.token,
        }

    def put_object(self, object_key: str, content: bytes, content_type: str) -> str:
        self._bucket_ref.blob(object_key).upload_from_string(content, content_type=content_type)
        return self.location(object_key)

    def generate_download_url(self, object_key: str, expires_in: int = 3600) -> str:
        return self._bucket_ref.blob(object_key).generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=expires_in),
            method="GET",
            **self._signing_kwargs(),
        )

    def delete_object(self, object_key: str) -> None:
        self._bucket_ref.blob(object_key).delete()

    def check(self) -> Dict[str, Any]:
        if not self._bucket_ref.exists():
            raise RuntimeError(f"GCS bucket {self.bucket} does not exist")
        return {"provider": self.provider, "bucket": self.bucket}
