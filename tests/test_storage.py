import re
import time
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

import pytest

from app.core.errors import StorageError
from app.core.settings import settings
from app.services.storage import service as storage_service
from app.services.storage.adapter import (
    GCSStorageAdapter,
    LocalFileSystemAdapter,
    sign_local_url,
    verify_local_url_signature,
)
from app.services.storage.key_generator import KeyGenerator
from conftest import FakeResult, make_document, sequence_handler


def test_loan_document_key_layout():
    now = datetime(2026, 10, 19, 8, 30, 15, 123456, tzinfo=timezone.utc)
    key = KeyGenerator.loan_document_key("CL-20261019-0001", "business_registration", ".PDF", now=now)
    assert re.fullmatch(
        r"loans/CL-20261019-0001/business_registration/2026-10-19T08-30-15-123Z-[a-z0-9]{9}\.pdf",
        key,
    )


def test_loan_document_key_requires_loan_id():
    with pytest.raises(ValueError):
        KeyGenerator.loan_document_key("", "other", "pdf")


def test_signature_round_trip_and_expiry():
    expires = int(time.time()) + 60
    signature = sign_local_url("secret", "loans/a.pdf", expires)
    assert verify_local_url_signature("secret", "loans/a.pdf", expires, signature)
    assert not verify_local_url_signature("secret", "loans/b.pdf", expires, signature)
    assert not verify_local_url_signature("other", "loans/a.pdf", expires, signature)
    expired = int(time.time()) - 1
    assert not verify_local_url_signature(
        "secret", "loans/a.pdf", expired, sign_local_url("secret", "loans/a.pdf", expired)
    )


def test_local_adapter_refuses_path_traversal(tmp_path):
    adapter = LocalFileSystemAdapter(str(tmp_path), "http://localhost:3001")
    with pytest.raises(ValueError):
        adapter.put_object("../escape.pdf", b"x", "application/pdf")
    with pytest.raises(ValueError):
        adapter.delete_object("/etc/passwd")


def test_local_adapter_put_and_delete(tmp_path):
    adapter = LocalFileSystemAdapter(str(tmp_path), "http://localhost:3001", signing_key="k")
    url = adapter.put_object("loans/CL-1/other/a.pdf", b"%PDF", "application/pdf")
    assert url == "local://local/loans/CL-1/other/a.pdf"
    stored = tmp_path / "loans" / "CL-1" / "other" / "a.pdf"
    assert stored.read_bytes() == b"%PDF"
    download = adapter.generate_download_url("loans/CL-1/other/a.pdf", expires_in=60)
    assert download.startswith("http://localhost:3001/api/storage/local-content?")
    adapter.delete_object("loans/CL-1/other/a.pdf")
    assert not stored.exists()
    adapter.delete_object("loans/CL-1/other/a.pdf")


class _FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name

    def upload_from_string(self, content, content_type=None):
        self.bucket.uploaded[self.name] = (content, content_type)


class _FakeBucket:
    def __init__(self):
        self.uploaded = {}

    def blob(self, name):
        return _FakeBlob(self, name)

    def exists(self):
        return True


def test_gcs_adapter_reports_configured_provider_label():
    adapter = GCSStorageAdapter.__new__(GCSStorageAdapter)
    adapter.bucket = "loan-docs"
    adapter._bucket_ref = _FakeBucket()

    location = adapter.put_object("loans/CL-1/other/a.pdf", b"%PDF", "application/pdf")

    assert location == "gs://loan-docs/loans/CL-1/other/a.pdf"
    assert adapter.provider == "gcs"
    assert adapter.check() == {"provider": "gcs", "bucket": "loan-docs"}


def test_gcs_without_bucket_is_a_configuration_error(monkeypatch):
    monkeypatch.setattr(settings, "storage_provider", "gcs")
    monkeypatch.setattr(settings, "gcs_bucket", None)
    with pytest.raises(StorageError) as excinfo:
        storage_service.get_storage_adapter()
    assert excinfo.value.code == "storage_not_configured"


async def test_check_storage_reports_errors(monkeypatch):
    class Broken(LocalFileSystemAdapter):
        def check(self):
            raise OSError("read-only file system")

    monkeypatch.setattr(
        storage_service, "get_storage_adapter", lambda: Broken(settings.local_upload_dir, "")
    )
    assert await storage_service.check_storage() == {
        "status": "error",
        "error": "read-only file system",
    }


def _signed_query(key: str) -> dict[str, str]:
    adapter = storage_service.get_storage_adapter()
    url = adapter.generate_download_url(key, expires_in=60)
    return {name: values[0] for name, values in parse_qs(urlsplit(url).query).items()}


def test_local_content_serves_signed_file(client, fake_db):
    document = make_document()
    adapter = storage_service.get_storage_adapter()
    adapter.put_object(document.storage_key, b"%PDF-1.7 body", "application/pdf")
    fake_db.on_execute(sequence_handler([FakeResult(items=[document])]))

    resp = client.get("/api/storage/local-content", params=_signed_query(document.storage_key))

    assert resp.status_code == 200
    assert resp.content == b"%PDF-1.7 body"
    assert resp.headers["content-type"] == "application/pdf"


def test_local_content_rejects_bad_signature(client, fake_db):
    params = _signed_query("loans/CL-1/other/a.pdf")
    params["signature"] = "0" * 64

    resp = client.get("/api/storage/local-content", params=params)

    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"
    assert fake_db.executed == []
