import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import DocumentNotFoundError
from app.core.settings import settings
from app.models.uploaded_document import UploadedDocument
from app.models.user_action import UserAction
from app.services import loan_documents
from conftest import FakeResult, make_document, sequence_handler

PDF = b"%PDF-1.7\n%test document\n"
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _loan_status(fake_db, status="pending"):
    fake_db.on_execute(sequence_handler([FakeResult(scalar=status)]))


@pytest.mark.parametrize(
    "types, index, expected",
    [
        (None, 0, "other"),
        ([], 2, "other"),
        (["financial_statement"], 3, "financial_statement"),
        (["business_plan", "credit_report"], 1, "credit_report"),
        (["business_plan", "credit_report"], 2, "other"),
        (["business_plan", " "], 1, "other"),
    ],
)
def test_resolve_document_type(types, index, expected):
    assert loan_documents.resolve_document_type(types, index) == expected


def test_upload_one_valid_and_one_oversized_file(client, fake_db, memory_storage, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_size_mb", 1)
    _loan_status(fake_db)
    oversized = b"%PDF" + b"0" * (1024 * 1024 + 10)

    resp = client.post(
        "/api/loans/CL-20261019-0001/documents",
        files=[
            ("documents", ("registration.pdf", PDF, "application/pdf")),
            ("documents", ("statement.pdf", oversized, "application/pdf")),
        ],
        data={"documentTypes": ["business_registration", "financial_statement"]},
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert [item["filename"] for item in data["uploadedFiles"]] == ["registration.pdf"]
    assert data["uploadedFiles"][0]["type"] == "business_registration"
    assert data["uploadedFiles"][0]["status"] == "completed"
    assert data["failedFiles"][0]["filename"] == "statement.pdf"
    assert data["failedFiles"][0]["status"] == "failed"
    assert "maximum allowed size" in data["failedFiles"][0]["error"]
    assert data["workflowStatus"] == "processing"

    rows = fake_db.added_of(UploadedDocument)
    assert len(rows) == 1
    assert rows[0].storage_key.startswith("loans/CL-20261019-0001/business_registration/")
    assert list(memory_storage.objects) == [rows[0].storage_key]
    action = fake_db.added_of(UserAction)[0]
    assert action.action_type == "upload"
    assert len(action.after_data["failed"]) == 1


def test_upload_keeps_status_when_every_file_fails(client, fake_db, memory_storage):
    _loan_status(fake_db)

    resp = client.post(
        "/api/loans/CL-20261019-0001/documents",
        files=[("documents", ("macro.exe", b"MZ\x90\x00", "application/octet-stream"))],
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["uploadedFiles"] == []
    assert "not allowed" in data["failedFiles"][0]["error"]
    assert data["workflowStatus"] == "pending"
    # The audit row is still written
    assert [action.action_type for action in fake_db.added_of(UserAction)] == ["upload"]


def test_upload_rejects_unknown_document_type_per_file(client, fake_db, memory_storage):
    _loan_status(fake_db, "processing")

    resp = client.post(
        "/api/loans/CL-20261019-0001/documents",
        files=[
            ("documents", ("a.png", PNG, "image/png")),
            ("documents", ("b.png", PNG, "image/png")),
        ],
        data={"documentTypes": ["tax_return", "collateral_appraisal"]},
    )

    data = resp.json()["data"]
    assert [item["filename"] for item in data["uploadedFiles"]] == ["b.png"]
    assert "Unknown document type" in data["failedFiles"][0]["error"]


def test_upload_to_unknown_loan_returns_404(client, fake_db, memory_storage):
    resp = client.post(
        "/api/loans/CL-20000101-0000/documents",
        files=[("documents", ("a.pdf", PDF, "application/pdf"))],
    )

    assert resp.status_code == 404
    assert memory_storage.objects == {}


def test_upload_without_files_returns_400(client, fake_db, memory_storage):
    _loan_status(fake_db)

    resp = client.post("/api/loans/CL-20261019-0001/documents", data={"documentTypes": "other"})

    assert resp.status_code == 400
    assert resp.json()["message"] == "No files were uploaded"


def test_upload_rejects_too_many_files(client, fake_db, memory_storage, monkeypatch):
    monkeypatch.setattr(settings, "max_files_per_upload", 2)
    _loan_status(fake_db)

    resp = client.post(
        "/api/loans/CL-20261019-0001/documents",
        files=[("documents", (f"{n}.pdf", PDF, "application/pdf")) for n in range(3)],
    )

    assert resp.status_code == 400
    assert resp.json()["details"] == {"count": 3}
    assert memory_storage.objects == {}


def test_upload_storage_failure_is_per_file(client, fake_db, memory_storage):
    memory_storage.fail_puts = True
    _loan_status(fake_db)

    resp = client.post(
        "/api/loans/CL-20261019-0001/documents",
        files=[("documents", ("a.pdf", PDF, "application/pdf"))],
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["failedFiles"][0]["error"] == "Failed to store file"
    assert fake_db.added_of(UploadedDocument) == []


def test_failed_metadata_insert_removes_stored_object(client, fake_db, memory_storage):
    _loan_status(fake_db)
    fake_db.fail_commits = [SQLAlchemyError("insert failed")]

    resp = client.post(
        "/api/loans/CL-20261019-0001/documents",
        files=[("documents", ("a.pdf", PDF, "application/pdf"))],
    )

    data = resp.json()["data"]
    assert data["failedFiles"][0]["error"] == "Failed to save document metadata"
    assert memory_storage.objects == {}
    assert len(memory_storage.deleted) == 1


def test_list_documents(client, fake_db):
    fake_db.on_execute(
        sequence_handler(
            [
                FakeResult(scalar="processing"),
                FakeResult(items=[make_document(document_id=2), make_document(document_id=1)]),
            ]
        )
    )

    resp = client.get("/api/loans/CL-20261019-0001/documents")

    assert resp.status_code == 200
    assert [doc["id"] for doc in resp.json()["data"]] == [2, 1]


def test_download_url(client, fake_db, memory_storage):
    document = make_document()
    fake_db.on_execute(sequence_handler([FakeResult(scalar=document)]))

    resp = client.get("/api/loans/CL-20261019-0001/documents/1/download")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["downloadUrl"].startswith("https://files.example.com/loans/")
    assert data["filename"] == "statement.pdf"
    assert data["expiresIn"] == settings.signed_url_expiry_seconds


async def test_download_url_unknown_document(fake_db):
    with pytest.raises(DocumentNotFoundError):
        await loan_documents.get_download_url(fake_db, "CL-20261019-0001", 99)
