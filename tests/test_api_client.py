import json

import httpx
import pytest

from app.client.api_client import (
    ApiError,
    ApiTimeoutError,
    ApiUnavailableError,
    LoanApiClient,
    OfflineError,
)
from app.schemas.loan import LoanCreateRequest


def _envelope(data, status_code=200, code="ok", message="OK", details=None):
    return httpx.Response(
        status_code,
        json={"code": code, "message": message, "data": data, "details": details or {}},
    )


def _client(handler) -> LoanApiClient:
    return LoanApiClient("http://loans.test", token="t0k3n", transport=httpx.MockTransport(handler))


def test_requests_carry_prefix_and_bearer_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        return _envelope({"status": "ok"})

    assert _client(handler).health() == {"status": "ok"}
    assert seen == {"path": "/api/health", "auth": "Bearer t0k3n"}


def test_error_envelope_raises_api_error():
    def handler(request):
        return _envelope(
            None,
            status_code=404,
            code="not_found",
            message="Loan application not found",
            details={"loan_id": "CL-20000101-0000"},
        )

    with pytest.raises(ApiError) as excinfo:
        _client(handler).get_loan("CL-20000101-0000")
    error = excinfo.value
    assert (error.status_code, error.code) == (404, "not_found")
    assert error.details == {"loan_id": "CL-20000101-0000"}


def test_gateway_page_without_envelope_counts_as_offline():
    def handler(request):
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    with pytest.raises(ApiUnavailableError):
        _client(handler).get_stats()


def test_non_envelope_success_is_a_contract_violation():
    def handler(request):
        return httpx.Response(200, json=[1, 2, 3])

    with pytest.raises(ApiError) as excinfo:
        _client(handler).get_stats()
    assert excinfo.value.code == "contract_violation"


def test_payload_that_does_not_match_schema_is_a_contract_violation():
    def handler(request):
        return _envelope({"loanId": "CL-20261019-0001"})

    with pytest.raises(ApiError) as excinfo:
        _client(handler).get_workflow_status("CL-20261019-0001")
    assert excinfo.value.code == "contract_violation"


def test_connection_errors_and_timeouts_are_offline_errors():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    def stall(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ApiUnavailableError):
        _client(refuse).health()
    with pytest.raises(ApiTimeoutError) as excinfo:
        _client(stall).health()
    assert isinstance(excinfo.value, OfflineError)


def test_create_loan_sends_camel_case_body():
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        return _envelope(
            {
                "loanId": "CL-20261019-0001",
                "currentStage": 1,
                "workflowStatus": "pending",
                "stagesInitialized": True,
            },
            status_code=201,
            code="created",
        )

    payload = LoanCreateRequest(
        company_name="Acme Co",
        requested_amount=1000000000,
        loan_purpose="facility",
        applicant_name="Kim",
        applicant_contact="010-1234-5678",
    )
    created = _client(handler).create_loan(payload)

    assert created.loan_id == "CL-20261019-0001"
    assert captured["body"]["companyName"] == "Acme Co"
    assert captured["body"]["requestedAmount"] == 1000000000
    assert captured["body"]["applicationType"] == "pf_loan"
    assert "applicantEmail" not in captured["body"]


def test_update_stage_omits_unset_fields():
    captured = {}

    def handler(request):
        captured["method"] = request.method
        captured["body"] = json.loads(request.content)
        return _envelope(
            {
                "loanId": "CL-20261019-0001",
                "stageId": 2,
                "status": "processing",
                "progress": 35,
                "currentStage": 2,
                "workflowStatus": "processing",
            }
        )

    result = _client(handler).update_stage("CL-20261019-0001", 2, progress=35)

    assert captured == {"method": "PUT", "body": {"stageId": 2, "progress": 35}}
    assert result.progress == 35


def test_upload_documents_sends_multipart():
    captured = {}

    def handler(request):
        captured["content_type"] = request.headers["content-type"]
        captured["body"] = request.content
        return _envelope(
            {
                "loanId": "CL-20261019-0001",
                "uploadedFiles": [
                    {
                        "documentId": 7,
                        "filename": "plan.pdf",
                        "storageKey": "loans/CL-20261019-0001/business_plan/x.pdf",
                        "size": 4,
                        "type": "business_plan",
                        "status": "completed",
                    }
                ],
                "failedFiles": [],
                "workflowStatus": "processing",
            }
        )

    result = _client(handler).upload_documents(
        "CL-20261019-0001", [("plan.pdf", b"%PDF", "application/pdf")], ["business_plan"]
    )

    assert captured["content_type"].startswith("multipart/form-data")
    assert b'name="documents"; filename="plan.pdf"' in captured["body"]
    assert b'name="documentTypes"' in captured["body"]
    assert result.uploaded_files[0].document_id == 7
