from __future__ import annotations

import logging
from typing import Any, Sequence, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from app.client.models import ApiEnvelope
from app.schemas.documents import DocumentOut, DownloadUrlResponse, UploadDocumentsResponse
from app.schemas.loan import (
    LoanCreatedResponse,
    LoanCreateRequest,
    LoanDeletedResponse,
    LoanDetailResponse,
    LoanListResponse,
    LoanStats,
)
from app.schemas.workflow import (
    StageAdvanceResponse,
    StageUpdateResponse,
    WorkflowStatusResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

T = TypeVar("T")


class ApiError(Exception):
    """The server answered with an error envelope."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.status_code} {self.code}: {self.message}"


class OfflineError(Exception):
    """The server could not be reached; callers fall back to the local cache."""


class ApiTimeoutError(OfflineError):
    pass


class ApiUnavailableError(OfflineError):
    pass


class LoanApiClient:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
        api_prefix: str = "/api",
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=f"{base_url.rstrip('/')}{api_prefix}",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "LoanApiClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise ApiTimeoutError(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise ApiUnavailableError(f"{method} {path} failed: {exc}") from exc
        return self._unwrap(response)

    def _unwrap(self, response: httpx.Response) -> Any:
        try:
            envelope = ApiEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            if response.status_code >= 500:
                raise ApiUnavailableError(
                    f"Server error {response.status_code} without an API envelope"
                ) from exc
            raise ApiError(
                response.status_code,
                "contract_violation",
                "Response is not a valid API envelope",
            ) from exc
        if response.is_error:
            raise ApiError(response.status_code, envelope.code, envelope.message, envelope.details)
        return envelope.data

    def _call(self, model: Any, method: str, path: str, **kwargs) -> Any:
        data = self._request(method, path, **kwargs)
        try:
            return TypeAdapter(model).validate_python(data)
        except ValidationError as exc:
            logger.error("Unexpected payload from %s %s", method, path)
            raise ApiError(200, "contract_violation", str(exc)) from exc

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def list_loans(
        self,
        page: int = 1,
        limit: int = 10,
        status: str | None = None,
        stage: int | None = None,
    ) -> LoanListResponse:
        params: dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status
        if stage:
            params["stage"] = stage
        return self._call(LoanListResponse, "GET", "/loans", params=params)

    def get_stats(self) -> LoanStats:
        return self._call(LoanStats, "GET", "/loans/stats")

    def get_loan(self, loan_id: str) -> LoanDetailResponse:
        return self._call(LoanDetailResponse, "GET", f"/loans/{loan_id}")

    def create_loan(self, payload: LoanCreateRequest) -> LoanCreatedResponse:
        body = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
        return self._call(LoanCreatedResponse, "POST", "/loans", json=body)

    def delete_loan(self, loan_id: str) -> LoanDeletedResponse:
        return self._call(LoanDeletedResponse, "DELETE", f"/loans/{loan_id}")

    def update_stage(
        self,
        loan_id: str,
        stage_id: int,
        status: str | None = None,
        progress: int | None = None,
    ) -> StageUpdateResponse:
        body: dict[str, Any] = {"stageId": stage_id}
        if status is not None:
            body["status"] = status
        if progress is not None:
            body["progress"] = progress
        return self._call(StageUpdateResponse, "PUT", f"/loans/{loan_id}/stage", json=body)

    def advance_stage(
        self, loan_id: str, stage_data: dict[str, Any] | None = None
    ) -> StageAdvanceResponse:
        body = {"stageData": stage_data} if stage_data else {}
        return self._call(
            StageAdvanceResponse, "POST", f"/loans/{loan_id}/workflow/advance", json=body
        )

    def get_workflow_status(self, loan_id: str) -> WorkflowStatusResponse:
        return self._call(WorkflowStatusResponse, "GET", f"/loans/{loan_id}/workflow")

    def upload_documents(
        self,
        loan_id: str,
        files: Sequence[tuple[str, bytes, str]],
        document_types: Sequence[str] | None = None,
    ) -> UploadDocumentsResponse:
        """``files`` holds ``(filename, content, content_type)`` tuples."""
        multipart = [("documents", (name, content, content_type)) for name, content, content_type in files]
        data = {"documentTypes": list(document_types)} if document_types else None
        return self._call(
            UploadDocumentsResponse,
            "POST",
            f"/loans/{loan_id}/documents",
            files=multipart,
            data=data,
        )

    def list_documents(self, loan_id: str) -> list[DocumentOut]:
        return self._call(list[DocumentOut], "GET", f"/loans/{loan_id}/documents")

    def get_download_url(self, loan_id: str, document_id: int) -> DownloadUrlResponse:
        return self._call(
            DownloadUrlResponse, "GET", f"/loans/{loan_id}/documents/{document_id}/download"
        )
