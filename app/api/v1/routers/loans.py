from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
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
    StageAdvanceRequest,
    StageAdvanceResponse,
    StageUpdateRequest,
    StageUpdateResponse,
    WorkflowStatus,
    WorkflowStatusResponse,
)
from app.services import loan_applications, loan_documents, loan_stats, loan_workflow

router = APIRouter(prefix="/loans", tags=["loans"])


@router.get("", response_model=LoanListResponse, summary="List loan applications")
async def list_loans(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=loan_applications.MAX_PAGE_SIZE),
    workflow_status: WorkflowStatus | None = Query(default=None, alias="status"),
    stage: int | None = Query(default=None, ge=1, le=8),
    db: AsyncSession = Depends(get_db),
    _: deps.Principal = Depends(deps.get_current_principal),
) -> LoanListResponse:
    return await loan_applications.list_loans(
        db,
        page=page,
        limit=limit,
        status=workflow_status.value if workflow_status else None,
        stage=stage,
    )


@router.get("/stats", response_model=LoanStats, summary="Loan counts by status and stage")
async def get_stats(
    db: AsyncSession = Depends(get_db),
    _: deps.Principal = Depends(deps.get_current_principal),
) -> LoanStats:
    return await loan_stats.get_stats(db)


@router.post(
    "",
    response_model=LoanCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a loan application",
)
async def create_loan(
    payload: LoanCreateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: deps.Principal = Depends(deps.get_current_principal),
) -> LoanCreatedResponse:
    return await loan_applications.create_loan(
        db, payload, principal=principal, ip_address=deps.get_client_ip(request)
    )


@router.get("/{loan_id}", response_model=LoanDetailResponse, summary="Loan with stages and documents")
async def get_loan(
    loan_id: str,
    db: AsyncSession = Depends(get_db),
    _: deps.Principal = Depends(deps.get_current_principal),
) -> LoanDetailResponse:
    return await loan_applications.get_loan(db, loan_id)


@router.delete("/{loan_id}", response_model=LoanDeletedResponse, summary="Delete a loan application")
async def delete_loan(
    loan_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: deps.Principal = Depends(deps.get_current_principal),
) -> LoanDeletedResponse:
    return await loan_applications.delete_loan(
        db, loan_id, principal=principal, ip_address=deps.get_client_ip(request)
    )


@router.post(
    "/{loan_id}/documents",
    response_model=UploadDocumentsResponse,
    summary="Upload documents for a loan",
)
async def upload_documents(
    loan_id: str,
    request: Request,
    documents: list[UploadFile] | None = File(default=None),
    document_types: list[str] | None = Form(default=None, alias="documentTypes"),
    db: AsyncSession = Depends(get_db),
    principal: deps.Principal = Depends(deps.get_current_principal),
) -> UploadDocumentsResponse:
    return await loan_documents.upload_documents(
        db,
        loan_id,
        documents or [],
        document_types,
        principal=principal,
        ip_address=deps.get_client_ip(request),
    )


@router.get(
    "/{loan_id}/documents",
    response_model=list[DocumentOut],
    summary="List documents for a loan",
)
async def list_documents(
    loan_id: str,
    db: AsyncSession = Depends(get_db),
    _: deps.Principal = Depends(deps.get_current_principal),
) -> list[DocumentOut]:
    return await loan_documents.list_documents(db, loan_id)


@router.get(
    "/{loan_id}/documents/{document_id}/download",
    response_model=DownloadUrlResponse,
    summary="Presigned download URL for a document",
)
async def get_download_url(
    loan_id: str,
    document_id: int,
    db: AsyncSession = Depends(get_db),
    _: deps.Principal = Depends(deps.get_current_principal),
) -> DownloadUrlResponse:
    return await loan_documents.get_download_url(db, loan_id, document_id)


@router.put("/{loan_id}/stage", response_model=StageUpdateResponse, summary="Set a stage's status")
async def update_stage(
    loan_id: str,
    payload: StageUpdateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    principal: deps.Principal = Depends(deps.get_current_principal),
) -> StageUpdateResponse:
    return await loan_workflow.update_stage(
        db,
        loan_id,
        payload.stage_id,
        status=payload.status.value if payload.status else None,
        progress=payload.progress,
        principal=principal,
        ip_address=deps.get_client_ip(request),
    )


@router.get(
    "/{loan_id}/workflow",
    response_model=WorkflowStatusResponse,
    summary="Workflow progress for a loan",
)
async def get_workflow_status(
    loan_id: str,
    db: AsyncSession = Depends(get_db),
    _: deps.Principal = Depends(deps.get_current_principal),
) -> WorkflowStatusResponse:
    return await loan_applications.get_workflow_status(db, loan_id)


@router.post(
    "/{loan_id}/workflow/advance",
    response_model=StageAdvanceResponse,
    summary="Complete the current stage and start the next",
)
async def advance_stage(
    loan_id: str,
    request: Request,
    payload: StageAdvanceRequest | None = None,
    db: AsyncSession = Depends(get_db),
    principal: deps.Principal = Depends(deps.get_current_principal),
) -> StageAdvanceResponse:
    return await loan_workflow.advance_stage(
        db,
        loan_id,
        stage_data=payload.stage_data if payload else None,
        principal=principal,
        ip_address=deps.get_client_ip(request),
    )
