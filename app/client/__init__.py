from app.client.api_client import (
    ApiError,
    ApiTimeoutError,
    ApiUnavailableError,
    LoanApiClient,
    OfflineError,
)
from app.client.cache import WorkflowCache
from app.client.workflow_manager import (
    SyncReport,
    UploadOutcome,
    WorkflowManager,
    WorkflowStateError,
)

__all__ = [
    "ApiError",
    "ApiTimeoutError",
    "ApiUnavailableError",
    "LoanApiClient",
    "OfflineError",
    "SyncReport",
    "UploadOutcome",
    "WorkflowCache",
    "WorkflowManager",
    "WorkflowStateError",
]
