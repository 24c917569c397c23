from app.models.loan_application import LoanApplication
from app.models.uploaded_document import UploadedDocument
from app.models.user_action import UserAction
from app.models.workflow_stage import WorkflowStage

__all__ = [
    "LoanApplication",
    "UploadedDocument",
    "UserAction",
    "WorkflowStage",
]
