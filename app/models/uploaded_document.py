from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.db.base import Base


DOCUMENT_TYPES = (
    "business_registration",
    "corporate_registration",
    "financial_statement",
    "credit_report",
    "collateral_appraisal",
    "business_plan",
    "other",
)


class UploadedDocument(Base):
    __tablename__ = "uploaded_documents"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint(
            "document_type IN ('business_registration', 'corporate_registration', "
            "'financial_statement', 'credit_report', 'collateral_appraisal', "
            "'business_plan', 'other')",
            name="document_type",
        ),
        CheckConstraint("upload_status IN ('completed', 'failed')", name="upload_status"),
        CheckConstraint("file_size >= 0", name="file_size_nonneg"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    loan_id = Column(
        String(20),
        ForeignKey("loan_applications.loan_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    original_filename = Column(String(255), nullable=False)
    file_extension = Column(String(10), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    mime_type = Column(String(100), nullable=True)
    storage_provider = Column(String(32), nullable=False)
    storage_bucket = Column(String(255), nullable=True)
    storage_key = Column(String(1024), nullable=False)
    storage_url = Column(String(2048), nullable=True)
    document_type = Column(String(50), nullable=False, default="other")
    upload_status = Column(String(20), nullable=False, default="completed")
    processing_status = Column(String(20), nullable=False, default="pending")
    # "metadata" is reserved on declarative classes
    document_metadata = Column("metadata", JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("LoanApplication", back_populates="documents")
