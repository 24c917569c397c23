from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.db.base import Base


class WorkflowStage(Base):
    __tablename__ = "workflow_stages"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("loan_id", "stage_id", name="uq_workflow_stages_loan_stage"),
        CheckConstraint("stage_id BETWEEN 1 AND 8", name="stage_id_range"),
        CheckConstraint("progress BETWEEN 0 AND 100", name="progress_range"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="status",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    loan_id = Column(
        String(20),
        ForeignKey("loan_applications.loan_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_id = Column(Integer, nullable=False)
    stage_name = Column(String(100), nullable=False)
    stage_title = Column(String(200), nullable=False)
    stage_description = Column(Text, nullable=True)
    estimated_time = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    progress = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    stage_data = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    loan = relationship("LoanApplication", back_populates="stages")
