from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


APPLICATION_TYPES = (
    "pf_loan",
    "facility_loan",
    "operating_loan",
    "other",
)


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("current_stage BETWEEN 1 AND 8", name="current_stage_range"),
        CheckConstraint(
            "workflow_status IN ('pending', 'processing', 'completed', 'failed')",
            name="workflow_status",
        ),
        CheckConstraint(
            "application_type IN ('pf_loan', 'facility_loan', 'operating_loan', 'other')",
            name="application_type",
        ),
        CheckConstraint("requested_amount >= 0", name="requested_amount_nonneg"),
        CheckConstraint("collateral_value >= 0", name="collateral_value_nonneg"),
        CheckConstraint("company_annual_revenue >= 0", name="annual_revenue_nonneg"),
        CheckConstraint("company_employee_count >= 0", name="employee_count_nonneg"),
    )

    loan_id = Column(String(20), primary_key=True)

    company_name = Column(String(200), nullable=False)
    business_registration_number = Column(String(20), nullable=True)
    company_address = Column(String(500), nullable=True)
    company_phone = Column(String(50), nullable=True)
    company_established_year = Column(Integer, nullable=True)
    company_business_type = Column(String(200), nullable=True)
    company_annual_revenue = Column(Numeric(20, 2), nullable=True)
    company_employee_count = Column(Integer, nullable=True)

    application_type = Column(String(30), nullable=False, default="pf_loan")
    requested_amount = Column(Numeric(20, 2), nullable=False)
    loan_duration_months = Column(Integer, nullable=True)
    interest_rate_hope = Column(Numeric(5, 2), nullable=True)
    collateral_type = Column(String(200), nullable=True)
    collateral_value = Column(Numeric(20, 2), nullable=True)
    loan_purpose = Column(Text, nullable=False)

    applicant_name = Column(String(100), nullable=False)
    applicant_position = Column(String(100), nullable=True)
    applicant_birth_date = Column(Date, nullable=True)
    applicant_contact = Column(String(50), nullable=False)
    applicant_email = Column(String(255), nullable=True)

    current_stage = Column(Integer, nullable=False, default=1, index=True)
    workflow_status = Column(String(20), nullable=False, default="pending", index=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    stages = relationship(
        "WorkflowStage",
        back_populates="loan",
        order_by="WorkflowStage.stage_id",
        passive_deletes=True,
    )
    documents = relationship(
        "UploadedDocument",
        back_populates="loan",
        passive_deletes=True,
    )
