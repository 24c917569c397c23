"""create loan workflow tables

Revision ID: 20261019_initial_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "loan_applications",
        sa.Column("loan_id", sa.String(length=20), nullable=False),
        sa.Column("company_name", sa.String(length=200), nullable=False),
        sa.Column("business_registration_number", sa.String(length=20), nullable=True),
        sa.Column("company_address", sa.String(length=500), nullable=True),
        sa.Column("company_phone", sa.String(length=50), nullable=True),
        sa.Column("company_established_year", sa.Integer(), nullable=True),
        sa.Column("company_business_type", sa.String(length=200), nullable=True),
        sa.Column("company_annual_revenue", sa.Numeric(20, 2), nullable=True),
        sa.Column("company_employee_count", sa.Integer(), nullable=True),
        sa.Column("application_type", sa.String(length=30), nullable=False),
        sa.Column("requested_amount", sa.Numeric(20, 2), nullable=False),
        sa.Column("loan_duration_months", sa.Integer(), nullable=True),
        sa.Column("interest_rate_hope", sa.Numeric(5, 2), nullable=True),
        sa.Column("collateral_type", sa.String(length=200), nullable=True),
        sa.Column("collateral_value", sa.Numeric(20, 2), nullable=True),
        sa.Column("loan_purpose", sa.Text(), nullable=False),
        sa.Column("applicant_name", sa.String(length=100), nullable=False),
        sa.Column("applicant_position", sa.String(length=100), nullable=True),
        sa.Column("applicant_birth_date", sa.Date(), nullable=True),
        sa.Column("applicant_contact", sa.String(length=50), nullable=False),
        sa.Column("applicant_email", sa.String(length=255), nullable=True),
        sa.Column("current_stage", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("workflow_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("created_by", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("loan_id", name="pk_loan_applications"),
        sa.CheckConstraint(
            "current_stage BETWEEN 1 AND 8", name="ck_loan_applications_current_stage_range"
        ),
        sa.CheckConstraint(
            "workflow_status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_loan_applications_workflow_status",
        ),
        sa.CheckConstraint(
            "application_type IN ('pf_loan', 'facility_loan', 'operating_loan', 'other')",
            name="ck_loan_applications_application_type",
        ),
        sa.CheckConstraint(
            "requested_amount >= 0", name="ck_loan_applications_requested_amount_nonneg"
        ),
        sa.CheckConstraint(
            "collateral_value >= 0", name="ck_loan_applications_collateral_value_nonneg"
        ),
        sa.CheckConstraint(
            "company_annual_revenue >= 0", name="ck_loan_applications_annual_revenue_nonneg"
        ),
        sa.CheckConstraint(
            "company_employee_count >= 0", name="ck_loan_applications_employee_count_nonneg"
        ),
    )
    op.create_index(
        "ix_loan_applications_current_stage", "loan_applications", ["current_stage"]
    )
    op.create_index(
        "ix_loan_applications_workflow_status", "loan_applications", ["workflow_status"]
    )
    op.create_index("ix_loan_applications_created_at", "loan_applications", ["created_at"])

    op.create_table(
        "workflow_stages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("loan_id", sa.String(length=20), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        sa.Column("stage_name", sa.String(length=100), nullable=False),
        sa.Column("stage_title", sa.String(length=200), nullable=False),
        sa.Column("stage_description", sa.Text(), nullable=True),
        sa.Column("estimated_time", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stage_data", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_workflow_stages"),
        sa.ForeignKeyConstraint(
            ["loan_id"],
            ["loan_applications.loan_id"],
            name="fk_workflow_stages_loan_id_loan_applications",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("loan_id", "stage_id", name="uq_workflow_stages_loan_stage"),
        sa.CheckConstraint("stage_id BETWEEN 1 AND 8", name="ck_workflow_stages_stage_id_range"),
        sa.CheckConstraint("progress BETWEEN 0 AND 100", name="ck_workflow_stages_progress_range"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_workflow_stages_status",
        ),
    )
    op.create_index("ix_workflow_stages_loan_id", "workflow_stages", ["loan_id"])

    op.create_table(
        "uploaded_documents",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("loan_id", sa.String(length=20), nullable=False),
        sa.Column("original_filename", sa.String(length=255), nullable=False),
        sa.Column("file_extension", sa.String(length=10), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=True),
        sa.Column("storage_provider", sa.String(length=32), nullable=False),
        sa.Column("storage_bucket", sa.String(length=255), nullable=True),
        sa.Column("storage_key", sa.String(length=1024), nullable=False),
        sa.Column("storage_url", sa.String(length=2048), nullable=True),
        sa.Column("document_type", sa.String(length=50), nullable=False, server_default="other"),
        sa.Column("upload_status", sa.String(length=20), nullable=False, server_default="completed"),
        sa.Column("processing_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_uploaded_documents"),
        sa.ForeignKeyConstraint(
            ["loan_id"],
            ["loan_applications.loan_id"],
            name="fk_uploaded_documents_loan_id_loan_applications",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "document_type IN ('business_registration', 'corporate_registration', "
            "'financial_statement', 'credit_report', 'collateral_appraisal', "
            "'business_plan', 'other')",
            name="ck_uploaded_documents_document_type",
        ),
        sa.CheckConstraint(
            "upload_status IN ('completed', 'failed')", name="ck_uploaded_documents_upload_status"
        ),
        sa.CheckConstraint("file_size >= 0", name="ck_uploaded_documents_file_size_nonneg"),
    )
    op.create_index("ix_uploaded_documents_loan_id", "uploaded_documents", ["loan_id"])

    op.create_table(
        "user_actions",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("loan_id", sa.String(length=20), nullable=True),
        sa.Column("user_id", sa.String(length=100), nullable=True),
        sa.Column("user_role", sa.String(length=50), nullable=True),
        sa.Column("action_type", sa.String(length=30), nullable=False),
        sa.Column("action_description", sa.Text(), nullable=True),
        sa.Column("before_data", sa.JSON(), nullable=True),
        sa.Column("after_data", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_user_actions"),
    )
    op.create_index("ix_user_actions_loan_id", "user_actions", ["loan_id"])


def downgrade() -> None:
    op.drop_index("ix_user_actions_loan_id", table_name="user_actions")
    op.drop_table("user_actions")
    op.drop_index("ix_uploaded_documents_loan_id", table_name="uploaded_documents")
    op.drop_table("uploaded_documents")
    op.drop_index("ix_workflow_stages_loan_id", table_name="workflow_stages")
    op.drop_table("workflow_stages")
    op.drop_index("ix_loan_applications_created_at", table_name="loan_applications")
    op.drop_index("ix_loan_applications_workflow_status", table_name="loan_applications")
    op.drop_index("ix_loan_applications_current_stage", table_name="loan_applications")
    op.drop_table("loan_applications")
