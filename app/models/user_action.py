from sqlalchemy import JSON, BigInteger, Column, DateTime, String, Text, func

from app.db.base import Base


ACTION_TYPES = ("create", "upload", "stage_update", "advance", "delete")


class UserAction(Base):
    """Append-only audit trail; loan_id has no FK so rows outlive the loan."""

    __tablename__ = "user_actions"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    loan_id = Column(String(20), nullable=True, index=True)
    user_id = Column(String(100), nullable=True)
    user_role = Column(String(50), nullable=True)
    action_type = Column(String(30), nullable=False)
    action_description = Column(Text, nullable=True)
    before_data = Column(JSON, nullable=True)
    after_data = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
