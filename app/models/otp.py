from sqlalchemy import Column, DateTime, Index, Integer, String

from app.database import Base


class OtpEntry(Base):
    __tablename__ = "otp_codes"

    id = Column(Integer, primary_key=True)
    identity = Column(String(255), nullable=False)
    code_hash = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_otp_identity_code_hash", "identity", "code_hash"),
        Index("ix_otp_expires_at", "expires_at"),
    )
