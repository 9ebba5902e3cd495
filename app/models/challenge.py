from sqlalchemy import Column, DateTime, Index, Integer, String

from app.database import Base


class ChallengeEntry(Base):
    __tablename__ = "otp_challenges"

    id = Column(Integer, primary_key=True)
    identifier = Column(String(255), nullable=False, unique=True)
    code = Column(String(10), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_otp_challenges_expires_at", "expires_at"),)
