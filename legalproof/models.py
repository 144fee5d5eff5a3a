from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, text

from .db import Base
from .timeutil import utcnow


class AgeClaim(Base):
    """Append-only claim log; at most one revoked=false row per (wallet_pubkey, claim_type)"""
    __tablename__ = "age_claims"
    __table_args__ = (
        Index("ix_age_claims_wallet_type", "wallet_pubkey", "claim_type"),
        Index(
            "ux_age_claims_active",
            "wallet_pubkey",
            "claim_type",
            unique=True,
            postgresql_where=text("revoked = false"),
            sqlite_where=text("revoked = 0"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, nullable=True)  # onboarding correlation tag, never interpreted
    wallet_pubkey = Column(String, nullable=False)
    user_hash = Column(String, nullable=False)
    claim_type = Column(String, nullable=False)
    age = Column(Integer, nullable=False)
    is_major = Column(Boolean, nullable=False)
    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    submission_hash = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class LedgerSubmission(Base):
    """Operator-only record of every ledger call attempt"""
    __tablename__ = "ledger_submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_pubkey = Column(String, nullable=True)
    claim_id = Column(Integer, ForeignKey("age_claims.id"), nullable=True)
    operation = Column(String, nullable=False)  # submit | revoke
    submission_hash = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class OnboardingSession(Base):
    __tablename__ = "onboarding_sessions"

    id = Column(String, primary_key=True)
    wallet_pubkey = Column(String, nullable=False)
    redirect_url = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
