from pydantic import BaseModel, Field
from typing import Optional


class VerifyIn(BaseModel):
    wallet_pubkey: str
    challenge_id: str
    signature_hex: str


class BirthDateIn(BaseModel):
    day: int = Field(..., ge=1, le=31)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=2100)


class ClaimIn(BirthDateIn):
    session_id: Optional[str] = None


class RevokeIn(BaseModel):
    claim_type: Optional[str] = None
    # accepted for compatibility, never used: the wallet comes from the token
    wallet_pubkey: Optional[str] = None


class AnchorIn(BaseModel):
    claim_type: Optional[str] = None


class OnboardingInitIn(BaseModel):
    redirect_url: Optional[str] = None


class OnboardingCompleteIn(BirthDateIn):
    session_id: str


class StatusOut(BaseModel):
    wallet_pubkey: str
    has_proof: bool
    is_major: bool
    revoked: bool
    valid_from: Optional[int] = None
    valid_until: Optional[int] = None
    deploy_hash: Optional[str] = None


class RevokeOut(BaseModel):
    wallet_pubkey: str
    claim_type: str
    had_proof: bool
    revoked: bool
    deploy_hash: Optional[str] = None
    valid_from: Optional[int] = None
    valid_until: Optional[int] = None
