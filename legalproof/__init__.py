"""
LegalProof - pseudonymous "18+" claims for wallets
===================================================

Components:
- ChallengeStore / SignatureVerifier / TokenIssuer / AuthService:
  wallet ownership proof (Ed25519 and secp256k1 wallet keys)
- ClaimLifecycleManager: create/rotate, query and revoke age claims
- LedgerClient: anchoring of claims on an external ledger
- OnboardingService: identity-provider round trips feeding claim creation

Raw birthdates are never stored or returned; only a majority flag and a
validity window are.
"""

from .age import AgeComputation, BirthDate, UserHasher, compute_age
from .auth import AuthService
from .challenges import Challenge, ChallengeStore
from .claims import AGE_18_PLUS, ClaimLifecycleManager, CreateClaimResult
from .config import Settings
from .errors import (
    AuthenticationError,
    ClaimConflictError,
    LedgerError,
    LegalProofError,
    NotFoundError,
    ValidationError,
)
from .keys import KeyAlgorithm, SignatureVerifier, WalletKey, parse_wallet_pubkey
from .ledger import JsonRpcLedgerClient, LedgerClient
from .onboarding import OnboardingService
from .tokens import TokenIssuer

__version__ = "1.0.0"
__all__ = [
    # Authentication
    "AuthService",
    "Challenge",
    "ChallengeStore",
    "SignatureVerifier",
    "TokenIssuer",
    "KeyAlgorithm",
    "WalletKey",
    "parse_wallet_pubkey",

    # Age
    "AgeComputation",
    "BirthDate",
    "UserHasher",
    "compute_age",

    # Claims
    "AGE_18_PLUS",
    "ClaimLifecycleManager",
    "CreateClaimResult",
    "LedgerClient",
    "JsonRpcLedgerClient",
    "OnboardingService",

    # Config & errors
    "Settings",
    "LegalProofError",
    "ValidationError",
    "AuthenticationError",
    "NotFoundError",
    "ClaimConflictError",
    "LedgerError",
]
