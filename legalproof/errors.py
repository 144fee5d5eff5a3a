"""
Domain errors
=============

Every error raised by the core derives from LegalProofError so the HTTP
layer can map whole families at once:

- ValidationError      -> 400 (rejected before any state change)
- AuthenticationError  -> 401 (no partial state change)
- NotFoundError        -> 404
- ClaimConflictError   -> 409
- LedgerError          -> 502 (local claim state is never reverted)
"""

from typing import Optional


class LegalProofError(Exception):
    """Base class for all LegalProof errors"""


# ==================== CLIENT ERRORS ====================

class ValidationError(LegalProofError):
    """Malformed input (public key, signature, date fields, claim type)"""


class InvalidFormat(ValidationError):
    """Public key or signature is not well-formed hex of the expected size"""


class UnsupportedAlgorithm(ValidationError):
    """Public key tag is neither 01 (Ed25519) nor 02 (secp256k1)"""


class UnsupportedClaimType(ValidationError):
    pass


# ==================== AUTHENTICATION ====================

class AuthenticationError(LegalProofError):
    """Unknown/expired challenge, bad signature, missing or expired token"""


class UnknownOrExpired(AuthenticationError):
    pass


class WalletMismatch(AuthenticationError):
    pass


class Expired(AuthenticationError):
    pass


class InvalidSignature(AuthenticationError):
    pass


# ==================== STATE ====================

class NotFoundError(LegalProofError):
    pass


class ClaimConflictError(LegalProofError):
    """Another process committed an active claim for the same key first"""


class LedgerError(LegalProofError):
    """
    A ledger submission or revocation failed.

    `public_message` is safe to show to callers; `detail` is kept for
    operators (logs, ledger_submissions table) and never returned over HTTP.
    `result` carries the already-committed local outcome when there is one.
    """

    public_message = "Ledger submission failed; the claim is recorded off-ledger"

    def __init__(self, detail: str, result: Optional[object] = None):
        super().__init__(detail)
        self.detail = detail
        self.result = result
