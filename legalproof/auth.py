"""
Wallet authentication - challenge/response flow

    create_challenge -> wallet signs message -> verify_signature_and_issue_token
"""

import logging
from typing import Any, Dict

from .challenges import Challenge, ChallengeStore
from .errors import InvalidSignature
from .keys import SignatureVerifier, normalize_wallet_pubkey
from .tokens import TokenIssuer

logger = logging.getLogger("legalproof.auth")


class AuthService:
    """Ties challenge store, signature verifier and token issuer together"""

    def __init__(
        self,
        challenges: ChallengeStore,
        verifier: SignatureVerifier,
        tokens: TokenIssuer
    ):
        self.challenges = challenges
        self.verifier = verifier
        self.tokens = tokens

    def create_challenge(self, wallet_pubkey: str) -> Challenge:
        return self.challenges.issue(wallet_pubkey)

    def verify_signature_and_issue_token(
        self,
        wallet_pubkey: str,
        challenge_id: str,
        signature_hex: str
    ) -> Dict[str, Any]:
        """
        Check a signed challenge and mint a bearer token

        The challenge survives a bad signature so the wallet can retry
        until it expires; it is consumed only once the signature checks out.
        Consumption is atomic, so of two concurrent verifications on the
        same challenge only one gets a token.

        Raises:
            ValidationError: malformed key or signature encoding
            AuthenticationError: unknown/expired/mismatched challenge or bad signature
        """
        wallet = normalize_wallet_pubkey(wallet_pubkey)
        message = self.challenges.peek(challenge_id, wallet)

        if not self.verifier.verify(wallet, message, (signature_hex or "").strip()):
            logger.warning("Invalid signature for challenge %s", challenge_id)
            raise InvalidSignature("Invalid signature")

        # anti-replay
        self.challenges.consume(challenge_id, wallet)

        issued = self.tokens.issue(wallet)
        return {
            "ok": True,
            "wallet_pubkey": wallet,
            "token": issued["token"],
            "expires_in_seconds": issued["expires_in_seconds"],
        }
