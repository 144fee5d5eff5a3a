"""
Challenge Store - short-lived, single-use wallet ownership challenges

The store is process-local: it does not survive a restart and is not shared
across instances. A multi-instance deployment needs a shared keyed cache
with TTL in its place to keep anti-replay guarantees.
"""

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from .errors import Expired, UnknownOrExpired, WalletMismatch
from .keys import normalize_wallet_pubkey
from .timeutil import isoformat_z, utcnow

logger = logging.getLogger("legalproof.challenges")

CHALLENGE_TTL_SECONDS = 5 * 60
CHALLENGE_PURPOSE = "prove_wallet_ownership"


@dataclass
class Challenge:
    """A challenge as returned to the caller"""
    challenge_id: str
    wallet_pubkey: str
    message: str
    expires_at: datetime

    def to_dict(self) -> Dict[str, str]:
        return {
            "challenge_id": self.challenge_id,
            "wallet_pubkey": self.wallet_pubkey,
            "message_to_sign": self.message,
            "expires_at": isoformat_z(self.expires_at),
        }


@dataclass
class _StoredChallenge:
    wallet_pubkey: str
    message: str
    expires_at: datetime


def build_challenge_message(wallet_pubkey: str, nonce: str, issued_at: datetime) -> str:
    """Deterministic message binding wallet, nonce, issuance time and purpose"""
    return (
        f"LegalProof|auth|wallet_pubkey={wallet_pubkey}"
        f"|nonce={nonce}"
        f"|issued_at={isoformat_z(issued_at)}"
        f"|purpose={CHALLENGE_PURPOSE}"
    )


class ChallengeStore:
    """
    Issues and atomically consumes authentication challenges

    Features:
    - 128-bit random challenge ids, 256-bit nonces
    - TTL expiry (expired entries are removed when touched or purged)
    - Exactly-once consumption under a lock
    """

    def __init__(
        self,
        ttl_seconds: int = CHALLENGE_TTL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or utcnow
        self._challenges: Dict[str, _StoredChallenge] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)

    # ==================== ISSUANCE ====================

    def issue(self, wallet_pubkey: str) -> Challenge:
        """
        Issue a new challenge for a wallet

        Args:
            wallet_pubkey: Hex wallet public key (validated here)

        Returns:
            Challenge with the message the wallet must sign

        Raises:
            InvalidFormat / UnsupportedAlgorithm for a malformed key
        """
        wallet = normalize_wallet_pubkey(wallet_pubkey)

        challenge_id = secrets.token_hex(16)
        nonce = secrets.token_hex(32)
        issued_at = self.clock()
        expires_at = issued_at + self.ttl
        message = build_challenge_message(wallet, nonce, issued_at)

        with self._lock:
            self._purge_expired_locked(issued_at)
            self._challenges[challenge_id] = _StoredChallenge(
                wallet_pubkey=wallet,
                message=message,
                expires_at=expires_at,
            )

        logger.debug("Issued challenge %s", challenge_id)
        return Challenge(
            challenge_id=challenge_id,
            wallet_pubkey=wallet,
            message=message,
            expires_at=expires_at,
        )

    # ==================== CONSUMPTION ====================

    def peek(self, challenge_id: str, wallet_pubkey: str) -> str:
        """Return the stored message without consuming it (expired entries are dropped)"""
        challenge_id = (challenge_id or "").strip()
        with self._lock:
            return self._check_locked(challenge_id, wallet_pubkey).message

    def consume(self, challenge_id: str, wallet_pubkey: str) -> str:
        """
        Atomically check and remove a challenge

        Returns:
            The message that was issued for signing

        Raises:
            UnknownOrExpired: no such challenge (or already consumed)
            WalletMismatch: challenge was issued to another wallet
            Expired: TTL elapsed; the entry is removed
        """
        challenge_id = (challenge_id or "").strip()
        with self._lock:
            stored = self._check_locked(challenge_id, wallet_pubkey)
            del self._challenges[challenge_id]

        logger.debug("Consumed challenge %s", challenge_id)
        return stored.message

    def purge_expired(self) -> int:
        """Drop every expired challenge, returns how many were removed"""
        with self._lock:
            return self._purge_expired_locked(self.clock())

    # ==================== HELPERS ====================

    def _check_locked(self, challenge_id: str, wallet_pubkey: str) -> _StoredChallenge:
        stored = self._challenges.get(challenge_id)
        if stored is None:
            raise UnknownOrExpired("Unknown or expired challenge_id")

        if stored.wallet_pubkey != normalize_wallet_pubkey(wallet_pubkey):
            raise WalletMismatch("Challenge does not match wallet_pubkey")

        if self.clock() > stored.expires_at:
            del self._challenges[challenge_id]
            raise Expired("Challenge expired")

        return stored

    def _purge_expired_locked(self, now: datetime) -> int:
        expired = [cid for cid, c in self._challenges.items() if now > c.expires_at]
        for cid in expired:
            del self._challenges[cid]
        return len(expired)
