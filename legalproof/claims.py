"""
Age Claim Lifecycle
===================

State machine per (wallet_pubkey, claim_type):

    NO_CLAIM -> ACTIVE -> REVOKED

A REVOKED row is terminal. A newer ACTIVE row may supersede it (rotation).
Rows are never deleted; minors only ever produce already-revoked audit rows.

Invariant: at most one revoked=false row per (wallet_pubkey, claim_type).
Rotations and revocations on one key are serialized by `exclusive_active`;
different wallets never wait on each other. Ledger calls happen after the
local commit, outside every lock.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .age import BirthDate, UserHasher, compute_age
from .errors import ClaimConflictError, LedgerError, UnsupportedClaimType, ValidationError
from .keys import normalize_wallet_pubkey
from .ledger import LedgerClient
from .models import AgeClaim, LedgerSubmission
from .timeutil import add_years, to_unix, utcnow

logger = logging.getLogger("legalproof.claims")

AGE_18_PLUS = "AGE_18_PLUS"
SUPPORTED_CLAIM_TYPES = frozenset({AGE_18_PLUS})
DEFAULT_VALIDITY_YEARS = 2


def check_claim_type(claim_type: Optional[str]) -> str:
    claim_type = (claim_type or AGE_18_PLUS).strip()
    if claim_type not in SUPPORTED_CLAIM_TYPES:
        raise UnsupportedClaimType(f"Unsupported claim_type: {claim_type}")
    return claim_type


@dataclass
class CreateClaimResult:
    is_major: bool
    claim_created: bool
    deploy_hash: Optional[str]
    claim_params: Dict[str, Any]
    claim_id: Optional[int] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isMajor": self.is_major,
            "claimCreated": self.claim_created,
            "deployHash": self.deploy_hash,
            "claimParams": dict(self.claim_params),
        }


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0  # holding or waiting


class KeyedLock:
    """One mutex per key, created on demand and dropped once nobody holds or waits on it"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, _LockEntry] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, _LockEntry())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class ClaimLifecycleManager:
    """
    Creates, rotates, queries and revokes age claims

    Features:
    - Atomic rotation (revoke previous active + insert new) for majors
    - Audit-only rows for minors, never touching an active claim
    - Status resolution without exposing birthdate or age
    - Optional ledger anchoring of creation and revocation
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        hasher: Optional[UserHasher] = None,
        ledger: Optional[LedgerClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
        validity_years: int = DEFAULT_VALIDITY_YEARS
    ):
        self.session_factory = session_factory
        self.hasher = hasher or UserHasher()
        self.ledger = ledger
        self.clock = clock or utcnow
        self.validity_years = validity_years
        self._locks = KeyedLock()

    # ==================== EXCLUSIVE ACCESS ====================

    @contextmanager
    def exclusive_active(self, wallet_pubkey: str, claim_type: str) -> Iterator[Tuple[Session, List[AgeClaim]]]:
        """
        Transaction holding exclusive access to a key's active rows

        Serializes against every other rotation/revocation of the same
        (wallet_pubkey, claim_type): in-process via a per-key lock, across
        processes via SELECT ... FOR UPDATE where the engine supports it.
        Commits on normal exit, rolls back on error.
        """
        with self._locks.hold((wallet_pubkey, claim_type)):
            with self.session_factory() as session, session.begin():
                active = (
                    session.query(AgeClaim)
                    .filter(
                        AgeClaim.wallet_pubkey == wallet_pubkey,
                        AgeClaim.claim_type == claim_type,
                        AgeClaim.revoked.is_(False),
                    )
                    .with_for_update()
                    .all()
                )
                yield session, active

    # ==================== CLAIM PARAMS ====================

    def build_claim_params(
        self,
        wallet_pubkey: str,
        birth_date: Union[BirthDate, Any],
        validity_years: Optional[int] = None,
        reference: Optional[datetime] = None,
        claim_type: str = AGE_18_PLUS
    ) -> Dict[str, Any]:
        """Ledger-facing claim parameters (window in unix seconds)"""
        now = reference or self.clock()
        years = self.validity_years if validity_years is None else validity_years
        ages = compute_age(birth_date, now)

        return {
            "user_hash": self.hasher.compute_user_hash(wallet_pubkey),
            "claim_type": claim_type,
            "value": ages.is_major,
            "valid_from": to_unix(now),
            "valid_until": to_unix(add_years(now, years)),
            "revoked": False,
        }

    # ==================== CREATION / ROTATION ====================

    def create_if_major(
        self,
        wallet_pubkey: str,
        birth_date: BirthDate,
        validity_years: Optional[int] = None,
        session_id: Optional[str] = None,
        claim_type: str = AGE_18_PLUS
    ) -> CreateClaimResult:
        """
        Record an age computation and, for a major, rotate the active claim

        Args:
            wallet_pubkey: Authenticated wallet (from the token subject)
            birth_date: Birthdate from the identity provider (never stored)
            validity_years: Claim window length, defaults to the configured one
            session_id: Optional onboarding correlation tag

        Returns:
            CreateClaimResult

        Raises:
            LedgerError: anchoring failed; the claim is committed regardless
                and available as `error.result`
        """
        wallet = normalize_wallet_pubkey(wallet_pubkey)
        claim_type = check_claim_type(claim_type)
        years = self.validity_years if validity_years is None else validity_years
        if years < 1:
            raise ValidationError("validity_years must be at least 1")

        now = self.clock()
        ages = compute_age(birth_date, now)
        params = self.build_claim_params(wallet, birth_date, years, now, claim_type)

        row = AgeClaim(
            session_id=session_id,
            wallet_pubkey=wallet,
            user_hash=params["user_hash"],
            claim_type=claim_type,
            age=ages.age,
            is_major=ages.is_major,
            valid_from=now,
            valid_until=add_years(now, years),
            submission_hash=None,
            created_at=now,
        )

        if not ages.is_major:
            # audit only, never active; existing claims stay untouched
            row.revoked = True
            with self.session_factory() as session, session.begin():
                session.add(row)
            logger.info("Minor age computation recorded for %s", params["user_hash"])
            return CreateClaimResult(
                is_major=False,
                claim_created=False,
                deploy_hash=None,
                claim_params={**params, "revoked": True},
                claim_id=row.id,
            )

        row.revoked = False
        try:
            with self.exclusive_active(wallet, claim_type) as (session, active):
                for previous in active:
                    previous.revoked = True
                # the revocations must reach the database before the insert
                session.flush()
                session.add(row)
        except IntegrityError as e:
            raise ClaimConflictError("A concurrent rotation for this wallet committed first") from e

        logger.info(
            "Rotated %s claim for %s (superseded %d)",
            claim_type, params["user_hash"], len(active)
        )
        result = CreateClaimResult(
            is_major=True,
            claim_created=True,
            deploy_hash=None,
            claim_params=params,
            claim_id=row.id,
        )

        if self.ledger is not None:
            result.deploy_hash = self._anchor_row(wallet, row.id, params, result)
        return result

    # ==================== STATUS ====================

    def get_status(self, wallet_pubkey: str, claim_type: str = AGE_18_PLUS) -> Dict[str, Any]:
        """
        Aggregated majority status; never includes birthdate or age

        is_major is true only for a non-revoked major claim whose window
        contains the current time.
        """
        wallet = normalize_wallet_pubkey(wallet_pubkey)
        claim_type = check_claim_type(claim_type)
        now = self.clock()

        with self.session_factory() as session:
            active = (
                self._rows(session, wallet, claim_type)
                .filter(AgeClaim.revoked.is_(False), AgeClaim.is_major.is_(True))
                .first()
            )
            if active is not None and active.valid_from <= now <= active.valid_until:
                return self._status(wallet, active, is_major=True)

            latest = self._rows(session, wallet, claim_type).first()

        if latest is None:
            return {
                "wallet_pubkey": wallet,
                "has_proof": False,
                "is_major": False,
                "revoked": False,
                "valid_from": None,
                "valid_until": None,
                "deploy_hash": None,
            }
        return self._status(wallet, latest, is_major=False)

    # ==================== REVOCATION ====================

    def revoke(self, wallet_pubkey: str, claim_type: str = AGE_18_PLUS) -> Dict[str, Any]:
        """
        Revoke the active claim of a wallet

        With nothing active, reports the latest history without mutating
        anything, so repeated calls observe the same terminal state.

        Raises:
            LedgerError: ledger revocation failed; the claim stays active
        """
        wallet = normalize_wallet_pubkey(wallet_pubkey)
        claim_type = check_claim_type(claim_type)

        with self.session_factory() as session:
            active = self._rows(session, wallet, claim_type).filter(AgeClaim.revoked.is_(False)).first()
            if active is None:
                latest = self._rows(session, wallet, claim_type).first()
                return self._revocation(wallet, claim_type, latest)
            claim_id, user_hash = active.id, active.user_hash

        submission_hash = None
        if self.ledger is not None:
            try:
                submission_hash = self.ledger.revoke(user_hash, claim_type)
            except LedgerError as e:
                logger.error("Ledger revocation failed for claim %s: %s", claim_id, e.detail)
                self._record_submission(wallet, claim_id, "revoke", error=e.detail)
                raise

        # the ledger revoked the user hash, so whatever is active now goes too;
        # a row superseded meanwhile keeps its own submission hash
        with self.exclusive_active(wallet, claim_type) as (session, active):
            if claim_id not in {row.id for row in active}:
                logger.warning(
                    "Claim %s was superseded during revocation; revoking %d current claim(s)",
                    claim_id, len(active)
                )
            for row in active:
                row.revoked = True
                if row.id == claim_id and submission_hash is not None:
                    row.submission_hash = submission_hash
            if submission_hash is not None:
                session.add(LedgerSubmission(
                    wallet_pubkey=wallet,
                    claim_id=claim_id,
                    operation="revoke",
                    submission_hash=submission_hash,
                ))
            session.flush()
            result = self._revocation(wallet, claim_type, self._rows(session, wallet, claim_type).first())
            if submission_hash is not None:
                result["deploy_hash"] = submission_hash

        logger.info("Revoked %s claim for %s", claim_type, user_hash)
        return result

    # ==================== ANCHORING ====================

    def anchor(self, wallet_pubkey: str, claim_type: str = AGE_18_PLUS) -> Optional[str]:
        """
        Retry ledger anchoring of the active claim

        Returns:
            The submission hash (existing or new), None when nothing is active
        """
        wallet = normalize_wallet_pubkey(wallet_pubkey)
        claim_type = check_claim_type(claim_type)

        with self.session_factory() as session:
            active = self._rows(session, wallet, claim_type).filter(AgeClaim.revoked.is_(False)).first()
            if active is None:
                return None
            if active.submission_hash:
                return active.submission_hash
            params = {
                "user_hash": active.user_hash,
                "claim_type": active.claim_type,
                "value": active.is_major,
                "valid_from": to_unix(active.valid_from),
                "valid_until": to_unix(active.valid_until),
                "revoked": False,
            }
            claim_id = active.id

        if self.ledger is None:
            raise LedgerError("No ledger client configured; anchoring is disabled")
        return self._anchor_row(wallet, claim_id, params)

    def _anchor_row(
        self,
        wallet: str,
        claim_id: int,
        params: Dict[str, Any],
        result: Optional[CreateClaimResult] = None
    ) -> str:
        try:
            submission_hash = self.ledger.submit(params)
        except LedgerError as e:
            logger.error("Ledger submission failed for claim %s: %s", claim_id, e.detail)
            self._record_submission(wallet, claim_id, "submit", error=e.detail)
            raise LedgerError(e.detail, result=result) from e

        with self.session_factory() as session, session.begin():
            row = session.get(AgeClaim, claim_id)
            if row.submission_hash is None:
                row.submission_hash = submission_hash
            session.add(LedgerSubmission(
                wallet_pubkey=wallet,
                claim_id=claim_id,
                operation="submit",
                submission_hash=submission_hash,
            ))
        return submission_hash

    def _record_submission(
        self,
        wallet: str,
        claim_id: Optional[int],
        operation: str,
        submission_hash: Optional[str] = None,
        error: Optional[str] = None
    ):
        with self.session_factory() as session, session.begin():
            session.add(LedgerSubmission(
                wallet_pubkey=wallet,
                claim_id=claim_id,
                operation=operation,
                submission_hash=submission_hash,
                error=error,
            ))

    # ==================== HISTORY ====================

    def history(self, wallet_pubkey: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Every row for a wallet, newest first, including audit rows"""
        wallet = normalize_wallet_pubkey(wallet_pubkey)
        with self.session_factory() as session:
            rows = (
                session.query(AgeClaim)
                .filter(AgeClaim.wallet_pubkey == wallet)
                .order_by(AgeClaim.created_at.desc(), AgeClaim.id.desc())
                .limit(limit)
                .all()
            )
        return [
            {
                "id": r.id,
                "session_id": r.session_id,
                "claim_type": r.claim_type,
                "age": r.age,
                "is_major": r.is_major,
                "revoked": r.revoked,
                "valid_from": to_unix(r.valid_from),
                "valid_until": to_unix(r.valid_until),
                "deploy_hash": r.submission_hash,
                "created_at": r.created_at.isoformat() + "Z",
            }
            for r in rows
        ]

    # ==================== HELPERS ====================

    @staticmethod
    def _rows(session: Session, wallet: str, claim_type: str):
        return (
            session.query(AgeClaim)
            .filter(AgeClaim.wallet_pubkey == wallet, AgeClaim.claim_type == claim_type)
            .order_by(AgeClaim.created_at.desc(), AgeClaim.id.desc())
        )

    @staticmethod
    def _status(wallet: str, row: AgeClaim, is_major: bool) -> Dict[str, Any]:
        return {
            "wallet_pubkey": wallet,
            "has_proof": True,
            "is_major": is_major,
            "revoked": row.revoked,
            "valid_from": to_unix(row.valid_from),
            "valid_until": to_unix(row.valid_until),
            "deploy_hash": row.submission_hash,
        }

    @staticmethod
    def _revocation(wallet: str, claim_type: str, row: Optional[AgeClaim]) -> Dict[str, Any]:
        return {
            "wallet_pubkey": wallet,
            "claim_type": claim_type,
            "had_proof": row is not None,
            "revoked": row is not None,
            "deploy_hash": row.submission_hash if row is not None else None,
            "valid_from": to_unix(row.valid_from) if row is not None else None,
            "valid_until": to_unix(row.valid_until) if row is not None else None,
        }
