"""
Onboarding sessions - correlate an identity-provider round trip with a wallet

The session id is the opaque tag stored on claim rows created through the
flow. The birthdate only passes through to the claim manager.
"""

import logging
import secrets
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from .age import BirthDate
from .claims import ClaimLifecycleManager
from .errors import LedgerError, NotFoundError
from .keys import normalize_wallet_pubkey
from .models import OnboardingSession

logger = logging.getLogger("legalproof.onboarding")

STATUS_PENDING = "pending"
STATUS_AGE_VERIFIED = "age_verified"
STATUS_AGE_REJECTED = "age_rejected"


class OnboardingService:

    def __init__(self, session_factory: sessionmaker, claims: ClaimLifecycleManager):
        self.session_factory = session_factory
        self.claims = claims

    def init_session(self, wallet_pubkey: str, redirect_url: Optional[str] = None) -> Dict[str, str]:
        """Open a pending onboarding session for an authenticated wallet"""
        session_id = secrets.token_hex(16)
        redirect_url = (redirect_url or "").strip() or None

        with self.session_factory() as db, db.begin():
            db.add(OnboardingSession(
                id=session_id,
                wallet_pubkey=normalize_wallet_pubkey(wallet_pubkey),
                redirect_url=redirect_url,
                status=STATUS_PENDING,
            ))

        return {"session_id": session_id}

    def complete_session(self, session_id: str, birth_date: BirthDate) -> Dict[str, Any]:
        """
        Finish a session with the birthdate returned by the identity provider

        Raises:
            NotFoundError: unknown session id
            LedgerError: anchoring failed (the session is still updated)
        """
        with self.session_factory() as db:
            session = db.get(OnboardingSession, (session_id or "").strip())
            if session is None:
                raise NotFoundError("Session not found")
            wallet, redirect_url = session.wallet_pubkey, session.redirect_url

        ledger_error = None
        try:
            result = self.claims.create_if_major(wallet, birth_date, session_id=session_id)
        except LedgerError as e:
            ledger_error, result = e, e.result

        status = STATUS_AGE_VERIFIED if result.is_major else STATUS_AGE_REJECTED
        with self.session_factory() as db, db.begin():
            db.get(OnboardingSession, session_id).status = status

        logger.info("Onboarding session %s completed: %s", session_id, status)
        if ledger_error is not None:
            raise ledger_error

        return {
            "session_id": session_id,
            "status": status,
            "is_major": result.is_major,
            "claim_created": result.claim_created,
            "deploy_hash": result.deploy_hash,
            "redirect_url": redirect_url,
            "wallet_pubkey": wallet,
        }
