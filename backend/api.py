import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import uvicorn

from legalproof.age import BirthDate, UserHasher
from legalproof.auth import AuthService
from legalproof.challenges import ChallengeStore
from legalproof.claims import AGE_18_PLUS, ClaimLifecycleManager, check_claim_type
from legalproof.config import Settings
from legalproof.db import init_db, make_engine, make_session_factory
from legalproof.errors import (
    AuthenticationError,
    ClaimConflictError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from legalproof.keys import SignatureVerifier
from legalproof.ledger import JsonRpcLedgerClient, LedgerClient
from legalproof.onboarding import OnboardingService
from legalproof.tokens import TokenIssuer

from backend import schemas

logger = logging.getLogger("legalproof.api")


@dataclass
class Services:
    """Everything the routes need; built once per application lifespan"""
    auth: AuthService
    tokens: TokenIssuer
    claims: ClaimLifecycleManager
    onboarding: OnboardingService
    ledger_enabled: bool


def build_services(settings: Settings, ledger: Optional[LedgerClient] = None) -> Services:
    engine = make_engine(settings.DATABASE_URL)
    init_db(engine)
    session_factory = make_session_factory(engine)

    if ledger is None and settings.LEDGER_RPC_URL:
        ledger = JsonRpcLedgerClient(settings.LEDGER_RPC_URL, timeout=settings.LEDGER_TIMEOUT_SECONDS)

    tokens = TokenIssuer(
        secret=settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
        expires_in_seconds=settings.JWT_EXPIRES_IN_SECONDS,
    )
    auth = AuthService(
        challenges=ChallengeStore(ttl_seconds=settings.CHALLENGE_TTL_SECONDS),
        verifier=SignatureVerifier(),
        tokens=tokens,
    )
    claims = ClaimLifecycleManager(
        session_factory,
        hasher=UserHasher(settings.USER_HASH_SALT),
        ledger=ledger,
        validity_years=settings.CLAIM_VALIDITY_YEARS,
    )

    return Services(
        auth=auth,
        tokens=tokens,
        claims=claims,
        onboarding=OnboardingService(session_factory, claims),
        ledger_enabled=ledger is not None,
    )


# ============================================================
# DEPENDENCIES
# ============================================================

bearer = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_scope(scope: Optional[str] = None) -> Callable[..., str]:
    """Bearer guard: returns the wallet from the token subject"""

    def current_wallet(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
        services: Services = Depends(get_services),
    ) -> str:
        if credentials is None:
            raise AuthenticationError("Missing Bearer token")

        payload = services.tokens.decode(credentials.credentials)
        if scope is not None and scope not in (payload.get("scope") or []):
            raise AuthenticationError(f"Token lacks scope {scope}")
        return payload["sub"].strip()

    return current_wallet


authenticated = require_scope()
create_scope = require_scope("proof:create")
revoke_scope = require_scope("proof:revoke")


# ============================================================
# AUTH ENDPOINTS - wallet ownership challenge/response
# ============================================================

router = APIRouter()


@router.get("/health")
def health(services: Services = Depends(get_services)):
    return {"ok": True, "ledger_enabled": services.ledger_enabled}


@router.get("/auth/challenge")
def challenge(
    wallet_pubkey: str = Query(...),
    services: Services = Depends(get_services),
):
    """Issue a single-use message for the wallet to sign (valid 5 minutes)"""
    return services.auth.create_challenge(wallet_pubkey).to_dict()


@router.post("/auth/verify")
def verify(payload: schemas.VerifyIn, services: Services = Depends(get_services)):
    """Check the signed challenge and return a short-lived bearer token"""
    return services.auth.verify_signature_and_issue_token(
        payload.wallet_pubkey,
        payload.challenge_id,
        payload.signature_hex,
    )


# ============================================================
# PROOF ENDPOINTS - age claim lifecycle
# ============================================================

@router.get("/api/verify")
def public_verify(
    wallet_pubkey: str = Query(...),
    claim_type: str = Query(AGE_18_PLUS),
    services: Services = Depends(get_services),
):
    """
    Aggregated majority status for integrators

    No birthdate or raw personal data is ever returned.
    """
    claim_type = check_claim_type(claim_type)
    status = services.claims.get_status(wallet_pubkey, claim_type)
    return {
        "wallet_pubkey": status["wallet_pubkey"],
        "claim_type": claim_type,
        "status": status,
    }


@router.get("/proof/status", response_model=schemas.StatusOut)
def proof_status(
    wallet: str = Depends(authenticated),
    services: Services = Depends(get_services),
):
    return services.claims.get_status(wallet)


@router.post("/proof/claim")
def create_claim(
    payload: schemas.ClaimIn,
    wallet: str = Depends(create_scope),
    services: Services = Depends(get_services),
):
    birth_date = BirthDate(day=payload.day, month=payload.month, year=payload.year)
    result = services.claims.create_if_major(wallet, birth_date, session_id=payload.session_id)
    return result.to_dict()


@router.post("/proof/revoke", response_model=schemas.RevokeOut)
def revoke_claim(
    payload: Optional[schemas.RevokeIn] = None,
    wallet: str = Depends(revoke_scope),
    services: Services = Depends(get_services),
):
    """Revoke the token wallet's active claim (a wallet in the body is ignored)"""
    claim_type = payload.claim_type if payload else None
    return services.claims.revoke(wallet, check_claim_type(claim_type))


@router.post("/proof/anchor")
def anchor_claim(
    payload: Optional[schemas.AnchorIn] = None,
    wallet: str = Depends(create_scope),
    services: Services = Depends(get_services),
):
    """Retry ledger anchoring of the active claim"""
    claim_type = check_claim_type(payload.claim_type if payload else None)
    return {
        "wallet_pubkey": wallet,
        "claim_type": claim_type,
        "deploy_hash": services.claims.anchor(wallet, claim_type),
    }


# ============================================================
# ONBOARDING ENDPOINTS
# ============================================================

@router.post("/onboarding/init")
def onboarding_init(
    payload: Optional[schemas.OnboardingInitIn] = None,
    wallet: str = Depends(create_scope),
    services: Services = Depends(get_services),
):
    redirect_url = payload.redirect_url if payload else None
    return services.onboarding.init_session(wallet, redirect_url)


@router.post("/onboarding/complete")
def onboarding_complete(
    payload: schemas.OnboardingCompleteIn,
    services: Services = Depends(get_services),
):
    """Identity-provider callback; returns only the majority outcome"""
    birth_date = BirthDate(day=payload.day, month=payload.month, year=payload.year)
    return services.onboarding.complete_session(payload.session_id, birth_date)


# ============================================================
# APPLICATION
# ============================================================

def _error(status_code: int, detail: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, **extra})


def register_error_handlers(app: FastAPI):

    @app.exception_handler(ValidationError)
    async def on_validation_error(request: Request, exc: ValidationError):
        return _error(400, str(exc))

    @app.exception_handler(AuthenticationError)
    async def on_authentication_error(request: Request, exc: AuthenticationError):
        logger.warning("Authentication failed on %s: %s", request.url.path, exc)
        return _error(401, str(exc))

    @app.exception_handler(NotFoundError)
    async def on_not_found(request: Request, exc: NotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(ClaimConflictError)
    async def on_conflict(request: Request, exc: ClaimConflictError):
        return _error(409, str(exc))

    @app.exception_handler(LedgerError)
    async def on_ledger_error(request: Request, exc: LedgerError):
        # detail was logged and recorded where it happened; callers get the generic message
        result = exc.result.to_dict() if exc.result is not None else None
        return _error(502, LedgerError.public_message, result=result)


def create_app(settings: Optional[Settings] = None, ledger: Optional[LedgerClient] = None) -> FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.LOG_LEVEL)
        logger.info("Starting LegalProof API...")
        app.state.services = build_services(settings, ledger)
        logger.info(
            "Claims ready (validity %d years, ledger %s)",
            settings.CLAIM_VALIDITY_YEARS,
            "enabled" if app.state.services.ledger_enabled else "disabled (off-chain)",
        )
        yield
        logger.info("Shutting down...")

    app = FastAPI(title="LegalProof API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("backend.api:app", host="0.0.0.0", port=8000)
