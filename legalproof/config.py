"""
config.py - Centralized settings for the LegalProof service
"""
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Storage
    DATABASE_URL: str = "sqlite:///./legalproof.db"

    # Pseudonymous subject id (user_hash) salt
    USER_HASH_SALT: str = "legalproof_v1_default_salt"

    # Bearer tokens
    JWT_SECRET: str = "dev-secret-key"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_IN_SECONDS: int = 5 * 60

    # Wallet challenges
    CHALLENGE_TTL_SECONDS: int = 5 * 60

    # Claims
    CLAIM_VALIDITY_YEARS: int = 2

    # Ledger gateway (unset = off-chain mode, deploy hashes stay null)
    LEDGER_RPC_URL: Optional[str] = None
    LEDGER_TIMEOUT_SECONDS: float = 10.0

    # HTTP
    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
