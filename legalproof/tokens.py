"""
Bearer tokens for authenticated wallets

Minted after a successful challenge verification. Downstream mutating
operations take the wallet from the token subject only.
"""

import time
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from .errors import AuthenticationError


TOKEN_SCOPES = ["proof:create", "proof:revoke"]
TOKEN_EXPIRES_IN_SECONDS = 5 * 60


class TokenIssuer:
    """Issues and decodes short-lived HS256 JWTs"""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        expires_in_seconds: int = TOKEN_EXPIRES_IN_SECONDS
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.expires_in_seconds = expires_in_seconds

    def issue(self, wallet_pubkey: str, now: Optional[int] = None) -> Dict[str, Any]:
        """
        Mint a token for an authenticated wallet

        Returns:
            {"token": <jwt>, "expires_in_seconds": <int>}
        """
        issued_at = int(now if now is not None else time.time())
        payload = {
            "sub": wallet_pubkey,
            "wallet_pubkey": wallet_pubkey,
            "scope": list(TOKEN_SCOPES),
            "iat": issued_at,
            "exp": issued_at + self.expires_in_seconds,
        }
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        return {"token": token, "expires_in_seconds": self.expires_in_seconds}

    def decode(self, token: str) -> Dict[str, Any]:
        """Validate signature and expiry; raises AuthenticationError otherwise"""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError:
            raise AuthenticationError("Invalid or expired token")

        if not (payload.get("sub") or "").strip():
            raise AuthenticationError("Invalid token payload (missing subject)")
        return payload
