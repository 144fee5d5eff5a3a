"""
Ledger Submission - anchoring claim creation/revocation on a distributed ledger

The claim manager only depends on LedgerClient: a hash on success,
LedgerError on failure. How the transaction reaches the ledger is the
client's business.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from .errors import LedgerError

logger = logging.getLogger("legalproof.ledger")

DEFAULT_TIMEOUT_SECONDS = 10.0


class LedgerClient(ABC):
    """Contract of the external ledger submission service"""

    @abstractmethod
    def submit(self, claim_params: Dict[str, Any]) -> str:
        """Anchor a new claim, returns the submission hash"""

    @abstractmethod
    def revoke(self, user_hash: str, claim_type: str) -> str:
        """Anchor a revocation, returns the submission hash"""


def extract_transaction_hash(value: Any) -> Optional[str]:
    """Accept a bare hash string or a versioned {"Version1": "<hash>"} object"""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict) and isinstance(value.get("Version1"), str) and value["Version1"]:
        return value["Version1"]
    return None


class JsonRpcLedgerClient(LedgerClient):
    """
    JSON-RPC 2.0 client for a ledger submission gateway

    Methods:
    - claim_submit  params: claim params
    - claim_revoke  params: {"user_hash", "claim_type"}

    Both answer {"result": {"transaction_hash": <hash | {"Version1": hash}>}}.
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None
    ):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def submit(self, claim_params: Dict[str, Any]) -> str:
        return self._call("claim_submit", dict(claim_params))

    def revoke(self, user_hash: str, claim_type: str) -> str:
        return self._call("claim_revoke", {"user_hash": user_hash, "claim_type": claim_type})

    def _call(self, method: str, params: Dict[str, Any]) -> str:
        rpc_request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            response = self.session.post(self.url, json=rpc_request, timeout=self.timeout)
        except requests.RequestException as e:
            raise LedgerError(f"{method}: transport error talking to {self.url}: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.ok or not isinstance(body, dict) or body.get("error"):
            error = body.get("error") if isinstance(body, dict) else response.text[:500]
            raise LedgerError(f"{method}: HTTP {response.status_code} rpc_error={error!r}")

        result = body.get("result")
        tx_hash = extract_transaction_hash(
            result.get("transaction_hash") if isinstance(result, dict) else None
        )
        if tx_hash is None:
            raise LedgerError(f"{method}: malformed result {result!r}")

        logger.info("Ledger %s accepted: %s", method, tx_hash)
        return tx_hash
