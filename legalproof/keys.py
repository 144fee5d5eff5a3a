"""
Wallet keys - validation and signature verification for wallet ownership

Supports:
- Ed25519: tag 01, 32-byte public key
- secp256k1: tag 02, 33-byte compressed public key (SHA-256 message digest)
"""

import re
import hashlib
from enum import Enum
from dataclasses import dataclass
from typing import Callable, Dict, List

from cryptography.exceptions import InvalidSignature as BadSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, encode_dss_signature

from .errors import InvalidFormat, UnsupportedAlgorithm


# Wallet software prepends this banner before signing arbitrary messages
WALLET_MESSAGE_BANNER = "Casper Message:\n"

_HEX_RE = re.compile(r"^[0-9a-f]*$")


class KeyAlgorithm(Enum):
    """Closed set of supported wallet key algorithms: (tag, key size in bytes, label)"""
    ED25519 = ("01", 32, "Ed25519")
    SECP256K1 = ("02", 33, "Secp256k1")

    def __init__(self, tag: str, key_size: int, label: str):
        self.tag = tag
        self.key_size = key_size
        self.label = label

    @property
    def hex_length(self) -> int:
        """Tag plus key, in hex characters"""
        return 2 + self.key_size * 2

    @classmethod
    def from_tag(cls, tag: str) -> "KeyAlgorithm":
        for algorithm in cls:
            if algorithm.tag == tag:
                return algorithm
        raise UnsupportedAlgorithm(
            "wallet_pubkey must start with 01 (Ed25519) or 02 (Secp256k1)"
        )


@dataclass(frozen=True)
class WalletKey:
    """A validated wallet public key"""
    algorithm: KeyAlgorithm
    key_bytes: bytes
    hex: str  # canonical form: lowercase, no 0x, tag included


def _strip_hex_prefix(value: str) -> str:
    value = (value or "").strip().lower()
    if value.startswith("0x"):
        value = value[2:]
    return value


def _hex_to_bytes(value: str, what: str) -> bytes:
    if not _HEX_RE.match(value):
        raise InvalidFormat(f"{what} must be hex")
    if len(value) % 2 != 0:
        raise InvalidFormat(f"{what} has an odd hex length")
    return bytes.fromhex(value)


def parse_wallet_pubkey(raw: str) -> WalletKey:
    """
    Validate a hex wallet public key and its algorithm tag

    Args:
        raw: Hex key, optionally 0x-prefixed and surrounded by whitespace

    Returns:
        WalletKey in canonical form

    Raises:
        InvalidFormat: non-hex input or wrong length for the tag
        UnsupportedAlgorithm: tag is not 01 or 02
    """
    hex_key = _strip_hex_prefix(raw)

    if not hex_key or not _HEX_RE.match(hex_key):
        raise InvalidFormat("wallet_pubkey must be hex")

    algorithm = KeyAlgorithm.from_tag(hex_key[:2])
    if len(hex_key) != algorithm.hex_length:
        raise InvalidFormat(
            f"{algorithm.label} pubkey must be {algorithm.hex_length} hex chars, "
            f"got {len(hex_key)}"
        )

    return WalletKey(
        algorithm=algorithm,
        key_bytes=bytes.fromhex(hex_key[2:]),
        hex=hex_key,
    )


def normalize_wallet_pubkey(raw: str) -> str:
    """Canonical hex form of a wallet key (validates as a side effect)"""
    return parse_wallet_pubkey(raw).hex


def normalize_signature(signature_hex: str, algorithm: KeyAlgorithm) -> bytes:
    """
    Decode a hex signature to the 64 raw bytes each algorithm verifies

    A 65th trailing recovery byte is accepted and dropped for both curves.
    """
    sig = _hex_to_bytes(_strip_hex_prefix(signature_hex), "signature_hex")

    if len(sig) in (64, 65):
        return sig[:64]

    raise InvalidFormat(
        f"Unexpected {algorithm.label} signature length: {len(sig)} bytes"
    )


class SignatureVerifier:
    """
    Verifies wallet signatures over challenge messages

    Each algorithm variant has its own procedure; the key tag selects it.
    Both the raw message and the banner-wrapped message are accepted,
    since some wallets wrap payloads transparently before signing.
    """

    def __init__(self, banner: str = WALLET_MESSAGE_BANNER):
        self.banner = banner
        self._procedures: Dict[KeyAlgorithm, Callable[[bytes, bytes, bytes], bool]] = {
            KeyAlgorithm.ED25519: self.verify_ed25519,
            KeyAlgorithm.SECP256K1: self.verify_secp256k1,
        }

    def candidate_messages(self, message: str) -> List[bytes]:
        return [
            message.encode("utf-8"),
            f"{self.banner}{message}".encode("utf-8"),
        ]

    def verify(self, pubkey_hex: str, message: str, signature_hex: str) -> bool:
        """
        Verify a signature made by a wallet key

        Args:
            pubkey_hex: Tagged wallet public key (01... or 02...)
            message: The exact message that was issued for signing
            signature_hex: Hex signature, optionally 0x-prefixed

        Returns:
            True if the signature matches either candidate encoding
        """
        key = parse_wallet_pubkey(pubkey_hex)
        signature = normalize_signature(signature_hex, key.algorithm)
        procedure = self._procedures[key.algorithm]

        return any(
            procedure(key.key_bytes, candidate, signature)
            for candidate in self.candidate_messages(message)
        )

    # ==================== PROCEDURES ====================

    def verify_ed25519(self, key_bytes: bytes, message: bytes, signature: bytes) -> bool:
        """Verify Ed25519 signature over raw message bytes (RFC 8032)"""
        try:
            public_key = ed25519.Ed25519PublicKey.from_public_bytes(key_bytes)
            public_key.verify(signature, message)
            return True
        except (BadSignature, ValueError):
            return False

    def verify_secp256k1(self, key_bytes: bytes, message: bytes, signature: bytes) -> bool:
        """Verify compact r||s secp256k1 signature over SHA-256(message)"""
        try:
            public_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), key_bytes)
        except ValueError:
            # not a point on the curve
            return False

        r = int.from_bytes(signature[:32], "big")
        s = int.from_bytes(signature[32:], "big")
        digest = hashlib.sha256(message).digest()

        try:
            public_key.verify(
                encode_dss_signature(r, s),
                digest,
                ec.ECDSA(Prehashed(hashes.SHA256())),
            )
            return True
        except BadSignature:
            return False
