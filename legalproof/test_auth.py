"""
Wallet authentication tests
===========================

Key validation, dual-curve signature verification, challenge store,
tokens and the end-to-end challenge/response flow.
"""

import threading
from datetime import datetime, timedelta

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from legalproof.auth import AuthService
from legalproof.challenges import ChallengeStore
from legalproof.errors import (
    AuthenticationError,
    Expired,
    InvalidFormat,
    InvalidSignature,
    UnknownOrExpired,
    UnsupportedAlgorithm,
    WalletMismatch,
)
from legalproof.keys import (
    WALLET_MESSAGE_BANNER,
    KeyAlgorithm,
    SignatureVerifier,
    parse_wallet_pubkey,
)
from legalproof.tokens import TOKEN_SCOPES, TokenIssuer


# ==================== HELPERS ====================

class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def ed25519_wallet():
    private_key = ed25519.Ed25519PrivateKey.generate()
    public_bytes = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return private_key, "01" + public_bytes.hex()


def secp256k1_wallet():
    private_key = ec.generate_private_key(ec.SECP256K1())
    public_bytes = private_key.public_key().public_bytes(Encoding.X962, PublicFormat.CompressedPoint)
    return private_key, "02" + public_bytes.hex()


def sign(private_key, message: str) -> str:
    """Hex signature the way a wallet would produce it (compact r||s for secp256k1)"""
    data = message.encode("utf-8")
    if isinstance(private_key, ed25519.Ed25519PrivateKey):
        return private_key.sign(data).hex()
    r, s = decode_dss_signature(private_key.sign(data, ec.ECDSA(hashes.SHA256())))
    return (r.to_bytes(32, "big") + s.to_bytes(32, "big")).hex()


def flip_byte(hex_value: str, index: int) -> str:
    raw = bytearray.fromhex(hex_value)
    raw[index] ^= 0x01
    return raw.hex()


WALLETS = [ed25519_wallet, secp256k1_wallet]


# ==================== KEYS ====================

class TestPubkeyValidator:

    def test_ed25519_key(self):
        _, wallet = ed25519_wallet()
        key = parse_wallet_pubkey(wallet)

        assert key.algorithm == KeyAlgorithm.ED25519
        assert len(key.key_bytes) == 32
        assert key.hex == wallet

    def test_secp256k1_key(self):
        _, wallet = secp256k1_wallet()
        key = parse_wallet_pubkey(wallet)

        assert key.algorithm == KeyAlgorithm.SECP256K1
        assert len(key.key_bytes) == 33

    def test_prefix_and_case_are_canonicalized(self):
        _, wallet = ed25519_wallet()
        key = parse_wallet_pubkey("  0x" + wallet.upper() + " ")
        assert key.hex == wallet

    def test_non_hex_rejected(self):
        with pytest.raises(InvalidFormat):
            parse_wallet_pubkey("01" + "zz" * 32)

    def test_empty_rejected(self):
        with pytest.raises(InvalidFormat):
            parse_wallet_pubkey("")

    def test_wrong_length_for_tag(self):
        with pytest.raises(InvalidFormat):
            parse_wallet_pubkey("01" + "aa" * 33)
        with pytest.raises(InvalidFormat):
            parse_wallet_pubkey("02" + "aa" * 32)

    def test_unsupported_tag(self):
        with pytest.raises(UnsupportedAlgorithm):
            parse_wallet_pubkey("03" + "aa" * 32)


class TestSignatureVerifier:

    def setup_method(self):
        self.verifier = SignatureVerifier()
        self.message = "LegalProof|auth|wallet_pubkey=x|nonce=y|issued_at=z|purpose=prove_wallet_ownership"

    @pytest.mark.parametrize("make_wallet", WALLETS)
    def test_raw_message_verifies(self, make_wallet):
        private_key, wallet = make_wallet()
        assert self.verifier.verify(wallet, self.message, sign(private_key, self.message))

    @pytest.mark.parametrize("make_wallet", WALLETS)
    def test_banner_wrapped_message_verifies(self, make_wallet):
        private_key, wallet = make_wallet()
        signature = sign(private_key, WALLET_MESSAGE_BANNER + self.message)
        assert self.verifier.verify(wallet, self.message, signature)

    @pytest.mark.parametrize("make_wallet", WALLETS)
    def test_0x_prefix_and_recovery_byte_accepted(self, make_wallet):
        private_key, wallet = make_wallet()
        signature = sign(private_key, self.message)

        assert self.verifier.verify(wallet, self.message, "0x" + signature)
        assert self.verifier.verify(wallet, self.message, signature + "1b")

    @pytest.mark.parametrize("make_wallet", WALLETS)
    def test_mutated_message_fails(self, make_wallet):
        private_key, wallet = make_wallet()
        signature = sign(private_key, self.message)
        tampered = self.message.replace("nonce=y", "nonce=Y")

        assert self.verifier.verify(wallet, tampered, signature) is False

    @pytest.mark.parametrize("make_wallet", WALLETS)
    @pytest.mark.parametrize("index", [0, 17, 40, 63])
    def test_mutated_signature_fails(self, make_wallet, index):
        private_key, wallet = make_wallet()
        signature = flip_byte(sign(private_key, self.message), index)

        assert self.verifier.verify(wallet, self.message, signature) is False

    @pytest.mark.parametrize("make_wallet", WALLETS)
    @pytest.mark.parametrize("index", [1, 10, 32])
    def test_mutated_public_key_fails(self, make_wallet, index):
        private_key, wallet = make_wallet()
        signature = sign(private_key, self.message)

        # index 0 is the algorithm tag; mutate key material only
        assert self.verifier.verify(flip_byte(wallet, index), self.message, signature) is False

    def test_signature_from_other_key_fails(self):
        private_key, _ = ed25519_wallet()
        _, other_wallet = ed25519_wallet()
        assert self.verifier.verify(other_wallet, self.message, sign(private_key, self.message)) is False

    def test_unsupported_algorithm(self):
        with pytest.raises(UnsupportedAlgorithm):
            self.verifier.verify("03" + "aa" * 32, self.message, "00" * 64)

    def test_bad_signature_length(self):
        _, wallet = ed25519_wallet()
        with pytest.raises(InvalidFormat):
            self.verifier.verify(wallet, self.message, "00" * 63)

    def test_non_hex_signature(self):
        _, wallet = secp256k1_wallet()
        with pytest.raises(InvalidFormat):
            self.verifier.verify(wallet, self.message, "zz" * 64)


# ==================== CHALLENGES ====================

class TestChallengeStore:

    def setup_method(self):
        self.clock = FakeClock()
        self.store = ChallengeStore(ttl_seconds=300, clock=self.clock)
        _, self.wallet = ed25519_wallet()

    def test_issue(self):
        challenge = self.store.issue(self.wallet)

        assert len(challenge.challenge_id) == 32
        assert challenge.expires_at == self.clock.now + timedelta(minutes=5)
        assert f"wallet_pubkey={self.wallet}" in challenge.message
        assert challenge.message.endswith("|purpose=prove_wallet_ownership")
        assert "issued_at=2024-06-01T12:00:00.000Z" in challenge.message

    def test_issue_uses_fresh_nonce(self):
        first = self.store.issue(self.wallet)
        second = self.store.issue(self.wallet)

        assert first.challenge_id != second.challenge_id
        assert first.message != second.message

    def test_issue_rejects_bad_key(self):
        with pytest.raises(InvalidFormat):
            self.store.issue("not-a-key")
        assert len(self.store) == 0

    def test_to_dict(self):
        data = self.store.issue(self.wallet).to_dict()
        assert set(data) == {"challenge_id", "wallet_pubkey", "message_to_sign", "expires_at"}
        assert data["expires_at"] == "2024-06-01T12:05:00.000Z"

    def test_consume_once(self):
        challenge = self.store.issue(self.wallet)

        assert self.store.consume(challenge.challenge_id, self.wallet) == challenge.message
        with pytest.raises(UnknownOrExpired):
            self.store.consume(challenge.challenge_id, self.wallet)

    def test_unknown_challenge(self):
        with pytest.raises(UnknownOrExpired):
            self.store.consume("00" * 16, self.wallet)

    def test_wallet_mismatch_keeps_entry(self):
        challenge = self.store.issue(self.wallet)
        _, other = ed25519_wallet()

        with pytest.raises(WalletMismatch):
            self.store.consume(challenge.challenge_id, other)
        assert self.store.consume(challenge.challenge_id, self.wallet) == challenge.message

    def test_expired_challenge_is_removed(self):
        challenge = self.store.issue(self.wallet)
        self.clock.advance(minutes=5, seconds=1)

        with pytest.raises(Expired):
            self.store.consume(challenge.challenge_id, self.wallet)
        with pytest.raises(UnknownOrExpired):
            self.store.consume(challenge.challenge_id, self.wallet)

    def test_peek_does_not_consume(self):
        challenge = self.store.issue(self.wallet)

        assert self.store.peek(challenge.challenge_id, self.wallet) == challenge.message
        assert self.store.consume(challenge.challenge_id, self.wallet) == challenge.message

    def test_purge_expired(self):
        self.store.issue(self.wallet)
        self.store.issue(self.wallet)
        self.clock.advance(minutes=6)
        live = self.store.issue(self.wallet)

        # issuing purges the two stale entries
        assert len(self.store) == 1
        assert self.store.purge_expired() == 0
        assert self.store.consume(live.challenge_id, self.wallet) == live.message

    def test_concurrent_consume_single_winner(self):
        challenge = self.store.issue(self.wallet)
        winners, losers = [], []
        barrier = threading.Barrier(16)

        def attempt():
            barrier.wait()
            try:
                winners.append(self.store.consume(challenge.challenge_id, self.wallet))
            except UnknownOrExpired:
                losers.append(True)

        threads = [threading.Thread(target=attempt) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == 15


# ==================== TOKENS ====================

class TestTokenIssuer:

    def setup_method(self):
        self.tokens = TokenIssuer(secret="test-secret")
        _, self.wallet = ed25519_wallet()

    def test_issue_and_decode(self):
        issued = self.tokens.issue(self.wallet)
        payload = self.tokens.decode(issued["token"])

        assert issued["expires_in_seconds"] == 300
        assert payload["sub"] == self.wallet
        assert payload["wallet_pubkey"] == self.wallet
        assert payload["scope"] == TOKEN_SCOPES
        assert payload["exp"] - payload["iat"] == 300

    def test_expired_token(self):
        issued = self.tokens.issue(self.wallet, now=1_000_000)
        with pytest.raises(AuthenticationError):
            self.tokens.decode(issued["token"])

    def test_wrong_secret(self):
        issued = TokenIssuer(secret="other-secret").issue(self.wallet)
        with pytest.raises(AuthenticationError):
            self.tokens.decode(issued["token"])

    def test_garbage_token(self):
        with pytest.raises(AuthenticationError):
            self.tokens.decode("not.a.jwt")


# ==================== FLOW ====================

class TestAuthService:

    def setup_method(self):
        self.clock = FakeClock()
        self.tokens = TokenIssuer(secret="test-secret")
        self.auth = AuthService(
            challenges=ChallengeStore(clock=self.clock),
            verifier=SignatureVerifier(),
            tokens=self.tokens,
        )

    @pytest.mark.parametrize("make_wallet", WALLETS)
    def test_full_flow(self, make_wallet):
        private_key, wallet = make_wallet()
        challenge = self.auth.create_challenge(wallet)

        result = self.auth.verify_signature_and_issue_token(
            wallet, challenge.challenge_id, sign(private_key, challenge.message)
        )

        assert result["ok"] is True
        assert result["wallet_pubkey"] == wallet
        assert result["expires_in_seconds"] == 300
        assert self.tokens.decode(result["token"])["sub"] == wallet

    def test_replay_rejected(self):
        private_key, wallet = ed25519_wallet()
        challenge = self.auth.create_challenge(wallet)
        signature = sign(private_key, challenge.message)

        self.auth.verify_signature_and_issue_token(wallet, challenge.challenge_id, signature)
        with pytest.raises(UnknownOrExpired):
            self.auth.verify_signature_and_issue_token(wallet, challenge.challenge_id, signature)

    def test_bad_signature_keeps_challenge(self):
        private_key, wallet = secp256k1_wallet()
        other_key, _ = secp256k1_wallet()
        challenge = self.auth.create_challenge(wallet)

        with pytest.raises(InvalidSignature):
            self.auth.verify_signature_and_issue_token(
                wallet, challenge.challenge_id, sign(other_key, challenge.message)
            )

        result = self.auth.verify_signature_and_issue_token(
            wallet, challenge.challenge_id, sign(private_key, challenge.message)
        )
        assert result["ok"] is True

    def test_expired_even_with_valid_signature(self):
        private_key, wallet = ed25519_wallet()
        challenge = self.auth.create_challenge(wallet)
        self.clock.advance(minutes=5, seconds=1)

        with pytest.raises(Expired):
            self.auth.verify_signature_and_issue_token(
                wallet, challenge.challenge_id, sign(private_key, challenge.message)
            )

    def test_signature_for_other_wallets_challenge(self):
        private_key, wallet = ed25519_wallet()
        other_key, other_wallet = ed25519_wallet()
        challenge = self.auth.create_challenge(wallet)

        with pytest.raises(WalletMismatch):
            self.auth.verify_signature_and_issue_token(
                other_wallet, challenge.challenge_id, sign(other_key, challenge.message)
            )
