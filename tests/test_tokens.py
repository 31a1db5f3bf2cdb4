"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - issue/verify round trip returns the identity's id, email, role, status
  - missing, expired, tampered, foreign-key, wrong-audience and malformed tokens
  - bcrypt hash/verify including a corrupt stored hash
  - authenticate_user(): uniform failure for unknown email and wrong password,
    blocked status revealed only after the password matched
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import STATUS_BLOCKED
from auth.tokens import LoginRejected, authenticate_user, hash_password, issue_token, verify_password, verify_token
from core.config import get_settings
from core.errors import ErrorKind, PortalError


def _payload(**overrides) -> dict:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "id": 1,
        "email": "a@example.com",
        "role": "user",
        "status": "active",
        "iat": now,
        "exp": now + timedelta(hours=1),
        "iss": settings.token_issuer,
        "aud": settings.token_audience,
    }
    payload.update(overrides)
    return payload


def _sign(payload: dict, key: str | None = None) -> str:
    settings = get_settings()
    return jwt.encode(payload, key or settings.secret_key, algorithm=settings.jwt_algorithm)


class TestTokenRoundTrip:
    def test_verify_returns_identity_claims(self, make_user) -> None:
        """verify(issue(user)) yields the stored id, email, role and status."""
        user = make_user("alice@example.com", role="admin")
        claims = verify_token(issue_token(user))
        assert (claims.id, claims.email, claims.role, claims.status) == (user.id, user.email, "admin", "active")

    def test_claims_carry_issuer_and_audience(self, make_user) -> None:
        claims = verify_token(issue_token(make_user("bob@example.com")))
        assert claims.issuer == "portal-app"
        assert claims.audience == "portal-users"

    def test_default_validity_window_is_configured_duration(self, make_user) -> None:
        claims = verify_token(issue_token(make_user("carol@example.com")))
        window = claims.expires_at - claims.issued_at
        assert window == timedelta(seconds=get_settings().token_expire_seconds)

    def test_blocked_status_round_trips(self, make_user) -> None:
        """The token mirrors the status it was issued with, even a blocked one."""
        user = make_user("dave@example.com", status=STATUS_BLOCKED)
        assert verify_token(issue_token(user)).status == STATUS_BLOCKED


class TestTokenFailures:
    @pytest.mark.parametrize("token", [None, ""])
    def test_missing_token(self, token) -> None:
        with pytest.raises(PortalError) as exc_info:
            verify_token(token)
        assert exc_info.value.kind is ErrorKind.TOKEN_MISSING
        assert exc_info.value.status_code == 401

    def test_expired_token(self, make_user) -> None:
        """A correctly signed token past its exp is TOKEN_EXPIRED, not TOKEN_INVALID."""
        user = make_user("old@example.com")
        token = issue_token(user, expire_seconds=60, now=datetime.now(timezone.utc) - timedelta(hours=2))
        with pytest.raises(PortalError) as exc_info:
            verify_token(token)
        assert exc_info.value.kind is ErrorKind.TOKEN_EXPIRED
        assert exc_info.value.message == "Token expired"

    def test_tampered_signature(self, make_user) -> None:
        token = issue_token(make_user("eve@example.com"))
        head, body, signature = token.split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
        with pytest.raises(PortalError) as exc_info:
            verify_token(".".join([head, body, flipped]))
        assert exc_info.value.kind is ErrorKind.TOKEN_INVALID

    def test_token_signed_with_another_key(self) -> None:
        with pytest.raises(PortalError) as exc_info:
            verify_token(_sign(_payload(), key="x" * 64))
        assert exc_info.value.kind is ErrorKind.TOKEN_INVALID

    def test_wrong_audience(self) -> None:
        with pytest.raises(PortalError) as exc_info:
            verify_token(_sign(_payload(aud="someone-else")))
        assert exc_info.value.kind is ErrorKind.TOKEN_INVALID

    def test_wrong_issuer(self) -> None:
        with pytest.raises(PortalError) as exc_info:
            verify_token(_sign(_payload(iss="someone-else")))
        assert exc_info.value.kind is ErrorKind.TOKEN_INVALID

    @pytest.mark.parametrize(
        "overrides",
        [
            {"id": "1"},
            {"id": True},
            {"role": "superuser"},
            {"status": "deleted"},
            {"email": None},
        ],
    )
    def test_malformed_claims(self, overrides) -> None:
        """Signed tokens whose claims do not describe an identity are invalid."""
        with pytest.raises(PortalError) as exc_info:
            verify_token(_sign(_payload(**overrides)))
        assert exc_info.value.kind is ErrorKind.TOKEN_INVALID

    @pytest.mark.parametrize("claim", ["aud", "iss", "iat", "exp", "id"])
    def test_absent_claim(self, claim) -> None:
        """A correctly signed token that omits a required claim is invalid, not a crash."""
        payload = _payload()
        del payload[claim]
        with pytest.raises(PortalError) as exc_info:
            verify_token(_sign(payload))
        assert exc_info.value.kind is ErrorKind.TOKEN_INVALID

    def test_garbage_token(self) -> None:
        with pytest.raises(PortalError) as exc_info:
            verify_token("not-a-jwt")
        assert exc_info.value.kind is ErrorKind.TOKEN_INVALID


class TestPasswordHashing:
    def test_hash_is_salted(self) -> None:
        assert hash_password("secret1") != hash_password("secret1")

    def test_verify_matches_only_the_original(self) -> None:
        hashed = hash_password("secret1")
        assert verify_password("secret1", hashed)
        assert not verify_password("secret2", hashed)

    def test_corrupt_hash_is_a_mismatch(self) -> None:
        assert verify_password("secret1", "not-a-bcrypt-hash") is False

    def test_password_over_72_bytes_is_refused_for_hashing(self) -> None:
        with pytest.raises(ValueError):
            hash_password("x" * 73)

    def test_password_over_72_bytes_is_a_mismatch(self, caplog) -> None:
        hashed = hash_password("x" * 72)
        # 25 three-byte characters: under 72 characters, over 72 bytes
        assert verify_password("€" * 25, hashed) is False
        assert verify_password("x" * 73, hashed) is False
        assert "could not be parsed" not in caplog.text


class TestAuthenticateUser:
    def test_success_is_case_insensitive_on_email(self, stores, make_user) -> None:
        user = make_user("frank@example.com", password="hunter22")
        assert authenticate_user(stores.users, "Frank@Example.COM", "hunter22").id == user.id

    def test_unknown_email_and_wrong_password_look_the_same(self, stores, make_user) -> None:
        make_user("gina@example.com", password="hunter22")
        with pytest.raises(LoginRejected) as unknown:
            authenticate_user(stores.users, "nobody@example.com", "hunter22")
        with pytest.raises(LoginRejected) as wrong:
            authenticate_user(stores.users, "gina@example.com", "wrong-password")

        assert unknown.value.kind is wrong.value.kind is ErrorKind.INVALID_CREDENTIALS
        assert unknown.value.message == wrong.value.message == "Invalid credentials"
        # The causes differ, but only the audit trail sees them.
        assert unknown.value.cause == "User not found"
        assert wrong.value.cause == "Invalid password"
        assert unknown.value.user_id is None

    def test_blocked_account_with_correct_password(self, stores, make_user) -> None:
        user = make_user("hank@example.com", password="hunter22", status=STATUS_BLOCKED)
        with pytest.raises(LoginRejected) as exc_info:
            authenticate_user(stores.users, "hank@example.com", "hunter22")
        assert exc_info.value.kind is ErrorKind.ACCOUNT_BLOCKED
        assert exc_info.value.status_code == 403
        assert exc_info.value.user_id == user.id

    def test_blocked_account_with_wrong_password_is_not_revealed(self, stores, make_user) -> None:
        make_user("ivy@example.com", password="hunter22", status=STATUS_BLOCKED)
        with pytest.raises(LoginRejected) as exc_info:
            authenticate_user(stores.users, "ivy@example.com", "wrong-password")
        assert exc_info.value.kind is ErrorKind.INVALID_CREDENTIALS
