"""
auth/tokens.py -- Session tokens (JWT) and password hashing.

Security design decisions:
  JWT: python-jose, algorithm from settings (HS256 by default). Tokens carry
       id, email, role, status plus iat/exp/iss/aud. verify_token() checks the
       signature, expiry, issuer and audience and raises a PortalError tagged
       TOKEN_MISSING / TOKEN_EXPIRED / TOKEN_INVALID. Tokens are stateless:
       nothing is written at issue time and nothing can revoke them early.
       The role/status claims are informational only -- access.authenticate()
       re-reads the credential store on every request.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an email exists.

  SECRET_KEY: sourced from core.config.get_settings(), which refuses to start
       production mode without a key of at least 32 characters.

Layer rule: no imports from api/, audit/, or tracker/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import ROLES, STATUSES, TokenClaims, User
from core.config import get_settings
from core.errors import ErrorKind, PortalError

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("portal.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


# bcrypt's input limit. bcrypt 5.x raises on longer input instead of truncating.
MAX_PASSWORD_BYTES = 72


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises:
        ValueError: the password is longer than MAX_PASSWORD_BYTES when
                    UTF-8 encoded.
    """
    if password_too_long(plain):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A password over MAX_PASSWORD_BYTES can never have been hashed here, so
    it is a mismatch.
    """
    if password_too_long(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash: treat as a mismatch rather than a 500.
        logger.warning("Stored password hash could not be parsed")
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("portal_timing_dummy")


# ---------------------------------------------------------------------------
# Token issue / verify
# ---------------------------------------------------------------------------


def issue_token(user: User, expire_seconds: int = 0, now: Optional[datetime] = None) -> str:
    """Encode a signed session token for the given identity.

    Args:
        user:           Stored identity; id, email, role and status are embedded.
        expire_seconds: Validity window in seconds. If 0 (default), uses
                        Settings.token_expire_seconds (24h).
        now:            Issue time. Defaults to the current UTC time; tests
                        pass a past instant to mint already-expired tokens.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    issued = now or datetime.now(timezone.utc)
    payload = {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "status": user.status,
        "iat": issued,
        "exp": issued + timedelta(seconds=duration),
        "iss": _settings.token_issuer,
        "aud": _settings.token_audience,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_settings.jwt_algorithm)


def verify_token(token: Optional[str]) -> TokenClaims:
    """Verify a session token and return its claims.

    Raises:
        PortalError(TOKEN_MISSING): no token was presented.
        PortalError(TOKEN_EXPIRED): the signature is valid but exp has passed.
        PortalError(TOKEN_INVALID): bad signature, wrong issuer/audience, or
                                    claims that do not describe an identity.
    """
    if not token:
        raise PortalError(ErrorKind.TOKEN_MISSING, "Access token required")
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_settings.jwt_algorithm],
            audience=_settings.token_audience,
            issuer=_settings.token_issuer,
            # jose only checks aud/iss when present; absent ones must fail too.
            options={"require_aud": True, "require_iss": True, "require_iat": True, "require_exp": True},
        )
    except ExpiredSignatureError as exc:
        raise PortalError(ErrorKind.TOKEN_EXPIRED, "Token expired") from exc
    except JWTError as exc:
        raise PortalError(ErrorKind.TOKEN_INVALID, "Invalid token") from exc

    return _claims_from_payload(payload)


def _claims_from_payload(payload: dict) -> TokenClaims:
    user_id = payload.get("id")
    email = payload.get("email")
    role = payload.get("role")
    status = payload.get("status")
    iat = payload.get("iat")
    exp = payload.get("exp")
    # bool is an int subclass; a True id would otherwise pass.
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise PortalError(ErrorKind.TOKEN_INVALID, "Invalid token")
    if not isinstance(email, str) or role not in ROLES or status not in STATUSES:
        raise PortalError(ErrorKind.TOKEN_INVALID, "Invalid token")
    if not isinstance(iat, (int, float)) or not isinstance(exp, (int, float)):
        raise PortalError(ErrorKind.TOKEN_INVALID, "Invalid token")
    if payload.get("iss") != _settings.token_issuer or payload.get("aud") != _settings.token_audience:
        raise PortalError(ErrorKind.TOKEN_INVALID, "Invalid token")
    return TokenClaims(
        id=user_id,
        email=email,
        role=role,
        status=status,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        issuer=_settings.token_issuer,
        audience=_settings.token_audience,
    )


# ---------------------------------------------------------------------------
# Credential check (constant-time)
# ---------------------------------------------------------------------------


class LoginRejected(PortalError):
    """A failed credential check.

    kind is what the caller sees (INVALID_CREDENTIALS or ACCOUNT_BLOCKED);
    cause and user_id are for the audit record only.
    """

    def __init__(self, kind: ErrorKind, message: str, *, cause: str, user_id: Optional[int] = None) -> None:
        super().__init__(kind, message)
        self.cause = cause
        self.user_id = user_id


_INVALID_CREDENTIALS = "Invalid credentials"
_ACCOUNT_BLOCKED = "Account is blocked. Contact administrator."


def authenticate_user(store: UserStore, email: str, password: str) -> User:
    """Check an email/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Unknown email and wrong password raise the same caller-visible error.
    A blocked account is only reported as blocked once the password matched,
    so the distinct message cannot be used to learn account state.

    Returns the User on success.
    """
    user = store.find_by_email(email)
    if user is None:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _DUMMY_HASH)
        raise LoginRejected(ErrorKind.INVALID_CREDENTIALS, _INVALID_CREDENTIALS, cause="User not found")
    if not verify_password(password, user.password_hash):
        raise LoginRejected(
            ErrorKind.INVALID_CREDENTIALS, _INVALID_CREDENTIALS, cause="Invalid password", user_id=user.id
        )
    if not user.is_active:
        raise LoginRejected(ErrorKind.ACCOUNT_BLOCKED, _ACCOUNT_BLOCKED, cause="Account blocked", user_id=user.id)
    return user
