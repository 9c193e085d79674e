"""RS256 access token signing and verification.

Access tokens are stateless: validity is decided entirely by the signature
and the ``exp`` claim. Signing needs the private key; verification only
needs the public key, so any service holding the public key can check a
token.

Keys arrive as base64-encoded PEM strings through :class:`Settings` and are
parsed lazily so a bad private key surfaces as :class:`SigningError` on the
first sign rather than crashing verification-only deployments.
"""

import base64
import binascii
from datetime import datetime, timedelta, timezone
from functools import cached_property

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from tokenvault.config.config import Settings
from tokenvault.core.errors import SignatureInvalid, SigningError, TokenExpired
from tokenvault.core.logging import logger
from tokenvault.models.auth import User

REQUIRED_CLAIMS = ["sub", "exp", "iat"]


def _decode_pem(value: str, label: str) -> bytes:
    if not value:
        raise ValueError(f"{label} is not configured")
    # NOTE: `base64` wraps its output at 76 columns; the line breaks are dropped.
    compact = "".join(value.split())
    try:
        return base64.b64decode(compact, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"{label} is not valid base64") from exc


def build_claims(user: User, now: datetime, lifetime: timedelta) -> dict:
    """Claim set embedded in every access token.

    Profile claims are always included so every endpoint sees the same
    shape; ``sub`` is the durable user id.
    """
    return {
        "sub": str(user.id),
        "preferred_username": user.username,
        "given_name": user.given_name,
        "family_name": user.family_name,
        "email": user.email,
        "iat": now,
        "exp": now + lifetime,
    }


class TokenSigner:
    """Mint and verify short-lived access tokens."""

    def __init__(self, settings: Settings):
        self.algorithm = settings.ALGORITHM
        self.lifetime = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self._private_pem = settings.PRIVATE_KEY
        self._public_pem = settings.PUBLIC_KEY

    @cached_property
    def private_key(self) -> RSAPrivateKey:
        try:
            key = serialization.load_pem_private_key(
                _decode_pem(self._private_pem, "PRIVATE_KEY"), password=None
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise SigningError("Private key is missing or malformed") from exc
        if not isinstance(key, RSAPrivateKey):
            raise SigningError("Private key is not an RSA key")
        return key

    @cached_property
    def public_key(self) -> RSAPublicKey:
        try:
            key = serialization.load_pem_public_key(
                _decode_pem(self._public_pem, "PUBLIC_KEY")
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            # NOTE: without a usable public key no token can ever verify.
            raise SigningError("Public key is missing or malformed") from exc
        if not isinstance(key, RSAPublicKey):
            raise SigningError("Public key is not an RSA key")
        return key

    def sign(self, user: User) -> str:
        """Create a signed access token for ``user``.

        Args:
            user: The authenticated user.

        Returns:
            str: Encoded JWT.

        Raises:
            SigningError: If the private key is unavailable or unusable.
        """
        claims = build_claims(user, datetime.now(timezone.utc), self.lifetime)
        try:
            return jwt.encode(claims, self.private_key, algorithm=self.algorithm)
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise SigningError() from exc

    def verify(self, token: str) -> dict:
        """Check signature and expiry and return the claims.

        Args:
            token: Encoded JWT from the Authorization header.

        Returns:
            dict: Decoded claims.

        Raises:
            TokenExpired: The token's ``exp`` has passed.
            SignatureInvalid: Any other decoding/signature failure.
        """
        if not token:
            raise SignatureInvalid("No access token supplied")
        try:
            return jwt.decode(
                token,
                self.public_key,
                algorithms=[self.algorithm],
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except jwt.InvalidTokenError as exc:
            logger.debug("Rejected access token: {}", exc)
            raise SignatureInvalid() from exc
