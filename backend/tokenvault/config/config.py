"""Application settings loaded from environment for the tokenvault backend.

This module defines the :class:`Settings` model (based on Pydantic's
``BaseSettings``). A single instance is built by ``create_app`` at startup
and handed to the token signer and refresh token manager through FastAPI
dependencies; business logic never reads the process environment itself.

Notable fields include the database connection URL, the base64-encoded RSA
key pair used to sign access tokens, token lifetimes and the refresh cookie
policy.
"""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BACKEND_DIR / ".env"


class Settings(BaseSettings):
    """Environment-backed application settings.

    Attributes:
        APP_ENV: Anything other than ``production`` adds error causes to
            responses.
        DATABASE_URL_ASYNC: Async database URL for SQLAlchemy.
        DATABASE_ECHO: Echo SQL statements (noisy, development only).

        PRIVATE_KEY: Base64-encoded PEM RSA private key for signing.
        PUBLIC_KEY: Base64-encoded PEM RSA public key for verification.
        ACCESS_TOKEN_EXPIRE_MINUTES: Access token lifetime in minutes.
        REFRESH_TOKEN_EXPIRE_DAYS: Refresh token lifetime in days.

        REFRESH_COOKIE_NAME: Name of the cookie carrying the refresh token.
        COOKIE_SAMESITE: ``strict``, ``lax`` or ``none``.
        COOKIE_SECURE: Send the refresh cookie over HTTPS only.
        TRUST_PROXY_HEADERS: Read the client IP from ``X-Forwarded-For``.

        CORS_ORIGINS: Comma-separated list of allowed origins.
        LOG_LEVEL: Loguru log level.
    """

    APP_ENV: str = "production"

    DATABASE_URL_ASYNC: str
    DATABASE_ECHO: bool = False

    PRIVATE_KEY: str = ""
    PUBLIC_KEY: str = ""
    ALGORITHM: str = "RS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    REFRESH_COOKIE_NAME: str = "refreshToken"
    COOKIE_SAMESITE: str = "strict"
    COOKIE_SECURE: bool = False
    TRUST_PROXY_HEADERS: bool = False

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE), env_file_encoding="utf-8", extra="ignore"
    )

    @model_validator(mode="after")
    def check_cookie_policy(self):
        self.COOKIE_SAMESITE = self.COOKIE_SAMESITE.lower()
        if self.COOKIE_SAMESITE not in ("strict", "lax", "none"):
            raise ValueError("COOKIE_SAMESITE must be one of strict, lax, none")
        # NOTE: browsers drop SameSite=None cookies that are not Secure.
        if self.COOKIE_SAMESITE == "none" and not self.COOKIE_SECURE:
            raise ValueError("COOKIE_SAMESITE=none requires COOKIE_SECURE=true")
        if self.ALGORITHM != "RS256":
            raise ValueError("Only RS256 access tokens are supported")
        return self

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.strip().lower() in ("prod", "production")

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
