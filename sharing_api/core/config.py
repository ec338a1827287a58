"""Settings for the sharing API, read from the environment or ``.env``.

Every field maps to an upper-case environment variable of the same name
(``share_token_bytes`` -> ``SHARE_TOKEN_BYTES``).
"""

from enum import Enum
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "dev-insecure-key-change-me"


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Raised at startup when production settings are unsafe."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    environment: Environment = Environment.DEVELOPMENT

    # --- HTTP ---
    cors_allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated browser origins allowed to call the API",
    )
    rate_limit_per_minute: int = Field(default=120, description="Requests per client IP per minute")
    # Looking up an invite or link by token is how tokens would be guessed.
    token_lookup_rate_limit_per_minute: int = Field(
        default=30,
        description="Accept, decline, preview and redeem calls per client IP per minute",
    )

    # --- Database ---
    database_url: str = "sqlite:///./sharing.db"
    # Pool settings apply to PostgreSQL only.
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    # --- Identity ---
    jwt_secret_key: str = Field(
        default=DEFAULT_JWT_SECRET,
        description="HMAC secret shared with the identity provider",
    )
    jwt_algorithm: str = "HS256"
    auth_enabled: bool = Field(default=False, description="When false every request is the dev identity")
    dev_user_id: str = "dev-user"
    dev_user_email: str = "dev@localhost"

    # --- Sharing policy ---
    invite_default_expiry_days: int = Field(default=7, description="Used when expiresInDays is omitted")
    share_token_bytes: int = Field(default=32, description="Random bytes behind each invite and link token")
    allow_delegated_revoke: bool = Field(
        default=False,
        description="Collaborators holding 'share' may revoke grants, not only the owner",
    )
    audit_retention_days: int = Field(default=365, description="0 keeps audit entries forever")

    # --- Notifications ---
    public_base_url: str = Field(
        default="http://localhost:3000",
        description="Web client origin used for accept and decline links in e-mails",
    )
    email_service_url: str = Field(default="", description="E-mail dispatch endpoint; empty logs instead")
    email_service_token: str = ""
    email_sender: str = "no-reply@localhost"
    email_timeout_seconds: int = 10

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = Field(default="json", description="'json' or 'text'")

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("share_token_bytes")
    @classmethod
    def _enough_entropy(cls, v: int) -> int:
        if v < 24:
            raise ValueError("SHARE_TOKEN_BYTES must be at least 24")
        return v

    @field_validator("invite_default_expiry_days")
    @classmethod
    def _expiry_in_range(cls, v: int) -> int:
        if not 1 <= v <= 365:
            raise ValueError("INVITE_DEFAULT_EXPIRY_DAYS must be between 1 and 365")
        return v

    def get_cors_origins(self) -> List[str]:
        """Parsed CORS origins. A wildcard is refused outright."""
        origins = [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]
        if "*" in origins:
            raise ValueError("Wildcard CORS (*) is not allowed; list origins in CORS_ALLOWED_ORIGINS")
        return origins

    def security_findings(self) -> List[str]:
        """Settings that are acceptable in development but not in production."""
        findings = []
        if self.jwt_secret_key == DEFAULT_JWT_SECRET:
            findings.append("JWT_SECRET_KEY is the built-in default (generate one: openssl rand -hex 32)")
        if not self.auth_enabled:
            findings.append(f"AUTH_ENABLED is false; every request acts as {self.dev_user_id}")
        local = [o for o in self.get_cors_origins() if "localhost" in o or "127.0.0.1" in o]
        if local:
            findings.append(f"CORS allows local origins: {', '.join(local)}")
        if not self.public_base_url.startswith("https://"):
            findings.append("PUBLIC_BASE_URL is not https://, so e-mailed invite tokens travel in clear text")
        return findings

    def validate_production_config(self) -> None:
        """Raise ConfigurationError in production if any security finding applies."""
        findings = self.security_findings()
        if findings and self.environment == Environment.PRODUCTION:
            raise ConfigurationError("Production configuration is insecure:\n  - " + "\n  - ".join(findings))


settings = Settings()
