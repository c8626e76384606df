import logging
import warnings

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    environment: str = "development"  # development | test | production
    log_level: str = "INFO"

    # Database (sqlite for local dev, postgresql+asyncpg for production)
    database_url: str = "sqlite+aiosqlite:///./data/xcrol.db"

    # Platform session tokens (issued by the XCROL web app)
    jwt_secret_key: str = "dev-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24 * 7  # 7 days

    # Platform API keys accepted in the `apikey` header (comma-separated)
    platform_api_keys: str = "dev-platform-api-key"

    # OAuth2 authorization server
    oauth_issuer: str = "https://xcrol.com"
    oauth_code_ttl_seconds: int = 600  # 10 minutes
    oauth_access_token_ttl_seconds: int = 3600  # 1 hour
    oauth_refresh_token_ttl_seconds: int = 30 * 24 * 3600  # 30 days
    oauth_sweep_interval_seconds: int = 3600  # 0 disables the expiry sweep

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def api_keys(self) -> list[str]:
        return [k.strip() for k in self.platform_api_keys.split(",") if k.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in {"production", "prod"}


settings = Settings()

# Warn on insecure defaults (logged at startup, not a hard error for dev convenience)
_logger = logging.getLogger("xcrol.config")
_INSECURE_SECRETS = {
    "dev-secret-change-in-production",
    "change-me-to-a-random-string",
    "dev-platform-api-key",
}


def validate_security_posture(cfg: Settings) -> None:
    is_prod = cfg.is_production

    if cfg.jwt_secret_key in _INSECURE_SECRETS:
        if is_prod:
            raise RuntimeError(
                "FATAL: JWT_SECRET_KEY is set to an insecure default. "
                "Set a strong random secret via the JWT_SECRET_KEY environment variable before deploying to production."
            )
        warnings.warn(
            "JWT_SECRET_KEY is set to the default insecure value. "
            "Set a strong random secret via the JWT_SECRET_KEY environment variable for production.",
            stacklevel=1,
        )

    if cfg.cors_origins == "*":
        if is_prod:
            raise RuntimeError(
                "FATAL: CORS_ORIGINS cannot be '*' in production. "
                "Set explicit trusted origins via the CORS_ORIGINS environment variable."
            )
        _logger.warning(
            "CORS_ORIGINS is set to '*' (allow all). "
            "Configure specific origins for production via the CORS_ORIGINS environment variable."
        )

    if is_prod:
        keys = cfg.api_keys
        if not keys or any(k in _INSECURE_SECRETS for k in keys):
            raise RuntimeError(
                "FATAL: PLATFORM_API_KEYS must be set to strong random values in production."
            )
        if cfg.oauth_code_ttl_seconds > 600:
            raise RuntimeError(
                "FATAL: OAUTH_CODE_TTL_SECONDS must not exceed 600 seconds."
            )


validate_security_posture(settings)
