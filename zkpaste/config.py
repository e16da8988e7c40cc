from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Database
    database_url: str = "sqlite:///./pastes.db"
    store_timeout_seconds: float = 5.0

    # Deletion tokens are hashed with this server-held secret
    deletion_token_pepper: str = "dev-pepper-change-me"

    # Limits
    max_ciphertext_size: int = 1_000_000  # 1MB
    iv_min_bytes: int = 12
    iv_max_bytes: int = 64
    min_expiry_seconds: int = 10
    max_expiry_days: int = 365

    # Identifiers
    paste_id_length: int = 10
    deletion_token_length: int = 24

    # Proof of Work
    pow_enabled: bool = True
    pow_difficulty: int = 18  # ~1-2 sec on modern CPU
    pow_challenge_ttl_seconds: int = 300  # 5 minutes

    # Rate Limiting
    rate_limit_enabled: bool = True
    rate_limit_capacity: int = 10
    rate_limit_refill_per_minute: int = 5
    rate_limit_challenges: str = "30/minute"
    rate_limit_retrieves: str = "60/minute"

    # Background cleanup
    cleanup_interval_minutes: int = 15

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"

    # CORS
    cors_origins: list[str] | str = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


settings = Settings()
