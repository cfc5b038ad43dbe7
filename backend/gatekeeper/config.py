from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "Gatekeeper"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./gatekeeper.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 7077

    # CORS: comma-separated origins (e.g. "https://app.yourdomain.com")
    cors_allow_origins: str = "http://localhost:3000"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 60
    rate_limit_per_hour: int = 1000
    rate_limit_idle_seconds: int = 3600
    rate_limit_sweep_interval_seconds: int = 300
    # Only enable behind a proxy that overwrites X-Forwarded-For
    trust_forwarded_for: bool = False

    # Sessions
    session_ttl_days: int = 7
    session_sweep_interval_seconds: int = 300

    # Passwords (Argon2id)
    password_min_length: int = 6
    argon2_time_cost: int = 4
    argon2_memory_cost: int = 65536  # KiB
    argon2_parallelism: int = 8
    argon2_hash_len: int = 32
    argon2_salt_len: int = 32
    password_hash_workers: int = 4

    # API keys
    api_key_prefix: str = "agp_live_"
    api_key_protected_paths: str = "/api/"
    api_key_exempt_paths: str = (
        "/api/auth/login,/api/auth/register,/api/auth/validate,/health"
    )

    # Bootstrap admin (optional)
    admin_username: str | None = None
    admin_email: str | None = None
    admin_password: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def cors_origins_list(self) -> list[str]:
        return _split_csv(self.cors_allow_origins)

    @property
    def protected_paths_list(self) -> list[str]:
        return [p.lower() for p in _split_csv(self.api_key_protected_paths)]

    @property
    def exempt_paths_list(self) -> list[str]:
        return [p.lower() for p in _split_csv(self.api_key_exempt_paths)]

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


settings = Settings()
