from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    ENV: str = "prod"

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

    DATABASE_URL: str

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT_SECONDS: int = 30
    DB_POOL_RECYCLE_SECONDS: int = 1800
    # Role assumed for reads that must go through row-level security
    DB_USER_ROLE: str = "authenticated"

    ALLOWED_HOSTS: str = "localhost,127.0.0.1"
    SECURITY_HEADERS_ENABLED: bool = True
    CORS_ORIGINS: str = "http://localhost:3000"

    # Auth provider (token issuance lives there, we only verify)
    AUTH_PROVIDER_URL: str = "http://localhost:54321"
    AUTH_ANON_KEY: str | None = None
    # Needed only for account deletion
    AUTH_SERVICE_ROLE_KEY: str | None = None
    AUTH_JWT_SECRET: str
    AUTH_JWT_AUDIENCE: str = "authenticated"
    AUTH_COOKIE_NAME: str = "sb-access-token"

    # Payment provider
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    FRONTEND_URL: str = "http://localhost:3000"
    UPGRADE_URL: str = "/pricing"

    # Rate limiting (limits library syntax, per client address)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    CONTACT_RATE_LIMIT: str = "10 per 15 minutes"

    # Membership
    TRIAL_DURATION_DAYS: int = 14
    FREE_TIER_NAME: str = "free"
    TRIAL_TIER_NAME: str = "trial"

    @property
    def is_production(self) -> bool:
        return self.ENV == "prod"

settings = Settings()
