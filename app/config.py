from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    PROJECT_NAME: str = "HandyPay Backend"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: list[str] = ["*"]

    # Logging configuration
    LOG_DIR: str = "logs"
    LOG_MAX_FILES: int = 5
    LOG_MAX_SIZE_MB: int = 5
    LOG_EXCLUDED_PATHS: list[str] = [
        "/health",
        "/docs",
        "/redoc",
        "/openapi.json",
    ]
    LOG_LEVEL: str = "INFO"

    # Session tokens issued by the auth provider
    JWT_SECRET_KEY: str  # Required, shared with the auth provider
    JWT_ALGORITHM: str = "HS256"

    # Stripe Connect configuration
    STRIPE_SECRET_KEY: str  # Required, sk_test_... or sk_live_...
    STRIPE_WEBHOOK_SECRET: str  # Required, whsec_...
    STRIPE_API_VERSION: str | None = None  # None uses the SDK's pinned version
    STRIPE_ACCOUNT_COUNTRY: str = "JM"
    STRIPE_DEFAULT_ACCOUNT_CURRENCY: str = "JMD"
    STRIPE_APPLICATION_FEE_PERCENT: float = 1.9
    STRIPE_DEFAULT_REFRESH_URL: str = "https://handypay-backend.handypay.workers.dev/api/stripe/refresh"
    STRIPE_DEFAULT_RETURN_URL: str = "https://handypay-backend.handypay.workers.dev/api/stripe/return"
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Expo push gateway
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    EXPO_PUSH_TIMEOUT_SECONDS: int = 10

    REQUEST_TIMEOUT_SECONDS: float = 30.0

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
