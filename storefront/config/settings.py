from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):

    ENV: str = "dev"
    SERVICE_NAME: str = "storefront"

    DATABASE_URL: str
    DB_ECHO: bool = False

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_SOCKET_TIMEOUT: float = 2.0

    PASS_HASH_SCHEME: str = "argon2"
    TOKEN_HASH_ALGO: str = "sha256"
    DEFAULT_ROLE: str = "customer"
    SELF_PROVIDER: str = "self"
    PASSWORD_MIN_LENGTH: int = 8

    # symmetric key material for pending passwords parked next to an otp
    PASSWORD_ENCRYPT_KEY: str
    # keyed hash for stored otp codes, falls back to PASSWORD_ENCRYPT_KEY
    OTP_HASH_SECRET: Optional[str] = None

    OTP_LENGTH: int = 6
    OTP_EXPIRATION_MINUTES: int = 5
    OTP_MAX_ATTEMPTS: int = 5
    OTP_RECORD_GRACE_MINUTES: int = 10

    OTP_RATE_LIMIT_MAX_REQUESTS: int = 3
    OTP_RATE_LIMIT_WINDOW_MINUTES: int = 60
    OTP_RATE_LIMIT_COOLDOWN_SECONDS: int = 0
    OTP_RATE_LIMIT_BLOCK_MINUTES: int = 0
    # per-purpose overrides; unset fields fall back to the shared OTP_RATE_LIMIT_* values
    OTP_REGISTRATION_RATE_LIMIT_MAX_REQUESTS: Optional[int] = None
    OTP_REGISTRATION_RATE_LIMIT_WINDOW_MINUTES: Optional[int] = None
    OTP_REGISTRATION_RATE_LIMIT_COOLDOWN_SECONDS: Optional[int] = None
    OTP_REGISTRATION_RATE_LIMIT_BLOCK_MINUTES: Optional[int] = None
    OTP_PASSWORD_RESET_RATE_LIMIT_MAX_REQUESTS: Optional[int] = None
    OTP_PASSWORD_RESET_RATE_LIMIT_WINDOW_MINUTES: Optional[int] = None
    OTP_PASSWORD_RESET_RATE_LIMIT_COOLDOWN_SECONDS: Optional[int] = None
    OTP_PASSWORD_RESET_RATE_LIMIT_BLOCK_MINUTES: Optional[int] = None

    PASSWORD_RESET_TOKEN_TTL_MINUTES: int = 30

    IDENTITY_TX_TIMEOUT_SECONDS: float = 60.0
    IDENTITY_TX_ISOLATION: Optional[str] = "READ COMMITTED"

    OUTBOX_DISPATCHER_ENABLED: bool = True
    OUTBOX_POLL_SECONDS: float = 1.0
    OUTBOX_BATCH_SIZE: int = 10
    OUTBOX_MAX_ATTEMPTS: int = 6

    NOTIFICATION_PROVIDER: str = "console"

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
