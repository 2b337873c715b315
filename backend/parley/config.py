from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Storage
    DATABASE_URL: str
    # Optimistic-version clashes are retried this many times before a 503.
    STORE_RETRY_ATTEMPTS: int = 3

    # Tokens
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # HTTP
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis holds live presence and relays realtime events between workers.
    # An empty URL disables it; events then stay on the local worker.
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_PRESENCE_TTL: int = 300  # seconds without a heartbeat before a user reads offline
    # Prefix for every Redis key and pub/sub channel this deployment owns.
    SERVER_DOMAIN: str = "localhost"

    # Moderation
    TIMEOUT_MIN_MINUTES: int = 1
    TIMEOUT_MAX_MINUTES: int = 40_320  # 28 days
    DEFAULT_ROLE_NAME: str = "@everyone"

    VOICE_MAX_PARTICIPANTS: int = 50

    model_config = {"env_file": ".env"}


settings = Settings()
