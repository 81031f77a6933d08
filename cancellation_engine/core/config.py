from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    STORE_PROVIDER: str = "memory"  # "memory" | "json"
    DATA_DIR: str = "./data"
    SEED_DEMO_DATA: bool = False

    CURRENCY_MINOR_UNITS: int = 2
    CAS_MAX_RETRIES: int = 3

    NO_SHOW_SWEEP_ENABLED: bool = False
    NO_SHOW_SWEEP_INTERVAL_SECONDS: float = 60.0

    REFUND_GATEWAY_URL: str | None = None
    REFUND_GATEWAY_API_KEY: str | None = None
    REFUND_GATEWAY_TIMEOUT_SECONDS: float = 10.0
    REFUND_GATEWAY_WORKERS: int = 4
    REFUND_RETRY_INTERVAL_SECONDS: float = 60.0


settings = Settings()
