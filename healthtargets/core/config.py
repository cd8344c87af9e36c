from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./healthtargets.db"
    database_echo: bool = False
    secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Calendar day boundaries for "today's metrics"
    reference_timezone: str = "UTC"

    plan_freshness_days: int = 7
    calorie_change_threshold: float = 50
    protein_change_threshold: float = 10
    recompute_max_concurrency: int = 4

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
