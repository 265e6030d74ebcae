import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_hours: int,
        environment: str,
        cors_origins: list[str],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.environment = environment
        self.cors_origins = cors_origins

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SPENDWISE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "spendwise.db"
    database_url = os.getenv("SPENDWISE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SPENDWISE_TIMEZONE", "UTC")
    secret_key = os.getenv(
        "SPENDWISE_SECRET_KEY",
        "5c0f3d8e2a1b4c6d9e7f8a0b1c2d3e4f5a6b7c8d9e0f1a2b3c4d5e6f7a8b9c0d",
    )
    token_max_age_hours = int(os.getenv("SPENDWISE_TOKEN_MAX_AGE_HOURS", "168"))
    environment = os.getenv("SPENDWISE_ENV", "development")
    cors_raw = os.getenv(
        "SPENDWISE_CORS_ORIGINS", "http://localhost:3000,http://localhost:3001"
    )
    cors_origins = [origin.strip() for origin in cors_raw.split(",") if origin.strip()]
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        environment=environment,
        cors_origins=cors_origins,
    )
