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
        bcrypt_rounds: int,
        local_dir: Path,
        api_url: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.environment = environment
        self.bcrypt_rounds = bcrypt_rounds
        self.local_dir = local_dir
        self.api_url = api_url

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    secret_key = os.getenv(
        "EXPENSES_SECRET_KEY",
        "5f0c1e9d2b7a4c38a1d6e0f3b9c2a7d45e8f1b0c3d6a9e2f5b8c1d4e7a0b3c6d",
    )
    token_max_age_hours = int(os.getenv("EXPENSES_TOKEN_MAX_AGE_HOURS", "168"))
    environment = os.getenv("EXPENSES_ENV", "development")
    bcrypt_rounds = int(os.getenv("EXPENSES_BCRYPT_ROUNDS", "12"))
    local_dir = Path(os.getenv("EXPENSES_LOCAL_DIR", str(data_dir / "local")))
    api_url = os.getenv("EXPENSES_API_URL", "http://localhost:8000/api")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        environment=environment,
        bcrypt_rounds=bcrypt_rounds,
        local_dir=local_dir,
        api_url=api_url,
    )
