import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load .env (VS Code terminals sometimes don't inject env vars)
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str]
    local_store_path: Optional[str]
    app_env: str
    voucher_code_max_attempts: int
    seed_catalog: bool
    log_level: str
    award_api_key: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        local_store_path=os.getenv("LOCAL_STORE_PATH", ".greenpoints_store.json") or None,
        app_env=os.getenv("APP_ENV", "development").strip().lower(),
        voucher_code_max_attempts=max(int(os.getenv("VOUCHER_CODE_MAX_ATTEMPTS", "5")), 1),
        seed_catalog=_env_bool("SEED_CATALOG", True),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        award_api_key=os.getenv("AWARD_API_KEY") or None,
    )
