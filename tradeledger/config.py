"""Runtime configuration read from the environment (and a local .env file)."""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from tradeledger.database.engine import DEFAULT_DATABASE_URL


class Settings(BaseModel):
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"
    contract_spec_cache_size: int = Field(128, ge=1)
    reconcile_lock_timeout: Optional[float] = Field(30.0, gt=0)

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from environment variables, loading ``.env`` first."""
        if dotenv:
            load_dotenv()
        values = {
            "database_url": os.getenv("DATABASE_URL"),
            "log_level": os.getenv("LOG_LEVEL"),
            "log_dir": os.getenv("LOG_DIR"),
            "contract_spec_cache_size": os.getenv("CONTRACT_SPEC_CACHE_SIZE"),
            "reconcile_lock_timeout": os.getenv("RECONCILE_LOCK_TIMEOUT"),
        }
        return cls(**{k: v for k, v in values.items() if v not in (None, "")})
