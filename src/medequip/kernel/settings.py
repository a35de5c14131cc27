"""
Process settings read from the environment

Used by the CLI and the health/metrics servers; library callers build
Marketplace directly and don't need this.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime settings"""

    db_path: Path = Field(default=Path(".medequip.db"), description="SQLite database file")
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON log lines")
    environment: str = Field(default="development", description="development or production")

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from MEDEQUIP_DB_PATH, MEDEQUIP_LOG_LEVEL,
        MEDEQUIP_JSON_LOGS and ENVIRONMENT.

        JSON logs default to on in production.
        """
        environment = os.getenv("ENVIRONMENT", "development").lower()
        return cls(
            db_path=Path(os.getenv("MEDEQUIP_DB_PATH", ".medequip.db")),
            log_level=os.getenv("MEDEQUIP_LOG_LEVEL", "INFO").upper(),
            json_logs=_env_flag("MEDEQUIP_JSON_LOGS", default=environment == "production"),
            environment=environment,
        )
