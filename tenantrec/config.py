"""Runtime configuration for TenantRec.

Settings are read from ``TENANTREC_*`` environment variables once per process.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

# Default configuration constants
DEFAULT_ENV = "development"
DEFAULT_MODEL_DIR = "TenantRecommendationModels"
DEFAULT_BLOB_CONTAINER = "tenant-models"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_RETRAIN_WEEKDAY = 6  # Sunday, datetime.weekday() numbering
DEFAULT_RETRAIN_HOUR = 3


@dataclass(frozen=True)
class Settings:
    """Deployment settings for the recommendation service."""

    env: str = DEFAULT_ENV
    model_dir: str = DEFAULT_MODEL_DIR
    blob_connection_string: Optional[str] = None
    blob_container: str = DEFAULT_BLOB_CONTAINER
    data_dir: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL
    scheduler_enabled: bool = False
    retrain_weekday: int = DEFAULT_RETRAIN_WEEKDAY
    retrain_hour: int = DEFAULT_RETRAIN_HOUR
    fm_factors: int = 8
    fm_epochs: int = 200
    fm_learning_rate: float = 0.1
    fm_reg: float = 0.001
    random_state: int = 42

    @property
    def is_development(self) -> bool:
        return self.env.lower() == "development"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """Build settings from the current environment.

    Returns:
        Settings with every unset variable falling back to its default.

    Raises:
        ValueError: If a numeric variable cannot be parsed.
    """
    return Settings(
        env=os.getenv("TENANTREC_ENV", DEFAULT_ENV),
        model_dir=os.getenv("TENANTREC_MODEL_DIR", DEFAULT_MODEL_DIR),
        blob_connection_string=os.getenv("TENANTREC_BLOB_CONNECTION_STRING") or None,
        blob_container=os.getenv("TENANTREC_BLOB_CONTAINER", DEFAULT_BLOB_CONTAINER),
        data_dir=os.getenv("TENANTREC_DATA_DIR") or None,
        log_level=os.getenv("TENANTREC_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        scheduler_enabled=_env_bool("TENANTREC_SCHEDULER_ENABLED", False),
        retrain_weekday=int(
            os.getenv("TENANTREC_RETRAIN_WEEKDAY", str(DEFAULT_RETRAIN_WEEKDAY))
        ),
        retrain_hour=int(os.getenv("TENANTREC_RETRAIN_HOUR", str(DEFAULT_RETRAIN_HOUR))),
        fm_factors=int(os.getenv("TENANTREC_FM_FACTORS", "8")),
        fm_epochs=int(os.getenv("TENANTREC_FM_EPOCHS", "200")),
        fm_learning_rate=float(os.getenv("TENANTREC_FM_LEARNING_RATE", "0.1")),
        fm_reg=float(os.getenv("TENANTREC_FM_REG", "0.001")),
        random_state=int(os.getenv("TENANTREC_RANDOM_STATE", "42")),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return load_settings()
