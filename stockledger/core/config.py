from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "StockLedger"
    APP_PORT: int = 9210
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL_OVERRIDE: Optional[str] = None
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "stockledger"
    POSTGRES_PORT: int = 5432

    # Ledger policy
    OPENING_BALANCE_POLICY: str = "previous_close"  # previous_close | snapshot
    CONSERVATION_EPSILON: float = 0.01
    RECONCILIATION_TOLERANCE_QTY: float = 100.0
    RECONCILIATION_TOLERANCE_RATIO: float = 0.005
    UNDEFINED_STRATEGY: str = "UNDEFINED"

    # Ghost batch scan
    GHOST_SCAN_ENABLED: bool = False
    GHOST_SCAN_INTERVAL_HOURS: int = 24

    # Storage rent on pending transfers (per bag per day)
    STORAGE_RENT_RATE: float = 0.45
    BAG_WEIGHT_KG: float = 50.0

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
