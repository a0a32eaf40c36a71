from pydantic import BaseModel
import os

class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./database.db")
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")

    # seconds; sqlite busy timeout, connect timeout elsewhere
    db_timeout: float = float(os.getenv("FLEET_DB_TIMEOUT", "15"))
    tx_retries: int = int(os.getenv("FLEET_TX_RETRIES", "3"))
    tx_backoff: float = float(os.getenv("FLEET_TX_BACKOFF", "0.05"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    port: int = int(os.getenv("PORT", "3000"))

settings = Settings()
