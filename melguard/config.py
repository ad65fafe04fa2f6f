"""
MEL Guard - System Configuration
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): Work order status/type vocabularies and out-of-service
                      statuses configurable; snapshot cache TTL
v1.0.0 (2026-09-28): Initial configuration module
"""

from pydantic_settings import BaseSettings
from typing import List
from pathlib import Path
import os


class Settings(BaseSettings):
    """System-wide configuration"""

    # Application
    APP_NAME: str = "MEL Guard"
    APP_VERSION: str = "1.1.0"
    DEBUG: bool = False

    # API Server
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_WORKERS: int = 1  # Single worker keeps one reconcile scheduler

    # SQLite Configuration
    SQLITE_DB_PATH: str = str(Path(__file__).parent / "data" / "melguard.db")

    # File Paths
    LOGS_DIR: str = str(Path(__file__).parent / "logs")

    # Effort CMMS API
    EFFORT_BASE_URL: str = "https://sjh.globalthings.net"
    EFFORT_API_KEY: str = ""  # Set via environment variable
    SOURCE_TIMEOUT_S: float = 45.0  # per fetch, equipment and work orders

    # Mock data (fixtures instead of the Effort API)
    USE_MOCK: bool = False
    MOCK_DATA_DIR: str = str(Path(__file__).parent / "data" / "mock")

    # Reconciliation
    RECONCILE_INTERVAL_S: float = 900.0  # 0 disables the scheduled pass
    SNAPSHOT_CACHE_TTL_S: float = 300.0  # listing endpoints only

    # Work order vocabularies (lowercase, accent-free substrings)
    OPEN_WORK_ORDER_STATUSES: List[str] = ["aberta", "em andamento", "em_andamento", "open"]
    CORRECTIVE_MAINTENANCE_TYPES: List[str] = ["corretiva", "corrective"]

    # Equipment statuses that make a unit unavailable regardless of work orders
    OUT_OF_SERVICE_STATUSES: List[str] = ["sucateado", "baixado", "emprestado"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Singleton instance
settings = Settings()


# Create required directories
def init_directories():
    """Create necessary directories if they don't exist"""
    for directory in [os.path.dirname(os.path.abspath(settings.SQLITE_DB_PATH)),
                      settings.LOGS_DIR]:
        os.makedirs(directory, exist_ok=True)


if __name__ == "__main__":
    print(f"{settings.APP_NAME} Configuration v{settings.APP_VERSION}")
    print(f"SQLite: {settings.SQLITE_DB_PATH}")
    print(f"Effort API: {settings.EFFORT_BASE_URL} (mock={settings.USE_MOCK})")
    print(f"Reconcile interval: {settings.RECONCILE_INTERVAL_S}s")
