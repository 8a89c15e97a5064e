import os
from urllib.parse import quote_plus

from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "PharmStock Inventory Engine")

    # ---------- Database ----------
    # DATABASE_URL wins; otherwise a MySQL URL is assembled from the parts below
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "pharmstock")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "pharmstock")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "pharmstock")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    DB_POOL_SIZE: int = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: int = int(os.getenv("DB_MAX_OVERFLOW", "20"))
    DB_POOL_RECYCLE: int = int(os.getenv("DB_POOL_RECYCLE", "280"))
    DB_ECHO: bool = _env_bool("DB_ECHO")

    # ---------- Allocation ----------
    DEFAULT_ALLOCATION_STRATEGY: str = os.getenv("DEFAULT_ALLOCATION_STRATEGY", "FEFO")
    DISPENSE_COMMIT_RETRIES: int = int(os.getenv("DISPENSE_COMMIT_RETRIES", "1"))

    # ---------- Batches / ledger ----------
    EXPIRY_ALERT_DAYS: int = int(os.getenv("EXPIRY_ALERT_DAYS", "30"))
    LEDGER_RETENTION_DAYS: int = int(os.getenv("LEDGER_RETENTION_DAYS", "365"))
    LEGACY_BATCH_SHELF_LIFE_DAYS: int = int(os.getenv("LEGACY_BATCH_SHELF_LIFE_DAYS", "730"))

    # ---------- Purchase returns ----------
    PURCHASE_RETURN_PREFIX: str = os.getenv("PURCHASE_RETURN_PREFIX", "PR")

    # ---------- Logging ----------
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+{self.DB_DRIVER}://{quote_plus(self.MYSQL_USER)}:{quote_plus(self.MYSQL_PASSWORD)}"
            f"@{self.MYSQL_HOST}:{self.MYSQL_PORT}/{self.MYSQL_DB}")


settings = Settings()
