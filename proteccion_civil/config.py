"""
Configuration and settings for the Protección Civil API.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

PROJECT_ROOT = Path(__file__).resolve().parents[1]

# Values reported by /api/estadisticas when the aggregate view has no value
# (or a falsy one) for a field.
STATISTICS_FALLBACKS = {
    "brigadistas_activos": 59,
    "cursos_disponibles": 3,
    "emergencias_activas": 0,
    "solicitudes_pendientes": 0,
}


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    port: int = Field(default=3000, validation_alias="PORT")
    environment: str = Field(
        default="development", validation_alias="NODE_ENV"
    )

    # MySQL (Railway-style variables)
    mysql_host: str = Field(default="localhost", validation_alias="MYSQLHOST")
    mysql_port: int = Field(default=3306, validation_alias="MYSQLPORT")
    mysql_user: str = Field(default="root", validation_alias="MYSQLUSER")
    mysql_password: str = Field(default="123456", validation_alias="MYSQLPASSWORD")
    mysql_database: str = Field(
        default="proteccion_civil", validation_alias="MYSQLDATABASE"
    )

    # Any SQLAlchemy URL; takes precedence over the MySQL fields.
    database_url: Optional[str] = Field(
        default=None, validation_alias="DATABASE_URL"
    )

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="PC_USE_IN_MEMORY_BACKENDS"
    )
    create_schema: bool = Field(default=False, validation_alias="PC_CREATE_SCHEMA")
    reconnect_delay_seconds: float = Field(
        default=5.0, validation_alias="PC_RECONNECT_DELAY_SECONDS"
    )

    # Static roots
    public_dir: Path = Field(
        default=PROJECT_ROOT / "public", validation_alias="PC_PUBLIC_DIR"
    )
    uploads_dir: Path = Field(
        default=PROJECT_ROOT / "uploads", validation_alias="PC_UPLOADS_DIR"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def sqlalchemy_url(self) -> str | URL:
        if self.database_url:
            return self.database_url
        return URL.create(
            "mysql+pymysql",
            username=self.mysql_user,
            password=self.mysql_password,
            host=self.mysql_host,
            port=self.mysql_port,
            database=self.mysql_database,
            query={"charset": "utf8mb4"},
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
