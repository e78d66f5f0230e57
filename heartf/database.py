from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "heartf"
    db_host: str = "db"
    db_port: int = 5432
    database_url: str | None = None
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_echo: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return normalize_database_url(self.database_url)
        return (
            "postgresql+psycopg2://"
            f"{self.db_user}:{self.db_password}@"
            f"{self.db_host}:{self.db_port}/{self.db_name}"
        )


def normalize_database_url(url: str) -> str:
    """Pin bare postgres:// and postgresql:// URLs (as hosted providers hand out) to psycopg2."""
    url = url.strip()
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg2://" + url[len(prefix):]
    return url


def engine_options(url: str, settings: DatabaseSettings) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True, "echo": settings.db_echo}
    if url.startswith("sqlite"):
        # One connection shared across TestClient/worker threads.
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_size"] = settings.db_pool_size
        options["max_overflow"] = settings.db_max_overflow
    return options


def create_db_engine(url: str, **overrides: Any) -> Engine:
    options = engine_options(url, db_settings)
    options.update(overrides)
    return create_engine(url, **options)


db_settings = DatabaseSettings()
DATABASE_URL = db_settings.resolved_database_url

engine = create_db_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_database_connection(bind: Engine | None = None) -> bool:
    with (bind or engine).connect() as connection:
        connection.execute(text("SELECT 1"))
    return True
