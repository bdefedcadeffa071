# classes/db_hlpr.py
import logging
from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from classes import settings

logger = logging.getLogger("planner_server")


def build_database_url() -> str:
    if settings.DATABASE_URL:
        return settings.DATABASE_URL
    if settings.DB_HOST:
        return (
            f"postgresql+pg8000://{settings.DB_USER}:{settings.DB_PASSWORD}"
            f"@{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
        )
    return "sqlite:///planner.db"


def get_db_engine(url: str | None = None) -> Engine:
    url = url or build_database_url()
    if url.startswith("postgresql+pg8000"):
        logger.info("[DB] Connecting to Postgres host %s", settings.DB_HOST or "(from DATABASE_URL)")
        # pg8000 supports 'timeout' in seconds
        return create_engine(url, connect_args={"timeout": 10}, pool_pre_ping=True)
    logger.info("[DB] Using URL: %s", url)
    return create_engine(url, pool_pre_ping=True)


def build_session_factory(engine: Engine | None = None) -> Callable[[], Session]:
    engine = engine or get_db_engine()
    maker = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def _factory() -> Session:
        return maker()

    return _factory
