"""Cache database engine and schema setup"""

from pathlib import Path

from sqlalchemy import create_engine
from sqlmodel import SQLModel

# Registers the cache tables on SQLModel.metadata
from sitepub.cache import models  # noqa: F401


CACHE_DB = "cache.db"


def cache_url(cache_dir: Path) -> str:
    return f"sqlite:///{Path(cache_dir) / CACHE_DB}"


def make_engine(db_url: str):
    return create_engine(db_url, echo=False, connect_args={"check_same_thread": False})


def init_db(engine) -> None:
    SQLModel.metadata.create_all(engine)
