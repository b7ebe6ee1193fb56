"""SQLAlchemy engine/session setup."""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from leadscout.config import get_settings

settings = get_settings()
db_url = settings.database_url
is_sqlite = db_url.startswith("sqlite")

engine_kwargs = {"pool_pre_ping": True}
if is_sqlite:
    engine_kwargs.update({"connect_args": {"check_same_thread": False}})

engine = create_engine(db_url, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db():
    import leadscout.models  # noqa: F401  registers tables on Base

    Base.metadata.create_all(bind=engine)
