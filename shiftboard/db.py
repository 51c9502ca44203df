from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings


def _sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def enable_sqlite_foreign_keys(bind: Engine) -> None:
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""
    if bind.dialect.name == "sqlite":
        event.listen(bind, "connect", _sqlite_foreign_keys)


def make_engine(url: str) -> Engine:
    kwargs = {"future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        # Pool for postgres; jobs and workers are locked FOR UPDATE per request
        kwargs.update(pool_size=5, max_overflow=10, pool_recycle=3600)
    bind = create_engine(url, **kwargs)
    enable_sqlite_foreign_keys(bind)
    return bind


engine = make_engine(settings.database_url)

# One Session per request; each service call commits its own unit of work
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
