from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy import event, inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def _create_engine() -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    engine_kwargs: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    if settings.isolation_level:
        engine_kwargs["isolation_level"] = settings.isolation_level
    from sqlalchemy import create_engine

    eng = create_engine(
        settings.database_url, connect_args=connect_args, **engine_kwargs
    )
    if settings.database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


CUSTOM_RATE_COLUMNS = ("use_custom_rate", "usd_to_etb", "eur_to_etb")


@dataclass(frozen=True)
class SchemaFeatures:
    """Optional columns that older database generations may lack."""

    custom_rate_columns: bool = True


def detect_schema_features(bind: Engine | Connection) -> SchemaFeatures:
    inspector = inspect(bind)
    if not inspector.has_table("budget_preview"):
        # Fresh database: migrations will create the current shape.
        return SchemaFeatures()
    columns = {col["name"] for col in inspector.get_columns("budget_preview")}
    return SchemaFeatures(
        custom_rate_columns=all(name in columns for name in CUSTOM_RATE_COLUMNS)
    )
