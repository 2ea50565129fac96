from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .errors import StorageFailure


def configure_sqlite(engine: Engine) -> Engine:
    """
    Make SQLite behave for concurrent writers.

    pysqlite's own transaction handling is switched off and every transaction
    is opened with BEGIN IMMEDIATE, so the read-check-write of a capacity
    check holds the database write lock from its first statement.
    """
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # check_same_thread=False: FastAPI runs sync handlers in a thread pool
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        return configure_sqlite(engine)
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(settings.resolved_database_url)

# SessionLocal: the main way to talk to the DB
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """
    Unit of work around service calls.

    Commits on success; rolls back on any error. Driver/commit failures
    surface as StorageFailure, the only error a caller should retry.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure(
            "Storage failure, please retry",
            error=e.__class__.__name__,
        ) from e
    except Exception:
        db.rollback()
        raise
