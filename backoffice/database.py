import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from backoffice.config import settings

logger = logging.getLogger(__name__)


def configure_sqlite(sqlite_engine: Engine) -> Engine:
    """Give SQLite real transactions.

    pysqlite defers BEGIN until the first write, which breaks SAVEPOINTs and
    lets a read-then-write race. Every transaction starts with
    BEGIN IMMEDIATE instead, so writers queue on the busy timeout.
    """

    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.close()

    @event.listens_for(sqlite_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return sqlite_engine


connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False
    connect_args["timeout"] = 30

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args, echo=settings.SQL_ECHO)
if settings.DATABASE_URL.startswith("sqlite"):
    configure_sqlite(engine)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_with_retry(db: Session, func, *, attempts: int | None = None, backoff: float | None = None):
    """Run a unit of work, retrying on lock / stale-data errors.

    The session is rolled back before each retry so ``func`` always starts
    from a clean transaction.
    """
    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    backoff = settings.DB_RETRY_BACKOFF if backoff is None else backoff
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Concurrency conflict (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff * (2 ** attempt))


def init_db(bind=None):
    # Import all models so Base.metadata knows about them
    import backoffice.models.catalog  # noqa: F401
    import backoffice.models.inventory  # noqa: F401
    import backoffice.models.order  # noqa: F401
    import backoffice.models.invoice  # noqa: F401
    import backoffice.models.job  # noqa: F401
    import backoffice.models.sequence  # noqa: F401
    import backoffice.models.user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
