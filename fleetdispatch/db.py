import logging
import time
from contextvars import ContextVar
from typing import Callable, Optional, TypeVar

from sqlalchemy import event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlmodel import SQLModel, Session, create_engine

from . import models
from .errors import PersistenceError
from .settings import settings

log = logging.getLogger("fleet.db")

T = TypeVar("T")

# Columns that earlier deployments did not have. (table, column, DDL)
COLUMN_UPGRADES = [
    ("devices", "os_version", "TEXT"),
    ("devices", "phone_number", "TEXT"),
    ("devices", "battery_level", "INTEGER"),
]

# serialization_failure, deadlock_detected, lock_not_available
_PG_CONFLICTS = {"40001", "40P01", "55P03"}
_SQLITE_CONFLICTS = ("database is locked", "database table is locked", "database is busy")

# monotonic deadline of the unit of work running in this thread
_deadline: ContextVar[Optional[float]] = ContextVar("fleet_db_deadline", default=None)


def _remaining_ms(deadline: Optional[float], default_ms: int) -> int:
    if deadline is None:
        return default_ms
    return max(0, min(default_ms, int((deadline - time.monotonic()) * 1000)))


def _serialize_sqlite_writers(engine: Engine, timeout: float) -> None:
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, which would let two claims
    read the same pending rows before either updates them. Taking the write
    lock up front makes select-then-update atomic.

    The busy timeout is set again before every BEGIN, shortened to whatever
    is left of the caller's deadline.
    """
    default_ms = int(timeout * 1000)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(f"PRAGMA busy_timeout = {_remaining_ms(_deadline.get(), default_ms)}")
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Connection pool, schema management and the unit-of-work primitive."""

    def __init__(
        self,
        url: str,
        timeout: float = settings.db_timeout,
        retries: int = settings.tx_retries,
        backoff: float = settings.tx_backoff,
    ):
        self.url = url
        self.retries = retries
        self.backoff = backoff
        if url.startswith("sqlite"):
            self.engine = create_engine(
                url, connect_args={"check_same_thread": False, "timeout": timeout}
            )
            _serialize_sqlite_writers(self.engine, timeout)
        else:
            self.engine = create_engine(
                url, pool_pre_ping=True, connect_args={"connect_timeout": int(timeout)}
            )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def init_db(self) -> None:
        """Create missing tables and bring older schemas up to date. Idempotent."""
        try:
            SQLModel.metadata.create_all(self.engine)
            self._upgrade_schema()
        except SQLAlchemyError as exc:
            log.error("schema setup failed: %s", exc)
            raise PersistenceError("could not initialise database schema") from exc
        log.info("database schema ready (%s)", self.dialect)

    def _upgrade_schema(self) -> None:
        inspector = inspect(self.engine)
        for table, column, ddl in COLUMN_UPGRADES:
            columns = {c["name"] for c in inspector.get_columns(table)}
            if column in columns:
                continue
            with self.engine.begin() as conn:
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
            log.info("added column %s.%s", table, column)

        # create_all skips indexes of tables that already existed
        for index in models.Command.__table__.indexes:
            index.create(self.engine, checkfirst=True)

    def session(self) -> Session:
        # prevent attribute expiration so simple reads after commit are safe
        return Session(self.engine, expire_on_commit=False)

    def run(self, work: Callable[[Session], T], timeout: Optional[float] = None) -> T:
        """Run ``work(session)`` as one transaction.

        Commits when ``work`` returns, rolls back when it raises. Lock and
        serialization conflicts are retried with exponential backoff as long
        as ``timeout`` (seconds) allows; a failed COMMIT is never replayed.
        Any storage failure that is left over is raised as PersistenceError.
        Errors raised by ``work`` itself propagate unchanged.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        token = _deadline.set(deadline)
        attempt = 0
        try:
            while True:
                committing = False
                try:
                    with self.session() as session:
                        if deadline is not None:
                            self._apply_deadline(session, deadline)
                        result = work(session)
                        committing = True
                        session.commit()
                        return result
                except OperationalError as exc:
                    delay = self.backoff * (2 ** attempt)
                    if (
                        not committing
                        and attempt < self.retries
                        and self._retryable(exc)
                        and not self._expires(deadline, delay)
                    ):
                        attempt += 1
                        log.warning(
                            "transaction conflict (%s), retry %d/%d in %.2fs",
                            exc.orig, attempt, self.retries, delay,
                        )
                        time.sleep(delay)
                        continue
                    log.error(
                        "transaction failed%s after %d attempt(s): %s",
                        " at commit" if committing else "", attempt + 1, exc.orig,
                    )
                    raise PersistenceError("storage unavailable") from exc
                except SQLAlchemyError as exc:
                    log.error("transaction failed: %s", exc)
                    raise PersistenceError("storage failure") from exc
        finally:
            _deadline.reset(token)

    def _apply_deadline(self, session: Session, deadline: float) -> None:
        # on SQLite the BEGIN hook shortens the busy timeout instead
        if self.dialect == "postgresql":
            ms = max(1, _remaining_ms(deadline, 2 ** 31 - 1))
            session.exec(text(f"SET LOCAL statement_timeout = {ms}"))

    @staticmethod
    def _expires(deadline: Optional[float], delay: float) -> bool:
        return deadline is not None and time.monotonic() + delay >= deadline

    @staticmethod
    def _retryable(exc: OperationalError) -> bool:
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode is not None:
            return pgcode in _PG_CONFLICTS
        message = str(exc.orig).lower()
        return any(conflict in message for conflict in _SQLITE_CONFLICTS)

    def close(self) -> None:
        self.engine.dispose()


database = Database(settings.database_url)


def get_db() -> Database:
    return database
