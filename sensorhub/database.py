"""
SQLite access for the sensor management service.

Holds the schema of the canonical hierarchy table and both sensor index
tables, opens connections with a bounded retry policy and wraps every write
in an explicit transaction whose lifecycle is tracked as a small state
machine.
"""
import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

from sensorhub.errors import ConnectivityError, StoreError

log = logging.getLogger(__name__)

HIERARCHIES_TABLE = "sensor_hierarchies"
AGGREGATED_SENSORS_TABLE = "aggregated_sensors"
MACHINE_SENSORS_TABLE = "machine_sensors"


def default_database_path() -> str:
    base = os.path.expanduser("~/.sensorhub")
    os.makedirs(base, exist_ok=True)
    return os.path.join(base, "sensorhub.db")


class TransactionState(str, Enum):
    IDLE = "idle"
    OPEN = "open"
    VALIDATED = "validated"
    APPLIED = "applied"
    COMMITTED = "committed"
    ABORTED = "aborted"


_TRANSITIONS = {
    TransactionState.IDLE: {TransactionState.OPEN},
    TransactionState.OPEN: {TransactionState.VALIDATED, TransactionState.ABORTED},
    TransactionState.VALIDATED: {TransactionState.APPLIED, TransactionState.ABORTED},
    TransactionState.APPLIED: {TransactionState.COMMITTED, TransactionState.ABORTED},
    TransactionState.COMMITTED: set(),
    TransactionState.ABORTED: set(),
}


class Transaction:
    """
    One write transaction on a dedicated connection.

    States: IDLE -> OPEN -> VALIDATED -> APPLIED -> COMMITTED, or ABORTED from
    any non-final state. Collision checks happen while OPEN, mutations only
    after ``mark_validated``. An illegal transition raises ``RuntimeError``.
    """

    def __init__(self, con: sqlite3.Connection):
        self.con = con
        self.state = TransactionState.IDLE

    def _check(self, state: TransactionState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal transaction transition {self.state.value} -> {state.value}")

    def begin(self) -> None:
        self._check(TransactionState.OPEN)
        # Take the write lock up front so that collision checks and the
        # mutations based on them see the same data
        self.con.execute("BEGIN IMMEDIATE")
        self.state = TransactionState.OPEN

    def mark_validated(self) -> None:
        self._check(TransactionState.VALIDATED)
        self.state = TransactionState.VALIDATED

    def mark_applied(self) -> None:
        self._check(TransactionState.APPLIED)
        self.state = TransactionState.APPLIED

    def commit(self) -> None:
        self._check(TransactionState.COMMITTED)
        self.con.execute("COMMIT")
        self.state = TransactionState.COMMITTED

    def abort(self) -> None:
        if self.state is TransactionState.IDLE:
            self.state = TransactionState.ABORTED
            return
        self._check(TransactionState.ABORTED)
        # Mark first: after a failed ROLLBACK the transaction is still unusable
        self.state = TransactionState.ABORTED
        if self.con.in_transaction:
            self.con.execute("ROLLBACK")

    @property
    def is_finished(self) -> bool:
        return self.state in (TransactionState.COMMITTED, TransactionState.ABORTED)

    def execute(self, sql: str, params=()) -> sqlite3.Cursor:
        return self.con.execute(sql, params)


class Database:
    """Connection factory and schema owner for the hierarchy store."""

    def __init__(
        self,
        path: Optional[str] = None,
        retry_delay_ms: int = 1000,
        max_retries: int = 10,
        busy_timeout_secs: float = 5.0
    ):
        self.path = path or default_database_path()
        self.retry_delay_ms = retry_delay_ms
        self.max_retries = max_retries
        self.busy_timeout_secs = busy_timeout_secs

    def _open(self) -> sqlite3.Connection:
        con = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout_secs,
            isolation_level=None,  # transactions are issued explicitly
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row
        try:
            con.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            con.close()
            raise
        return con

    def connect(self) -> sqlite3.Connection:
        """
        Open a connection, retrying transient failures.

        Makes at most ``max_retries + 1`` attempts with a fixed delay of
        ``retry_delay_ms`` between them.

        Raises:
            ConnectivityError: If every attempt failed
        """
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                con = self._open()
                if attempt > 1:
                    log.info(f"Connected to database at {self.path} after {attempt} attempts")
                return con
            except sqlite3.OperationalError as e:
                if attempt == attempts:
                    log.error(f"Connection to database at {self.path} failed after {attempts} attempts: {e}")
                    raise ConnectivityError(f"Database at {self.path} is not available: {e}") from e
                log.warning(f"Database not available ({e}). Will retry in {self.retry_delay_ms} ms.")
                time.sleep(self.retry_delay_ms / 1000.0)
        raise ConnectivityError(f"Database at {self.path} is not available")

    def ping(self) -> None:
        con = self.connect()
        con.close()

    def init_schema(self) -> None:
        """Create the hierarchy table and both index tables if they do not exist."""
        log.info(f"Initializing database at: {self.path}")
        con = self.connect()
        try:
            con.execute("BEGIN IMMEDIATE")
            con.execute(f"""
                CREATE TABLE IF NOT EXISTS {HIERARCHIES_TABLE} (
                    identifier TEXT PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    document TEXT NOT NULL,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)
            for table in (AGGREGATED_SENSORS_TABLE, MACHINE_SENSORS_TABLE):
                con.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        identifier TEXT PRIMARY KEY,
                        hierarchy_id TEXT NOT NULL,
                        parent_id TEXT
                    )
                """)
                con.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_hierarchy ON {table}(hierarchy_id)")
            con.execute("COMMIT")
            log.info("Created/verified sensor hierarchy and sensor index tables")
        except sqlite3.Error as e:
            if con.in_transaction:
                con.execute("ROLLBACK")
            raise StoreError(f"Failed to initialize database schema: {e}") from e
        finally:
            con.close()

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """
        Yield an open transaction.

        Leaving the block without committing aborts the transaction. A
        database error inside the block aborts it and is re-raised as
        ``StoreError``; it is never retried.
        """
        con = self.connect()
        tx = Transaction(con)
        try:
            try:
                tx.begin()
                yield tx
            except sqlite3.Error as e:
                log.error(f"Transaction aborted by database error: {e}", exc_info=True)
                self._abort_quietly(tx)
                raise StoreError(f"Database operation failed: {e}") from e
            except BaseException:
                self._abort_quietly(tx)
                raise
            if not tx.is_finished:
                tx.abort()
        finally:
            con.close()

    @staticmethod
    def _abort_quietly(tx: Transaction) -> None:
        if tx.is_finished:
            return
        try:
            tx.abort()
        except sqlite3.Error as e:
            log.error(f"Rollback failed: {e}")

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection for reads that need no transaction."""
        con = self.connect()
        try:
            yield con
        except sqlite3.Error as e:
            log.error(f"Database read failed: {e}", exc_info=True)
            raise StoreError(f"Database read failed: {e}") from e
        finally:
            con.close()

    @contextmanager
    def snapshot(self) -> Iterator[sqlite3.Connection]:
        """
        Yield a connection inside a read transaction.

        Every statement in the block sees the same committed state; writers
        wait until the block is left.
        """
        con = self.connect()
        try:
            con.execute("BEGIN")
            yield con
            con.execute("COMMIT")
        except sqlite3.Error as e:
            log.error(f"Database snapshot read failed: {e}", exc_info=True)
            raise StoreError(f"Database read failed: {e}") from e
        finally:
            # Also ends the read transaction when the block raised
            con.close()
