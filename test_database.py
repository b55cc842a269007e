"""
Unit tests for database access: connection retries and the transaction lifecycle
"""

import sqlite3
from unittest.mock import patch

import pytest

from sensorhub.database import Database, Transaction, TransactionState
from sensorhub.errors import ConnectivityError, StoreError


class TestConnect:
    """Test the bounded connection retry"""

    def test_gives_up_after_max_retries(self, tmp_path):
        db = Database(path=str(tmp_path / "x.db"), retry_delay_ms=250, max_retries=3)

        with patch.object(Database, "_open", side_effect=sqlite3.OperationalError("unable to open")) as mock_open, \
                patch("sensorhub.database.time.sleep") as mock_sleep:
            with pytest.raises(ConnectivityError):
                db.connect()

        assert mock_open.call_count == 4
        assert mock_sleep.call_count == 3
        mock_sleep.assert_called_with(0.25)

    def test_recovers_after_transient_failure(self, tmp_path):
        db = Database(path=str(tmp_path / "x.db"), retry_delay_ms=10, max_retries=5)
        real_open = Database._open
        failures = [sqlite3.OperationalError("locked"), sqlite3.OperationalError("locked")]

        def flaky_open(self):
            if failures:
                raise failures.pop()
            return real_open(self)

        with patch.object(Database, "_open", flaky_open), patch("sensorhub.database.time.sleep") as mock_sleep:
            con = db.connect()

        con.close()
        assert mock_sleep.call_count == 2

    def test_no_retries_configured(self, tmp_path):
        db = Database(path=str(tmp_path / "x.db"), max_retries=0)

        with patch.object(Database, "_open", side_effect=sqlite3.OperationalError("down")) as mock_open, \
                patch("sensorhub.database.time.sleep") as mock_sleep:
            with pytest.raises(ConnectivityError):
                db.ping()

        assert mock_open.call_count == 1
        mock_sleep.assert_not_called()

    def test_unreachable_path(self, tmp_path):
        db = Database(path=str(tmp_path / "missing-dir" / "x.db"), retry_delay_ms=0, max_retries=1)

        with pytest.raises(ConnectivityError):
            db.ping()


class TestTransaction:
    """Test the transaction state machine"""

    @pytest.fixture
    def con(self, database):
        con = database.connect()
        yield con
        con.close()

    def test_happy_path(self, con):
        tx = Transaction(con)
        assert tx.state is TransactionState.IDLE

        tx.begin()
        tx.mark_validated()
        tx.mark_applied()
        tx.commit()

        assert tx.state is TransactionState.COMMITTED
        assert tx.is_finished
        assert not con.in_transaction

    def test_cannot_mutate_before_validation(self, con):
        tx = Transaction(con)
        tx.begin()

        with pytest.raises(RuntimeError):
            tx.mark_applied()
        with pytest.raises(RuntimeError):
            tx.commit()

    def test_abort_from_open_rolls_back(self, con):
        tx = Transaction(con)
        tx.begin()
        tx.execute("INSERT INTO machine_sensors (identifier, hierarchy_id, parent_id) VALUES ('m', 'h', 'h')")

        tx.abort()

        assert tx.state is TransactionState.ABORTED
        assert con.execute("SELECT COUNT(*) FROM machine_sensors").fetchone()[0] == 0

    def test_no_transitions_after_commit(self, con):
        tx = Transaction(con)
        tx.begin()
        tx.mark_validated()
        tx.mark_applied()
        tx.commit()

        with pytest.raises(RuntimeError):
            tx.abort()
        with pytest.raises(RuntimeError):
            tx.begin()


class TestTransactionContext:
    """Test Database.transaction()"""

    def count(self, database):
        with database.read() as con:
            return con.execute("SELECT COUNT(*) FROM machine_sensors").fetchone()[0]

    def test_commit_persists(self, database):
        with database.transaction() as tx:
            tx.mark_validated()
            tx.execute("INSERT INTO machine_sensors (identifier, hierarchy_id, parent_id) VALUES ('m', 'h', 'h')")
            tx.mark_applied()
            tx.commit()

        assert self.count(database) == 1

    def test_unfinished_block_is_aborted(self, database):
        with database.transaction() as tx:
            tx.mark_validated()
            tx.execute("INSERT INTO machine_sensors (identifier, hierarchy_id, parent_id) VALUES ('m', 'h', 'h')")

        assert tx.state is TransactionState.ABORTED
        assert self.count(database) == 0

    def test_database_error_becomes_store_error(self, database):
        with pytest.raises(StoreError):
            with database.transaction() as tx:
                tx.mark_validated()
                tx.execute("INSERT INTO machine_sensors (identifier, hierarchy_id, parent_id) VALUES ('m', 'h', 'h')")
                tx.execute("INSERT INTO machine_sensors (identifier, hierarchy_id, parent_id) VALUES ('m', 'h', 'h')")

        assert tx.state is TransactionState.ABORTED
        assert self.count(database) == 0

    def test_other_errors_propagate_after_rollback(self, database):
        with pytest.raises(KeyError):
            with database.transaction() as tx:
                tx.mark_validated()
                tx.execute("INSERT INTO machine_sensors (identifier, hierarchy_id, parent_id) VALUES ('m', 'h', 'h')")
                raise KeyError("boom")

        assert self.count(database) == 0

    def test_init_schema_is_idempotent(self, database):
        database.init_schema()

        with database.read() as con:
            tables = {row[0] for row in con.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert {"sensor_hierarchies", "aggregated_sensors", "machine_sensors"} <= tables


class TestSnapshot:
    """Test Database.snapshot()"""

    INSERT = "INSERT INTO machine_sensors (identifier, hierarchy_id, parent_id) VALUES ('m', 'h', 'h')"

    def test_writer_cannot_commit_during_snapshot(self, database):
        writer = Database(path=database.path, retry_delay_ms=0, max_retries=0, busy_timeout_secs=0.1)

        with database.snapshot() as con:
            before = con.execute("SELECT COUNT(*) FROM machine_sensors").fetchone()[0]
            with pytest.raises(StoreError):
                with writer.transaction() as tx:
                    tx.mark_validated()
                    tx.execute(self.INSERT)
                    tx.mark_applied()
                    tx.commit()
            after = con.execute("SELECT COUNT(*) FROM machine_sensors").fetchone()[0]

        assert before == after == 0

    def test_writes_proceed_after_snapshot(self, database):
        with database.snapshot() as con:
            con.execute("SELECT COUNT(*) FROM machine_sensors").fetchone()

        with database.transaction() as tx:
            tx.mark_validated()
            tx.execute(self.INSERT)
            tx.mark_applied()
            tx.commit()

        with database.read() as con:
            assert con.execute("SELECT COUNT(*) FROM machine_sensors").fetchone()[0] == 1
