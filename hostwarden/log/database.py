import sqlite3
import logging
import threading
from pathlib import Path
from collections import namedtuple
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Sequence

LogEntry = namedtuple('LogEntry', ['timestamp', 'level', 'module', 'message'])
log = logging.getLogger(__name__)

_SCHEMA = '''
    CREATE TABLE IF NOT EXISTS logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp REAL,
        level TEXT,
        module TEXT,
        funcName TEXT,
        lineno INTEGER,
        message TEXT
    )
'''
_COLUMNS = ("timestamp", "level", "module", "funcName", "lineno", "message")


class LogDBManager:
    """
    Reads and writes the supervisor's log table.

    Rows keep insertion order through the autoincrement id, so records that
    share a timestamp are never dropped or reordered.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.lock = threading.Lock()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Yields a cursor inside a committed transaction, one writer at a time."""
        with self.lock:
            conn = sqlite3.connect(self.db_path, timeout=10)
            try:
                with conn:
                    yield conn.cursor()
            finally:
                conn.close()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> List[Any]:
        """
        Runs one statement and returns the rows it produced.

        :raises sqlite3.Error: After logging the failure.
        """
        try:
            with self._transaction() as cursor:
                cursor.execute(sql, params)
                return cursor.fetchall()
        except sqlite3.Error as e:
            log.error(f"Log database statement failed on '{self.db_path}': {e}")
            raise

    def initialize_database(self) -> None:
        """Creates the database file and the log table if they are missing."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.execute(_SCHEMA)
        except sqlite3.Error as e:
            log.critical(f"Could not create log database tables: {e}", exc_info=True)
            raise

    def insert_log_batch(self, entries: List[Dict[str, Any]]) -> None:
        """
        Inserts buffered handler entries in a single transaction.

        :param entries: Dictionaries keyed by the log table's column names.
        """
        if not entries:
            return
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._transaction() as cursor:
            cursor.executemany(
                f"INSERT INTO logs ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                [tuple(entry[column] for column in _COLUMNS) for entry in entries],
            )

    def get_recent_logs(self, count: int) -> List[LogEntry]:
        """Returns up to `count` of the newest entries, oldest first."""
        if not self.db_path.exists():
            return []
        rows = self.execute(
            "SELECT timestamp, level, module, message FROM logs ORDER BY id DESC LIMIT ?",
            (count,),
        )
        return [LogEntry(*row) for row in reversed(rows)]
