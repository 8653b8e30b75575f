import os
import sys
import socket
import logging
import sqlite3
import threading
import requests
from pathlib import Path
from typing import Any, Dict, List, Optional
from hostwarden.log.database import LogDBManager


def _is_script_output(record: logging.LogRecord) -> bool:
    return record.name.startswith('proc.')


class BufferedHandler(logging.Handler):
    """
    Base class for handlers that collect records in memory and hand them to a
    sink in batches, either when the buffer is full or from a background thread
    every `flush_interval` seconds.

    Subclasses implement `to_entry` and `write_batch`. `write_batch` is called
    without the buffer lock held, so slow sinks never block logging calls.
    """

    thread_name = "LogFlushThread"

    def __init__(self, capacity: int, flush_interval: float) -> None:
        super().__init__()
        self.capacity = capacity
        self.flush_interval = flush_interval
        self.pending: List[Dict[str, Any]] = []
        self.buffer_lock = threading.Lock()
        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._flush_periodically, name=self.thread_name, daemon=True)

    def start(self) -> None:
        self.flush_thread.start()

    def _flush_periodically(self) -> None:
        while not self.stop_event.wait(self.flush_interval):
            self.flush()

    def to_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        raise NotImplementedError

    def write_batch(self, entries: List[Dict[str, Any]]) -> None:
        raise NotImplementedError

    def _take_pending(self) -> List[Dict[str, Any]]:
        with self.buffer_lock:
            batch, self.pending = self.pending, []
        return batch

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = self.to_entry(record)
        except Exception:
            self.handleError(record)
            return

        with self.buffer_lock:
            self.pending.append(entry)
            full = len(self.pending) >= self.capacity
        if full:
            self.flush()

    def flush(self) -> None:
        batch = self._take_pending()
        if batch:
            self.write_batch(batch)

    def close(self) -> None:
        """Stops the flush thread and writes whatever is still buffered."""
        self.stop_event.set()
        if self.flush_thread.is_alive():
            self.flush_thread.join(timeout=self.flush_interval + 2)
        self.flush()
        super().close()


class LokiHandler(BufferedHandler):
    """
    Pushes log records to a Grafana Loki instance in batches.
    """

    thread_name = "LokiFlushThread"

    def __init__(self, url: str, org_id: Optional[str] = None, flush_interval: float = 10, batch_size: int = 200):
        """
        :param url: The base URL of the Loki instance.
        :param org_id: The tenant sent as 'X-Scope-OrgID', if any.
        :param flush_interval: Seconds between background pushes.
        :param batch_size: Number of buffered records that triggers an immediate push.
        """
        super().__init__(batch_size, flush_interval)
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.headers = {'Content-Type': 'application/json'}
        if org_id:
            self.headers['X-Scope-OrgID'] = org_id
        self.hostname = os.getenv('COMPUTERNAME') or os.getenv('HOSTNAME') or socket.gethostname()
        self.start()

    def to_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Builds one Loki stream for a record, labelled by level, host and logger."""
        if _is_script_output(record):
            logger_name, line = record.name.split('.', 1)[1], record.getMessage()
        else:
            logger_name, line = record.name, self.format(record)
        labels = {
            "job": "hostwarden",
            "hostname": self.hostname,
            "level": record.levelname.lower(),
            "logger": logger_name,
        }
        return {"stream": labels, "values": [[str(int(record.created * 1e9)), line]]}

    def write_batch(self, entries: List[Dict[str, Any]]) -> None:
        # Failures go to stderr; logging them would feed back into this handler.
        try:
            response = requests.post(self.url, json={"streams": entries}, headers=self.headers, timeout=5)
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(entries)} logs to Loki: {e}", file=sys.stderr)
            return
        if response.status_code != 204:
            print(f"ERROR: Loki rejected {len(entries)} logs ({response.status_code}): {response.text}", file=sys.stderr)


class SQLiteHandler(BufferedHandler):
    """
    Stores log records in the supervisor's SQLite log database in batches.
    """

    thread_name = "SQLiteFlushThread"

    def __init__(self, db_path: Path, buffer_size: int = 100, flush_interval: float = 10):
        """
        :param db_path: The path to the SQLite database file. Created if missing.
        :param buffer_size: Number of buffered records that triggers an immediate write.
        :param flush_interval: Seconds between background writes.
        """
        super().__init__(buffer_size, flush_interval)
        self.db_path = Path(db_path)
        self.logDB = LogDBManager(self.db_path)
        self.logDB.initialize_database()
        self.start()

    def to_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        if _is_script_output(record):
            # Script output has no source location; keep the worker name and stream instead.
            module = record.name.split('.', 1)[1]
            func_name = 'stdout' if record.levelno < logging.WARNING else 'stderr'
            lineno = 0
        else:
            module, func_name, lineno = record.module, record.funcName, record.lineno
        return {
            "timestamp": record.created,
            "level": record.levelname,
            "module": module,
            "funcName": func_name,
            "lineno": lineno,
            "message": record.getMessage(),
        }

    def write_batch(self, entries: List[Dict[str, Any]]) -> None:
        try:
            self.logDB.insert_log_batch(entries)
        except sqlite3.Error as e:
            print(f"Error writing {len(entries)} log entries to '{self.db_path}': {e}", file=sys.stderr)
