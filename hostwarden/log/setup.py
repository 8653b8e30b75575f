import sys
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from hostwarden.local import app_globals
from hostwarden.log.handler import SQLiteHandler, LokiHandler

LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'


class MainFormatter(logging.Formatter):
    """A custom formatter to handle regular logs and raw script output."""

    def __init__(self) -> None:
        super().__init__(LOG_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        # Drained script output is passed through as-is.
        if record.name.startswith('proc.'):
            return record.getMessage()
        return super().format(record)


def setup_logging(console_level: int = logging.INFO, config: Optional[Dict[str, Any]] = None) -> None:
    """
    Configures the root logger for the supervisor.
    This sets up handlers for console, SQLite and optionally Loki,
    clearing any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param config: Settings dictionary. Defaults to the application settings.
    """
    config = config if config is not None else app_globals.get_all_settings()

    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    # Drop existing handlers to prevent re-adding them on re-runs; our own
    # buffered handlers are closed so their flush threads stop.
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        if isinstance(handler, (SQLiteHandler, LokiHandler)):
            handler.close()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # --- SQLite Handler ---
    if config.get("LOG_DB_ENABLED", True):
        try:
            sqlite_handler = SQLiteHandler(
                db_path=Path(config["LOG_DB_PATH"]),
                buffer_size=config.get("LOG_BUFFER_SIZE", 100),
                flush_interval=config.get("LOG_BUFFER_FLUSH_INTERVAL", 10),
            )
            sqlite_handler.setLevel(logging.DEBUG)
            root_logger.addHandler(sqlite_handler)
        except Exception as e:
            root_logger.error(f"Failed to initialize SQLite logging handler: {e}. Logging to DB will be disabled.")

    # --- Loki Handler (conditional) ---
    if config.get("LOKI_ENABLED", False):
        try:
            loki_handler = LokiHandler(
                url=config["LOKI_URL"],
                org_id=config.get("LOKI_ORG_ID"),
                flush_interval=config.get("LOG_BUFFER_FLUSH_INTERVAL", 10),
            )
            loki_handler.setLevel(logging.INFO) # Avoid spamming Loki with DEBUG logs
            loki_handler.setFormatter(MainFormatter())
            root_logger.addHandler(loki_handler)
            root_logger.info(f"Grafana Loki logging handler initialized for {config['LOKI_URL']}.")
        except Exception as e:
            root_logger.error(f"Failed to initialize Grafana Loki logging handler: {e}")
