"""
This module contains the configuration settings for the HostWarden supervisor.
It defines paths, supervision timings, logging configuration and the script
interpreters used to launch workers. Values can be overridden through the
environment or a `.env` file.
"""

import os
import sys
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getenv("HOSTWARDEN_HOME", os.getcwd())).resolve()
BIN_DIR = BASE_DIR / "bin"
LOGS_DIR = BASE_DIR / "logs"

#* --- Runtime File Paths ---
WORKERS_CONFIG_PATH = pathlib.Path(os.getenv("HOSTWARDEN_WORKERS_FILE", str(BASE_DIR / "workers.json")))
PID_FILE_PATH = BIN_DIR / "hostwarden.pid"
OVERRIDES_JSON_PATH = BIN_DIR / "overrides.json"
SHUTDOWN_SIGNAL_PATH = BIN_DIR / "shutdown.signal"
LOG_DB_PATH = LOGS_DIR / "hostwarden_logs.db"

#* --- Python Executable Configuration ---
# Used by the console to spawn a detached supervisor process.
PYTHON_EXECUTABLE = os.getenv("PYTHON_EXECUTABLE", sys.executable)
SUPERVISOR_PROCESS_TITLE = "HostWarden - Supervisor"

#* --- Supervisor Settings ---
LAUNCH_STAGGER_INTERVAL = 1.0      # seconds between worker launches
SUPERVISOR_PROBE_INTERVAL = 1.0    # seconds between liveness probes
MAX_RESTART_ATTEMPTS = 3           # consecutive failed relaunches before giving up
RESTART_COOLDOWN_PERIOD = 30       # seconds
PROCESS_REAP_TIMEOUT = 5           # seconds to wait for a killed worker to exit
SHUTDOWN_WAIT_TIMEOUT = 15         # seconds the 'stop' command waits for the supervisor

#* --- Script Interpreters ---
# Workers whose path ends with one of these suffixes are run through the
# interpreter and awaited to completion.
if sys.platform == "win32":
    SCRIPT_INTERPRETERS = {
        ".ps1": ["powershell.exe", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File"],
        ".sh": ["sh"],
    }
else:
    SCRIPT_INTERPRETERS = {
        ".sh": ["sh"],
        ".ps1": ["pwsh", "-NoProfile", "-File"],
    }

#* --- Logging ---
LOG_DB_ENABLED = os.getenv("LOG_DB_ENABLED", "True").lower() in ('true', '1', 't')

# Grafana Loki (for observability)
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- Application variables ---
VERBOSE_LOGGING = False

#* --- MODIFIABLE SETTINGS (Changeable through overrides.json) ---
MODIFIABLE_SETTINGS = {
    # Supervision
    "LAUNCH_STAGGER_INTERVAL", "SUPERVISOR_PROBE_INTERVAL",
    "MAX_RESTART_ATTEMPTS", "RESTART_COOLDOWN_PERIOD", "PROCESS_REAP_TIMEOUT",
    # Logging
    "LOG_BUFFER_SIZE", "LOG_BUFFER_FLUSH_INTERVAL", "LOG_HISTORY_COUNT",
}

#* --- Default Values for Modifiable Settings ---
LOG_BUFFER_SIZE = 100
LOG_BUFFER_FLUSH_INTERVAL = 10
LOG_HISTORY_COUNT = 50
