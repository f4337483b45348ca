"""Central configuration for the Kapture run tracker.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Deployment specific values are read from environment
variables (optionally via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# GPS filtering
# ---------------------------------------------------------------------------
# Fixes reporting a horizontal accuracy worse than this (metres) are dropped.
# A fix at exactly this accuracy is still accepted.
MAX_ACCURACY_M = _env_float("KAPTURE_MAX_ACCURACY_M", 30.0)

# Minimum movement (km) between consecutive validated points. Suppresses
# jitter while the runner is standing still.
MIN_DISTANCE_THRESHOLD_KM = _env_float("KAPTURE_MIN_DISTANCE_THRESHOLD_KM", 0.005)

# Location provider request: one fix per second, 5 m source-level filter.
LOCATION_INTERVAL_MS = _env_int("KAPTURE_LOCATION_INTERVAL_MS", 1000)
LOCATION_DISTANCE_INTERVAL_M = _env_float("KAPTURE_LOCATION_DISTANCE_INTERVAL_M", 5.0)


# ---------------------------------------------------------------------------
# Pace smoothing
# ---------------------------------------------------------------------------
# Number of accepted pace samples kept in the weighted window.
PACE_WINDOW_SIZE = _env_int("KAPTURE_PACE_WINDOW_SIZE", 10)

# Pace stays undefined (0) until the run has covered this distance (km).
PACE_MIN_DISTANCE_KM = 0.01

# New pace samples are only taken after this much extra distance (km).
PACE_MIN_DISTANCE_CHANGE_KM = 0.005

# Samples outside [MIN, MAX] sec/km are treated as sensor artefacts.
PACE_MIN_SEC_PER_KM = 120.0
PACE_MAX_SEC_PER_KM = 1800.0


# ---------------------------------------------------------------------------
# Captured area
# ---------------------------------------------------------------------------
# Metres per degree of latitude used by the bounding-box approximation.
METERS_PER_DEGREE = 111320.0

# First and last track points closer than this (km) count as a closed loop.
LOOP_CLOSE_THRESHOLD_KM = _env_float("KAPTURE_LOOP_CLOSE_THRESHOLD_KM", 0.03)


# ---------------------------------------------------------------------------
# Engine timers
# ---------------------------------------------------------------------------
# Stats recompute cadence (seconds) so duration advances without new fixes.
STATS_INTERVAL_SECONDS = _env_float("KAPTURE_STATS_INTERVAL_SECONDS", 1.0)

# Cadence (seconds) for flushing buffered validated points to persistence.
FLUSH_INTERVAL_SECONDS = _env_float("KAPTURE_FLUSH_INTERVAL_SECONDS", 5.0)


# ---------------------------------------------------------------------------
# Live streaming
# ---------------------------------------------------------------------------
# Broadcast server base URL. The websocket path is appended by the client.
SOCKET_URL = os.getenv("KAPTURE_SOCKET_URL", "ws://localhost:3001")
SOCKET_PATH = "/socket.io/?EIO=4&transport=websocket"

# Seconds to wait for the initial websocket handshake before going local-only.
SOCKET_CONNECT_TIMEOUT = _env_float("KAPTURE_SOCKET_CONNECT_TIMEOUT", 10.0)

# Reconnect policy: delay = min(BASE * 2^attempt, MAX), at most N attempts.
SOCKET_MAX_RECONNECT_ATTEMPTS = _env_int("KAPTURE_SOCKET_MAX_RECONNECT_ATTEMPTS", 5)
SOCKET_RECONNECT_BASE_SECONDS = 1.0
SOCKET_RECONNECT_MAX_SECONDS = 10.0

# Outbound messages held while disconnected. Oldest are dropped first.
SOCKET_QUEUE_MAX_MESSAGES = _env_int("KAPTURE_SOCKET_QUEUE_MAX_MESSAGES", 200)

# Name announced to spectators when the runner has not set one.
DEFAULT_RUNNER_NAME = "Anonymous Runner"


# ---------------------------------------------------------------------------
# Broadcast server
# ---------------------------------------------------------------------------
SERVER_HOST = os.getenv("KAPTURE_SERVER_HOST", "0.0.0.0")  # nosec B104
SERVER_PORT = _env_int("KAPTURE_SERVER_PORT", 3001)

# Comma separated origins allowed by CORS on the REST API ("*" for any).
CORS_ORIGIN = os.getenv("CORS_ORIGIN", "*")

# Finished runs stay visible to late spectators for this many seconds.
FINISHED_RUN_RETENTION_SECONDS = _env_int("KAPTURE_FINISHED_RUN_RETENTION_SECONDS", 60)

# Upper bound on finished runs kept for late joiners.
FINISHED_RUN_CACHE_SIZE = _env_int("KAPTURE_FINISHED_RUN_CACHE_SIZE", 1024)

# Engine.IO heartbeat advertised in the open packet (milliseconds).
SOCKET_PING_INTERVAL_MS = 25000
SOCKET_PING_TIMEOUT_MS = 20000


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
# Directory (absolute or relative) used by the JSON run store.
RUN_STORE_DIR = os.getenv("KAPTURE_RUN_STORE_DIR", "kapture_runs")

# Base URL of the REST run store used by HttpRunStore.
RUN_API_BASE_URL = os.getenv("KAPTURE_RUN_API_BASE_URL", "http://localhost:3001")

# Default page size for run history queries.
RUN_HISTORY_LIMIT = 20

# HTTP session pool sizes and request timeout in seconds.
HTTP_POOL_CONNECTIONS = 4
HTTP_POOL_MAXSIZE = 4
REQUEST_TIMEOUT = _env_int("KAPTURE_REQUEST_TIMEOUT", 15)

# urllib3 retry budget for 5xx responses on run store calls.
HTTP_MAX_RETRIES = _env_int("KAPTURE_HTTP_MAX_RETRIES", 3)
