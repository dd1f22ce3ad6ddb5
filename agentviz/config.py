"""agentviz monitor configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value:
        return default
    return Path(value).expanduser()


# Project root (one level up from agentviz/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Database
DB_PATH = _env_path("AGENTVIZ_DB_PATH", PROJECT_ROOT / "data" / "viz-data.db")

# Watched inputs
ASSISTANT_LOG_DIR = _env_path("AGENTVIZ_LOG_DIR", Path.home() / ".copilot" / "session-state")
METADATA_DIR = _env_path("AGENTVIZ_METADATA_DIR", Path.home() / ".local" / "share" / "copilot-agent" / "metadata")

# "direct" tails every assistant log, "correlated" only logs matched to launcher metadata
MONITOR_MODE = os.getenv("AGENTVIZ_MONITOR_MODE", "direct").strip().lower() or "direct"

# Correlation tuning
CORRELATION_GRACE_SECONDS = _env_int("AGENTVIZ_CORRELATION_GRACE_SECONDS", 10)
CORRELATION_RETRY_SECONDS = _env_int("AGENTVIZ_CORRELATION_RETRY_SECONDS", 60)
CORRELATION_MAX_ATTEMPTS = _env_int("AGENTVIZ_CORRELATION_MAX_ATTEMPTS", 0)  # 0 = retry forever
CORRELATION_WINDOW_SECONDS = _env_int("AGENTVIZ_CORRELATION_WINDOW_SECONDS", 300)
CORRELATION_SKEW_SECONDS = _env_int("AGENTVIZ_CORRELATION_SKEW_SECONDS", 5)
CORRELATION_LOOKBACK_HOURS = _env_int("AGENTVIZ_CORRELATION_LOOKBACK_HOURS", 24)

# Watcher stability windows
LOG_DEBOUNCE_MS = _env_int("AGENTVIZ_LOG_DEBOUNCE_MS", 100)
METADATA_DEBOUNCE_MS = _env_int("AGENTVIZ_METADATA_DEBOUNCE_MS", 500)

# A log modified within this window marks its session as running
ACTIVE_WINDOW_SECONDS = _env_int("AGENTVIZ_ACTIVE_WINDOW_SECONDS", 60 * 60)

LOG_LEVEL = os.getenv("AGENTVIZ_LOG_LEVEL", "INFO").strip().upper() or "INFO"

# Observability
OTEL_ENABLED = _env_bool("AGENTVIZ_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("AGENTVIZ_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("AGENTVIZ_OTEL_SERVICE_NAME", "agentviz-monitor")
PROM_PORT = _env_int("AGENTVIZ_PROM_PORT", 9464)
