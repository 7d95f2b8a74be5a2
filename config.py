# config.py – Token Watch Konfiguration
# =====================================
# - Every value can be overridden from the environment (.env is loaded by main.py)
# - Runtime overrides go through set_config_override(), never by assigning config.* directly

import os
import threading

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _env_flag(name: str, default: bool = False) -> bool:
    """
    Convenience helper to parse boolean environment flags.

    Accepted truthy values: 1, true, yes, on (case-insensitive).
    """
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


# =============================================================================
# 1. UPSTREAM MARKET DATA
# =============================================================================

DEXSCREENER_BASE_URL = os.getenv("DEXSCREENER_BASE_URL", "https://api.dexscreener.com/latest/dex")
HTTP_TIMEOUT_S = _env_float("HTTP_TIMEOUT_S", 10.0)

# =============================================================================
# 2. REFRESH CADENCE & RATE BUDGET
# =============================================================================

REFRESH_INTERVAL_S = _env_float("REFRESH_INTERVAL_S", 3.0)  # Scheduler tick + staleness threshold
RATE_LIMIT_PER_MINUTE = _env_int("RATE_LIMIT_PER_MINUTE", 300)  # Upstream hard limit
RATE_LIMIT_WINDOW_S = _env_float("RATE_LIMIT_WINDOW_S", 60.0)
BATCH_SIZE = _env_int("BATCH_SIZE", 10)  # Identifiers per upstream request

# =============================================================================
# 3. PAPER TRADING
# =============================================================================

MAX_TRACKED_TOKENS = _env_int("MAX_TRACKED_TOKENS", 6)
INITIAL_BALANCE_USD = _env_float("INITIAL_BALANCE_USD", 1000.0)
PRICE_HISTORY_POINTS = _env_int("PRICE_HISTORY_POINTS", 50)  # Price points kept per token

# =============================================================================
# 4. LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))
LOG_FILE = os.getenv("LOG_FILE", os.path.join(LOG_DIR, "token_watch.jsonl"))
LOG_JSON_CONSOLE = _env_flag("LOG_JSON_CONSOLE", False)
LOG_MAX_BYTES = _env_int("LOG_MAX_BYTES", 10 * 1024 * 1024)
LOG_BACKUP_COUNT = _env_int("LOG_BACKUP_COUNT", 5)


# =============================================================================
# RUNTIME OVERRIDES (thread-safe)
# =============================================================================

_config_overrides = {}
_config_lock = threading.RLock()


def set_config_override(key: str, value) -> None:
    """
    Thread-safe config override.

    Allows runtime config changes without mutating globals.

    Args:
        key: Config variable name (e.g., 'REFRESH_INTERVAL_S')
        value: New value
    """
    with _config_lock:
        _config_overrides[key] = value


def get_config(key: str, default=None):
    """
    Thread-safe config getter.

    Checks runtime overrides first, then falls back to module-level default.

    Args:
        key: Config variable name
        default: Default if key not found

    Returns:
        Config value (override if set, otherwise module default)
    """
    with _config_lock:
        if key in _config_overrides:
            return _config_overrides[key]

    return globals().get(key, default)


def clear_config_overrides() -> None:
    """Clear all runtime config overrides (useful for testing)."""
    with _config_lock:
        _config_overrides.clear()
