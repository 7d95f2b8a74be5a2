# logger_setup.py - Logging-Konfiguration (JSONL file + console)
import logging
import os
import queue
import sys
import threading
import time
import uuid
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler

from pythonjsonlogger import jsonlogger

run_id = str(uuid.uuid4())[:8]

# Global queue listener reference for cleanup
_queue_listener = None
_setup_lock = threading.Lock()
_installed_handlers = []

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


# =================================================================================
# Benutzerdefinierte Formatter-Klasse für UTC-Zeitstempel
# =================================================================================
class UTCJsonFormatter(jsonlogger.JsonFormatter):
    def formatTime(self, record, datefmt=None):
        ct = time.gmtime(record.created)
        if datefmt:
            if '%f' in datefmt:
                base_fmt = datefmt.replace('.%f', '').rstrip('Z')
                s = time.strftime(base_fmt, ct)
                s = f"{s}.{int(record.msecs):03d}"
                if datefmt.endswith('Z') and not s.endswith('Z'):
                    s += 'Z'
            else:
                s = time.strftime(datefmt, ct)
        else:
            t = time.strftime("%Y-%m-%d %H:%M:%S", ct)
            s = f"{t},{int(record.msecs):03d}"
        return s


# =================================================================================
# Filter-Klassen
# =================================================================================
class EnsureEventTypeFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, 'event_type'):
            record.event_type = 'GENERAL'
        return True


class AddRunIdFilter(logging.Filter):
    def filter(self, record):
        record.run_id = run_id
        return True


def _json_formatter() -> UTCJsonFormatter:
    return UTCJsonFormatter(
        '%(asctime)s %(levelname)s %(name)s %(threadName)s %(run_id)s %(message)s %(event_type)s',
        rename_fields={'levelname': 'level', 'asctime': 'timestamp'},
        datefmt='%Y-%m-%dT%H:%M:%S.%fZ'
    )


def _with_filters(handler: logging.Handler) -> logging.Handler:
    handler.addFilter(EnsureEventTypeFilter())
    handler.addFilter(AddRunIdFilter())
    return handler


# =================================================================================
# Logger-Setup-Funktion mit Queue-Handler (Thread-Safe)
# =================================================================================
def setup_logging(level="INFO", log_file=None, json_console=False, use_queue=True,
                  max_bytes=10_000_000, backup_count=5):
    """
    Configure the root logger once.

    Args:
        level: Console level name ("DEBUG", "INFO", ...)
        log_file: JSONL log file; None disables file logging
        json_console: Emit JSON on the console instead of plain lines
        use_queue: Route the file handler through QueueHandler/QueueListener so
                   worker threads never block on slow disk I/O

    Returns:
        The root logger
    """
    global _queue_listener

    root = logging.getLogger()
    with _setup_lock:
        if _installed_handlers:
            return root

        root.setLevel(logging.DEBUG)

        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            rotating_handler = RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count,
                encoding='utf-8', delay=True
            )
            rotating_handler.setLevel(logging.DEBUG)
            rotating_handler.setFormatter(_json_formatter())
            _with_filters(rotating_handler)

            if use_queue:
                log_queue = queue.Queue(maxsize=10000)  # Prevent memory exhaustion
                _queue_listener = QueueListener(log_queue, rotating_handler, respect_handler_level=True)
                _queue_listener.start()
                file_handler = QueueHandler(log_queue)
                file_handler.setLevel(logging.DEBUG)
            else:
                file_handler = rotating_handler

            root.addHandler(file_handler)
            _installed_handlers.append(file_handler)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(LEVELS.get(str(level).upper(), logging.INFO))
        if json_console:
            console_handler.setFormatter(_json_formatter())
        else:
            console_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(levelname)s - %(event_type)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
        _with_filters(console_handler)
        root.addHandler(console_handler)
        _installed_handlers.append(console_handler)

        # Keep third-party HTTP noise out of DEBUG runs
        logging.getLogger("urllib3").setLevel(logging.WARNING)

    return root


def shutdown_logging():
    """Flush and stop the queue listener, detach installed handlers."""
    global _queue_listener
    with _setup_lock:
        if _queue_listener:
            _queue_listener.stop()
            for handler in _queue_listener.handlers:
                handler.close()
            _queue_listener = None

        root = logging.getLogger()
        for handler in _installed_handlers:
            root.removeHandler(handler)
            handler.close()
        _installed_handlers.clear()


def setup_from_config():
    """setup_logging() driven by config.py values."""
    from config import LOG_BACKUP_COUNT, LOG_FILE, LOG_JSON_CONSOLE, LOG_LEVEL, LOG_MAX_BYTES, get_config

    return setup_logging(
        level=get_config("LOG_LEVEL", LOG_LEVEL),
        log_file=get_config("LOG_FILE", LOG_FILE),
        json_console=get_config("LOG_JSON_CONSOLE", LOG_JSON_CONSOLE),
        max_bytes=LOG_MAX_BYTES,
        backup_count=LOG_BACKUP_COUNT,
    )
