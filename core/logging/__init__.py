"""Logging Infrastructure"""

from .logger_setup import run_id, setup_from_config, setup_logging, shutdown_logging

__all__ = [
    'run_id',
    'setup_logging',
    'setup_from_config',
    'shutdown_logging',
]
