# ui/__init__.py
"""
UI Module - Rich-based Terminal Output
"""

from .console_ui import WatchView, banner, line, position_pnl_percent, print_trade_summary, render_watch, ts

__all__ = [
    'banner',
    'line',
    'ts',
    'print_trade_summary',
    'render_watch',
    'position_pnl_percent',
    'WatchView',
]
