"""Core Utilities"""

from .utils import (
    calculate_percent_change,
    format_currency,
    format_number,
    parse_token_amount,
    validate_number,
)

__all__ = [
    'calculate_percent_change',
    'format_currency',
    'format_number',
    'parse_token_amount',
    'validate_number',
]
