"""
Utility modules for the backend.
"""
from .normalize import (
    ValidationError,
    to_int,
    to_float,
    to_bool,
    to_str,
    to_date,
    extract_time,
    event_window,
)

__all__ = [
    'ValidationError',
    'to_int',
    'to_float',
    'to_bool',
    'to_str',
    'to_date',
    'extract_time',
    'event_window',
]
