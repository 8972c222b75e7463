# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Meridian Observability Module

Structured logging for runtime lifecycle events.
"""

from .logger import (
    Verbosity,
    LogEntry,
    MeridianLogger,
    get_logger,
    set_verbosity,
)

__all__ = [
    "Verbosity",
    "LogEntry",
    "MeridianLogger",
    "get_logger",
    "set_verbosity",
]
