"""
Utilities module for SSH Deploy.

This module contains logging setup and run event sinks.
"""

from .logger import (
    LoggerSetup,
    StructuredLogger,
    LogSink,
    LoguruSink,
    ConsoleSink,
    CallbackSink,
    MemorySink,
    FanOutSink,
    setup_logging,
    get_structured_logger
)

__all__ = [
    "LoggerSetup",
    "StructuredLogger",
    "LogSink",
    "LoguruSink",
    "ConsoleSink",
    "CallbackSink",
    "MemorySink",
    "FanOutSink",
    "setup_logging",
    "get_structured_logger"
]
