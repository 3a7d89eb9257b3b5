"""Utility modules for the sandboxed test server."""

from .logging import setup_logging
from .net import wait_for_service

__all__ = [
    "setup_logging",
    "wait_for_service",
]
