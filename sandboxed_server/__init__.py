"""Disposable, sandboxed server instances for test suites."""

from .config.defaults import Atom
from .models.errors import (
    ConfigWriteError,
    SandboxedServerException,
    ServerTimeoutError,
    SpawnError,
)
from .models.server import LifecycleState
from .services.server import SandboxedServerManager

__version__ = "0.1.0"

__all__ = [
    "Atom",
    "ConfigWriteError",
    "LifecycleState",
    "SandboxedServerException",
    "SandboxedServerManager",
    "ServerTimeoutError",
    "SpawnError",
]
