"""Data models for the sandboxed test server."""

from .errors import (
    ErrorType,
    ErrorDetail,
    ErrorResponse,
    SandboxedServerException,
    ConfigWriteError,
    SpawnError,
    ServerTimeoutError,
)
from .server import LifecycleState, SandboxPaths, ServerHandle, ServerOptions

__all__ = [
    # Error models
    "ErrorType",
    "ErrorDetail",
    "ErrorResponse",
    "SandboxedServerException",
    "ConfigWriteError",
    "SpawnError",
    "ServerTimeoutError",
    # Server models
    "LifecycleState",
    "SandboxPaths",
    "ServerHandle",
    "ServerOptions",
]
