"""Error models and exception classes for the sandboxed test server."""

import time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorType(str, Enum):
    """Error type enumeration."""

    CONFIG_WRITE = "config_write"
    SPAWN = "spawn"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(None, description="Path or setting involved")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Structured error report printed by the CLI."""

    error: str = Field(..., description="Main error message")
    error_type: ErrorType = Field(..., description="Error category")
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    timestamp: float = Field(default_factory=time.time, description="Error timestamp")

    model_config = {"use_enum_values": True}


# Custom Exception Classes


class SandboxedServerException(Exception):
    """Base exception for the sandboxed test server."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL,
        details: Optional[List[ErrorDetail]] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.details = details or []
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.message,
            error_type=self.error_type,
            details=self.details if self.details else None,
        )


class ConfigWriteError(SandboxedServerException):
    """Sandbox directories missing or unwritable, or template unreadable."""

    def __init__(self, message: str = "Failed to write server config", **kwargs):
        super().__init__(message=message, error_type=ErrorType.CONFIG_WRITE, **kwargs)


class SpawnError(SandboxedServerException):
    """The launcher script could not be executed."""

    def __init__(self, message: str = "Failed to spawn server process", **kwargs):
        super().__init__(message=message, error_type=ErrorType.SPAWN, **kwargs)


class ServerTimeoutError(SandboxedServerException, TimeoutError):
    """Console prompt or service port did not come up in time."""

    def __init__(self, message: str = "Timed out waiting for server", **kwargs):
        super().__init__(message=message, error_type=ErrorType.TIMEOUT, **kwargs)
