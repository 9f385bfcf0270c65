"""Common utilities and shared functionality."""

from .exceptions import (
    AuthenticationError,
    ChannelOpenError,
    ConfigError,
    NetworkError,
    PortConflictError,
    RegistryError,
    RemoteTunnelError,
    TunnelSessionError,
    classify_connect_error,
)
from .logging import get_logger, setup_logging
from .utils import (
    MAX_PORT,
    MIN_PORT,
    format_bytes,
    format_duration,
    mask_sensitive_data,
    sanitize_log_data,
    validate_port,
)

__all__ = [
    # Exceptions
    "RemoteTunnelError",
    "ConfigError",
    "TunnelSessionError",
    "AuthenticationError",
    "NetworkError",
    "PortConflictError",
    "ChannelOpenError",
    "RegistryError",
    "classify_connect_error",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "mask_sensitive_data",
    "sanitize_log_data",
    "format_bytes",
    "format_duration",
    "MIN_PORT",
    "MAX_PORT",
]
