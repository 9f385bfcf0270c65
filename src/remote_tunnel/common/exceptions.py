"""Custom exceptions for remote tunnel management."""

import errno
import socket


class RemoteTunnelError(Exception):
    """Base exception for all remote tunnel errors."""

    remediation: tuple[str, ...] = ()

    def __init__(self, message: str = "", *, raw_message: str | None = None):
        super().__init__(message)
        self.raw_message = raw_message if raw_message is not None else message

    def hint(self) -> str:
        """Render remediation text as a numbered list."""
        return "\n".join(
            f"  {index}. {line}" for index, line in enumerate(self.remediation, 1)
        )


class ConfigError(RemoteTunnelError):
    """Raised when a profile, preset or tunnel spec is missing or invalid."""

    remediation = (
        "Check that the profile or service name is spelled correctly",
        "List saved profiles and presets to see what is available",
        "Add the missing profile or port mapping before connecting",
    )


class TunnelSessionError(RemoteTunnelError):
    """Raised when an SSH session cannot be established."""

    remediation = (
        "Check the SSH server logs for the rejected connection",
        "Retry with debug logging enabled",
    )


class AuthenticationError(TunnelSessionError):
    """Raised when the SSH server rejects the supplied credentials."""

    remediation = (
        "Check that the user name is correct",
        "Check that the password is correct",
        "Check that the server allows password authentication",
    )


class NetworkError(TunnelSessionError):
    """Raised when the SSH server is refused, unreachable or times out."""

    remediation = (
        "Check that the server address is correct",
        "Check that the SSH port is correct",
        "Check that the SSH service is running",
        "Check that no firewall blocks the connection",
    )


class PortConflictError(RemoteTunnelError):
    """Raised when a local port cannot be bound."""

    remediation = (
        "Stop the process already listening on the port",
        "Request a different local port",
    )


class ChannelOpenError(RemoteTunnelError):
    """Raised when the SSH server refuses a forwarded channel."""

    remediation = (
        "Check that the remote service is listening on the remote port",
        "Check that the SSH server permits TCP forwarding",
    )


class RegistryError(RemoteTunnelError):
    """Raised for invalid tunnel registry operations."""

    pass


_AUTH_MARKERS = ("authentication", "auth fail", "permission denied")
_NETWORK_MARKERS = (
    "econnrefused",
    "connection refused",
    "unreachable",
    "timed out",
    "timeout",
    "name or service not known",
    "no route to host",
)
_NETWORK_ERRNOS = {
    errno.ECONNREFUSED,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
    errno.ETIMEDOUT,
    errno.ECONNRESET,
}


def classify_connect_error(exc: BaseException) -> TunnelSessionError:
    """Map an error raised while connecting into the session error taxonomy.

    Already classified errors are returned as-is. Anything else is classified
    by type first, then by its message text, keeping the raw message.

    Args:
        exc: Exception raised by the SSH layer

    Returns:
        AuthenticationError, NetworkError or a generic TunnelSessionError
    """
    if isinstance(exc, TunnelSessionError):
        return exc

    raw = str(exc) or type(exc).__name__
    lowered = raw.lower()

    if any(marker in lowered for marker in _AUTH_MARKERS):
        return AuthenticationError(f"Authentication failed: {raw}", raw_message=raw)

    if isinstance(exc, (TimeoutError, socket.gaierror, ConnectionRefusedError)):
        return NetworkError(f"Network error: {raw}", raw_message=raw)

    if isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS:
        return NetworkError(f"Network error: {raw}", raw_message=raw)

    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return NetworkError(f"Network error: {raw}", raw_message=raw)

    return TunnelSessionError(f"Connection failed: {raw}", raw_message=raw)
