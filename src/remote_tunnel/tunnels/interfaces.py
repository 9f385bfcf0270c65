"""Protocol interfaces for the SSH collaborator and session events."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .models import ActiveTunnel, TrafficDirection
    from .session import TunnelSession


class StreamReader(Protocol):
    """Readable half of a byte stream."""

    async def read(self, n: int = -1) -> bytes:
        ...


class StreamWriter(Protocol):
    """Writable half of a byte stream."""

    def write(self, data: bytes) -> None:
        ...

    async def drain(self) -> None:
        ...

    def can_write_eof(self) -> bool:
        ...

    def write_eof(self) -> None:
        ...

    def close(self) -> None:
        ...

    def is_closing(self) -> bool:
        ...


class SSHConnection(Protocol):
    """An authenticated SSH connection able to open forwarded channels."""

    async def open_channel(
        self, local_addr: str, local_port: int, remote_addr: str, remote_port: int
    ) -> tuple[Any, Any]:
        """Open a direct TCP/IP channel, returning ``(reader, writer)``."""
        ...

    def close(self) -> None:
        """Start closing the connection."""
        ...

    async def wait_closed(self) -> None:
        """Wait until the connection is closed by either side."""
        ...


class SSHConnector(Protocol):
    """Factory for authenticated SSH connections."""

    async def connect(
        self, host: str, port: int, user: str, password: str | None
    ) -> SSHConnection:
        """Authenticate against ``host:port`` with a password."""
        ...


class SessionEvents(Protocol):
    """Callbacks through which sessions and forwards report to the registry."""

    def tunnel_bound(self, tunnel: ActiveTunnel) -> None:
        ...

    def tunnel_activated(self, tunnel_id: str) -> None:
        ...

    def traffic(self, tunnel_id: str, direction: TrafficDirection, nbytes: int) -> None:
        ...

    def session_closed(self, session: TunnelSession, remote: bool) -> None:
        ...
