"""Forwarded byte stream wrapper."""

from typing import Any

from ..common.logging import get_logger

logger = get_logger(__name__)


class ForwardChannel:
    """One proxied byte stream opened through an SSH session.

    Wraps the ``(reader, writer)`` pair returned by the connection's
    channel-open primitive. Exists only for the lifetime of the local socket
    it serves.
    """

    def __init__(
        self,
        reader: Any,
        writer: Any,
        *,
        local_port: int,
        remote_addr: str,
        remote_port: int,
    ):
        self._reader = reader
        self._writer = writer
        self.local_port = local_port
        self.remote_addr = remote_addr
        self.remote_port = remote_port
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, n: int) -> bytes:
        return await self._reader.read(n)

    def write(self, data: bytes) -> None:
        self._writer.write(data)

    async def drain(self) -> None:
        await self._writer.drain()

    def write_eof(self) -> None:
        """Half-close the channel, or close it if half-close is unsupported."""
        if self._closed:
            return
        if self._writer.can_write_eof():
            self._writer.write_eof()
        else:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._writer.close()
        except (OSError, RuntimeError) as e:
            # Transport already torn down with the session
            logger.debug("Channel close failed", remote_port=self.remote_port, error=str(e))

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return (
            f"ForwardChannel(127.0.0.1:{self.local_port} -> "
            f"{self.remote_addr}:{self.remote_port}, {state})"
        )
