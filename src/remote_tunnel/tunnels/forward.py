"""Local listener proxying accepted connections through a session."""

from __future__ import annotations

import asyncio
import contextlib
import errno
from typing import TYPE_CHECKING, Any

from ..common.exceptions import ChannelOpenError, PortConflictError, TunnelSessionError
from ..common.logging import get_logger
from ..config import TunnelSettings
from .channel import ForwardChannel
from .interfaces import SessionEvents
from .models import ActiveTunnel, SessionState, TrafficDirection, TunnelSpec
from .ports import LOOPBACK, PortProbe

if TYPE_CHECKING:
    from .session import TunnelSession

logger = get_logger(__name__)

CLOSE_TIMEOUT = 5.0


class PortForward:
    """Owns one local TCP listener for one :class:`TunnelSpec`.

    Every accepted connection gets its own :class:`ForwardChannel` from the
    owning session and a full-duplex pipe between the two. A channel-open
    failure drops only that connection; the listener keeps accepting.
    """

    def __init__(
        self,
        session: TunnelSession,
        spec: TunnelSpec,
        events: SessionEvents,
        probe: PortProbe | None = None,
        settings: TunnelSettings | None = None,
    ):
        self.session = session
        self.spec = spec
        self.events = events
        self.settings = settings or TunnelSettings()
        self.probe = probe or PortProbe(max_attempts=self.settings.probe_attempts)
        self.bound_spec: TunnelSpec | None = None
        self.tunnel_id: str | None = None
        self._server: asyncio.AbstractServer | None = None
        self._activated = False
        self._handlers: set[asyncio.Task[Any]] = set()
        self._sockets: set[asyncio.StreamWriter] = set()
        self._channels: set[ForwardChannel] = set()

    @property
    def is_listening(self) -> bool:
        return self._server is not None

    @property
    def connection_count(self) -> int:
        return len(self._sockets)

    async def start(self) -> TunnelSpec:
        """Bind the local listener.

        Probes the requested port first and moves upward when it is taken.
        A bind that loses a race with another process re-probes from the
        next port, up to ``bind_retries`` times.

        Returns:
            The spec with ``bound_local_port`` set

        Raises:
            PortConflictError: If no port could be bound
            TunnelSessionError: If the session closed while binding
        """
        port = self.spec.requested_local_port
        if not self.probe.is_available(port):
            port = self.probe.find_available(port + 1)
            logger.warning(
                "Local port in use, using another",
                tunnel=self.spec.name,
                requested_port=self.spec.requested_local_port,
                port=port,
            )

        retries = self.settings.bind_retries
        for attempt in range(retries + 1):
            try:
                self._server = await asyncio.start_server(
                    self._handle_client, host=LOOPBACK, port=port
                )
                break
            except OSError as e:
                if e.errno != errno.EADDRINUSE or attempt == retries:
                    raise PortConflictError(
                        f"Cannot bind {LOOPBACK}:{port}: {e.strerror or e}"
                    ) from e
                next_port = self.probe.find_available(port + 1)
                logger.warning(
                    "Lost bind race, re-probing",
                    tunnel=self.spec.name,
                    port=port,
                    next_port=next_port,
                )
                port = next_port

        if self.session.state != SessionState.READY:
            await self.stop(force=True)
            raise TunnelSessionError(
                f"Session {self.session.id} closed while binding port {port}"
            )

        self.bound_spec = self.spec.bound_to(port)
        tunnel = ActiveTunnel(
            id=ActiveTunnel.make_id(self.session.id, port),
            session_id=self.session.id,
            spec=self.bound_spec,
        )
        self.tunnel_id = tunnel.id
        self.events.tunnel_bound(tunnel)

        logger.info(
            "Listening",
            tunnel=self.spec.name,
            local_port=port,
            remote_port=self.spec.remote_port,
        )
        return self.bound_spec

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._handlers.add(task)
        self._sockets.add(writer)

        local_port = self.bound_spec.local_port if self.bound_spec else 0
        try:
            try:
                channel = await self.session.open_forward_channel(
                    LOOPBACK, local_port, LOOPBACK, self.spec.remote_port
                )
            except ChannelOpenError as e:
                logger.warning(
                    "Forward channel failed, dropping connection",
                    tunnel=self.spec.name,
                    remote_port=self.spec.remote_port,
                    error=str(e),
                )
                return

            self._channels.add(channel)
            try:

                def close_both() -> None:
                    channel.close()
                    writer.close()

                await asyncio.gather(
                    self._pipe(reader, channel, TrafficDirection.UPSTREAM, close_both),
                    self._pipe(channel, writer, TrafficDirection.DOWNSTREAM, close_both),
                )
            finally:
                self._channels.discard(channel)
                channel.close()
        finally:
            self._sockets.discard(writer)
            if task is not None:
                self._handlers.discard(task)
            writer.close()

    async def _pipe(
        self,
        source: Any,
        dest: Any,
        direction: TrafficDirection,
        close_both: Any,
    ) -> None:
        size = self.settings.buffer_size
        try:
            while True:
                data = await source.read(size)
                if not data:
                    break
                dest.write(data)
                await dest.drain()
                self._record(direction, len(data))
        except Exception as e:
            logger.debug(
                "Pipe closed with error",
                tunnel=self.spec.name,
                direction=direction.value,
                error=str(e),
            )
            close_both()
            return

        self._half_close(dest)

    @staticmethod
    def _half_close(dest: Any) -> None:
        if isinstance(dest, ForwardChannel):
            dest.write_eof()
            return
        if dest.is_closing():
            return
        try:
            if dest.can_write_eof():
                dest.write_eof()
            else:
                dest.close()
        except OSError:
            dest.close()

    def _record(self, direction: TrafficDirection, nbytes: int) -> None:
        if self.tunnel_id is None:
            return
        if not self._activated:
            self._activated = True
            self.events.tunnel_activated(self.tunnel_id)
        self.events.traffic(self.tunnel_id, direction, nbytes)

    async def stop(self, force: bool = False) -> None:
        """Close the listener.

        Args:
            force: Also abort every in-flight connection. Otherwise piped
                connections drain on their own.
        """
        server = self._server
        self._server = None
        if server is not None:
            server.close()
            logger.info(
                "Listener closed",
                tunnel=self.spec.name,
                local_port=self.bound_spec.local_port if self.bound_spec else None,
            )

        if not force:
            return

        for channel in list(self._channels):
            channel.close()
        for writer in list(self._sockets):
            writer.transport.abort()

        handlers = list(self._handlers)
        for handler in handlers:
            handler.cancel()
        if handlers:
            await asyncio.gather(*handlers, return_exceptions=True)

        if server is not None:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(server.wait_closed(), timeout=CLOSE_TIMEOUT)
