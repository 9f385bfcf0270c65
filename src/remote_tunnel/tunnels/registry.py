"""Tunnel registry: sessions, active tunnels and traffic statistics."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime
from types import TracebackType
from typing import Any

from ..common.exceptions import ConfigError, RegistryError, TunnelSessionError
from ..common.logging import get_logger
from ..common.utils import format_bytes, format_duration
from ..config import ReconnectPolicy, TunnelSettings
from .interfaces import SSHConnector
from .models import (
    ActiveTunnel,
    ConnectionParams,
    ConnectResult,
    TrafficDirection,
    TrafficStats,
    TunnelSpec,
    TunnelStatus,
    TunnelStatusEntry,
)
from .ports import PortProbe
from .session import TunnelSession
from .ssh import AsyncSSHConnector

logger = get_logger(__name__)


class TunnelRegistry:
    """In-memory directory of every session, tunnel and traffic counter.

    The maps are mutated only from the session and forward callbacks below
    (``tunnel_bound``, ``tunnel_activated``, ``traffic``, ``session_closed``)
    and from :meth:`stop_all`. Anything that iterates them while sessions may
    close iterates a snapshot.
    """

    def __init__(
        self,
        connector: SSHConnector | None = None,
        *,
        settings: TunnelSettings | None = None,
        probe: PortProbe | None = None,
        reconnect_policy: ReconnectPolicy | None = None,
    ):
        """Initialize the registry.

        Args:
            connector: SSH connector (asyncssh-backed if None)
            settings: Tunnel settings
            probe: Local port probe shared by every forward
            reconnect_policy: Retry strategy for auto-reconnecting sessions
        """
        self.settings = settings or TunnelSettings()
        self.connector = connector or AsyncSSHConnector(self.settings)
        self.probe = probe or PortProbe(max_attempts=self.settings.probe_attempts)
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self.sessions: dict[str, TunnelSession] = {}
        self.tunnels: dict[str, ActiveTunnel] = {}
        self.stats: dict[str, TrafficStats] = {}
        self._reconnects: set[asyncio.Task[Any]] = set()
        self._pending: set[TunnelSession] = set()
        self._stop_count = 0
        self._stopping = False

    async def __aenter__(self) -> TunnelRegistry:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop_all()

    async def connect(
        self, specs: Iterable[TunnelSpec], params: ConnectionParams
    ) -> ConnectResult:
        """Open a session and start one port forward per spec.

        Resolves once every spec has been attempted. Individual forward
        failures are reported in the result, not raised.

        Args:
            specs: Tunnels to establish
            params: SSH connection parameters

        Returns:
            Per-tunnel results

        Raises:
            ConfigError: If no specs or no password were supplied
            AuthenticationError: If the credentials were rejected
            NetworkError: If the host could not be reached
            TunnelSessionError: For any other connection failure, or when
                :meth:`stop_all` ran during the handshake
        """
        specs = list(specs)
        if not specs:
            raise ConfigError("No port mappings to establish")
        if params.password is None:
            raise ConfigError(f"A password is required for {params.user}@{params.host}")

        session = TunnelSession(
            params,
            self.connector,
            self,
            settings=self.settings,
            probe=self.probe,
        )
        stop_count = self._stop_count
        self._pending.add(session)
        try:
            transition = await session.connect()
        finally:
            self._pending.discard(session)

        if not transition.ok:
            if transition.error is None:
                raise TunnelSessionError(
                    f"Session {session.id} ended with {transition.kind.value}"
                )
            raise transition.error

        # stop_all ran while authenticating; it could not see this session
        if self._stop_count != stop_count:
            await session.close(force=True)
            raise TunnelSessionError(
                f"Tunnels were stopped while connecting to {params.host}"
            )

        self.sessions[session.id] = session
        results = await session.start_forwards(specs)
        result = ConnectResult(session_id=session.id, results=results)

        logger.info(
            "Connect finished",
            session_id=session.id,
            tunnels=len(result.succeeded),
            failed=len(result.failed),
        )
        return result

    async def stop_session(self, session_id: str) -> None:
        """Gracefully stop one session, letting piped connections drain.

        Raises:
            RegistryError: If the session is unknown
        """
        session = self.sessions.get(session_id)
        if session is None:
            raise RegistryError(f"Session '{session_id}' not found")
        await session.close(force=False)

    async def stop_all(self) -> None:
        """Close every session and forget all state.

        Pending reconnects are cancelled and every socket is ended. Safe to
        call when nothing is active and safe to call repeatedly.
        A connect still authenticating is abandoned once its handshake ends.
        """
        self._stop_count += 1
        if not self.sessions and not self.tunnels and not self._reconnects:
            logger.debug("No active tunnels to stop", connecting=len(self._pending))
            return

        self._stopping = True
        try:
            reconnects = list(self._reconnects)
            self._reconnects.clear()
            for task in reconnects:
                task.cancel()
            if reconnects:
                await asyncio.gather(*reconnects, return_exceptions=True)

            sessions = list(self.sessions.values())
            outcomes = await asyncio.gather(
                *(self._close_session(session) for session in sessions),
                return_exceptions=True,
            )
            for session, outcome in zip(sessions, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(
                        "Error closing session", session_id=session.id, error=str(outcome)
                    )

            self.sessions.clear()
            self.tunnels.clear()
            self.stats.clear()
        finally:
            self._stopping = False

        logger.info("All tunnels stopped", sessions=len(sessions))

    @staticmethod
    async def _close_session(session: TunnelSession) -> None:
        logger.info("Closing session", session_id=session.id)
        await session.close(force=True)

    def status(self) -> list[TunnelStatusEntry]:
        """Snapshot of every active tunnel and its traffic."""
        now = datetime.now()
        entries: list[TunnelStatusEntry] = []
        for tunnel in list(self.tunnels.values()):
            stats = self.stats.get(tunnel.id) or TrafficStats(started_at=tunnel.started_at)
            entries.append(
                TunnelStatusEntry(
                    tunnel_id=tunnel.id,
                    session_id=tunnel.session_id,
                    name=tunnel.name,
                    bound_local_port=tunnel.bound_local_port,
                    remote_port=tunnel.remote_port,
                    status=tunnel.status,
                    bytes_transferred=stats.total,
                    bytes_sent=stats.bytes_sent,
                    bytes_received=stats.bytes_received,
                    duration_ms=stats.duration_ms(now),
                )
            )
        return entries

    def get_tunnel(self, tunnel_id: str) -> ActiveTunnel | None:
        return self.tunnels.get(tunnel_id)

    def list_tunnels(
        self, session_id: str | None = None, status: TunnelStatus | None = None
    ) -> list[ActiveTunnel]:
        """List tunnels with optional filtering.

        Args:
            session_id: Only tunnels of this session
            status: Only tunnels in this status

        Returns:
            List of matching tunnels
        """
        tunnels = list(self.tunnels.values())

        if session_id is not None:
            tunnels = [t for t in tunnels if t.session_id == session_id]

        if status is not None:
            tunnels = [t for t in tunnels if t.status == status]

        return tunnels

    # Session and forward callbacks

    def tunnel_bound(self, tunnel: ActiveTunnel) -> None:
        if tunnel.session_id not in self.sessions:
            logger.debug("Ignoring tunnel of unknown session", tunnel_id=tunnel.id)
            return

        self.tunnels[tunnel.id] = tunnel
        self.stats[tunnel.id] = TrafficStats(started_at=tunnel.started_at)
        logger.debug("Tunnel registered", tunnel_id=tunnel.id)

    def tunnel_activated(self, tunnel_id: str) -> None:
        tunnel = self.tunnels.get(tunnel_id)
        if tunnel is None:
            return

        self.tunnels[tunnel_id] = tunnel.with_status(TunnelStatus.ACTIVE)
        logger.info("Tunnel active", tunnel_id=tunnel_id)

    def traffic(self, tunnel_id: str, direction: TrafficDirection, nbytes: int) -> None:
        stats = self.stats.get(tunnel_id)
        if stats is not None:
            stats.record(direction, nbytes)

    def session_closed(self, session: TunnelSession, remote: bool) -> None:
        self.sessions.pop(session.id, None)

        tunnel_ids = [tid for tid, t in self.tunnels.items() if t.session_id == session.id]
        for tunnel_id in tunnel_ids:
            self.tunnels.pop(tunnel_id, None)
            stats = self.stats.pop(tunnel_id, None)
            if stats is not None:
                logger.info(
                    "Tunnel removed",
                    tunnel_id=tunnel_id,
                    traffic=format_bytes(stats.total),
                    duration=format_duration(stats.duration_ms()),
                )

        if remote and session.params.auto_reconnect and not self._stopping:
            self._schedule_reconnect(session)

    # Reconnection

    def _schedule_reconnect(self, session: TunnelSession) -> None:
        task = asyncio.get_running_loop().create_task(
            self._reconnect(session.params, list(session.specs), session.id),
            name=f"reconnect-{session.id}",
        )
        self._reconnects.add(task)
        task.add_done_callback(self._reconnects.discard)

    async def _reconnect(
        self, params: ConnectionParams, specs: list[TunnelSpec], previous_id: str
    ) -> None:
        policy = self.reconnect_policy
        attempt = 1
        error: TunnelSessionError | None = None

        while policy.should_retry(attempt, error):
            delay = policy.delay_for(attempt)
            logger.info(
                "Reconnecting",
                previous_session=previous_id,
                host=params.host,
                attempt=attempt,
                delay=delay,
            )
            await asyncio.sleep(delay)

            try:
                result = await self.connect(specs, params)
            except TunnelSessionError as e:
                error = e
                attempt += 1
                logger.warning(
                    "Reconnect attempt failed",
                    previous_session=previous_id,
                    attempt=attempt - 1,
                    error=e.raw_message,
                )
                continue

            logger.info(
                "Reconnected",
                previous_session=previous_id,
                session_id=result.session_id,
                tunnels=len(result.succeeded),
            )
            return

        logger.error(
            "Giving up reconnecting",
            previous_session=previous_id,
            host=params.host,
            attempts=attempt - 1,
            error=error.raw_message if error else None,
        )
