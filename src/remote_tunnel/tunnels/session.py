"""SSH session lifecycle: connect, forward, close."""

import asyncio
import contextlib
import uuid
from collections.abc import Iterable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from ..common.exceptions import (
    AuthenticationError,
    ChannelOpenError,
    NetworkError,
    TunnelSessionError,
    classify_connect_error,
)
from ..common.logging import get_logger
from ..config import TunnelSettings
from .channel import ForwardChannel
from .forward import CLOSE_TIMEOUT, PortForward
from .interfaces import SessionEvents, SSHConnection, SSHConnector
from .models import ConnectionParams, ForwardResult, SessionState, TunnelSpec
from .ports import PortProbe

logger = get_logger(__name__)


class TransitionKind(str, Enum):
    """Outcome of a session state transition."""

    READY = "ready"
    AUTH_FAILED = "auth_failed"
    NETWORK_FAILED = "network_failed"
    FAILED = "failed"
    CLOSED = "closed"


class SessionTransition(BaseModel):
    """Tagged result of :meth:`TunnelSession.connect` and :meth:`wait_closed`."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: TransitionKind
    error: TunnelSessionError | None = None

    @property
    def ok(self) -> bool:
        return self.kind == TransitionKind.READY

    @classmethod
    def from_error(cls, error: TunnelSessionError) -> "SessionTransition":
        if isinstance(error, AuthenticationError):
            kind = TransitionKind.AUTH_FAILED
        elif isinstance(error, NetworkError):
            kind = TransitionKind.NETWORK_FAILED
        else:
            kind = TransitionKind.FAILED
        return cls(kind=kind, error=error)


# Allowed state machine edges
_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CONNECTING: {SessionState.READY, SessionState.CLOSED},
    SessionState.READY: {SessionState.CLOSING},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class TunnelSession:
    """One authenticated SSH connection and the port forwards bound to it.

    States move ``CONNECTING -> READY -> CLOSING -> CLOSED``, or straight
    from ``CONNECTING`` to ``CLOSED`` when authentication or the network
    fails. Closing, whether requested or initiated by the server, stops
    every owned listener before ``session_closed`` is reported.
    """

    def __init__(
        self,
        params: ConnectionParams,
        connector: SSHConnector,
        events: SessionEvents,
        *,
        settings: TunnelSettings | None = None,
        probe: PortProbe | None = None,
        session_id: str | None = None,
    ):
        self.id = session_id or self.make_id(params.host)
        self.params = params
        self.connector = connector
        self.events = events
        self.settings = settings or TunnelSettings()
        self.probe = probe or PortProbe(max_attempts=self.settings.probe_attempts)
        self.specs: list[TunnelSpec] = []
        self._state = SessionState.CONNECTING
        self._connection: SSHConnection | None = None
        self._forwards: list[PortForward] = []
        self._watcher: asyncio.Task[Any] | None = None
        self._closed = asyncio.Event()
        self._final: SessionTransition | None = None

    @staticmethod
    def make_id(host: str) -> str:
        return f"{host}_{uuid.uuid4().hex[:8]}"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def forwards(self) -> list[PortForward]:
        return list(self._forwards)

    @property
    def tunnel_ids(self) -> list[str]:
        return [f.tunnel_id for f in self._forwards if f.tunnel_id is not None]

    def _set_state(self, state: SessionState) -> None:
        if state not in _TRANSITIONS[self._state]:
            raise TunnelSessionError(
                f"Invalid session transition {self._state.value} -> {state.value}"
            )
        logger.debug(
            "Session state changed",
            session_id=self.id,
            old=self._state.value,
            new=state.value,
        )
        self._state = state

    async def connect(self) -> SessionTransition:
        """Authenticate against the remote host.

        Returns:
            ``READY`` on success, otherwise the classified failure. Connection
            failures are reported through the result, never raised.
        """
        if self._state != SessionState.CONNECTING:
            raise TunnelSessionError(f"Session {self.id} already {self._state.value}")

        logger.info("Connecting", session_id=self.id, **self.params.safe_dict())
        try:
            self._connection = await self.connector.connect(
                self.params.host,
                self.params.port,
                self.params.user,
                self.params.secret(),
            )
        except Exception as e:
            error = classify_connect_error(e)
            self._set_state(SessionState.CLOSED)
            self._final = SessionTransition.from_error(error)
            self._closed.set()
            logger.error(
                "SSH connection failed",
                session_id=self.id,
                host=self.params.host,
                port=self.params.port,
                kind=self._final.kind.value,
                error=error.raw_message,
            )
            return self._final

        self._set_state(SessionState.READY)
        self._watcher = asyncio.create_task(
            self._watch_connection(), name=f"session-watch-{self.id}"
        )
        logger.info("SSH connection ready", session_id=self.id, host=self.params.host)
        return SessionTransition(kind=TransitionKind.READY)

    async def open_forward_channel(
        self, local_addr: str, local_port: int, remote_addr: str, remote_port: int
    ) -> ForwardChannel:
        """Open one forwarded stream to ``remote_addr:remote_port``.

        Raises:
            ChannelOpenError: If the session is not ready or the server
                refuses the channel
        """
        if self._state != SessionState.READY or self._connection is None:
            raise ChannelOpenError(
                f"Session {self.id} is {self._state.value}, cannot open channel"
            )

        try:
            reader, writer = await self._connection.open_channel(
                local_addr, local_port, remote_addr, remote_port
            )
        except ChannelOpenError:
            raise
        except Exception as e:
            raise ChannelOpenError(
                f"Channel to {remote_addr}:{remote_port} failed: {e}"
            ) from e

        return ForwardChannel(
            reader,
            writer,
            local_port=local_port,
            remote_addr=remote_addr,
            remote_port=remote_port,
        )

    async def start_forwards(self, specs: Iterable[TunnelSpec]) -> list[ForwardResult]:
        """Start one port forward per spec, concurrently.

        A failing forward does not affect the others. Returns once every
        forward has either bound or failed, in the order of ``specs``.
        """
        specs = list(specs)
        if self._state != SessionState.READY:
            error = TunnelSessionError(f"Session {self.id} is {self._state.value}")
            return [ForwardResult(spec=spec, error=error) for spec in specs]

        self.specs.extend(specs)
        forwards = [
            PortForward(self, spec, self.events, probe=self.probe, settings=self.settings)
            for spec in specs
        ]
        self._forwards.extend(forwards)

        outcomes = await asyncio.gather(
            *(forward.start() for forward in forwards), return_exceptions=True
        )

        results: list[ForwardResult] = []
        for forward, outcome in zip(forwards, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                if forward in self._forwards:
                    self._forwards.remove(forward)
                logger.error(
                    "Port forward failed",
                    session_id=self.id,
                    tunnel=forward.spec.name,
                    local_port=forward.spec.requested_local_port,
                    error=str(outcome),
                )
                results.append(ForwardResult(spec=forward.spec, error=outcome))
            else:
                results.append(ForwardResult(spec=outcome, tunnel_id=forward.tunnel_id))

        logger.info(
            "Tunnels established",
            session_id=self.id,
            succeeded=sum(1 for r in results if r.ok),
            failed=sum(1 for r in results if not r.ok),
        )
        return results

    async def close(self, force: bool = False) -> None:
        """Stop every forward and end the connection.

        Args:
            force: Abort in-flight connections instead of letting them drain
        """
        if self._state == SessionState.CONNECTING:
            raise TunnelSessionError(f"Session {self.id} is still connecting")
        if self._state != SessionState.READY:
            await self._closed.wait()
            return
        await self._shutdown(remote=False, force=force)

    async def wait_closed(self) -> SessionTransition:
        """Wait for the session to reach ``CLOSED``."""
        await self._closed.wait()
        return self._final or SessionTransition(kind=TransitionKind.CLOSED)

    async def _watch_connection(self) -> None:
        if self._connection is None:
            raise TunnelSessionError(f"Session {self.id} has no connection to watch")
        try:
            await self._connection.wait_closed()
        except Exception as e:
            logger.debug("Connection ended with error", session_id=self.id, error=str(e))

        if self._state == SessionState.READY:
            logger.warning("SSH connection closed by remote", session_id=self.id)
            await self._shutdown(remote=True, force=True)

    async def _shutdown(self, remote: bool, force: bool) -> None:
        self._set_state(SessionState.CLOSING)

        forwards = list(self._forwards)
        self._forwards.clear()
        outcomes = await asyncio.gather(
            *(forward.stop(force=force) for forward in forwards), return_exceptions=True
        )
        for forward, outcome in zip(forwards, outcomes):
            if isinstance(outcome, Exception):
                logger.error(
                    "Error stopping port forward",
                    session_id=self.id,
                    tunnel=forward.spec.name,
                    error=str(outcome),
                )

        if self._connection is not None and not remote:
            self._connection.close()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._connection.wait_closed(), CLOSE_TIMEOUT)

        if self._watcher is not None and self._watcher is not asyncio.current_task():
            self._watcher.cancel()

        self._set_state(SessionState.CLOSED)
        self._final = SessionTransition(kind=TransitionKind.CLOSED)
        self._closed.set()
        logger.info("Session closed", session_id=self.id, remote=remote)
        self.events.session_closed(self, remote=remote)
