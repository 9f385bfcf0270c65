"""asyncssh-backed implementation of the SSH collaborator."""

from typing import Any

import asyncssh

from ..common.exceptions import (
    AuthenticationError,
    ChannelOpenError,
    NetworkError,
    classify_connect_error,
)
from ..common.logging import get_logger
from ..config import TunnelSettings

logger = get_logger(__name__)


class AsyncSSHConnection:
    """Adapts an ``asyncssh.SSHClientConnection`` to :class:`SSHConnection`."""

    def __init__(self, conn: asyncssh.SSHClientConnection):
        self._conn = conn

    async def open_channel(
        self, local_addr: str, local_port: int, remote_addr: str, remote_port: int
    ) -> tuple[Any, Any]:
        try:
            return await self._conn.open_connection(
                remote_addr,
                remote_port,
                orig_host=local_addr,
                orig_port=local_port,
            )
        except asyncssh.ChannelOpenError as e:
            raise ChannelOpenError(
                f"Server refused channel to {remote_addr}:{remote_port}: {e.reason}",
                raw_message=e.reason,
            ) from e
        except (asyncssh.Error, OSError) as e:
            raise ChannelOpenError(
                f"Channel to {remote_addr}:{remote_port} failed: {e}"
            ) from e

    def close(self) -> None:
        self._conn.close()

    async def wait_closed(self) -> None:
        await self._conn.wait_closed()


class AsyncSSHConnector:
    """Opens password-authenticated SSH connections with asyncssh."""

    def __init__(self, settings: TunnelSettings | None = None):
        self.settings = settings or TunnelSettings()

    async def connect(
        self, host: str, port: int, user: str, password: str | None
    ) -> AsyncSSHConnection:
        """Connect and authenticate.

        Args:
            host: SSH server hostname
            port: SSH server port
            user: User name
            password: Password

        Returns:
            Connected SSH connection

        Raises:
            AuthenticationError: If the credentials are rejected
            NetworkError: If the server cannot be reached
            TunnelSessionError: For any other connection failure
        """
        logger.debug("Opening SSH connection", host=host, port=port, user=user)
        try:
            conn = await asyncssh.connect(
                host,
                port=port,
                username=user,
                password=password,
                client_keys=None,
                agent_path=None,
                known_hosts=self.settings.known_hosts,
                keepalive_interval=self.settings.keepalive_interval,
                connect_timeout=self.settings.connect_timeout,
            )
        except asyncssh.PermissionDenied as e:
            raise AuthenticationError(
                f"Authentication failed for {user}@{host}: {e.reason}",
                raw_message=e.reason,
            ) from e
        except (TimeoutError, ConnectionRefusedError) as e:
            raise NetworkError(
                f"Cannot reach {host}:{port}: {e}", raw_message=str(e)
            ) from e
        except (asyncssh.Error, OSError) as e:
            raise classify_connect_error(e) from e

        return AsyncSSHConnection(conn)
