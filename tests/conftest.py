"""Shared pytest fixtures for remote tunnel tests."""

import asyncio
import socket
from collections.abc import Awaitable, Callable

import pytest
import pytest_asyncio

from remote_tunnel.common.exceptions import AuthenticationError, ChannelOpenError
from remote_tunnel.config import ReconnectPolicy, TunnelSettings
from remote_tunnel.tunnels import ConnectionParams, TunnelRegistry, TunnelSpec
from remote_tunnel.vault import CredentialVault

PASSWORD = "s3cret"


class FakeConnection:
    """In-process stand-in for an SSH connection.

    Channels are plain TCP connections to local servers, looked up by the
    remote port they pretend to reach.
    """

    def __init__(self, routes: dict[int, int]):
        self.routes = routes
        self.opened: list[int] = []
        self.closed_locally = False
        self._closed = asyncio.Event()

    async def open_channel(self, local_addr, local_port, remote_addr, remote_port):
        target = self.routes.get(remote_port)
        if target is None or self._closed.is_set():
            raise ChannelOpenError(f"Connect failed for {remote_addr}:{remote_port}")
        self.opened.append(remote_port)
        return await asyncio.open_connection("127.0.0.1", target)

    def close(self) -> None:
        self.closed_locally = True
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def drop(self) -> None:
        """Simulate the server ending the connection."""
        self._closed.set()


class FakeConnector:
    """Accepts only :data:`PASSWORD`, or raises ``fail_with`` when set."""

    def __init__(self, routes: dict[int, int], password: str = PASSWORD):
        self.routes = routes
        self.password = password
        self.fail_with: BaseException | None = None
        self.attempts = 0
        self.connections: list[FakeConnection] = []

    async def connect(self, host, port, user, password):
        self.attempts += 1
        if self.fail_with is not None:
            raise self.fail_with
        if password != self.password:
            raise AuthenticationError("All configured authentication methods failed")
        connection = FakeConnection(self.routes)
        self.connections.append(connection)
        return connection

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


def get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def _echo(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    try:
        while True:
            data = await reader.read(65536)
            if not data:
                break
            writer.write(data)
            await writer.drain()
    except ConnectionError:
        pass
    finally:
        writer.close()


@pytest_asyncio.fixture
async def echo_port():
    """Port of a local echo server standing in for a remote service."""
    server = await asyncio.start_server(_echo, host="127.0.0.1", port=0)
    port = server.sockets[0].getsockname()[1]
    yield port
    server.close()


@pytest.fixture
def remote_port() -> int:
    """Remote port the fake connector routes to the echo server."""
    return 5432


@pytest.fixture
def connector(echo_port, remote_port) -> FakeConnector:
    return FakeConnector({remote_port: echo_port})


@pytest.fixture
def settings(tmp_path) -> TunnelSettings:
    return TunnelSettings(config_dir=tmp_path / "config", connect_timeout=5)


@pytest.fixture
def vault(settings) -> CredentialVault:
    return CredentialVault(settings.key_path)


@pytest.fixture
def free_port() -> int:
    return get_free_port()


@pytest.fixture
def occupied_port():
    """A local port held by a listening socket for the duration of a test."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen()
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def params() -> ConnectionParams:
    return ConnectionParams(host="db.example.com", user="deploy", password=PASSWORD)


@pytest.fixture
def spec(remote_port, free_port) -> TunnelSpec:
    return TunnelSpec(
        name="PostgreSQL",
        remote_port=remote_port,
        requested_local_port=free_port,
        service="postgres",
    )


@pytest_asyncio.fixture
async def registry(connector, settings):
    """Registry wired to the fake connector with a fast reconnect policy."""
    registry = TunnelRegistry(
        connector,
        settings=settings,
        reconnect_policy=ReconnectPolicy(delay=0.01, max_delay=0.01, max_attempts=50),
    )
    yield registry
    await registry.stop_all()


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate on the event loop until it holds."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait


@pytest.fixture
def exchange() -> Callable[[int, bytes], Awaitable[bytes]]:
    """Send a payload through a local tunnel port and read the echo."""
    return _exchange


async def _exchange(port: int, payload: bytes) -> bytes:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        writer.write(payload)
        await writer.drain()
        return await asyncio.wait_for(reader.readexactly(len(payload)), timeout=2)
    finally:
        writer.close()
