"""High-level API for opening tunnels from saved profiles.

This module provides the entry points a CLI or wizard calls: resolve a
target into tunnel specs, connect them, and keep them up until interrupted.
"""

import asyncio
import signal
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from pydantic import SecretStr

from .common.exceptions import ConfigError
from .common.logging import get_logger
from .config import TunnelSettings
from .profiles import ProfileStore, parse_target, usage_hint
from .tunnels import ConnectionParams, ConnectResult, TunnelRegistry, TunnelSpec
from .vault import CredentialVault

logger = get_logger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def default_store(settings: TunnelSettings | None = None) -> ProfileStore:
    """Profile store and vault under the configured directory."""
    settings = settings or TunnelSettings.from_env()
    return ProfileStore(settings.profiles_path, CredentialVault(settings.key_path))


def resolve_target(
    store: ProfileStore,
    target: str,
    *,
    only: Iterable[str] | None = None,
    host: str | None = None,
    port: int | None = None,
    user: str | None = None,
    password: str | None = None,
    auto_reconnect: bool = False,
    background: bool = False,
) -> tuple[list[TunnelSpec], ConnectionParams]:
    """Turn ``server``, ``server:service`` or a preset name into a connect request.

    Saved profiles take precedence over presets of the same name. Preset
    targets have no saved host, so ``host``, ``user`` and ``password`` must
    be given.

    Returns:
        ``(specs, params)`` ready for :meth:`TunnelRegistry.connect`

    Raises:
        ConfigError: If the target cannot be resolved
    """
    server, service = parse_target(target)
    data = store.load()

    if server in data.servers:
        services = list(only) if only else ([service] if service else None)
        specs = store.resolve_specs(server, only=services)
        params = store.connection_params(
            server,
            password=password,
            auto_reconnect=auto_reconnect,
            background=background,
        )
        if host or port or user:
            params = params.model_copy(
                update={
                    "host": host or params.host,
                    "port": port or params.port,
                    "user": user or params.user,
                }
            )
        return specs, params

    if service is None and server in data.presets:
        if not host or not user or not password:
            raise ConfigError(
                f"Preset '{server}' needs a host, user and password to connect"
            )
        params = ConnectionParams(
            host=host,
            port=port or 22,
            user=user,
            password=SecretStr(password),
            auto_reconnect=auto_reconnect,
            background=background,
        )
        return [store.resolve_preset(server)], params

    raise ConfigError(f"No server profile or preset named '{server}'")


def log_connect_result(result: ConnectResult) -> None:
    """Log one line per tunnel, with a client hint for those that came up."""
    for item in result.results:
        if item.ok:
            logger.info(
                "Tunnel ready",
                tunnel=item.spec.name,
                local_port=item.spec.local_port,
                remote_port=item.spec.remote_port,
                rebound=item.spec.was_rebound,
                usage=usage_hint(item.spec.service, item.spec.local_port),
            )
        else:
            logger.error(
                "Tunnel failed",
                tunnel=item.spec.name,
                local_port=item.spec.requested_local_port,
                error=str(item.error),
            )


async def open_profile(
    registry: TunnelRegistry, store: ProfileStore, target: str, **kwargs: object
) -> ConnectResult:
    """Resolve ``target`` and connect it through ``registry``.

    Keyword arguments are passed to :func:`resolve_target`.
    """
    specs, params = resolve_target(store, target, **kwargs)  # type: ignore[arg-type]
    result = await registry.connect(specs, params)
    log_connect_result(result)
    return result


@asynccontextmanager
async def managed_tunnels(
    specs: Iterable[TunnelSpec],
    params: ConnectionParams,
    registry: TunnelRegistry | None = None,
) -> AsyncIterator[ConnectResult]:
    """Connect tunnels for the duration of a block.

    Example:
        >>> async with managed_tunnels(specs, params) as result:
        ...     print(result.succeeded[0].spec.local_port)
    """
    registry = registry or TunnelRegistry()
    try:
        yield await registry.connect(specs, params)
    finally:
        await registry.stop_all()


def install_signal_handlers(
    registry: TunnelRegistry, loop: asyncio.AbstractEventLoop | None = None
) -> asyncio.Event:
    """Stop every tunnel on SIGINT or SIGTERM.

    Returns:
        Event set once ``stop_all`` has finished
    """
    loop = loop or asyncio.get_running_loop()
    stopped = asyncio.Event()
    tasks: set[asyncio.Task[None]] = set()

    async def _stop(signum: int) -> None:
        logger.info("Interrupted, closing tunnels", signal=signal.Signals(signum).name)
        try:
            await registry.stop_all()
        finally:
            stopped.set()

    def _handle(signum: int) -> None:
        task = loop.create_task(_stop(signum))
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    for signum in STOP_SIGNALS:
        loop.add_signal_handler(signum, _handle, signum)

    return stopped


def remove_signal_handlers(loop: asyncio.AbstractEventLoop | None = None) -> None:
    """Undo :func:`install_signal_handlers`."""
    loop = loop or asyncio.get_running_loop()
    for signum in STOP_SIGNALS:
        loop.remove_signal_handler(signum)


async def run_until_stopped(
    registry: TunnelRegistry, specs: Iterable[TunnelSpec], params: ConnectionParams
) -> ConnectResult:
    """Connect, then block until an interrupt stops every tunnel.

    Handlers are installed before connecting, so an interrupt during the
    SSH handshake also stops everything. With ``params.background`` set this
    returns right after connecting and leaves stopping to the caller.
    """
    if params.background:
        result = await registry.connect(specs, params)
        log_connect_result(result)
        return result

    loop = asyncio.get_running_loop()
    stopped = install_signal_handlers(registry, loop)
    try:
        result = await registry.connect(specs, params)
        log_connect_result(result)
        logger.info("Press Ctrl+C to close all tunnels")
        await stopped.wait()
    finally:
        remove_signal_handlers(loop)
    return result
