"""Tests for the high-level API."""

import asyncio
import signal
from unittest.mock import Mock, patch

import pytest

from remote_tunnel import (
    ConfigError,
    NetworkError,
    ServerProfile,
    TunnelRegistry,
    default_store,
    install_signal_handlers,
    managed_tunnels,
    open_profile,
    remove_signal_handlers,
    resolve_target,
    run_until_stopped,
)
from remote_tunnel.config import HOME_ENV_VAR
from remote_tunnel.profiles import PortMapping, ProfileStore


@pytest.fixture
def store(settings, vault, remote_port, free_port):
    store = ProfileStore(settings.profiles_path, vault)
    store.add_profile(
        "prod",
        ServerProfile(
            host="db.example.com",
            user="deploy",
            ports={"postgres": PortMapping(remote=remote_port, local=free_port)},
        ),
        password="s3cret",
    )
    return store


class TestResolveTarget:
    def test_server(self, store, free_port):
        specs, params = resolve_target(store, "prod")

        assert [s.requested_local_port for s in specs] == [free_port]
        assert params.host == "db.example.com"
        assert params.secret() == "s3cret"

    def test_server_service_uses_preset(self, store):
        specs, _ = resolve_target(store, "prod:redis")

        assert [(s.remote_port, s.requested_local_port) for s in specs] == [(6379, 6379)]

    def test_only_overrides_service(self, store):
        specs, _ = resolve_target(store, "prod", only=["mysql", "postgres"])

        assert [s.service for s in specs] == ["mysql", "postgres"]

    def test_host_override(self, store):
        _, params = resolve_target(store, "prod", host="10.0.0.5", port=2222)

        assert params.host == "10.0.0.5"
        assert params.port == 2222
        assert params.user == "deploy"

    def test_preset_requires_credentials(self, store):
        with pytest.raises(ConfigError, match="needs a host"):
            resolve_target(store, "mysql")

    def test_preset(self, store):
        specs, params = resolve_target(
            store, "mysql", host="h", user="u", password="p", auto_reconnect=True
        )

        assert specs[0].remote_port == 3306
        assert params.auto_reconnect

    def test_unknown(self, store):
        with pytest.raises(ConfigError, match="No server profile or preset"):
            resolve_target(store, "staging")

    def test_default_store_honours_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv(HOME_ENV_VAR, str(tmp_path))

        store = default_store()

        assert store.path == tmp_path / "remote-servers.json"
        assert store.vault.key_path == tmp_path / ".key"


class TestOpenProfile:
    @pytest.mark.asyncio
    async def test_open_profile(self, registry, store, free_port, exchange):
        result = await open_profile(registry, store, "prod")

        assert result.all_succeeded
        assert await exchange(free_port, b"ok") == b"ok"

    @pytest.mark.asyncio
    async def test_managed_tunnels(self, connector, settings, store):
        registry = TunnelRegistry(connector, settings=settings)
        specs, params = resolve_target(store, "prod")

        async with managed_tunnels(specs, params, registry) as result:
            assert result.all_succeeded
            assert len(registry.status()) == 1

        assert registry.status() == []


class TestSignalHandling:
    @pytest.mark.asyncio
    async def test_signal_stops_everything(self, registry, store):
        await open_profile(registry, store, "prod")
        loop = asyncio.get_running_loop()
        fake_loop = Mock()
        fake_loop.create_task = loop.create_task

        stopped = install_signal_handlers(registry, loop=fake_loop)

        registered = {c.args[0]: c.args[1:] for c in fake_loop.add_signal_handler.call_args_list}
        assert set(registered) == {signal.SIGINT, signal.SIGTERM}

        handler, *args = registered[signal.SIGINT]
        handler(*args)
        await asyncio.wait_for(stopped.wait(), timeout=2)

        assert registry.status() == []

    @pytest.mark.asyncio
    async def test_run_until_stopped_background(self, registry, store):
        specs, params = resolve_target(store, "prod", background=True)

        result = await run_until_stopped(registry, specs, params)

        assert result.all_succeeded
        assert len(registry.status()) == 1

    @pytest.mark.asyncio
    async def test_run_until_stopped_removes_handlers(self, registry, store, wait_until):
        specs, params = resolve_target(store, "prod")
        loop = asyncio.get_running_loop()

        with (
            patch.object(loop, "add_signal_handler") as add_handler,
            patch.object(loop, "remove_signal_handler") as remove_handler,
        ):
            task = asyncio.create_task(run_until_stopped(registry, specs, params))
            await wait_until(lambda: len(registry.status()) == 1)

            handler, *args = add_handler.call_args_list[0].args[1:]
            handler(*args)
            result = await asyncio.wait_for(task, timeout=2)

        assert result.all_succeeded
        assert registry.status() == []
        removed = {c.args[0] for c in remove_handler.call_args_list}
        assert removed == {signal.SIGINT, signal.SIGTERM}

    @pytest.mark.asyncio
    async def test_handlers_removed_when_connect_fails(self, registry, store, connector):
        specs, params = resolve_target(store, "prod")
        connector.fail_with = ConnectionRefusedError("refused")
        loop = asyncio.get_running_loop()

        with (
            patch.object(loop, "add_signal_handler"),
            patch.object(loop, "remove_signal_handler") as remove_handler,
        ):
            with pytest.raises(NetworkError):
                await run_until_stopped(registry, specs, params)

        assert remove_handler.call_count == 2

    def test_remove_signal_handlers(self):
        fake_loop = Mock()

        remove_signal_handlers(fake_loop)

        removed = [c.args[0] for c in fake_loop.remove_signal_handler.call_args_list]
        assert removed == [signal.SIGINT, signal.SIGTERM]
