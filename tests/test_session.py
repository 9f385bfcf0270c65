"""Tests for the SSH session lifecycle."""

import asyncio
from unittest.mock import Mock

import pytest

from remote_tunnel.common.exceptions import (
    AuthenticationError,
    ChannelOpenError,
    NetworkError,
    PortConflictError,
    TunnelSessionError,
)
from remote_tunnel.tunnels import (
    ConnectionParams,
    SessionState,
    TransitionKind,
    TunnelSession,
    TunnelSpec,
)


@pytest.fixture
def events():
    return Mock()


@pytest.fixture
def session(params, connector, events, settings):
    return TunnelSession(params, connector, events, settings=settings)


class TestSessionConnect:
    def test_id_contains_host(self, session):
        assert session.id.startswith("db.example.com_")
        assert len(session.id.rsplit("_", 1)[1]) == 8
        assert session.state == SessionState.CONNECTING

    @pytest.mark.asyncio
    async def test_connect_ready(self, session, connector):
        transition = await session.connect()

        assert transition.ok
        assert transition.kind == TransitionKind.READY
        assert session.state == SessionState.READY
        assert connector.attempts == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_wrong_password(self, connector, events, settings):
        params = ConnectionParams(host="h", user="u", password="wrong")
        session = TunnelSession(params, connector, events, settings=settings)

        transition = await session.connect()

        assert transition.kind == TransitionKind.AUTH_FAILED
        assert isinstance(transition.error, AuthenticationError)
        assert session.state == SessionState.CLOSED
        assert (await session.wait_closed()).kind == TransitionKind.AUTH_FAILED
        events.session_closed.assert_not_called()

    @pytest.mark.asyncio
    async def test_network_failure(self, session, connector):
        connector.fail_with = ConnectionRefusedError("connect ECONNREFUSED")

        transition = await session.connect()

        assert transition.kind == TransitionKind.NETWORK_FAILED
        assert isinstance(transition.error, NetworkError)

    @pytest.mark.asyncio
    async def test_other_failure(self, session, connector):
        connector.fail_with = RuntimeError("kex exchange failed")

        transition = await session.connect()

        assert transition.kind == TransitionKind.FAILED
        assert transition.error.raw_message == "kex exchange failed"

    @pytest.mark.asyncio
    async def test_connect_twice_rejected(self, session):
        await session.connect()

        with pytest.raises(TunnelSessionError):
            await session.connect()
        await session.close()


class TestSessionForwards:
    @pytest.mark.asyncio
    async def test_channel_requires_ready(self, session):
        with pytest.raises(ChannelOpenError):
            await session.open_forward_channel("127.0.0.1", 1, "127.0.0.1", 5432)

    @pytest.mark.asyncio
    async def test_start_forwards_in_order(self, session, spec, remote_port, free_port, events):
        await session.connect()
        other = TunnelSpec(name="Other", remote_port=remote_port, requested_local_port=free_port)

        results = await session.start_forwards([spec, other])

        assert [r.spec.name for r in results] == ["PostgreSQL", "Other"]
        assert all(r.ok for r in results)
        assert results[0].spec.bound_local_port != results[1].spec.bound_local_port
        assert events.tunnel_bound.call_count == 2
        assert len(session.tunnel_ids) == 2
        await session.close(force=True)

    @pytest.mark.asyncio
    async def test_failed_forward_does_not_affect_others(self, session, spec, occupied_port):
        await session.connect()
        blocked = TunnelSpec(name="Blocked", remote_port=6379, requested_local_port=occupied_port)
        session.probe.find_available = Mock(side_effect=PortConflictError("no free port"))

        results = await session.start_forwards([spec, blocked])

        assert results[0].ok
        assert isinstance(results[1].error, PortConflictError)
        assert len(session.forwards) == 1
        await session.close(force=True)

    @pytest.mark.asyncio
    async def test_start_forwards_on_closed_session(self, session, spec):
        await session.connect()
        await session.close()

        results = await session.start_forwards([spec])

        assert not results[0].ok
        assert isinstance(results[0].error, TunnelSessionError)


class TestSessionClose:
    @pytest.mark.asyncio
    async def test_local_close(self, session, spec, connector, events):
        await session.connect()
        await session.start_forwards([spec])

        await session.close()

        assert session.state == SessionState.CLOSED
        assert session.forwards == []
        assert connector.last.closed_locally
        events.session_closed.assert_called_once_with(session, remote=False)

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, session, events):
        await session.connect()

        await session.close()
        await session.close()

        events.session_closed.assert_called_once()

    @pytest.mark.asyncio
    async def test_remote_close(self, session, spec, connector, events):
        await session.connect()
        results = await session.start_forwards([spec])
        port = results[0].spec.bound_local_port

        connector.last.drop()
        transition = await asyncio.wait_for(session.wait_closed(), timeout=2)

        assert transition.kind == TransitionKind.CLOSED
        assert not connector.last.closed_locally
        events.session_closed.assert_called_once_with(session, remote=True)
        with pytest.raises(OSError):
            await asyncio.open_connection("127.0.0.1", port)

    @pytest.mark.asyncio
    async def test_close_while_connecting_rejected(self, session):
        with pytest.raises(TunnelSessionError):
            await session.close()

    @pytest.mark.asyncio
    async def test_watch_requires_connection(self, session):
        with pytest.raises(TunnelSessionError, match="no connection"):
            await session._watch_connection()
