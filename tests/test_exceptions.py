"""Tests for the exception taxonomy and connect error classification."""

import errno
import socket

import pytest

from remote_tunnel.common.exceptions import (
    AuthenticationError,
    ConfigError,
    NetworkError,
    PortConflictError,
    RemoteTunnelError,
    TunnelSessionError,
    classify_connect_error,
)


class TestExceptionHierarchy:
    def test_session_errors_share_base(self):
        assert issubclass(AuthenticationError, TunnelSessionError)
        assert issubclass(NetworkError, TunnelSessionError)
        assert issubclass(TunnelSessionError, RemoteTunnelError)
        assert issubclass(PortConflictError, RemoteTunnelError)

    def test_raw_message_defaults_to_message(self):
        error = ConfigError("missing profile")
        assert error.raw_message == "missing profile"

    def test_hint_numbers_remediation(self):
        hint = NetworkError("refused").hint()

        assert hint.startswith("  1. ")
        assert "SSH port" in hint

    def test_registry_error_has_no_hint(self):
        from remote_tunnel.common.exceptions import RegistryError  # noqa: PLC0415

        assert RegistryError("x").hint() == ""


class TestClassifyConnectError:
    @pytest.mark.parametrize(
        "exc",
        [
            Exception("All configured authentication methods failed"),
            Exception("Permission denied (password)"),
        ],
    )
    def test_auth_by_message(self, exc):
        result = classify_connect_error(exc)

        assert isinstance(result, AuthenticationError)
        assert result.raw_message == str(exc)

    @pytest.mark.parametrize(
        "exc",
        [
            TimeoutError(),
            ConnectionRefusedError("refused"),
            socket.gaierror(-2, "Name or service not known"),
            OSError(errno.EHOSTUNREACH, "No route to host"),
            Exception("connect ECONNREFUSED 10.0.0.1:22"),
        ],
    )
    def test_network(self, exc):
        assert isinstance(classify_connect_error(exc), NetworkError)

    def test_generic(self):
        result = classify_connect_error(RuntimeError("protocol mismatch"))

        assert type(result) is TunnelSessionError
        assert result.raw_message == "protocol mismatch"

    def test_already_classified_passthrough(self):
        error = AuthenticationError("denied")
        assert classify_connect_error(error) is error
