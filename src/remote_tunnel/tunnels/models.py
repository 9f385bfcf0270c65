"""Tunnel models.

This module defines the specs callers request, the tunnels the registry
tracks, and the results reported back from a connect request.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from ..common.utils import sanitize_log_data


class TunnelStatus(str, Enum):
    """Tunnel status enumeration."""

    IDLE = "idle"
    ACTIVE = "active"


class SessionState(str, Enum):
    """Session lifecycle states."""

    CONNECTING = "connecting"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


class TrafficDirection(str, Enum):
    """Direction of proxied bytes."""

    UPSTREAM = "upstream"  # local -> remote
    DOWNSTREAM = "downstream"  # remote -> local


class TunnelSpec(BaseModel):
    """One requested port mapping: remote port to local port."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    name: str = Field(min_length=1, description="Display name of the tunnel")
    remote_port: int = Field(ge=1, le=65535, description="Port on the remote host")
    requested_local_port: int = Field(
        ge=1, le=65535, description="Local port the caller asked for"
    )
    bound_local_port: int | None = Field(
        default=None, ge=1, le=65535, description="Local port actually bound"
    )
    service: str | None = Field(
        default=None, description="Service key in the profile or preset catalog"
    )

    @property
    def local_port(self) -> int:
        """Bound port once listening, the requested port before that."""
        if self.bound_local_port is not None:
            return self.bound_local_port
        return self.requested_local_port

    @property
    def was_rebound(self) -> bool:
        return (
            self.bound_local_port is not None
            and self.bound_local_port != self.requested_local_port
        )

    def bound_to(self, port: int) -> "TunnelSpec":
        """Return a copy recording the local port actually bound."""
        return self.model_copy(update={"bound_local_port": port})


class ConnectionParams(BaseModel):
    """Connection parameters supplied to :meth:`TunnelRegistry.connect`."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    host: str = Field(min_length=1, description="SSH server hostname")
    port: int = Field(default=22, ge=1, le=65535, description="SSH server port")
    user: str = Field(min_length=1, description="SSH user name")
    password: SecretStr | None = Field(default=None, description="SSH password")
    auto_reconnect: bool = Field(
        default=False, description="Recreate the session when it drops"
    )
    background: bool = Field(
        default=False, description="Do not install interrupt handlers"
    )
    jump_host: str | None = Field(
        default=None, description="Jump host (accepted but not used yet)"
    )

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Reject hostnames with whitespace or a scheme."""
        if any(char.isspace() for char in v) or "://" in v:
            raise ValueError("Host must be a bare hostname or IP address")
        return v

    def secret(self) -> str | None:
        return self.password.get_secret_value() if self.password else None

    def safe_dict(self) -> dict[str, Any]:
        """Parameters with the password masked, for logging."""
        data = self.model_dump(exclude={"password"})
        data["password"] = self.secret()
        return sanitize_log_data(data)


class ActiveTunnel(BaseModel):
    """A bound local listener proxying to one remote port."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1, description="Tunnel id: <session id>_<local port>")
    session_id: str = Field(min_length=1, description="Owning session id")
    spec: TunnelSpec = Field(description="Spec with the bound port recorded")
    status: TunnelStatus = Field(default=TunnelStatus.IDLE)
    started_at: datetime = Field(default_factory=datetime.now)
    activated_at: datetime | None = Field(default=None)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def bound_local_port(self) -> int:
        return self.spec.local_port

    @property
    def remote_port(self) -> int:
        return self.spec.remote_port

    @staticmethod
    def make_id(session_id: str, local_port: int) -> str:
        return f"{session_id}_{local_port}"

    def with_status(self, status: TunnelStatus) -> "ActiveTunnel":
        """Create new tunnel instance with updated status (immutable pattern).

        Status only moves from idle to active; asking to go back to idle
        returns the tunnel unchanged.

        Args:
            status: New tunnel status

        Returns:
            New tunnel instance with updated status
        """
        if self.status == TunnelStatus.ACTIVE or status == self.status:
            return self

        return self.model_copy(
            update={"status": status, "activated_at": datetime.now()}
        )


@dataclass
class TrafficStats:
    """Mutable byte counters for one tunnel."""

    started_at: datetime = field(default_factory=datetime.now)
    bytes_sent: int = 0
    bytes_received: int = 0

    @property
    def total(self) -> int:
        return self.bytes_sent + self.bytes_received

    def record(self, direction: TrafficDirection, nbytes: int) -> None:
        if nbytes <= 0:
            return
        if direction == TrafficDirection.UPSTREAM:
            self.bytes_sent += nbytes
        else:
            self.bytes_received += nbytes

    def duration_ms(self, now: datetime | None = None) -> int:
        now = now or datetime.now()
        return max(int((now - self.started_at).total_seconds() * 1000), 0)


class TunnelStatusEntry(BaseModel):
    """One row of :meth:`TunnelRegistry.status`."""

    model_config = ConfigDict(frozen=True)

    tunnel_id: str
    session_id: str
    name: str
    bound_local_port: int
    remote_port: int
    status: TunnelStatus
    bytes_transferred: int = Field(ge=0)
    bytes_sent: int = Field(ge=0)
    bytes_received: int = Field(ge=0)
    duration_ms: int = Field(ge=0)


class ForwardResult(BaseModel):
    """Outcome of starting one port forward."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    spec: TunnelSpec
    tunnel_id: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConnectResult(BaseModel):
    """Per-tunnel report for one connect request."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    session_id: str
    results: list[ForwardResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[ForwardResult]:
        return [result for result in self.results if result.ok]

    @property
    def failed(self) -> list[ForwardResult]:
        return [result for result in self.results if not result.ok]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed
