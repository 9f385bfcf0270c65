"""Tunnel sessions, port forwards and the registry that tracks them."""

from .channel import ForwardChannel
from .forward import PortForward
from .interfaces import SessionEvents, SSHConnection, SSHConnector
from .models import (
    ActiveTunnel,
    ConnectionParams,
    ConnectResult,
    ForwardResult,
    SessionState,
    TrafficDirection,
    TrafficStats,
    TunnelSpec,
    TunnelStatus,
    TunnelStatusEntry,
)
from .ports import PortProbe
from .registry import TunnelRegistry
from .session import SessionTransition, TransitionKind, TunnelSession
from .ssh import AsyncSSHConnection, AsyncSSHConnector

__all__ = [
    # Models
    "TunnelSpec",
    "ConnectionParams",
    "ActiveTunnel",
    "TunnelStatus",
    "SessionState",
    "TrafficDirection",
    "TrafficStats",
    "TunnelStatusEntry",
    "ForwardResult",
    "ConnectResult",
    # Components
    "PortProbe",
    "ForwardChannel",
    "PortForward",
    "TunnelSession",
    "SessionTransition",
    "TransitionKind",
    "TunnelRegistry",
    # SSH collaborator
    "SSHConnector",
    "SSHConnection",
    "SessionEvents",
    "AsyncSSHConnector",
    "AsyncSSHConnection",
]
