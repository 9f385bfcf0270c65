"""Remote Tunnel - SSH port forwarding for remote databases and services."""

from .api import (
    default_store,
    install_signal_handlers,
    managed_tunnels,
    open_profile,
    remove_signal_handlers,
    resolve_target,
    run_until_stopped,
)
from .common.exceptions import (
    AuthenticationError,
    ChannelOpenError,
    ConfigError,
    NetworkError,
    PortConflictError,
    RegistryError,
    RemoteTunnelError,
    TunnelSessionError,
)
from .common.logging import get_logger, setup_logging
from .config import ReconnectPolicy, TunnelSettings
from .profiles import PresetService, ProfileStore, ServerProfile
from .tunnels import (
    ActiveTunnel,
    ConnectionParams,
    ConnectResult,
    PortForward,
    PortProbe,
    TunnelRegistry,
    TunnelSession,
    TunnelSpec,
    TunnelStatus,
)
from .vault import CredentialVault, DecryptedSecret, SecretKind

# Setup logging on package initialization
setup_logging(level="INFO")

logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # High-level API
    "open_profile",
    "resolve_target",
    "managed_tunnels",
    "run_until_stopped",
    "install_signal_handlers",
    "remove_signal_handlers",
    "default_store",
    # Core
    "TunnelRegistry",
    "TunnelSession",
    "PortForward",
    "PortProbe",
    "TunnelSpec",
    "ConnectionParams",
    "ConnectResult",
    "ActiveTunnel",
    "TunnelStatus",
    # Persistence
    "ProfileStore",
    "ServerProfile",
    "PresetService",
    "CredentialVault",
    "DecryptedSecret",
    "SecretKind",
    # Configuration
    "TunnelSettings",
    "ReconnectPolicy",
    # Exceptions
    "RemoteTunnelError",
    "ConfigError",
    "TunnelSessionError",
    "AuthenticationError",
    "NetworkError",
    "PortConflictError",
    "ChannelOpenError",
    "RegistryError",
    # Logging
    "get_logger",
    "setup_logging",
]
