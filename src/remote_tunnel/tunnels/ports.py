"""Local port availability probing."""

import logging
import socket

from ..common.exceptions import PortConflictError
from ..common.utils import MAX_PORT, validate_port

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"


class PortProbe:
    """Checks local TCP port availability on the loopback interface.

    A positive answer is advisory only: another process may bind the port
    between the probe and the real bind, so callers must treat a later bind
    failure as recoverable.
    """

    def __init__(self, host: str = LOOPBACK, max_attempts: int = 100):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.host = host
        self.max_attempts = max_attempts

    def is_available(self, port: int) -> bool:
        """Check whether ``port`` can be bound right now.

        Args:
            port: Local port to probe

        Returns:
            True if a bind succeeded (and was released)
        """
        validate_port(port)
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((self.host, port))
            except OSError:
                return False
        return True

    def find_available(self, start_port: int) -> int:
        """Probe upward from ``start_port`` for a free port.

        Args:
            start_port: First port to try

        Returns:
            First available port

        Raises:
            PortConflictError: If no port is free within ``max_attempts``, or
                ``start_port`` is past the top of the port range
        """
        if start_port > MAX_PORT:
            raise PortConflictError(f"No free local port above {MAX_PORT}")
        validate_port(start_port, "Start port")
        end_port = min(start_port + self.max_attempts, MAX_PORT + 1)

        for port in range(start_port, end_port):
            if self.is_available(port):
                if port != start_port:
                    logger.debug(f"Found free port {port} after probing from {start_port}")
                return port

        raise PortConflictError(
            f"No free local port in range {start_port}-{end_port - 1}"
        )
