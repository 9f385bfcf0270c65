"""Settings and retry policy models."""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .common.exceptions import AuthenticationError

HOME_ENV_VAR = "REMOTE_TUNNEL_HOME"
PROFILES_FILENAME = "remote-servers.json"
KEY_FILENAME = ".key"


def default_config_dir() -> Path:
    """Return the per-user configuration directory."""
    return Path.home() / ".remote-tunnel"


class TunnelSettings(BaseModel):
    """Process-wide settings for sessions, forwards and persisted state."""

    model_config = ConfigDict(
        str_strip_whitespace=True, validate_assignment=True, extra="forbid"
    )

    config_dir: Path = Field(
        default_factory=default_config_dir,
        description="Directory holding the profile store and master key",
    )
    connect_timeout: float = Field(
        default=30.0, ge=0.1, le=300.0, description="SSH handshake timeout in seconds"
    )
    keepalive_interval: float = Field(
        default=30.0, ge=0, le=3600.0, description="SSH keepalive interval in seconds"
    )
    probe_attempts: int = Field(
        default=100, ge=1, le=1000, description="Ports probed when looking for a free one"
    )
    bind_retries: int = Field(
        default=3, ge=0, le=20, description="Re-probes after a bind race is lost"
    )
    buffer_size: int = Field(
        default=65536, ge=1024, le=4 * 1024 * 1024, description="Pipe read size in bytes"
    )
    known_hosts: str | None = Field(
        default=None,
        description="known_hosts file for host key checks (None disables checking)",
    )

    @property
    def profiles_path(self) -> Path:
        return self.config_dir / PROFILES_FILENAME

    @property
    def key_path(self) -> Path:
        return self.config_dir / KEY_FILENAME

    @classmethod
    def from_env(cls, **overrides: object) -> "TunnelSettings":
        """Build settings honouring ``REMOTE_TUNNEL_HOME``.

        Args:
            **overrides: Field values taking precedence over the environment

        Returns:
            TunnelSettings instance
        """
        values: dict[str, object] = {}
        home = os.environ.get(HOME_ENV_VAR)
        if home:
            values["config_dir"] = Path(home).expanduser()
        values.update(overrides)
        return cls(**values)


class ReconnectPolicy(BaseModel):
    """Retry strategy applied when an auto-reconnecting session drops."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    delay: float = Field(default=5.0, ge=0, description="First retry delay in seconds")
    backoff: float = Field(
        default=1.0, ge=1.0, le=10.0, description="Delay multiplier per attempt"
    )
    max_delay: float = Field(
        default=300.0, ge=0, description="Upper bound for a single retry delay"
    )
    max_attempts: int | None = Field(
        default=None, ge=1, description="Give up after this many attempts (None = never)"
    )
    retry_auth_failures: bool = Field(
        default=False, description="Keep retrying when credentials are rejected"
    )

    @field_validator("delay", "max_delay")
    @classmethod
    def validate_finite(cls, v: float) -> float:
        """Reject infinite and NaN delays."""
        if v != v or v == float("inf"):
            raise ValueError("Delay must be a finite number")
        return v

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "ReconnectPolicy":
        if self.max_delay < self.delay:
            raise ValueError("max_delay must be greater than or equal to delay")
        return self

    def delay_for(self, attempt: int) -> float:
        """Return the delay before the given attempt (1-based)."""
        delay = self.delay * (self.backoff ** max(attempt - 1, 0))
        return min(delay, self.max_delay)

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Decide whether attempt number ``attempt`` (1-based) may run.

        Args:
            attempt: Attempt about to be made
            error: Error from the previous attempt, if any

        Returns:
            True if another attempt is allowed
        """
        if self.max_attempts is not None and attempt > self.max_attempts:
            return False
        if isinstance(error, AuthenticationError) and not self.retry_auth_failures:
            return False
        return True
