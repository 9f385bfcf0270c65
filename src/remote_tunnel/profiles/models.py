"""Persisted profile and preset models."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PortMapping(BaseModel):
    """Remote port to local port pair stored in a profile."""

    model_config = ConfigDict(extra="forbid")

    remote: int = Field(ge=1, le=65535, description="Port on the remote host")
    local: int = Field(ge=1, le=65535, description="Local port to listen on")


class PresetService(BaseModel):
    """Built-in default port pair for a common service."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(min_length=1, description="Display name")
    remote: int = Field(ge=1, le=65535, description="Default remote port")
    local: int = Field(ge=1, le=65535, description="Default local port")


class ServerProfile(BaseModel):
    """Saved connection settings for one remote host."""

    model_config = ConfigDict(
        str_strip_whitespace=True, populate_by_name=True, extra="ignore"
    )

    host: str = Field(min_length=1, description="SSH server hostname")
    port: int = Field(default=22, ge=1, le=65535, description="SSH server port")
    user: str = Field(min_length=1, description="SSH user name")
    password: str | None = Field(
        default=None,
        repr=False,
        description="Vault-encrypted password (ivHex:cipherHex) or legacy plaintext",
    )
    jump_host: str | None = Field(
        default=None, alias="jumpHost", description="Jump host (not used yet)"
    )
    ports: dict[str, PortMapping] = Field(
        default_factory=dict, description="Service name to port mapping"
    )

    @field_validator("port", mode="before")
    @classmethod
    def default_port(cls, v: object) -> object:
        """Treat a missing or empty stored port as 22."""
        if v is None or v == "":
            return 22
        return v

    @field_validator("jump_host", mode="before")
    @classmethod
    def empty_jump_host(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class StoreData(BaseModel):
    """Whole profile store document."""

    model_config = ConfigDict(extra="ignore")

    servers: dict[str, ServerProfile] = Field(default_factory=dict)
    presets: dict[str, PresetService] = Field(default_factory=dict)

    def to_document(self) -> dict[str, object]:
        """Serialize with the on-disk key names (``jumpHost``), omitting unset values."""
        return self.model_dump(by_alias=True, exclude_none=True)
