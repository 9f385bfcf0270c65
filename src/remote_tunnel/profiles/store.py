"""JSON-backed profile store and tunnel spec resolution."""

import json
from collections.abc import Iterable
from pathlib import Path

from pydantic import SecretStr, ValidationError

from ..common.exceptions import ConfigError
from ..common.logging import get_logger
from ..tunnels.models import ConnectionParams, TunnelSpec
from ..vault import CredentialVault
from .models import PortMapping, PresetService, ServerProfile, StoreData
from .presets import default_presets

logger = get_logger(__name__)


def parse_target(target: str) -> tuple[str, str | None]:
    """Split a ``server`` or ``server:service`` target.

    Args:
        target: Connection target as typed by the user

    Returns:
        ``(server, service)`` with ``service`` None when absent

    Raises:
        ConfigError: If either part is empty
    """
    target = target.strip()
    if not target:
        raise ConfigError("Connection target cannot be empty")

    if ":" not in target:
        return target, None

    server, _, service = target.partition(":")
    server, service = server.strip(), service.strip()
    if not server or not service:
        raise ConfigError(f"Invalid target '{target}', expected <server>:<service>")
    return server, service


class ProfileStore:
    """Loads and saves server profiles and the preset catalog.

    The document keeps the ``{"servers": {...}, "presets": {...}}`` layout.
    Passwords are written only in vault-encrypted form.
    """

    def __init__(self, path: str | Path, vault: CredentialVault):
        self.path = Path(path)
        self.vault = vault

    def load(self) -> StoreData:
        """Read the store, falling back to the built-in presets.

        Raises:
            ConfigError: If the file exists but is unreadable or invalid
        """
        if not self.path.exists():
            return StoreData(presets=default_presets())

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read profile store {self.path}: {e}") from e

        if not isinstance(document, dict):
            raise ConfigError(f"Profile store {self.path} must contain a JSON object")

        try:
            data = StoreData.model_validate(document)
        except ValidationError as e:
            raise ConfigError(f"Invalid profile store {self.path}: {e}") from e

        if "presets" not in document:
            data.presets.update(default_presets())
        return data

    def save(self, data: StoreData) -> None:
        """Write the whole store, creating the directory if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(data.to_document(), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        logger.info("Profile store saved", path=str(self.path), servers=len(data.servers))

    def get_profile(self, name: str) -> ServerProfile:
        """Return the named profile.

        Raises:
            ConfigError: If no such profile exists
        """
        profile = self.load().servers.get(name)
        if profile is None:
            raise ConfigError(f"No server profile named '{name}'")
        return profile

    def add_profile(
        self, name: str, profile: ServerProfile, password: str | None = None
    ) -> ServerProfile:
        """Save a profile, replacing any profile of the same name.

        Args:
            name: Profile name
            profile: Profile to save
            password: Plaintext password to encrypt into the profile

        Returns:
            The profile as stored
        """
        name = name.strip()
        if not name:
            raise ConfigError("Profile name cannot be empty")

        if password:
            profile = profile.model_copy(update={"password": self.vault.encrypt(password)})
        elif profile.password and not self.vault.is_encrypted(profile.password):
            profile = profile.model_copy(
                update={"password": self.vault.encrypt(profile.password)}
            )

        data = self.load()
        if name in data.servers:
            logger.info("Overwriting server profile", profile=name)
        data.servers[name] = profile
        self.save(data)
        return profile

    def remove_profile(self, name: str) -> ServerProfile:
        """Delete a profile.

        Raises:
            ConfigError: If no such profile exists
        """
        data = self.load()
        profile = data.servers.pop(name, None)
        if profile is None:
            raise ConfigError(f"No server profile named '{name}'")
        self.save(data)
        return profile

    @staticmethod
    def _spec(
        service: str, mapping: PortMapping | PresetService, presets: dict[str, PresetService]
    ) -> TunnelSpec:
        preset = presets.get(service)
        return TunnelSpec(
            name=preset.name if preset else service,
            remote_port=mapping.remote,
            requested_local_port=mapping.local,
            service=service,
        )

    def resolve_specs(
        self, profile_name: str, only: Iterable[str] | None = None
    ) -> list[TunnelSpec]:
        """Build tunnel specs for a profile.

        A profile's own port mapping wins over a preset of the same name.

        Args:
            profile_name: Server profile to resolve
            only: Restrict to these services; services missing from the
                profile fall back to presets

        Returns:
            Tunnel specs in profile (or ``only``) order

        Raises:
            ConfigError: If the profile or a service is unknown, or nothing
                would be forwarded
        """
        data = self.load()
        profile = data.servers.get(profile_name)
        if profile is None:
            raise ConfigError(f"No server profile named '{profile_name}'")

        specs: list[TunnelSpec] = []
        if only is not None:
            for service in only:
                service = service.strip()
                if not service:
                    continue
                mapping: PortMapping | PresetService | None = profile.ports.get(service)
                if mapping is None:
                    mapping = data.presets.get(service)
                if mapping is None:
                    raise ConfigError(
                        f"Service '{service}' is neither mapped in '{profile_name}' nor a preset"
                    )
                specs.append(self._spec(service, mapping, data.presets))
        else:
            for service, mapping in profile.ports.items():
                specs.append(self._spec(service, mapping, data.presets))

        if not specs:
            raise ConfigError(f"Profile '{profile_name}' has no port mappings")
        return specs

    def resolve_preset(self, name: str) -> TunnelSpec:
        """Build the tunnel spec for a preset.

        Raises:
            ConfigError: If no such preset exists
        """
        presets = self.load().presets
        preset = presets.get(name)
        if preset is None:
            raise ConfigError(f"No preset named '{name}'")
        return self._spec(name, preset, presets)

    def connection_params(
        self,
        profile_name: str,
        password: str | None = None,
        auto_reconnect: bool = False,
        background: bool = False,
    ) -> ConnectionParams:
        """Build connection parameters from a saved profile.

        Args:
            profile_name: Server profile
            password: Password overriding the stored one
            auto_reconnect: Recreate the session when it drops
            background: Do not install interrupt handlers

        Returns:
            Connection parameters with the decrypted password

        Raises:
            ConfigError: If the profile is unknown or no password is available
        """
        profile = self.get_profile(profile_name)

        secret = password
        if secret is None and profile.password:
            result = self.vault.decrypt(profile.password)
            if result.is_legacy:
                logger.warning(
                    "Stored password is not encrypted; save the profile again to encrypt it",
                    profile=profile_name,
                )
            secret = result.value

        if not secret:
            raise ConfigError(
                f"No password stored for '{profile_name}'; supply one to connect"
            )

        return ConnectionParams(
            host=profile.host,
            port=profile.port,
            user=profile.user,
            password=SecretStr(secret),
            auto_reconnect=auto_reconnect,
            background=background,
            jump_host=profile.jump_host,
        )
