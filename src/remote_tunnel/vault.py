"""Encrypted credential storage backed by a per-user master key file."""

import os
import secrets
from enum import Enum
from pathlib import Path

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import BaseModel, ConfigDict

from .common.logging import get_logger

logger = get_logger(__name__)

KEY_BYTES = 32
IV_BYTES = 16
# Matches the parameters existing profile stores were written with
KDF_SALT = b"salt"
KDF_N = 2**14
KDF_R = 8
KDF_P = 1


class SecretKind(str, Enum):
    """How a stored secret was interpreted."""

    DECRYPTED = "decrypted"
    LEGACY_PLAINTEXT = "legacy_plaintext"


class DecryptedSecret(BaseModel):
    """Result of decrypting a stored secret."""

    model_config = ConfigDict(frozen=True)

    kind: SecretKind
    value: str

    @property
    def is_legacy(self) -> bool:
        return self.kind == SecretKind.LEGACY_PLAINTEXT

    def __repr__(self) -> str:
        return f"DecryptedSecret(kind={self.kind.value!r}, value='***')"

    __str__ = __repr__


class CredentialVault:
    """Encrypts and decrypts secrets with AES-256-CBC.

    The master key material lives in ``key_path`` as hex text, readable and
    writable by the owner only. The cipher key is derived from it with
    scrypt. Encrypted values are encoded as ``ivHex:cipherHex``.

    If the key file is missing or unreadable a new one is generated, which
    makes every previously encrypted secret undecryptable. Such secrets then
    come back from :meth:`decrypt` tagged as legacy plaintext.
    """

    def __init__(self, key_path: str | Path):
        self.key_path = Path(key_path)
        self._key: bytes | None = None

    def ensure_key(self) -> bytes:
        """Load or generate the master key and return the derived cipher key."""
        if self._key is not None:
            return self._key

        material = self._read_key_material()
        if material is None:
            material = self._generate_key_material()

        self._key = self._derive_key(material)
        return self._key

    def _read_key_material(self) -> str | None:
        if not self.key_path.exists():
            return None

        try:
            material = self.key_path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(
                "Master key unreadable, generating a new one",
                key_path=str(self.key_path),
                error=str(e),
            )
            return None

        try:
            bytes.fromhex(material)
        except ValueError:
            material = ""

        if not material:
            logger.warning(
                "Master key corrupt, generating a new one; saved passwords must be re-entered",
                key_path=str(self.key_path),
            )
            return None

        return material

    def _generate_key_material(self) -> str:
        material = secrets.token_hex(KEY_BYTES)
        self.key_path.parent.mkdir(parents=True, exist_ok=True)

        fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as key_file:
            key_file.write(material)
        os.chmod(self.key_path, 0o600)

        logger.info("Generated new master key", key_path=str(self.key_path))
        return material

    @staticmethod
    def _derive_key(material: str) -> bytes:
        kdf = Scrypt(salt=KDF_SALT, length=KEY_BYTES, n=KDF_N, r=KDF_R, p=KDF_P)
        return kdf.derive(material.encode("utf-8"))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret with a fresh random IV.

        Args:
            plaintext: Secret to encrypt

        Returns:
            ``ivHex:cipherHex`` string
        """
        key = self.ensure_key()
        iv = os.urandom(IV_BYTES)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, secret: str) -> DecryptedSecret:
        """Decrypt a stored secret.

        Input that is not a well-formed ``iv:cipher`` pair, or that does not
        decrypt under the current key, is returned unchanged and tagged
        :attr:`SecretKind.LEGACY_PLAINTEXT`. This never raises for malformed
        input.

        Args:
            secret: Stored secret

        Returns:
            Tagged decryption result
        """
        parts = secret.split(":")
        if len(parts) != 2:
            return DecryptedSecret(kind=SecretKind.LEGACY_PLAINTEXT, value=secret)

        key = self.ensure_key()
        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])

            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            value = plaintext.decode("utf-8")
        except ValueError:
            # Covers bad hex, wrong IV size, partial blocks, bad padding and
            # undecodable bytes
            return DecryptedSecret(kind=SecretKind.LEGACY_PLAINTEXT, value=secret)

        return DecryptedSecret(kind=SecretKind.DECRYPTED, value=value)

    def reveal(self, secret: str) -> str:
        """Decrypt a secret, warning when it was stored as plaintext."""
        result = self.decrypt(secret)
        if result.is_legacy:
            logger.warning(
                "Stored password is not encrypted; save the profile again to encrypt it"
            )
        return result.value

    @staticmethod
    def is_encrypted(secret: str) -> bool:
        """Return True if ``secret`` has the ``ivHex:cipherHex`` shape."""
        parts = secret.split(":")
        if len(parts) != 2 or not all(parts):
            return False
        try:
            iv = bytes.fromhex(parts[0])
            bytes.fromhex(parts[1])
        except ValueError:
            return False
        return len(iv) == IV_BYTES
