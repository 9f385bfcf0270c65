"""Tests for the credential vault."""

import stat

from remote_tunnel.vault import CredentialVault, DecryptedSecret, SecretKind


class TestCredentialVault:
    """Test encryption, key management and legacy fallback."""

    def test_encrypt_produces_iv_and_ciphertext(self, vault):
        """Encrypted values are ivHex:cipherHex with a 16-byte IV."""
        encrypted = vault.encrypt("hunter2")

        iv_hex, cipher_hex = encrypted.split(":")
        assert len(bytes.fromhex(iv_hex)) == 16
        assert len(bytes.fromhex(cipher_hex)) % 16 == 0
        assert "hunter2" not in encrypted

    def test_decrypt_returns_original(self, vault):
        result = vault.decrypt(vault.encrypt("p@ss:word with spaces"))

        assert result.kind == SecretKind.DECRYPTED
        assert result.value == "p@ss:word with spaces"
        assert not result.is_legacy

    def test_same_plaintext_uses_fresh_iv(self, vault):
        assert vault.encrypt("same") != vault.encrypt("same")

    def test_key_file_created_owner_only(self, vault, settings):
        """The master key file is generated on first use with mode 0600."""
        assert not settings.key_path.exists()

        vault.encrypt("x")

        assert settings.key_path.exists()
        mode = stat.S_IMODE(settings.key_path.stat().st_mode)
        assert mode == 0o600
        assert len(bytes.fromhex(settings.key_path.read_text())) == 32

    def test_key_shared_between_instances(self, vault, settings):
        """A second vault on the same key file decrypts the first one's output."""
        encrypted = vault.encrypt("shared")

        other = CredentialVault(settings.key_path)
        assert other.decrypt(encrypted).value == "shared"

    def test_plaintext_is_legacy(self, vault):
        result = vault.decrypt("hunter2")

        assert result.kind == SecretKind.LEGACY_PLAINTEXT
        assert result.value == "hunter2"

    def test_malformed_pairs_are_legacy(self, vault):
        """Anything that does not decrypt comes back unchanged, never raises."""
        for value in ["abc:def", "a:b:c", "00ff:", ":", "00" * 16 + ":" + "ab" * 5]:
            result = vault.decrypt(value)
            assert result.is_legacy
            assert result.value == value

    def test_corrupt_key_file_regenerated(self, vault, settings):
        """A corrupt key is replaced, leaving old secrets undecryptable."""
        encrypted = vault.encrypt("before")
        settings.key_path.write_text("not hex at all")

        fresh = CredentialVault(settings.key_path)
        result = fresh.decrypt(encrypted)

        assert result.is_legacy
        assert result.value == encrypted
        assert bytes.fromhex(settings.key_path.read_text())

    def test_reveal_returns_value(self, vault):
        assert vault.reveal(vault.encrypt("abc")) == "abc"
        assert vault.reveal("plain") == "plain"

    def test_is_encrypted(self, vault):
        assert CredentialVault.is_encrypted(vault.encrypt("x"))
        assert not CredentialVault.is_encrypted("plain")
        assert not CredentialVault.is_encrypted("abcd:ef")
        assert not CredentialVault.is_encrypted("zz:zz")

    def test_secret_repr_masks_value(self):
        secret = DecryptedSecret(kind=SecretKind.DECRYPTED, value="topsecret")

        assert "topsecret" not in repr(secret)
        assert "topsecret" not in str(secret)
