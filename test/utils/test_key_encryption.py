import os
import hashlib
import pytest
from unittest import mock

from app.utils.key_encryption import (
    CredentialCipher,
    DEFAULT_KEY_SEED,
    resolve_encryption_secret,
)


class TestCredentialCipher:
    """Test encrypting and decrypting stored credentials"""

    def test_round_trip(self, cipher):
        encrypted = cipher.encrypt("service-role-key")

        iv_hex, ct_hex = encrypted.split(":")
        assert len(iv_hex) == 32
        assert len(ct_hex) % 32 == 0
        assert cipher.decrypt(encrypted) == "service-role-key"

    def test_encrypt_uses_random_iv(self, cipher):
        first = cipher.encrypt("same-value")
        second = cipher.encrypt("same-value")

        assert first != second
        assert cipher.decrypt(first) == cipher.decrypt(second) == "same-value"

    def test_empty_values(self, cipher):
        assert cipher.encrypt("") is None
        assert cipher.encrypt(None) is None
        assert cipher.decrypt("") is None
        assert cipher.decrypt(None) is None

    def test_jwt_shaped_plaintext_passes_through(self, cipher):
        token = "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoic2VydmljZV9yb2xlIn0.sig"

        result = cipher.try_decrypt(token)

        assert result.value == token
        assert result.decrypted is False

    def test_legacy_plaintext_passes_through(self, cipher):
        assert cipher.decrypt("plain-legacy-secret") == "plain-legacy-secret"

    def test_wrong_key_returns_input(self, cipher):
        encrypted = cipher.encrypt("service-role-key")
        other = CredentialCipher(secret="f" * 32)

        result = other.try_decrypt(encrypted)

        assert result.decrypted is False
        assert result.value == encrypted

    def test_malformed_hex_returns_input(self, cipher):
        assert cipher.decrypt("zz:not-hex") == "zz:not-hex"

    def test_try_decrypt_reports_success(self, cipher):
        result = cipher.try_decrypt(cipher.encrypt("secret"))

        assert result.value == "secret"
        assert result.decrypted is True


class TestResolveEncryptionSecret:
    """Test the secret fallback chain"""

    def test_prefers_db_encryption_key(self):
        env = {"DB_ENCRYPTION_KEY": "k" * 40, "SUPABASE_SERVICE_ROLE_KEY": "s" * 40}
        with mock.patch.dict(os.environ, env):
            assert resolve_encryption_secret() == "k" * 32

    def test_short_key_falls_back_to_service_role_key(self):
        env = {"DB_ENCRYPTION_KEY": "short", "SUPABASE_SERVICE_ROLE_KEY": "s" * 40}
        with mock.patch.dict(os.environ, env):
            assert resolve_encryption_secret() == "s" * 32

    def test_default_key(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            secret = resolve_encryption_secret()

        assert secret == hashlib.sha256(DEFAULT_KEY_SEED.encode()).hexdigest()[:32]

    def test_ciphers_with_same_environment_agree(self):
        with mock.patch.dict(os.environ, {"DB_ENCRYPTION_KEY": "k" * 32}):
            first = CredentialCipher()
            second = CredentialCipher()

        assert second.decrypt(first.encrypt("value")) == "value"
