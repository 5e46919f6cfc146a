"""
Utility for encrypting and decrypting product database credentials at rest.

Stored secrets use the "<hex-iv>:<hex-ciphertext>" format written by the
original admin backend, so existing rows stay readable.
"""
import os
import hashlib
from typing import NamedTuple, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from dotenv import load_dotenv
from loguru import logger

# Load environment variables
load_dotenv()

# Fixed application-wide salt for key derivation
SALT = b"product-db-encryption-salt"
DEFAULT_KEY_SEED = "default-key-change-in-production"
KEY_LENGTH = 32
IV_LENGTH = 16

# scrypt cost parameters (N, r, p)
SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1

# Prefix of JWT-shaped service keys saved before encryption was introduced
PLAINTEXT_TOKEN_PREFIX = "eyJ"


def resolve_encryption_secret() -> str:
    """
    Pick the secret used for key derivation.

    Order: DB_ENCRYPTION_KEY, then SUPABASE_SERVICE_ROLE_KEY, then a hashed
    default. Each candidate must be at least 32 characters and only its first
    32 characters are used.

    Returns:
        str: 32-character secret
    """
    env_key = os.getenv("DB_ENCRYPTION_KEY")
    if env_key and len(env_key) >= KEY_LENGTH:
        return env_key[:KEY_LENGTH]

    service_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if service_key and len(service_key) >= KEY_LENGTH:
        return service_key[:KEY_LENGTH]

    logger.warning(
        "⚠️ Using default encryption key. Set DB_ENCRYPTION_KEY in environment for production!"
    )
    return hashlib.sha256(DEFAULT_KEY_SEED.encode()).hexdigest()[:KEY_LENGTH]


class DecryptResult(NamedTuple):
    """Outcome of a decrypt attempt. `decrypted` is False when the input was passed through."""

    value: Optional[str]
    decrypted: bool


class CredentialCipher:
    """Helper class for encrypting and decrypting stored credentials."""

    def __init__(self, secret: Optional[str] = None):
        """
        Initialize with an explicit secret or resolve one from the environment.

        Args:
            secret (str, optional): Secret for key derivation. If not provided,
                                    it is resolved by resolve_encryption_secret().
        """
        self.secret = secret or resolve_encryption_secret()

    def _derive_key(self) -> bytes:
        """
        Derive the AES-256 key from the secret using scrypt.

        The key is derived again on every call.

        Returns:
            bytes: 32-byte encryption key
        """
        kdf = Scrypt(salt=SALT, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
        return kdf.derive(self.secret.encode())

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """
        Encrypt a credential using AES-256-CBC.

        Args:
            plaintext (str): Credential to encrypt

        Returns:
            str: "<hex-iv>:<hex-ciphertext>", or None for empty input
        """
        if not plaintext:
            return None

        try:
            iv = os.urandom(IV_LENGTH)
            key = self._derive_key()

            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

            encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except Exception as e:
            logger.error(f"Encryption error: {str(e)}")
            raise ValueError("Failed to encrypt data") from e

        return f"{iv.hex()}:{ciphertext.hex()}"

    def try_decrypt(self, encrypted: Optional[str]) -> DecryptResult:
        """
        Decrypt a stored credential, passing through anything that is not ciphertext.

        Args:
            encrypted (str): Value in "<hex-iv>:<hex-ciphertext>" format, or legacy plaintext

        Returns:
            DecryptResult: the plaintext and whether decryption actually happened
        """
        if not encrypted:
            return DecryptResult(None, False)

        parts = encrypted.split(":")
        if len(parts) != 2:
            if not encrypted.startswith(PLAINTEXT_TOKEN_PREFIX):
                logger.warning("⚠️ Attempting to decrypt text that may not be encrypted")
            return DecryptResult(encrypted, False)

        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
            key = self._derive_key()

            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except Exception as e:
            logger.warning(
                f"⚠️ Decryption failed, returning text as-is (may be plaintext): {str(e)}"
            )
            return DecryptResult(encrypted, False)

        return DecryptResult(plaintext, True)

    def decrypt(self, encrypted: Optional[str]) -> Optional[str]:
        """
        Decrypt a stored credential.

        Never raises: values that cannot be decrypted are returned unchanged, so
        callers must check that the result actually works.

        Args:
            encrypted (str): Encrypted credential

        Returns:
            str: Decrypted credential, or the input unchanged
        """
        return self.try_decrypt(encrypted).value
