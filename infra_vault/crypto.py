"""Cryptographic primitives for secret envelopes.

Key hierarchy:
    Master secret (operator configured, process-wide)
        └── PBKDF2-HMAC-SHA256 with a fresh per-secret salt
                └── 256-bit key encrypting one secret value (AES-256-GCM)

The GCM tag is kept as its own field rather than appended to the ciphertext.
"""

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import TamperError, ValidationError

NONCE_SIZE = 12  # 96 bits, standard for AES-GCM
TAG_SIZE = 16  # 128-bit GCM authentication tag
KEY_SIZE = 32  # 256 bits for AES-256
SALT_SIZE = 32  # 256-bit per-secret salt
PBKDF2_ITERATIONS = 100_000
MIN_PBKDF2_ITERATIONS = 10_000


def derive_key(
    master_secret: bytes, salt: bytes, iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """Derive a 256-bit key from the master secret using PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(master_secret)


class KeyDeriver:
    """Derives per-secret keys from a master secret fixed at construction.

    The master secret is read-only for the lifetime of the instance, so one
    deriver can be shared by any number of concurrent encrypt/decrypt calls.
    """

    __slots__ = ("_master_secret", "_iterations")

    def __init__(self, master_secret: bytes | str, iterations: int = PBKDF2_ITERATIONS):
        if isinstance(master_secret, str):
            master_secret = master_secret.encode("utf-8")
        if not master_secret:
            raise ValidationError("Master secret must be set and non-empty")
        if iterations < MIN_PBKDF2_ITERATIONS:
            raise ValidationError(
                f"KDF iteration count must be at least {MIN_PBKDF2_ITERATIONS}, "
                f"got {iterations}"
            )
        object.__setattr__(self, "_master_secret", master_secret)
        object.__setattr__(self, "_iterations", iterations)

    def __setattr__(self, name, value):
        raise AttributeError("KeyDeriver is immutable")

    def __repr__(self) -> str:
        return f"KeyDeriver(iterations={self._iterations}, master_secret=<redacted>)"

    @property
    def iterations(self) -> int:
        return self._iterations

    def derive(self, salt: bytes) -> bytes:
        return derive_key(self._master_secret, salt, self._iterations)


def generate_salt() -> bytes:
    """Generate a random per-secret salt."""
    return os.urandom(SALT_SIZE)


def encrypt(
    key: bytes, plaintext: bytes, associated_data: bytes | None = None
) -> tuple[bytes, bytes, bytes]:
    """Encrypt plaintext with AES-256-GCM under a freshly generated nonce.

    Returns:
        Tuple of (ciphertext, nonce, auth_tag).
    """
    nonce = os.urandom(NONCE_SIZE)
    aesgcm = AESGCM(key)
    sealed = aesgcm.encrypt(nonce, plaintext, associated_data)
    return sealed[:-TAG_SIZE], nonce, sealed[-TAG_SIZE:]


def decrypt(
    key: bytes,
    ciphertext: bytes,
    nonce: bytes,
    auth_tag: bytes,
    associated_data: bytes | None = None,
) -> bytes:
    """Decrypt ciphertext with AES-256-GCM, verifying the tag first.

    Raises:
        TamperError: If authentication fails (wrong key, tampered ciphertext,
            nonce or tag, or mismatched associated data).
        ValueError: If the key is not a 256-bit key.
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes")
    if len(nonce) != NONCE_SIZE or len(auth_tag) != TAG_SIZE:
        raise TamperError("Envelope parameters have invalid lengths")
    aesgcm = AESGCM(key)
    try:
        return aesgcm.decrypt(nonce, ciphertext + auth_tag, associated_data)
    except InvalidTag:
        raise TamperError("Authentication tag verification failed") from None


def generate_random_secret(length: int = 32) -> str:
    """Generate a base64-encoded string of ``length`` random bytes."""
    if length < 1:
        raise ValidationError("Secret length must be positive")
    return base64.b64encode(os.urandom(length)).decode("ascii")
