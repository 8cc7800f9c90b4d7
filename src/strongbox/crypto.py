"""
crypto.py — Strongbox Crypto Envelope

Authenticated symmetric encryption of opaque byte payloads under a key
derived from the master secret.

  - Key derivation: scrypt (memory hard), parameters carried per vault
  - Sealing: ChaCha20-Poly1305, 256-bit key, 96-bit nonce
  - A fresh random nonce is generated for every write and stored next to
    the ciphertext; the salt is stored in the clear, it is not secret

Any authentication failure surfaces as IntegrityError. The underlying
InvalidTag never escapes and no plaintext is released.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import ConfigurationError, IntegrityError

KEY_LENGTH = 32
SALT_LENGTH = 16
NONCE_LENGTH = 12

# Largest scrypt cost accepted anywhere, headers included: 1 GiB of memory
# (128 * r * n bytes) and n * r * p no more than 2**20 * 8 * 4.
MAX_KDF_MEMORY = 1 << 30
MAX_KDF_WORK = (1 << 20) * 8 * 4


@dataclass(frozen=True)
class KdfParams:
    """scrypt cost parameters. n = 2 ** log2_n."""
    log2_n: int = 15
    r: int = 8
    p: int = 1

    @property
    def n(self) -> int:
        return 1 << self.log2_n

    @property
    def memory(self) -> int:
        """Bytes scrypt allocates for these parameters."""
        return 128 * self.r * self.n

    @property
    def work(self) -> int:
        return self.n * self.r * self.p

    def validate(self, max_memory: int = MAX_KDF_MEMORY, max_work: int = MAX_KDF_WORK) -> "KdfParams":
        # Header stores each parameter in one byte.
        if not 1 <= self.log2_n <= 30:
            raise ConfigurationError(f"scrypt log2_n must be in 1..30, got {self.log2_n}")
        if not 1 <= self.r <= 255:
            raise ConfigurationError(f"scrypt r must be in 1..255, got {self.r}")
        if not 1 <= self.p <= 255:
            raise ConfigurationError(f"scrypt p must be in 1..255, got {self.p}")
        if self.memory > max_memory or self.work > max_work:
            raise ConfigurationError(
                f"scrypt cost {self.to_dict()} exceeds the limit "
                f"(memory {max_memory} bytes, work {max_work})"
            )
        return self

    def to_dict(self) -> Dict[str, int]:
        return {"log2_n": self.log2_n, "r": self.r, "p": self.p}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KdfParams":
        try:
            params = cls(log2_n=int(data["log2_n"]), r=int(data["r"]), p=int(data["p"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid kdf parameters: {data!r}") from exc
        return params.validate()


def generate_salt() -> bytes:
    return os.urandom(SALT_LENGTH)


def generate_nonce() -> bytes:
    return os.urandom(NONCE_LENGTH)


def derive_key(master_secret: str, salt: bytes, params: KdfParams) -> bytes:
    """Derive the 256-bit vault key from the master secret and per-vault salt."""
    params.validate()
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=params.n, r=params.r, p=params.p)
    try:
        return kdf.derive(master_secret.encode("utf-8"))
    except MemoryError as exc:
        raise IntegrityError(f"not enough memory for scrypt parameters {params.to_dict()}") from exc


def seal(plaintext: bytes, key: bytes, nonce: bytes, associated_data: bytes = b"") -> bytes:
    """Encrypt and authenticate. Returns ciphertext with the 16-byte tag appended."""
    return ChaCha20Poly1305(key).encrypt(nonce, plaintext, associated_data)


def unseal(sealed: bytes, key: bytes, nonce: bytes, associated_data: bytes = b"") -> bytes:
    """
    Verify and decrypt the output of seal().

    Raises:
        IntegrityError: on any tag mismatch, wrong key, nonce or associated data.
    """
    if len(key) != KEY_LENGTH or len(nonce) != NONCE_LENGTH:
        raise IntegrityError("key or nonce has the wrong length")
    try:
        return ChaCha20Poly1305(key).decrypt(nonce, sealed, associated_data)
    except InvalidTag as exc:
        raise IntegrityError() from exc


class VaultKey:
    """
    Derived key material for one vault.

    The primary key belongs to the vault's own salt. Snapshots written by
    another copy of the book may carry a different salt or cost, so the
    master secret is kept to derive those on demand; results are cached per
    (salt, params).
    """

    def __init__(self, master_secret: str, salt: bytes, params: KdfParams):
        self._master_secret = master_secret
        self.salt = salt
        self.params = params.validate()
        self._cache: Dict[Tuple[bytes, KdfParams], bytes] = {}
        self.key = self.for_header(salt, params)

    @classmethod
    def generate(cls, master_secret: str, params: KdfParams) -> "VaultKey":
        """New key with a fresh random salt, for a vault being created."""
        return cls(master_secret, generate_salt(), params)

    def for_header(self, salt: bytes, params: KdfParams) -> bytes:
        cache_key = (salt, params)
        if cache_key not in self._cache:
            self._cache[cache_key] = derive_key(self._master_secret, salt, params)
        return self._cache[cache_key]

    def __repr__(self) -> str:
        return f"VaultKey(key=****, salt={self.salt.hex()}, params={self.params})"
