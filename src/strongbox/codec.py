"""
codec.py — Strongbox Vault Codec

Serializes a Book into a single encrypted container and back.

Container layout (big endian):

    offset  size  field
    0       4     magic b"SBX\\xd7"
    4       2     format version (u16)
    6       1     scrypt log2_n
    7       1     scrypt r
    8       1     scrypt p
    9       16    salt
    25      12    nonce
    37      ...   ChaCha20-Poly1305 ciphertext + tag

The whole header is passed as associated data, so changing any header byte
fails authentication just like changing the ciphertext does. The sealed
plaintext is the gzip-compressed canonical JSON of the Book.
"""

from __future__ import annotations
import gzip
import logging
import struct
import zlib
from dataclasses import dataclass
from typing import Union

from .book import Book
from .canonical_json import canonical_bytes, canonical_loads
from .crypto import KdfParams, VaultKey, generate_nonce, seal, unseal
from .errors import ConfigurationError, FormatVersionError, IntegrityError

logger = logging.getLogger(__name__)

MAGIC = b"SBX\xd7"
FORMAT_VERSION = 1
SUPPORTED_VERSIONS = frozenset({FORMAT_VERSION})

_HEADER = struct.Struct(">4sHBBB16s12s")
HEADER_SIZE = _HEADER.size
TAG_SIZE = 16


@dataclass(frozen=True)
class VaultHeader:
    version: int
    params: KdfParams
    salt: bytes
    nonce: bytes

    def pack(self) -> bytes:
        return _HEADER.pack(
            MAGIC, self.version, self.params.log2_n, self.params.r, self.params.p,
            self.salt, self.nonce,
        )


def read_header(data: bytes) -> VaultHeader:
    """
    Parse and check the clear-text header.

    Raises:
        IntegrityError: truncated data, wrong magic, or kdf parameters
            outside the accepted range (cost limits included).
        FormatVersionError: a version this build cannot read.
    """
    if len(data) < HEADER_SIZE + TAG_SIZE:
        raise IntegrityError(f"container truncated ({len(data)} bytes)")
    magic, version, log2_n, r, p, salt, nonce = _HEADER.unpack_from(data)
    if magic != MAGIC:
        raise IntegrityError("not a strongbox vault (bad magic)")
    if version not in SUPPORTED_VERSIONS:
        raise FormatVersionError(version, f"supported: {sorted(SUPPORTED_VERSIONS)}")
    try:
        params = KdfParams(log2_n=log2_n, r=r, p=p).validate()
    except ConfigurationError as exc:
        raise IntegrityError("header carries invalid kdf parameters") from exc
    return VaultHeader(version=version, params=params, salt=salt, nonce=nonce)


def encode(book: Book, key: VaultKey) -> bytes:
    """Canonical-serialize, compress and seal a Book under the vault key."""
    header = VaultHeader(
        version=FORMAT_VERSION, params=key.params, salt=key.salt, nonce=generate_nonce(),
    )
    header_bytes = header.pack()
    plaintext = gzip.compress(canonical_bytes(book.to_dict()), mtime=0)
    return header_bytes + seal(plaintext, key.key, header.nonce, header_bytes)


def decode(data: Union[bytes, bytearray], key: VaultKey) -> Book:
    """
    Authenticate and decrypt a container into a Book.

    Snapshots written by another copy of the book may use a different salt
    or cost; the matching key is derived from the same master secret.

    Raises:
        IntegrityError: tampering, wrong master secret, or malformed content.
        FormatVersionError: unknown container format version.
    """
    data = bytes(data)
    header = read_header(data)
    header_bytes = data[:HEADER_SIZE]
    derived = key.for_header(header.salt, header.params)
    plaintext = unseal(data[HEADER_SIZE:], derived, header.nonce, header_bytes)
    try:
        document = canonical_loads(gzip.decompress(plaintext))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError) as exc:
        # Authenticated but unreadable: a writer bug, never silently tolerated.
        logger.error("authenticated vault payload could not be parsed: %s", exc)
        raise IntegrityError("vault payload is not a valid book document") from exc
    return Book.from_dict(document)
