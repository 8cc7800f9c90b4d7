"""
transfer.py — Provider transfer strings

A transfer string carries one provider configuration to another device,
e.g. pasted into a terminal:

    SBX_<base64( major:u8 | minor:u8 | crc32:u32 | canonical JSON config )>

The checksum catches copy/paste damage; the major version guards against
reading a string from an incompatible release.
"""

from __future__ import annotations
import base64
import binascii
import json
import struct
import zlib

from .canonical_json import canonical_bytes
from .errors import ConfigurationError, TransferStringError
from .providers.base import ProviderConfig

PREFIX = "SBX_"
VERSION_MAJOR = 1
VERSION_MINOR = 0

_META = struct.Struct(">BBI")


def encode(config: ProviderConfig) -> str:
    payload = canonical_bytes(config.to_dict())
    meta = _META.pack(VERSION_MAJOR, VERSION_MINOR, zlib.crc32(payload))
    return PREFIX + base64.urlsafe_b64encode(meta + payload).decode("ascii")


def decode(text: str) -> ProviderConfig:
    text = text.strip()
    if not text.startswith(PREFIX):
        raise TransferStringError("missing SBX_ prefix")
    try:
        raw = base64.urlsafe_b64decode(text[len(PREFIX):].encode("ascii"))
    except (binascii.Error, ValueError) as exc:
        raise TransferStringError("not valid base64") from exc
    if len(raw) < _META.size:
        raise TransferStringError("truncated")

    major, minor, crc = _META.unpack_from(raw)
    payload = raw[_META.size:]
    if major != VERSION_MAJOR:
        raise TransferStringError(
            f"written by format {major}.{minor}, this build reads {VERSION_MAJOR}.x"
        )
    if zlib.crc32(payload) != crc:
        raise TransferStringError("checksum mismatch")
    try:
        return ProviderConfig.from_dict(json.loads(payload.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, ConfigurationError) as exc:
        raise TransferStringError("payload is not a provider configuration") from exc
