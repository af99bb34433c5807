"""
Content identity and geometry serialization.

Two identifiers per codepoint, both UUID-shaped renderings of the first 16
bytes of a digest (hyphens after bytes 4, 6, 8, 10, no RFC-4122
version/variant fix-up):

    position identity  = H(32 bytes: four little-endian float64)
    codepoint identity = H(4 bytes: little-endian uint32)

Identical positions produce identical position identities. That is the
content-addressing contract: the store deduplicates on it.

Geometry is serialized as EWKB PointZM (37 bytes):

    01 | 01 00 00 C0 | X <f8 | Y <f8 | Z <f8 | W <f8
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence, Union
import hashlib
import struct
import uuid

import numpy as np

from .constants import EWKB_LITTLE_ENDIAN, EWKB_POINT_ZM, IDENTITY_BYTES, MAX_CODEPOINT

_POSITION = struct.Struct('<4d')
_CODEPOINT = struct.Struct('<I')
_EWKB_HEADER = struct.pack('<BI', EWKB_LITTLE_ENDIAN, EWKB_POINT_ZM)

Position = Union[np.ndarray, Sequence[float]]


@dataclass(frozen=True)
class IdentityConfig:
    """
    Hash primitive used for content identities.

    Attributes:
        algorithm: Any hashlib algorithm with a digest of at least 16 bytes
    """
    algorithm: str = "blake2b"

    def __post_init__(self):
        if self.algorithm not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hash algorithm: {self.algorithm}")
        if hashlib.new(self.algorithm).digest_size < IDENTITY_BYTES:
            raise ValueError(f"{self.algorithm} digest is shorter than {IDENTITY_BYTES} bytes")

    def digest(self, data: bytes) -> bytes:
        return hashlib.new(self.algorithm, data).digest()


DEFAULT_IDENTITY_CONFIG = IdentityConfig()


def position_bytes(position: Position) -> bytes:
    """Raw 32-byte little-endian encoding of the four components."""
    return _POSITION.pack(*(float(c) for c in position))


def format_identity(digest: bytes) -> str:
    """First 16 digest bytes as lowercase hyphenated hex (8-4-4-4-12)."""
    if len(digest) < IDENTITY_BYTES:
        raise ValueError(f"Digest too short: {len(digest)} bytes")
    return str(uuid.UUID(bytes=bytes(digest[:IDENTITY_BYTES])))


def hash_position(position: Position, config: IdentityConfig = DEFAULT_IDENTITY_CONFIG) -> bytes:
    return config.digest(position_bytes(position))


def hash_codepoint(cp: int, config: IdentityConfig = DEFAULT_IDENTITY_CONFIG) -> bytes:
    if not 0 <= cp <= MAX_CODEPOINT:
        raise ValueError(f"Codepoint out of range: {cp:#x}")
    return config.digest(_CODEPOINT.pack(cp))


def position_identity(position: Position, config: IdentityConfig = DEFAULT_IDENTITY_CONFIG) -> str:
    return format_identity(hash_position(position, config))


def codepoint_identity(cp: int, config: IdentityConfig = DEFAULT_IDENTITY_CONFIG) -> str:
    return format_identity(hash_codepoint(cp, config))


# =============================================================================
# Geometry serialization
# =============================================================================

def encode_geometry(position: Position) -> bytes:
    """EWKB PointZM: byte order marker, type tag, X Y Z W."""
    return _EWKB_HEADER + position_bytes(position)


def decode_geometry(data: bytes) -> tuple:
    if len(data) != len(_EWKB_HEADER) + _POSITION.size or data[:5] != _EWKB_HEADER:
        raise ValueError("Not a little-endian EWKB PointZM")
    return _POSITION.unpack(data[5:])


def geometry_hex(position: Position) -> str:
    r"""Text-protocol form: `\x` followed by the hex bytes."""
    return "\\x" + encode_geometry(position).hex()
