"""SHA3-256 digests of identifiers stored on-chain.

The on-chain ``popchain_utils::hash_email`` computes the same SHA3-256 over
the raw UTF-8 bytes, so no normalization (case folding, trimming) happens
here: callers trim input before hashing.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import List, Union

DIGEST_SIZE = 32


@dataclass(frozen=True)
class Digest:
    """Fixed-length digest with byte and hex views."""
    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != DIGEST_SIZE:
            raise ValueError(f"digest must be {DIGEST_SIZE} bytes, got {len(self.raw)}")

    @property
    def hex(self) -> str:
        return self.raw.hex()

    def as_list(self) -> List[int]:
        """Byte values, the JSON form of a Move ``vector<u8>``."""
        return list(self.raw)

    @classmethod
    def from_hex(cls, value: str) -> "Digest":
        return cls(bytes.fromhex(value.removeprefix("0x")))


def digest(value: Union[bytes, str]) -> Digest:
    """SHA3-256 of ``value``; text is encoded as UTF-8."""
    data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
    return Digest(hashlib.sha3_256(data).digest())


def hash_email(email: str) -> str:
    """Hex digest of an email, as stored in the off-chain ``email_hash`` column."""
    return digest(email).hex


def hash_email_bytes(email: str) -> bytes:
    return digest(email).raw


def hash_url_bytes(url: str) -> bytes:
    return digest(url).raw
