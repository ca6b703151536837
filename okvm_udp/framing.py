"""Wire format of a UDP shard datagram.

Layout (big endian): ``seq`` u64, ``data_k`` u8, ``parity_m`` u8, ``index`` u8,
``plain_len`` u32, ``shard_len`` u16, then ``shard_len`` payload bytes.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

_HEADER = struct.Struct(">QBBBIH")

HEADER_LEN = _HEADER.size
"""Fixed size of a shard header (17 bytes)."""

MAX_SHARD_PAYLOAD = 1400
"""Recommended maximum shard payload, kept under the path MTU."""


class FramingError(Exception):
    """A datagram could not be parsed as a shard."""


class TooShortError(FramingError):
    """The datagram is shorter than the header."""

    def __init__(self, length: int) -> None:
        super().__init__(f"datagram too short: {length} < {HEADER_LEN}")
        self.length = length


class BadHeaderError(FramingError):
    """``K`` is zero or ``index`` is out of range."""

    def __init__(self, k: int, m: int, index: int) -> None:
        super().__init__(f"invalid header: K={k} M={m} index={index}")
        self.k = k
        self.m = m
        self.index = index


class LenMismatchError(FramingError):
    """The announced shard length does not match the payload size."""

    def __init__(self, announced: int, actual: int) -> None:
        super().__init__(
            f"inconsistent shard_len: announced {announced}, remaining {actual}"
        )
        self.announced = announced
        self.actual = actual


@dataclass(frozen=True)
class ShardHeader:
    """Parsed header of one shard."""

    seq: int
    data_shards: int
    parity_shards: int
    index: int
    plain_len: int
    shard_len: int

    def encode(self) -> bytes:
        """Serialise the header to its 17-byte wire form."""
        return _HEADER.pack(
            self.seq,
            self.data_shards,
            self.parity_shards,
            self.index,
            self.plain_len,
            self.shard_len,
        )

    @classmethod
    def parse(cls, datagram: bytes) -> tuple[ShardHeader, bytes]:
        """Parse a datagram into ``(header, payload)``."""
        if len(datagram) < HEADER_LEN:
            raise TooShortError(len(datagram))
        seq, k, m, index, plain_len, shard_len = _HEADER.unpack_from(datagram)
        if k == 0 or index >= min(k + m, 0xFF):
            raise BadHeaderError(k, m, index)
        payload = bytes(datagram[HEADER_LEN:])
        if len(payload) != shard_len:
            raise LenMismatchError(shard_len, len(payload))
        return cls(seq, k, m, index, plain_len, shard_len), payload