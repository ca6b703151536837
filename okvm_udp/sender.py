"""Encrypt a frame, erasure-code it and send every shard as a UDP datagram."""

from __future__ import annotations

import asyncio
import socket
from typing import Any, Protocol

from .fec import FecCodec
from .framing import MAX_SHARD_PAYLOAD, ShardHeader

_MAX_PLAIN_LEN = 0xFFFF_FFFF


class Sealer(Protocol):
    """Sending half of an AEAD session."""

    def seal(self, aad: bytes, plaintext: bytes) -> tuple[int, bytes]:
        """Encrypt ``plaintext`` and return ``(seq, ciphertext)``."""


class SendError(Exception):
    """A frame could not be sent."""


class ShardTooLargeError(SendError):
    """A shard (or the whole ciphertext) exceeds what the wire format allows."""

    def __init__(self, size: int) -> None:
        super().__init__(f"shard too large: {size} (max {MAX_SHARD_PAYLOAD})")
        self.size = size


class UdpFecSender:
    """UDP+FEC sender bound to one peer.

    The socket may be shared with a receiver so that one port carries both
    directions of a session.
    """

    def __init__(
        self,
        sock: socket.socket,
        remote: Any,
        aead: Sealer,
        fec: FecCodec,
    ) -> None:
        sock.setblocking(False)
        self._sock = sock
        self._remote = remote
        self._aead = aead
        self._fec = fec

    def local_addr(self) -> Any:
        """Local address the socket is bound to."""
        return self._sock.getsockname()

    async def send_frame(self, plaintext: bytes) -> None:
        """Seal ``plaintext``, encode it into ``K + M`` shards and send each one."""
        seq, ciphertext = self._aead.seal(b"", bytes(plaintext))
        shard_size, shards = self._fec.encode(ciphertext)
        if shard_size > MAX_SHARD_PAYLOAD:
            raise ShardTooLargeError(shard_size)
        if len(ciphertext) > _MAX_PLAIN_LEN:
            raise ShardTooLargeError(len(ciphertext))

        loop = asyncio.get_running_loop()
        for index, shard in enumerate(shards):
            header = ShardHeader(
                seq=seq,
                data_shards=self._fec.data_shards(),
                parity_shards=self._fec.parity_shards(),
                index=index,
                plain_len=len(ciphertext),
                shard_len=shard_size,
            )
            await loop.sock_sendto(self._sock, header.encode() + shard, self._remote)