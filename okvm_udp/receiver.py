"""Collect UDP shards, rebuild the ciphertext and decrypt frames."""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol

from .fec import FecCodec, FecError
from .framing import HEADER_LEN, MAX_SHARD_PAYLOAD, FramingError, ShardHeader

_log = logging.getLogger(__name__)

MAX_PENDING_FRAMES = 256
"""Upper bound on frames being reassembled; the lowest ``seq`` is evicted first."""

_RESOLVED_WINDOW = 256
_RECV_BUFFER = MAX_SHARD_PAYLOAD + HEADER_LEN + 64


class Opener(Protocol):
    """Receiving half of an AEAD session.

    ``open`` raises :class:`ValueError` when authentication fails or the
    sequence number is a replay.
    """

    def open(self, seq: int, aad: bytes, ciphertext: bytes) -> bytes:
        """Decrypt ``ciphertext`` sealed under ``seq``."""


class ReassembleError(Exception):
    """Fatal receive error; the session should be recreated."""


@dataclass
class _PendingFrame:
    shards: list[bytes | None]
    data_shards: int
    plain_len: int
    first_src: Any
    inserted_at: float = field(default_factory=time.monotonic)
    received: int = 0


class UdpFecReceiver:
    """UDP+FEC receiver for one peer.

    ``expected_remote`` filters datagrams by source address; ``None`` accepts
    every source. ``assemble_timeout`` (seconds) is how long a partial frame
    is kept before being dropped.
    """

    def __init__(
        self,
        sock: socket.socket,
        expected_remote: Any | None,
        aead: Opener,
        fec: FecCodec,
    ) -> None:
        sock.setblocking(False)
        self._sock = sock
        self._expected_remote = expected_remote
        self._aead = aead
        self._fec = fec
        self._pending: dict[int, _PendingFrame] = {}
        self._resolved: deque[int] = deque(maxlen=_RESOLVED_WINDOW)
        self.assemble_timeout = 0.1

    def local_addr(self) -> Any:
        """Local address the socket is bound to."""
        return self._sock.getsockname()

    def pending_count(self) -> int:
        """Number of frames currently being reassembled."""
        return len(self._pending)

    async def recv_frame(self) -> tuple[bytes, Any]:
        """Wait for the next complete, authenticated frame.

        Returns ``(plaintext, source)`` where ``source`` is the address of the
        first shard received for that frame. Corrupt datagrams, foreign
        sources and frames that fail to decode or decrypt are skipped.
        """
        loop = asyncio.get_running_loop()
        while True:
            self._drain_stale()
            try:
                datagram, src = await loop.sock_recvfrom(self._sock, _RECV_BUFFER)
            except OSError as exc:
                raise ReassembleError(f"io: {exc}") from exc

            if self._expected_remote is not None and src != self._expected_remote:
                _log.debug("UDP: ignoring source %s (expected %s)", src, self._expected_remote)
                continue

            try:
                header, payload = ShardHeader.parse(datagram)
            except FramingError as exc:
                _log.debug("UDP: corrupt datagram: %s", exc)
                continue

            if (
                header.data_shards != self._fec.data_shards()
                or header.parity_shards != self._fec.parity_shards()
            ):
                _log.debug(
                    "UDP: incompatible FEC parameters %s, expected %s",
                    (header.data_shards, header.parity_shards),
                    (self._fec.data_shards(), self._fec.parity_shards()),
                )
                continue

            if header.seq in self._resolved:
                continue

            if header.seq not in self._pending and len(self._pending) >= MAX_PENDING_FRAMES:
                oldest = min(self._pending)
                del self._pending[oldest]
                _log.debug("UDP: pending full, evicting seq %d", oldest)

            frame = self._pending.get(header.seq)
            if frame is None:
                frame = _PendingFrame(
                    shards=[None] * (header.data_shards + header.parity_shards),
                    data_shards=header.data_shards,
                    plain_len=header.plain_len,
                    first_src=src,
                )
                self._pending[header.seq] = frame
            if frame.shards[header.index] is None:
                frame.shards[header.index] = payload
                frame.received += 1

            if frame.received < frame.data_shards:
                continue

            del self._pending[header.seq]
            self._resolved.append(header.seq)

            try:
                ciphertext = self._fec.decode(frame.shards, frame.plain_len)
            except FecError as exc:
                _log.warning("FEC decode failed for seq %d: %s", header.seq, exc)
                continue
            try:
                plaintext = self._aead.open(header.seq, b"", ciphertext)
            except ValueError as exc:
                _log.warning("AEAD open failed for seq %d: %s", header.seq, exc)
                continue
            return plaintext, frame.first_src

    def _drain_stale(self) -> None:
        now = time.monotonic()
        stale = [
            seq
            for seq, frame in self._pending.items()
            if now - frame.inserted_at > self.assemble_timeout
        ]
        for seq in stale:
            del self._pending[seq]
            _log.debug("UDP frame %d dropped (timeout)", seq)