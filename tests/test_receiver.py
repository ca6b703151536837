import asyncio
import hashlib
import hmac
import socket

import pytest

from okvm_udp.fec import FecCodec
from okvm_udp.receiver import ReassembleError, UdpFecReceiver
from okvm_udp.sender import UdpFecSender

_TAG_LEN = 16
_KEY = bytes([42]) * 32
_OTHER_KEY = bytes([7]) * 32


class _FakeAead:
    """Keyed stream cipher with an HMAC tag, enough to exercise the transport."""

    def __init__(self, key: bytes, start: int = 0) -> None:
        self._key = key
        self._next = start
        self._seen: set[int] = set()

    def _stream(self, seq: int, length: int) -> bytes:
        out = bytearray()
        block = 0
        while len(out) < length:
            out += hashlib.sha256(
                self._key + seq.to_bytes(8, "big") + block.to_bytes(4, "big")
            ).digest()
            block += 1
        return bytes(out[:length])

    def _tag(self, seq: int, aad: bytes, body: bytes) -> bytes:
        return hmac.new(
            self._key, seq.to_bytes(8, "big") + aad + body, hashlib.sha256
        ).digest()[:_TAG_LEN]

    def seal(self, aad, plaintext):
        seq = self._next
        self._next += 1
        body = bytes(a ^ b for a, b in zip(plaintext, self._stream(seq, len(plaintext))))
        return seq, body + self._tag(seq, aad, body)

    def open(self, seq, aad, ciphertext):
        if len(ciphertext) < _TAG_LEN:
            raise ValueError("ciphertext too short")
        body, tag = ciphertext[:-_TAG_LEN], ciphertext[-_TAG_LEN:]
        if not hmac.compare_digest(tag, self._tag(seq, aad, body)):
            raise ValueError("bad tag")
        if seq in self._seen:
            raise ValueError("replay")
        self._seen.add(seq)
        return bytes(a ^ b for a, b in zip(body, self._stream(seq, len(body))))


@pytest.fixture
def udp_socket():
    opened = []

    def make():
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind(("127.0.0.1", 0))
        sock.setblocking(False)
        opened.append(sock)
        return sock

    yield make
    for sock in opened:
        sock.close()


async def _proxy(proxy, client_addr, server_addr, phases):
    """Forward datagrams; each phase is ``(count, dropped_indices)``."""
    loop = asyncio.get_running_loop()
    for count, dropped in phases:
        for _ in range(count):
            data, src = await loop.sock_recvfrom(proxy, 2048)
            if src != client_addr:
                continue
            if data[10] in dropped:
                continue
            await loop.sock_sendto(proxy, data, server_addr)


def _orphan_shard(seq: int) -> bytes:
    return (
        seq.to_bytes(8, "big")
        + bytes([4, 2, 0])
        + (100).to_bytes(4, "big")
        + (4).to_bytes(2, "big")
        + bytes(4)
    )


@pytest.mark.asyncio
async def test_local_addr_is_socket_address(udp_socket):
    sock = udp_socket()
    receiver = UdpFecReceiver(sock, None, _FakeAead(_KEY), FecCodec(1, 1))
    assert receiver.local_addr() == sock.getsockname()
    assert receiver.pending_count() == 0


@pytest.mark.asyncio
async def test_k4_m2_recovers_packet_loss(udp_socket):
    server = udp_socket()
    proxy = udp_socket()
    client = udp_socket()
    sender = UdpFecSender(client, proxy.getsockname(), _FakeAead(_KEY), FecCodec(4, 2))
    receiver = UdpFecReceiver(
        server, proxy.getsockname(), _FakeAead(_KEY), FecCodec(4, 2)
    )

    proxy_task = asyncio.create_task(
        _proxy(proxy, client.getsockname(), server.getsockname(), [(6, {1, 3})])
    )
    recv_task = asyncio.create_task(receiver.recv_frame())

    payload = bytes((i * 13) & 0xFF for i in range(2000))
    await sender.send_frame(payload)

    got, src = await asyncio.wait_for(recv_task, 5)
    await asyncio.wait_for(proxy_task, 5)
    assert got == payload
    assert src == proxy.getsockname()


@pytest.mark.asyncio
async def test_caps_pending_frames_under_spray(udp_socket):
    server = udp_socket()
    attacker = udp_socket()
    receiver = UdpFecReceiver(
        server, attacker.getsockname(), _FakeAead(_KEY), FecCodec(4, 2)
    )
    receiver.assemble_timeout = 10.0
    loop = asyncio.get_running_loop()

    async def spray():
        for seq in range(1, 1001):
            await loop.sock_sendto(attacker, _orphan_shard(seq), server.getsockname())
            if seq % 20 == 0:
                await asyncio.sleep(0.001)

    spray_task = asyncio.create_task(spray())
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(receiver.recv_frame(), 1.0)
    await spray_task
    assert receiver.pending_count() == 256


@pytest.mark.asyncio
async def test_partial_frame_dropped_after_timeout(udp_socket):
    server = udp_socket()
    proxy = udp_socket()
    client = udp_socket()
    sender = UdpFecSender(client, proxy.getsockname(), _FakeAead(_KEY), FecCodec(4, 2))
    receiver = UdpFecReceiver(
        server, proxy.getsockname(), _FakeAead(_KEY), FecCodec(4, 2)
    )
    receiver.assemble_timeout = 0.05

    proxy_task = asyncio.create_task(
        _proxy(
            proxy,
            client.getsockname(),
            server.getsockname(),
            [(6, {0, 1, 2}), (6, set())],
        )
    )

    lost = bytes((i * 7) & 0xFF for i in range(1000))
    await sender.send_frame(lost)
    await asyncio.sleep(0.12)

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(receiver.recv_frame(), 0.2)
    assert receiver.pending_count() == 1

    await asyncio.sleep(0.06)
    recv_task = asyncio.create_task(receiver.recv_frame())
    await sender.send_frame(b"recovery after a loss event")
    got, _src = await asyncio.wait_for(recv_task, 5)
    await asyncio.wait_for(proxy_task, 5)
    assert got == b"recovery after a loss event"
    assert receiver.pending_count() == 0


@pytest.mark.asyncio
async def test_foreign_source_ignored(udp_socket):
    server = udp_socket()
    legit = udp_socket()
    stranger = udp_socket()
    receiver = UdpFecReceiver(
        server, legit.getsockname(), _FakeAead(_KEY), FecCodec(1, 1)
    )
    intruder = UdpFecSender(stranger, server.getsockname(), _FakeAead(_KEY), FecCodec(1, 1))
    sender = UdpFecSender(legit, server.getsockname(), _FakeAead(_KEY), FecCodec(1, 1))

    await intruder.send_frame(b"intruder")
    await sender.send_frame(b"legit")
    got, src = await asyncio.wait_for(receiver.recv_frame(), 5)
    assert got == b"legit"
    assert src == legit.getsockname()


@pytest.mark.asyncio
async def test_any_source_accepted_without_expected_remote(udp_socket):
    server = udp_socket()
    client = udp_socket()
    receiver = UdpFecReceiver(server, None, _FakeAead(_KEY), FecCodec(1, 1))
    sender = UdpFecSender(client, server.getsockname(), _FakeAead(_KEY), FecCodec(1, 1))
    await sender.send_frame(b"pinned")
    got, src = await asyncio.wait_for(receiver.recv_frame(), 5)
    assert (got, src) == (b"pinned", client.getsockname())


@pytest.mark.asyncio
async def test_mismatched_fec_parameters_ignored(udp_socket):
    server = udp_socket()
    client = udp_socket()
    receiver = UdpFecReceiver(
        server, client.getsockname(), _FakeAead(_KEY), FecCodec(1, 1)
    )
    wrong = UdpFecSender(client, server.getsockname(), _FakeAead(_KEY), FecCodec(2, 1))
    right = UdpFecSender(client, server.getsockname(), _FakeAead(_KEY), FecCodec(1, 1))

    await wrong.send_frame(b"wrong parameters")
    await right.send_frame(b"right parameters")
    got, _src = await asyncio.wait_for(receiver.recv_frame(), 5)
    assert got == b"right parameters"
    assert receiver.pending_count() == 0


@pytest.mark.asyncio
async def test_failed_open_skips_frame_and_resolved_seq_is_not_retried(udp_socket):
    server = udp_socket()
    client = udp_socket()
    receiver = UdpFecReceiver(
        server, client.getsockname(), _FakeAead(_KEY), FecCodec(1, 1)
    )
    forger = UdpFecSender(
        client, server.getsockname(), _FakeAead(_OTHER_KEY), FecCodec(1, 1)
    )
    sender = UdpFecSender(client, server.getsockname(), _FakeAead(_KEY), FecCodec(1, 1))

    await forger.send_frame(b"forged")
    await sender.send_frame(b"same seq as the forged frame")
    await sender.send_frame(b"accepted")
    got, _src = await asyncio.wait_for(receiver.recv_frame(), 5)
    assert got == b"accepted"


@pytest.mark.asyncio
async def test_corrupt_datagrams_skipped(udp_socket):
    server = udp_socket()
    client = udp_socket()
    receiver = UdpFecReceiver(
        server, client.getsockname(), _FakeAead(_KEY), FecCodec(1, 1)
    )
    sender = UdpFecSender(client, server.getsockname(), _FakeAead(_KEY), FecCodec(1, 1))
    loop = asyncio.get_running_loop()
    await loop.sock_sendto(client, b"short", server.getsockname())
    await sender.send_frame(b"after garbage")
    got, _src = await asyncio.wait_for(receiver.recv_frame(), 5)
    assert got == b"after garbage"


@pytest.mark.asyncio
async def test_closed_socket_raises_reassemble_error(udp_socket):
    server = udp_socket()
    receiver = UdpFecReceiver(server, None, _FakeAead(_KEY), FecCodec(1, 1))
    server.close()
    with pytest.raises(ReassembleError):
        await asyncio.wait_for(receiver.recv_frame(), 2)