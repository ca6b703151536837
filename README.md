# okvm_udp

Encrypted UDP transport with Reed-Solomon forward error correction, meant for
low-latency streams such as audio and video frames.

Each frame is sealed by an AEAD session that the caller provides. The sealed
frame is then split into `K` data shards and `M` parity shards over GF(2^8), and
every shard travels in its own UDP datagram behind a 17-byte header. The
receiver rebuilds a frame as soon as any `K` of the `K + M` shards have arrived,
so it can lose up to `M` datagrams per frame and still recover the frame.

## Installation

```
pip install .
```

The package has no runtime dependencies. To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `okvm_udp.fec`: `FecCodec(data_shards, parity_shards)` is a systematic
  Reed-Solomon codec. `data_shards` must be 1 to 16 (`MAX_DATA_SHARDS`) and
  `parity_shards` must be 1 to 8 (`MAX_PARITY_SHARDS`). Out-of-range values raise
  `BadParamsError`, and `parity_shards=0` raises `FecError`. `encode(data)`
  returns `(shard_size, shards)`, where `shard_size = max(1, ceil(len(data) / K))`
  and short data is padded with zeros. `decode(shards, original_len)` takes a
  list in which missing shards are `None` and returns the data cut to
  `original_len`. It raises `InsufficientShardsError` when fewer than `K` shards
  are present.
- `okvm_udp.framing`: `ShardHeader` is a frozen dataclass with the fields `seq`,
  `data_shards`, `parity_shards`, `index`, `plain_len` and `shard_len`.
  `encode()` returns the 17 header bytes (`HEADER_LEN`), all big endian.
  `ShardHeader.parse(datagram)` returns `(header, payload)`, or raises one of
  three errors, each a subclass of `FramingError`:
  - `TooShortError` when the datagram is shorter than the header.
  - `BadHeaderError` when `K` is 0 or `index` is out of range.
  - `LenMismatchError` when the payload size differs from `shard_len`.

  `MAX_SHARD_PAYLOAD` is 1400.
- `okvm_udp.sender`: `UdpFecSender(sock, remote, aead, fec)` sends frames.
  `send_frame(plaintext)` seals the frame, encodes it and sends every shard to
  `remote`. It raises `ShardTooLargeError`, a subclass of `SendError`, when a
  shard would be larger than `MAX_SHARD_PAYLOAD`.
- `okvm_udp.receiver`: `UdpFecReceiver(sock, expected_remote, aead, fec)`
  receives frames. `recv_frame()` returns `(plaintext, source)`, where `source`
  is the address of the first shard received for that frame.

Both endpoints accept a plain `socket.socket`, which they switch to
non-blocking mode, and both offer `local_addr()`.

## Encryption is supplied by the caller

This package does not implement any cipher or key exchange. The sender needs an
object that satisfies the `Sealer` protocol: a `seal(aad, plaintext)` method that
returns `(seq, ciphertext)`. The receiver needs an object that satisfies the
`Opener` protocol: an `open(seq, aad, ciphertext)` method that returns the
plaintext and raises `ValueError` when authentication fails or `seq` is a
replay. Both are called with an empty `aad`. The `seq` goes on the wire in
clear text, inside each shard header.

## Example

```python
import asyncio
import socket

from okvm_udp.fec import FecCodec
from okvm_udp.receiver import UdpFecReceiver
from okvm_udp.sender import UdpFecSender


async def demo(sealer, opener):
    rx_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    rx_sock.bind(("127.0.0.1", 0))
    tx_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    tx_sock.bind(("127.0.0.1", 0))

    sender = UdpFecSender(tx_sock, rx_sock.getsockname(), sealer, FecCodec(1, 1))
    receiver = UdpFecReceiver(rx_sock, tx_sock.getsockname(), opener, FecCodec(1, 1))

    task = asyncio.create_task(receiver.recv_frame())
    await sender.send_frame(b"hello world")
    frame, source = await task
    return frame
```

To use the codec without any networking:

```python
from okvm_udp.fec import FecCodec

codec = FecCodec(4, 2)
data = bytes(range(256)) * 4
shard_size, shards = codec.encode(data)

received = list(shards)
received[0] = None
received[2] = None
assert codec.decode(received, len(data)) == data
```

## Receiver behaviour

- One socket can be shared by a sender and a receiver, which gives a
  bidirectional session on a single port.
- Datagrams from a source other than `expected_remote` are ignored. Passing
  `None` accepts any source.
- The receiver skips the following without returning:
  - datagrams it cannot parse;
  - shards whose `K` and `M` differ from those of the receiver's codec;
  - shards of a sequence number that was recently resolved;
  - frames that fail FEC decoding or AEAD opening.
- A partial frame is dropped once it is older than `assemble_timeout` seconds
  (default `0.1`).
- At most 256 frames (`MAX_PENDING_FRAMES`) are held while being reassembled.
  When that limit is reached, the frame with the lowest sequence number is
  evicted. `pending_count()` reports how many frames are currently held.
- A socket error raises `ReassembleError`.