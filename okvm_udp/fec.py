"""Systematic Reed-Solomon erasure coding over GF(2^8).

The code matrix is a Vandermonde matrix made systematic by multiplying it
with the inverse of its top square, so the first ``K`` shards carry the
original (zero padded) data and the last ``M`` shards carry parity.
"""

from __future__ import annotations

from collections.abc import Sequence

MAX_DATA_SHARDS = 16
"""Largest supported number of data shards."""

MAX_PARITY_SHARDS = 8
"""Largest supported number of parity shards."""

_FIELD_SIZE = 256
_GENERATING_POLYNOMIAL = 0x11D


def _build_tables() -> tuple[list[int], list[int]]:
    exp = [0] * (2 * (_FIELD_SIZE - 1))
    log = [0] * _FIELD_SIZE
    x = 1
    for i in range(_FIELD_SIZE - 1):
        exp[i] = x
        exp[i + _FIELD_SIZE - 1] = x
        log[x] = i
        x <<= 1
        if x & 0x100:
            x ^= _GENERATING_POLYNOMIAL
    return exp, log


_EXP, _LOG = _build_tables()


def _mul(a: int, b: int) -> int:
    if a == 0 or b == 0:
        return 0
    return _EXP[_LOG[a] + _LOG[b]]


def _inverse(a: int) -> int:
    return _EXP[(_FIELD_SIZE - 1) - _LOG[a]]


def _power(a: int, n: int) -> int:
    if n == 0:
        return 1
    if a == 0:
        return 0
    return _EXP[(_LOG[a] * n) % (_FIELD_SIZE - 1)]


# One translation table per constant: bytes.translate multiplies a whole shard.
_MUL_TABLES = [bytes(_mul(c, x) for x in range(_FIELD_SIZE)) for c in range(_FIELD_SIZE)]

Matrix = list[list[int]]


class FecError(Exception):
    """Base error of the FEC codec; raised directly for internal failures."""


class BadParamsError(FecError):
    """``data_shards`` is zero or a shard count exceeds its limit."""

    def __init__(self, data: int, parity: int) -> None:
        super().__init__(f"invalid FEC parameters: data={data} parity={parity}")
        self.data = data
        self.parity = parity


class TooLargeError(FecError):
    """The payload exceeds the capacity of the codec."""

    def __init__(self, length: int, maximum: int) -> None:
        super().__init__(f"payload too large: {length} bytes (max {maximum})")
        self.length = length
        self.maximum = maximum


class InsufficientShardsError(FecError):
    """Fewer than ``K`` shards are available for reconstruction."""

    def __init__(self, got: int, need: int) -> None:
        super().__init__(f"too few shards: {got}/{need}")
        self.got = got
        self.need = need


def _mat_mul(left: Matrix, right: Matrix) -> Matrix:
    columns = list(zip(*right))
    return [
        [_xor_sum(_mul(a, b) for a, b in zip(row, column)) for column in columns]
        for row in left
    ]


def _xor_sum(values) -> int:
    acc = 0
    for value in values:
        acc ^= value
    return acc


def _invert(matrix: Matrix) -> Matrix:
    size = len(matrix)
    work = [
        list(row) + [1 if c == r else 0 for c in range(size)]
        for r, row in enumerate(matrix)
    ]
    for col in range(size):
        pivot = next((r for r in range(col, size) if work[r][col]), None)
        if pivot is None:
            raise FecError("reed-solomon: singular matrix")
        work[col], work[pivot] = work[pivot], work[col]
        scale = _inverse(work[col][col])
        work[col] = [_mul(scale, x) for x in work[col]]
        pivot_row = work[col]
        for r, row in enumerate(work):
            factor = row[col]
            if r != col and factor:
                work[r] = [x ^ _mul(factor, y) for x, y in zip(row, pivot_row)]
    return [row[size:] for row in work]


def _combine(coefficients: Sequence[int], shards: Sequence[bytes], size: int) -> bytes:
    acc = 0
    for coefficient, shard in zip(coefficients, shards):
        if coefficient:
            acc ^= int.from_bytes(shard.translate(_MUL_TABLES[coefficient]), "big")
    return acc.to_bytes(size, "big")


class FecCodec:
    """Erasure codec for fixed ``(K, M)`` parameters."""

    def __init__(self, data_shards: int, parity_shards: int) -> None:
        if (
            data_shards == 0
            or data_shards > MAX_DATA_SHARDS
            or parity_shards > MAX_PARITY_SHARDS
        ):
            raise BadParamsError(data_shards, parity_shards)
        if data_shards < 0 or parity_shards < 0:
            raise BadParamsError(data_shards, parity_shards)
        if parity_shards == 0:
            raise FecError("reed-solomon: TooFewParityShards")
        self._k = data_shards
        self._m = parity_shards
        total = data_shards + parity_shards
        vandermonde = [[_power(r, c) for c in range(data_shards)] for r in range(total)]
        self._matrix = _mat_mul(vandermonde, _invert(vandermonde[:data_shards]))

    def data_shards(self) -> int:
        """Number of data shards ``K``."""
        return self._k

    def parity_shards(self) -> int:
        """Number of parity shards ``M``."""
        return self._m

    def total_shards(self) -> int:
        """Total number of shards ``K + M``."""
        return self._k + self._m

    def encode(self, data: bytes) -> tuple[int, list[bytes]]:
        """Split ``data`` into ``K + M`` equal shards.

        Returns ``(shard_size, shards)`` with ``shard_size = max(1, ceil(len/K))``.
        """
        data = bytes(data)
        shard_size = max(-(-len(data) // self._k), 1)
        padded = data.ljust(shard_size * self._k, b"\x00")
        data_part = [
            padded[start:start + shard_size]
            for start in range(0, shard_size * self._k, shard_size)
        ]
        parity_part = [
            _combine(row, data_part, shard_size) for row in self._matrix[self._k:]
        ]
        return shard_size, data_part + parity_part

    def decode(self, shards: Sequence[bytes | None], original_len: int) -> bytes:
        """Rebuild the original payload; ``None`` marks a missing shard."""
        got = sum(1 for shard in shards if shard is not None)
        if got < self._k:
            raise InsufficientShardsError(got, self._k)
        if len(shards) != self.total_shards():
            raise FecError(
                f"reed-solomon: expected {self.total_shards()} shards, got {len(shards)}"
            )
        present = [(i, bytes(s)) for i, s in enumerate(shards) if s is not None]
        sizes = {len(shard) for _, shard in present}
        if len(sizes) != 1:
            raise FecError("reed-solomon: IncorrectShardSize")
        shard_size = sizes.pop()
        if shard_size == 0:
            raise FecError("reed-solomon: EmptyShard")

        by_index = dict(present)
        if all(i in by_index for i in range(self._k)):
            data_part = [by_index[i] for i in range(self._k)]
        else:
            chosen = present[: self._k]
            decoder = _invert([self._matrix[i] for i, _ in chosen])
            chosen_shards = [shard for _, shard in chosen]
            data_part = [
                by_index[i] if i in by_index
                else _combine(decoder[i], chosen_shards, shard_size)
                for i in range(self._k)
            ]
        return b"".join(data_part)[:original_len]