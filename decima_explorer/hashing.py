"""MurmurHash3 variants and the archive file-name hash built on them."""

from __future__ import annotations

import struct

HASH_SEED = 42

_MASK32 = 0xFFFFFFFF
_MASK64 = 0xFFFFFFFFFFFFFFFF


def _rotl32(x: int, r: int) -> int:
    return ((x << r) | (x >> (32 - r))) & _MASK32


def _rotl64(x: int, r: int) -> int:
    return ((x << r) | (x >> (64 - r))) & _MASK64


def _fmix32(h: int) -> int:
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK32
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK32
    h ^= h >> 16
    return h


def _fmix64(k: int) -> int:
    k ^= k >> 33
    k = (k * 0xFF51AFD7ED558CCD) & _MASK64
    k ^= k >> 33
    k = (k * 0xC4CEB9FE1A85EC53) & _MASK64
    k ^= k >> 33
    return k


def murmur3_x86_32(data: bytes, seed: int = 0) -> int:
    """Return the 32-bit MurmurHash3 (x86 variant) of *data*."""
    data = bytes(data)
    length = len(data)
    nblocks = length // 4
    c1, c2 = 0xCC9E2D51, 0x1B873593
    h1 = seed & _MASK32

    for (k1,) in struct.iter_unpack("<I", data[: nblocks * 4]):
        k1 = (k1 * c1) & _MASK32
        k1 = _rotl32(k1, 15)
        k1 = (k1 * c2) & _MASK32
        h1 ^= k1
        h1 = _rotl32(h1, 13)
        h1 = (h1 * 5 + 0xE6546B64) & _MASK32

    tail = data[nblocks * 4 :]
    if tail:
        k1 = int.from_bytes(tail, "little")
        k1 = (k1 * c1) & _MASK32
        k1 = _rotl32(k1, 15)
        k1 = (k1 * c2) & _MASK32
        h1 ^= k1

    h1 ^= length & _MASK32
    return _fmix32(h1)


def murmur3_x86_128(data: bytes, seed: int = 0) -> bytes:
    """Return the 128-bit MurmurHash3 (x86 variant) of *data* as 16 bytes."""
    data = bytes(data)
    length = len(data)
    nblocks = length // 16
    c1, c2, c3, c4 = 0x239B961B, 0xAB0E9789, 0x38B34AE5, 0xA1E38B93
    h1 = h2 = h3 = h4 = seed & _MASK32

    for k1, k2, k3, k4 in struct.iter_unpack("<4I", data[: nblocks * 16]):
        k1 = (k1 * c1) & _MASK32
        k1 = _rotl32(k1, 15)
        k1 = (k1 * c2) & _MASK32
        h1 ^= k1
        h1 = _rotl32(h1, 19)
        h1 = (h1 + h2) & _MASK32
        h1 = (h1 * 5 + 0x561CCD1B) & _MASK32

        k2 = (k2 * c2) & _MASK32
        k2 = _rotl32(k2, 16)
        k2 = (k2 * c3) & _MASK32
        h2 ^= k2
        h2 = _rotl32(h2, 17)
        h2 = (h2 + h3) & _MASK32
        h2 = (h2 * 5 + 0x0BCAA747) & _MASK32

        k3 = (k3 * c3) & _MASK32
        k3 = _rotl32(k3, 17)
        k3 = (k3 * c4) & _MASK32
        h3 ^= k3
        h3 = _rotl32(h3, 15)
        h3 = (h3 + h4) & _MASK32
        h3 = (h3 * 5 + 0x96CD1C35) & _MASK32

        k4 = (k4 * c4) & _MASK32
        k4 = _rotl32(k4, 18)
        k4 = (k4 * c1) & _MASK32
        h4 ^= k4
        h4 = _rotl32(h4, 13)
        h4 = (h4 + h1) & _MASK32
        h4 = (h4 * 5 + 0x32AC3B17) & _MASK32

    tail = data[nblocks * 16 :]
    tail_len = len(tail)

    def lane(start: int) -> int:
        return int.from_bytes(tail[start : start + 4], "little")

    if tail_len > 12:
        k4 = lane(12)
        k4 = (k4 * c4) & _MASK32
        k4 = _rotl32(k4, 18)
        k4 = (k4 * c1) & _MASK32
        h4 ^= k4
    if tail_len > 8:
        k3 = lane(8)
        k3 = (k3 * c3) & _MASK32
        k3 = _rotl32(k3, 17)
        k3 = (k3 * c4) & _MASK32
        h3 ^= k3
    if tail_len > 4:
        k2 = lane(4)
        k2 = (k2 * c2) & _MASK32
        k2 = _rotl32(k2, 16)
        k2 = (k2 * c3) & _MASK32
        h2 ^= k2
    if tail_len > 0:
        k1 = lane(0)
        k1 = (k1 * c1) & _MASK32
        k1 = _rotl32(k1, 15)
        k1 = (k1 * c2) & _MASK32
        h1 ^= k1

    n = length & _MASK32
    h1 ^= n
    h2 ^= n
    h3 ^= n
    h4 ^= n

    h1 = (h1 + h2 + h3 + h4) & _MASK32
    h2 = (h2 + h1) & _MASK32
    h3 = (h3 + h1) & _MASK32
    h4 = (h4 + h1) & _MASK32

    h1, h2, h3, h4 = _fmix32(h1), _fmix32(h2), _fmix32(h3), _fmix32(h4)

    h1 = (h1 + h2 + h3 + h4) & _MASK32
    h2 = (h2 + h1) & _MASK32
    h3 = (h3 + h1) & _MASK32
    h4 = (h4 + h1) & _MASK32

    return struct.pack("<4I", h1, h2, h3, h4)


def murmur3_x64_128(data: bytes, seed: int = 0) -> bytes:
    """Return the 128-bit MurmurHash3 (x64 variant) of *data* as 16 bytes."""
    data = bytes(data)
    length = len(data)
    nblocks = length // 16
    c1, c2 = 0x87C37B91114253D5, 0x4CF5AD432745937F
    h1 = h2 = seed & _MASK32

    for k1, k2 in struct.iter_unpack("<2Q", data[: nblocks * 16]):
        k1 = (k1 * c1) & _MASK64
        k1 = _rotl64(k1, 31)
        k1 = (k1 * c2) & _MASK64
        h1 ^= k1
        h1 = _rotl64(h1, 27)
        h1 = (h1 + h2) & _MASK64
        h1 = (h1 * 5 + 0x52DCE729) & _MASK64

        k2 = (k2 * c2) & _MASK64
        k2 = _rotl64(k2, 33)
        k2 = (k2 * c1) & _MASK64
        h2 ^= k2
        h2 = _rotl64(h2, 31)
        h2 = (h2 + h1) & _MASK64
        h2 = (h2 * 5 + 0x38495AB5) & _MASK64

    tail = data[nblocks * 16 :]
    if len(tail) > 8:
        k2 = int.from_bytes(tail[8:], "little")
        k2 = (k2 * c2) & _MASK64
        k2 = _rotl64(k2, 33)
        k2 = (k2 * c1) & _MASK64
        h2 ^= k2
    if tail:
        k1 = int.from_bytes(tail[:8], "little")
        k1 = (k1 * c1) & _MASK64
        k1 = _rotl64(k1, 31)
        k1 = (k1 * c2) & _MASK64
        h1 ^= k1

    h1 ^= length
    h2 ^= length

    h1 = (h1 + h2) & _MASK64
    h2 = (h2 + h1) & _MASK64

    h1 = _fmix64(h1)
    h2 = _fmix64(h2)

    h1 = (h1 + h2) & _MASK64
    h2 = (h2 + h1) & _MASK64

    return struct.pack("<2Q", h1, h2)


def file_hash(filename: str | bytes) -> int:
    """Return the 64-bit hash an archive uses to identify *filename*.

    The name is hashed with its terminating NUL byte, using the fixed seed.
    """
    raw = filename.encode("utf-8") if isinstance(filename, str) else bytes(filename)
    digest = murmur3_x64_128(raw + b"\0", HASH_SEED)
    return int.from_bytes(digest[:8], "little")