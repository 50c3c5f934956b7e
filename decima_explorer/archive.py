"""Key derivation and decryption shared by the archive formats."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Sequence

from .hashing import HASH_SEED, murmur3_x64_128

_MASK32 = 0xFFFFFFFF

ENCRYPTED_MAGIC_MASK = 0x0F000000

DEFAULT_ERROR = "An unknown error occured"
PARSE_HEADER_ERROR = "Failed to parse header information"
FILE_OPEN_ERROR = "Failed to open input file"
FILE_INDEX_ERROR = "Failed to find index"
FILE_WRITE_ERROR = "Failed to open file for writing"
FILE_NAME_ERROR = "Failed to find a file with that name"


class ArchiveError(Exception):
    """Raised when an archive cannot be read, written or searched."""

    def __init__(self, message: str = DEFAULT_ERROR) -> None:
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class Salts:
    """The two salt quadruples an archive format mixes into its keys."""

    salt_a: tuple[int, int, int, int] = (0xFA3A9443, 0xF41CAB62, 0xF376811C, 0xD2A89E3E)
    salt_b: tuple[int, int, int, int] = (0x6C084A37, 0x7E159D95, 0x3D5AF7E8, 0x18AA7D3F)


BIN_SALTS = Salts()
MOVIE_SALTS = Salts(
    salt_a=(0x833237C3, 0xBA5CD4B6, 0x3371A06B, 0xAEA7EDB2),
    salt_b=(0xCE857276, 0x9ACC40E8, 0x8242DBD6, 0xCF703987),
)


@dataclass(frozen=True)
class Swap:
    """A request to exchange the hashes of two archive entries."""

    first: str
    second: str


def is_encrypted(magic: int) -> bool:
    """Return whether an archive with this magic number is encrypted."""
    return bool(magic & ENCRYPTED_MAGIC_MASK)


def _check_words(words: Sequence[int], count: int, what: str) -> tuple[int, ...]:
    values = tuple(int(w) & _MASK32 for w in words)
    if len(values) != count:
        raise ValueError(f"{what} must hold {count} 32-bit words, got {len(values)}")
    return values


def _murmur_words(words: Sequence[int]) -> tuple[int, int, int, int]:
    digest = murmur3_x64_128(struct.pack("<4I", *words), HASH_SEED)
    return struct.unpack("<4I", digest)


def decrypt_words(
    words: Sequence[int], key: int, salt_a: Sequence[int] = BIN_SALTS.salt_a
) -> tuple[int, int, int, int]:
    """XOR four 32-bit words with the mask derived from *key* and *salt_a*."""
    values = _check_words(words, 4, "words")
    salt = _check_words(salt_a, 4, "salt_a")
    iv = _murmur_words((key & _MASK32, salt[1], salt[2], salt[3]))
    return tuple(v ^ m for v, m in zip(values, iv))  # type: ignore[return-value]


def decrypt_pair(
    words: Sequence[int], key: int, key2: int, salt_a: Sequence[int] = BIN_SALTS.salt_a
) -> tuple[int, ...]:
    """Decrypt eight words: the first four with *key*, the last four with *key2*."""
    values = _check_words(words, 8, "words")
    return decrypt_words(values[:4], key, salt_a) + decrypt_words(values[4:], key2, salt_a)


def _digest_from_iv(iv: Sequence[int], salt_b: Sequence[int]) -> bytes:
    salt = _check_words(salt_b, 4, "salt_b")
    mixed = struct.pack("<4I", *(v ^ s for v, s in zip(iv, salt)))
    return hashlib.md5(mixed).digest()


def data_digest(key_words: Sequence[int], salt_b: Sequence[int] = BIN_SALTS.salt_b) -> bytes:
    """Return the 16-byte keystream block used to decrypt chunk data."""
    key = _check_words(key_words, 4, "key_words")
    return _digest_from_iv(_murmur_words(key), salt_b)


def _xor_repeating(data: bytes, block: bytes) -> bytes:
    data = bytes(data)
    if not data:
        return b""
    repeats = -(-len(data) // len(block))
    stream = (block * repeats)[: len(data)]
    mixed = int.from_bytes(data, "little") ^ int.from_bytes(stream, "little")
    return mixed.to_bytes(len(data), "little")


def decrypt_data(
    data: bytes, key_words: Sequence[int], salt_b: Sequence[int] = BIN_SALTS.salt_b
) -> bytes:
    """XOR *data* with the keystream for *key_words*; applying it twice restores it."""
    return _xor_repeating(data, data_digest(key_words, salt_b))


def decrypt_movie_data(
    data: bytes,
    key_words: Sequence[int],
    pass_index: int,
    salt_b: Sequence[int] = MOVIE_SALTS.salt_b,
) -> bytes:
    """Decrypt one stream block of a movie pack; *pass_index* selects the block."""
    key = _check_words(key_words, 4, "key_words")
    iv = list(_murmur_words(key))
    iv[0] = pass_index & _MASK32
    return _xor_repeating(data, _digest_from_iv(iv, salt_b))


def ensure_extension(name: str, extension: str = "core") -> str:
    """Return *name* with ``.extension`` appended if its last component has none."""
    base = name.replace("\\", "/").rsplit("/", 1)[-1]
    if "." in base:
        return name
    return f"{name}.{extension.lstrip('.')}"