"""Reading, creating and patching the chunked, compressed ``.bin`` archives."""

from __future__ import annotations

import logging
import os
import shutil
import struct
from abc import ABC, abstractmethod
from dataclasses import astuple, dataclass
from itertools import pairwise
from os import PathLike
from pathlib import Path
from typing import BinaryIO, ClassVar, Iterable, Iterator, Sequence, Union

from .archive import (
    BIN_SALTS,
    DEFAULT_ERROR,
    FILE_INDEX_ERROR,
    FILE_NAME_ERROR,
    FILE_OPEN_ERROR,
    FILE_WRITE_ERROR,
    PARSE_HEADER_ERROR,
    ArchiveError,
    Swap,
    decrypt_data,
    decrypt_pair,
    ensure_extension,
    is_encrypted,
)
from .hashing import file_hash

logger = logging.getLogger(__name__)

StrPath = Union[str, "PathLike[str]"]

PLAIN_MAGIC = 0x20304050
ENCRYPTED_MAGIC = 0x21304050
DEFAULT_KEY = 0x7FF6
DEFAULT_MAX_CHUNK_SIZE = 0x40000
HEADER_SIZE = 0x28
ENTRY_SIZE = 0x20

INITIAL_NAME = "initial"
INITIAL_HASH_NAME = "7017f9bb9d52fc1c4433599203cc51b1"

INVALID_MAGIC_ERROR = "Input file is of an unrecognized format"
COMPRESS_FAIL_ERROR = "Failed to compress data"
DECOMPRESS_FAIL_ERROR = "Failed to decompress data"
PARSE_FILE_TABLE_ERROR = "Failed to parse file table"
PARSE_CHUNK_TABLE_ERROR = "Failed to parse chunk table"
NOT_FOUND_ERROR = "Failed to find initial archive"

_MASK32 = 0xFFFFFFFF
_HEADER = struct.Struct("<IIQQQII")
_FILE_ENTRY = struct.Struct("<IIQQII")
_CHUNK_ENTRY = struct.Struct("<QIIQII")


@dataclass
class BinHeader:
    """The 40-byte header at the start of a ``.bin`` archive."""

    magic: int = 0
    key: int = 0
    file_size: int = 0
    data_size: int = 0
    file_table_count: int = 0
    chunk_table_count: int = 0
    max_chunk_size: int = 0

    def pack(self) -> bytes:
        return _HEADER.pack(*astuple(self))

    @classmethod
    def unpack(cls, raw: bytes) -> BinHeader:
        return cls(*_HEADER.unpack(raw))


@dataclass
class BinFileEntry:
    """One file in the archive: where its bytes sit in the uncompressed stream."""

    KEY_INDEX: ClassVar[int] = 1

    entry_num: int = 0
    key: int = 0
    hash: int = 0
    offset: int = 0
    size: int = 0
    key2: int = 0

    def pack(self) -> bytes:
        return _FILE_ENTRY.pack(*astuple(self))

    @classmethod
    def unpack(cls, raw: bytes) -> BinFileEntry:
        return cls(*_FILE_ENTRY.unpack(raw))


@dataclass
class BinChunkEntry:
    """One compressed chunk and the span of the uncompressed stream it holds."""

    KEY_INDEX: ClassVar[int] = 3

    uncompressed_offset: int = 0
    uncompressed_size: int = 0
    key: int = 0
    compressed_offset: int = 0
    compressed_size: int = 0
    key2: int = 0

    def pack(self) -> bytes:
        return _CHUNK_ENTRY.pack(*astuple(self))

    @classmethod
    def unpack(cls, raw: bytes) -> BinChunkEntry:
        return cls(*_CHUNK_ENTRY.unpack(raw))


class Codec(ABC):
    """Block compressor for archive chunks.

    Implementations raise ValueError when data cannot be (de)compressed.
    """

    @abstractmethod
    def compress(self, data: bytes) -> bytes:
        """Return the compressed form of *data*."""

    @abstractmethod
    def decompress(self, data: bytes, size: int) -> bytes:
        """Return *size* bytes decompressed from *data*."""


def _crypt_header(raw: bytes) -> bytes:
    words = struct.unpack("<10I", raw)
    key = words[1]
    body = decrypt_pair(words[2:], key, (key + 1) & _MASK32, BIN_SALTS.salt_a)
    return struct.pack("<10I", *words[:2], *body)


def _crypt_entry(raw: bytes, key_index: int) -> bytes:
    words = struct.unpack("<8I", raw)
    key, key2 = words[key_index], words[7]
    mixed = list(decrypt_pair(words, key, key2, BIN_SALTS.salt_a))
    mixed[key_index], mixed[7] = key, key2
    return struct.pack("<8I", *mixed)


def _read_inputs(base_path: StrPath, files: Iterable[str]) -> Iterator[tuple[int, str, bytes]]:
    base = Path(base_path)
    for index, name in enumerate(files):
        try:
            data = (base / name).read_bytes()
        except OSError:
            continue
        yield index, name, data


class ArchiveBin:
    """A ``.bin`` archive on disk: a file table over a stream of compressed chunks."""

    extension = ".bin"

    def __init__(self, path: StrPath, codec: Codec) -> None:
        self.path = Path(path)
        self.codec = codec
        self.header = BinHeader()
        self.file_table: list[BinFileEntry] = []
        self.chunk_table: list[BinChunkEntry] = []

    @property
    def is_encrypted(self) -> bool:
        return is_encrypted(self.header.magic)

    # -- reading -----------------------------------------------------------

    def open(self) -> ArchiveBin:
        """Read the header and both tables, decrypting them when needed."""
        try:
            f = open(self.path, "rb")
        except OSError as exc:
            raise ArchiveError(FILE_OPEN_ERROR) from exc
        with f:
            raw = f.read(HEADER_SIZE)
            if len(raw) != HEADER_SIZE:
                raise ArchiveError(PARSE_HEADER_ERROR)
            header = BinHeader.unpack(raw)
            if header.magic not in (PLAIN_MAGIC, ENCRYPTED_MAGIC):
                raise ArchiveError(INVALID_MAGIC_ERROR)
            if is_encrypted(header.magic):
                header = BinHeader.unpack(_crypt_header(raw))
            self.header = header
            self.file_table = self._read_table(
                f, header.file_table_count, BinFileEntry, PARSE_FILE_TABLE_ERROR
            )
            self.chunk_table = self._read_table(
                f, header.chunk_table_count, BinChunkEntry, PARSE_CHUNK_TABLE_ERROR
            )
        return self

    def _read_table(self, f: BinaryIO, count: int, entry_type, error: str) -> list:
        raw = f.read(count * ENTRY_SIZE)
        if len(raw) != count * ENTRY_SIZE:
            raise ArchiveError(error)
        records = (record for (record,) in struct.iter_unpack(f"<{ENTRY_SIZE}s", raw))
        if self.is_encrypted:
            records = (_crypt_entry(r, entry_type.KEY_INDEX) for r in records)
        return [entry_type.unpack(r) for r in records]

    def _index_by_hash(self, name: str) -> int | None:
        target = file_hash(name)
        return next((i for i, e in enumerate(self.file_table) if e.hash == target), None)

    def _index_by_id(self, entry_id: int) -> int | None:
        return next(
            (i for i, e in enumerate(self.file_table) if e.entry_num == entry_id), None
        )

    def _find_chunk(self, offset: int) -> int:
        if not self.chunk_table:
            raise ArchiveError(DEFAULT_ERROR)
        for index, (current, following) in enumerate(pairwise(self.chunk_table)):
            if current.uncompressed_offset <= offset < following.uncompressed_offset:
                return index
        return len(self.chunk_table) - 1

    def _chunk_key(self, index: int) -> tuple[int, ...]:
        return struct.unpack("<4I", self.chunk_table[index].pack()[:16])

    def _seal_chunk(self, index: int, data: bytes) -> bytes:
        if self.is_encrypted:
            return decrypt_data(data, self._chunk_key(index), BIN_SALTS.salt_b)
        return data

    def _read_chunk(self, f: BinaryIO, index: int) -> bytes:
        entry = self.chunk_table[index]
        f.seek(entry.compressed_offset)
        data = f.read(entry.compressed_size)
        if len(data) != entry.compressed_size:
            raise ArchiveError(DECOMPRESS_FAIL_ERROR)
        data = self._seal_chunk(index, data)
        try:
            out = self.codec.decompress(data, entry.uncompressed_size)
        except ValueError as exc:
            raise ArchiveError(DECOMPRESS_FAIL_ERROR) from exc
        if len(out) != entry.uncompressed_size:
            raise ArchiveError(DECOMPRESS_FAIL_ERROR)
        return out

    def _extract(self, entry: BinFileEntry) -> bytes:
        first = self._find_chunk(entry.offset)
        last = self._find_chunk(entry.offset + max(entry.size - 1, 0))
        start = entry.offset - self.chunk_table[first].uncompressed_offset
        if start < 0:
            raise ArchiveError(DEFAULT_ERROR)
        try:
            f = open(self.path, "rb")
        except OSError as exc:
            raise ArchiveError(FILE_OPEN_ERROR) from exc
        with f:
            blob = b"".join(self._read_chunk(f, i) for i in range(first, last + 1))
        data = blob[start : start + entry.size]
        if len(data) != entry.size:
            raise ArchiveError(DEFAULT_ERROR)
        return data

    @staticmethod
    def _write_output(data: bytes, output: str) -> Path:
        target = Path(output)
        try:
            target.write_bytes(data)
        except OSError as exc:
            raise ArchiveError(FILE_WRITE_ERROR) from exc
        return target

    def extract_bytes(self, name: str) -> bytes:
        """Return the contents of the file called *name* (``.core`` if no extension)."""
        index = self._index_by_hash(ensure_extension(name, "core"))
        if index is None:
            raise ArchiveError(FILE_NAME_ERROR)
        return self._extract(self.file_table[index])

    def extract_id(self, entry_id: int, output: StrPath) -> Path:
        """Write the entry numbered *entry_id* to *output* and return the path written."""
        target = ensure_extension(os.fspath(output), "core")
        index = self._index_by_id(entry_id)
        if index is None:
            raise ArchiveError(FILE_INDEX_ERROR)
        return self._write_output(self._extract(self.file_table[index]), target)

    def extract_name(
        self, name: str, output: StrPath, suppress_error: bool = False
    ) -> Path | None:
        """Write the file called *name* to *output*.

        Returns the path written, or None when the name is missing and
        *suppress_error* is set.
        """
        target = ensure_extension(os.fspath(output), "core")
        index = self._index_by_hash(ensure_extension(name, "core"))
        if index is None:
            if suppress_error:
                return None
            raise ArchiveError(FILE_NAME_ERROR)
        return self._write_output(self._extract(self.file_table[index]), target)

    # -- writing -----------------------------------------------------------

    def _pack_header(self) -> bytes:
        raw = self.header.pack()
        return _crypt_header(raw) if self.is_encrypted else raw

    def _pack_table(self, entries: Sequence[BinFileEntry] | Sequence[BinChunkEntry]) -> bytes:
        packed = (e.pack() for e in entries)
        if self.is_encrypted:
            packed = (_crypt_entry(raw, e.KEY_INDEX) for raw, e in zip(packed, entries))
        return b"".join(packed)

    def _pack_tables(self) -> bytes:
        return (
            self._pack_header()
            + self._pack_table(self.file_table)
            + self._pack_table(self.chunk_table)
        )

    def _data_offset(self) -> int:
        return HEADER_SIZE + ENTRY_SIZE * (len(self.file_table) + len(self.chunk_table))

    def _split(self, buffer: bytes) -> list[bytes]:
        size = self.header.max_chunk_size
        return [buffer[start : start + size] for start in range(0, len(buffer), size)]

    def _uncompressed_end(self) -> int:
        if not self.chunk_table:
            return 0
        last = self.chunk_table[-1]
        return last.uncompressed_offset + last.uncompressed_size

    def _append_chunks(self, pieces: Iterable[bytes], uoffset: int, coffset: int) -> list[bytes]:
        compressed: list[bytes] = []
        for piece in pieces:
            try:
                packed = self.codec.compress(piece)
            except ValueError as exc:
                raise ArchiveError(COMPRESS_FAIL_ERROR) from exc
            self.chunk_table.append(
                BinChunkEntry(uoffset, len(piece), 0, coffset, len(packed), 0)
            )
            uoffset += len(piece)
            coffset += len(packed)
            compressed.append(packed)
        self.header.chunk_table_count = len(self.chunk_table)
        self.header.file_size = coffset
        return compressed

    def _write_file_table(self) -> None:
        try:
            with open(self.path, "r+b") as f:
                f.seek(HEADER_SIZE)
                f.write(self._pack_table(self.file_table))
        except OSError as exc:
            raise ArchiveError(FILE_WRITE_ERROR) from exc

    def create(self, base_path: StrPath, files: Iterable[str]) -> int:
        """Build a new archive from *files* under *base_path*; return the entry count.

        Files that cannot be read are skipped, but entry numbers keep their
        position in *files*.
        """
        self.header = BinHeader(
            magic=PLAIN_MAGIC, key=DEFAULT_KEY, max_chunk_size=DEFAULT_MAX_CHUNK_SIZE
        )
        self.file_table = []
        self.chunk_table = []

        parts: list[bytes] = []
        position = 0
        for index, name, data in _read_inputs(base_path, files):
            self.file_table.append(
                BinFileEntry(index, 0, file_hash(name), position, len(data), 0)
            )
            parts.append(data)
            position += len(data)
        self.header.file_table_count = len(self.file_table)
        self.header.data_size = position

        pieces = self._split(b"".join(parts))
        data_offset = HEADER_SIZE + ENTRY_SIZE * (len(self.file_table) + len(pieces))
        compressed = self._append_chunks(pieces, 0, data_offset)

        try:
            with open(self.path, "wb") as f:
                f.write(self._pack_tables())
                f.writelines(self._seal_chunk(i, d) for i, d in enumerate(compressed))
        except OSError as exc:
            raise ArchiveError(FILE_WRITE_ERROR) from exc
        return len(self.file_table)

    def update(self, base_path: StrPath, files: Iterable[str]) -> bool:
        """Replace the contents of existing entries with *files* from *base_path*.

        New data is appended as extra chunks. Names not in the archive are
        ignored. Returns False when there was no data to add.
        """
        parts: list[bytes] = []
        position = self.header.data_size
        for _, name, data in _read_inputs(base_path, files):
            index = self._index_by_hash(name)
            if index is None:
                logger.warning("%s is not present in this archive and will be ignored.", name)
                continue
            entry = self.file_table[index]
            entry.offset = position
            entry.size = len(data)
            parts.append(data)
            position += len(data)
        self.header.file_table_count = len(self.file_table)
        self.header.data_size = position

        buffer = b"".join(parts)
        if not buffer:
            return False

        pieces = self._split(buffer)
        old_data_offset = self._data_offset()
        growth = ENTRY_SIZE * len(pieces)
        compressed = self._append_chunks(
            pieces, self._uncompressed_end(), self.header.file_size
        )
        for entry in self.chunk_table:
            entry.compressed_offset += growth
        self.header.file_size += growth
        first_new = len(self.chunk_table) - len(compressed)

        staging = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(self.path, "rb") as src, open(staging, "wb") as dst:
                dst.write(self._pack_tables())
                src.seek(old_data_offset)
                shutil.copyfileobj(src, dst)
                dst.writelines(
                    self._seal_chunk(i, d) for i, d in enumerate(compressed, start=first_new)
                )
            os.replace(staging, self.path)
        except OSError as exc:
            staging.unlink(missing_ok=True)
            raise ArchiveError(FILE_WRITE_ERROR) from exc
        return True

    def swap_entries(self, swaps: Iterable[Swap]) -> list[Swap]:
        """Exchange the hashes of each pair of entries; return the swaps applied."""
        applied: list[Swap] = []
        for swap in swaps:
            first = ensure_extension(swap.first, "core")
            second = ensure_extension(swap.second, "core")
            first_index = self._index_by_hash(first)
            second_index = self._index_by_hash(second)
            if first_index is None or second_index is None:
                continue
            self.file_table[first_index].hash = file_hash(second)
            self.file_table[second_index].hash = file_hash(first)
            logger.info(
                "swapping %s for %s in bin file %s", swap.first, swap.second, self.path
            )
            applied.append(swap)
        if applied:
            self._write_file_table()
        return applied

    def nuke_hashes(self, names: Iterable[str]) -> list[str]:
        """Zero the hash of every named entry present; return the names changed."""
        changed: list[str] = []
        for name in names:
            index = self._index_by_hash(name)
            if index is None:
                continue
            logger.info("overwriting %s in %s", name, self.path)
            self.file_table[index].hash = 0
            changed.append(name)
        if changed:
            self._write_file_table()
        return changed


class BinInitial(ArchiveBin):
    """The ``initial`` archive of a data directory, under its plain or hashed name."""

    def __init__(self, directory: StrPath, codec: Codec) -> None:
        base = Path(directory)
        super().__init__(base / f"{INITIAL_NAME}{self.extension}", codec)
        self.hashed_path = base / f"{INITIAL_HASH_NAME}{self.extension}"

    def open(self) -> BinInitial:
        if not self.path.is_file():
            if not self.hashed_path.is_file():
                raise ArchiveError(NOT_FOUND_ERROR)
            self.path = self.hashed_path
        super().open()
        return self