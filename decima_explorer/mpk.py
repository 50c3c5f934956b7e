"""Reading the ``.mpk`` movie pack archives, which stream their files in fixed blocks."""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import BinaryIO, Union

from .archive import (
    DEFAULT_ERROR,
    FILE_INDEX_ERROR,
    FILE_NAME_ERROR,
    FILE_OPEN_ERROR,
    FILE_WRITE_ERROR,
    MOVIE_SALTS,
    PARSE_HEADER_ERROR,
    ArchiveError,
    decrypt_movie_data,
    decrypt_pair,
    decrypt_words,
    is_encrypted,
)
from .bin import PARSE_FILE_TABLE_ERROR
from .hashing import file_hash

StrPath = Union[str, "PathLike[str]"]

MOVIE_MAGIC = 0x01000D0A
MAX_STREAM = 0x100000
HEADER_SIZE = 0x10
ENTRY_SIZE = 0x20

_HEADER = struct.Struct("<4I")
_ENTRY = struct.Struct("<QIIQQ")


@dataclass
class MoviePackHeader:
    """The 16-byte header of a movie pack."""

    magic: int = 0
    key: int = 0
    table_count: int = 0
    data_offset: int = 0


@dataclass
class MoviePackEntry:
    """One file stored in a movie pack."""

    hash: int = 0
    key: int = 0
    key2: int = 0
    size: int = 0
    offset: int = 0

    @property
    def key_words(self) -> tuple[int, int, int, int]:
        """The four words that seed the decryption of this entry's data."""
        raw = struct.pack("<QII", self.hash, self.key, self.key2)
        return struct.unpack("<4I", raw)


class ArchiveMoviePack:
    """A movie pack on disk: a table of entries over block-encrypted data."""

    extension = ".mpk"
    salts = MOVIE_SALTS
    max_stream = MAX_STREAM

    def __init__(self, path: StrPath) -> None:
        self.path = Path(path)
        self.header = MoviePackHeader()
        self.file_table: list[MoviePackEntry] = []

    @property
    def is_encrypted(self) -> bool:
        return is_encrypted(self.header.magic)

    def open(self) -> ArchiveMoviePack:
        """Read the header and the file table, decrypting them when needed."""
        try:
            f = open(self.path, "rb")
        except OSError as exc:
            raise ArchiveError(FILE_OPEN_ERROR) from exc
        with f:
            raw = f.read(HEADER_SIZE)
            if len(raw) != HEADER_SIZE:
                raise ArchiveError(PARSE_HEADER_ERROR)
            magic, key, count, data_offset = _HEADER.unpack(raw)
            if is_encrypted(magic):
                _, _, count, data_offset = decrypt_words(
                    (magic, key, count, data_offset), key, self.salts.salt_a
                )
            self.header = MoviePackHeader(magic, key, count, data_offset)
            table = f.read(count * ENTRY_SIZE)
            if len(table) != count * ENTRY_SIZE:
                raise ArchiveError(PARSE_FILE_TABLE_ERROR)
        self.file_table = [
            self._parse_entry(record)
            for (record,) in struct.iter_unpack(f"<{ENTRY_SIZE}s", table)
        ]
        return self

    def _parse_entry(self, raw: bytes) -> MoviePackEntry:
        if self.is_encrypted:
            words = struct.unpack("<8I", raw)
            key, key2 = words[2], words[3]
            plain = list(decrypt_pair(words, key, key2, self.salts.salt_a))
            plain[2], plain[3] = key, key2
            raw = struct.pack("<8I", *plain)
        return MoviePackEntry(*_ENTRY.unpack(raw))

    def _index_by_hash(self, name: str) -> int | None:
        target = file_hash(name)
        return next((i for i, e in enumerate(self.file_table) if e.hash == target), None)

    def _copy_streams(self, src: BinaryIO, out: BinaryIO, entry: MoviePackEntry) -> None:
        passes, remainder = divmod(entry.size, self.max_stream)
        sizes = [self.max_stream] * passes + [remainder]
        src.seek(entry.offset)
        for pass_index, size in enumerate(sizes):
            data = src.read(size)
            if len(data) != size:
                raise ArchiveError(DEFAULT_ERROR)
            if self.is_encrypted:
                data = decrypt_movie_data(data, entry.key_words, pass_index, self.salts.salt_b)
            out.write(data)

    def _extract(self, entry: MoviePackEntry, output: StrPath) -> Path:
        target = Path(os.fspath(output))
        try:
            out = open(target, "wb")
        except OSError as exc:
            raise ArchiveError(FILE_WRITE_ERROR) from exc
        with out:
            try:
                src = open(self.path, "rb")
            except OSError as exc:
                raise ArchiveError(FILE_OPEN_ERROR) from exc
            with src:
                self._copy_streams(src, out, entry)
        return target

    def extract_id(self, index: int, output: StrPath) -> Path:
        """Write the entry at table position *index* to *output*."""
        if not 0 <= index < len(self.file_table):
            raise ArchiveError(FILE_INDEX_ERROR)
        return self._extract(self.file_table[index], output)

    def extract_name(
        self, name: str, output: StrPath, suppress_error: bool = False
    ) -> Path | None:
        """Write the file called *name* to *output*.

        Returns the path written, or None when the name is missing and
        *suppress_error* is set.
        """
        index = self._index_by_hash(name)
        if index is None:
            if suppress_error:
                return None
            raise ArchiveError(FILE_NAME_ERROR)
        return self._extract(self.file_table[index], output)