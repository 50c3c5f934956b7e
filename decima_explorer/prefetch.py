"""Reading the prefetch core file that lists every file name in the game data."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Iterator, Union

PREFETCH_FILENAME = "prefetch/fullgame.prefetch.core"
FILE_LIST_NAME = "file_list.txt"

_ENCODING = "utf-8"
_ERRORS = "surrogateescape"

StrPath = Union[str, "PathLike[str]"]


@dataclass
class PrefetchString:
    """One file name recorded in the prefetch file, with its stored hash."""

    hash: int
    text: str


@dataclass
class Prefetch:
    """The parsed contents of a prefetch core file."""

    unknown: int = 0
    size: int = 0
    filetype: bytes = bytes(16)
    strings: list[PrefetchString] = field(default_factory=list)
    filesizes: list[int] = field(default_factory=list)
    indices: list[int] = field(default_factory=list)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = memoryview(bytes(data))
        self._pos = 0

    def read(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise ValueError(
                f"truncated prefetch data: wanted {count} bytes at offset {self._pos}"
            )
        chunk = bytes(self._data[self._pos : end])
        self._pos = end
        return chunk

    def u32(self) -> int:
        return struct.unpack("<I", self.read(4))[0]

    def u64(self) -> int:
        return struct.unpack("<Q", self.read(8))[0]

    def u32_array(self) -> list[int]:
        count = self.u32()
        return list(struct.unpack(f"<{count}I", self.read(4 * count)))


def _read_header(reader: _Reader) -> tuple[int, int, bytes]:
    unknown = reader.u64()
    size = reader.u32()
    filetype = reader.read(16)
    return unknown, size, filetype


def _iter_strings(reader: _Reader) -> Iterator[PrefetchString]:
    for _ in range(reader.u32()):
        size = reader.u32()
        hash_value = reader.u32()
        text = reader.read(size).decode(_ENCODING, _ERRORS)
        yield PrefetchString(hash_value, text)


def parse_prefetch(data: bytes) -> Prefetch:
    """Parse prefetch file bytes; raise ValueError if the data is truncated."""
    reader = _Reader(data)
    unknown, size, filetype = _read_header(reader)
    strings = list(_iter_strings(reader))
    filesizes = reader.u32_array()
    indices = reader.u32_array()
    return Prefetch(unknown, size, filetype, strings, filesizes, indices)


def read_prefetch(path: StrPath) -> Prefetch:
    """Read and parse the prefetch file at *path*."""
    return parse_prefetch(Path(path).read_bytes())


def write_file_table(prefetch: Prefetch, path: StrPath = FILE_LIST_NAME) -> list[str]:
    """Write every file name, each ended by CR LF, and return the names."""
    names = [entry.text for entry in prefetch.strings]
    with open(path, "wb") as out:
        for name in names:
            out.write(name.encode(_ENCODING, _ERRORS))
            out.write(b"\r\n")
    return names


def stream_file_table(data: bytes, path: StrPath = FILE_LIST_NAME) -> list[str]:
    """Write the file names straight from prefetch bytes, one per text line.

    Only the header and the name table are read; the rest of the data is ignored.
    """
    reader = _Reader(data)
    _read_header(reader)
    names: list[str] = []
    with open(path, "w", encoding=_ENCODING, errors=_ERRORS) as out:
        for entry in _iter_strings(reader):
            out.write(entry.text + "\n")
            names.append(entry.text)
    return names