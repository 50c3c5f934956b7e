"""Operations over a directory of game archives: lookup, extraction, packing, swaps."""

from __future__ import annotations

import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from os import PathLike
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .archive import FILE_OPEN_ERROR, ArchiveError, Swap, ensure_extension
from .bin import ArchiveBin, BinInitial, Codec
from .hashing import file_hash
from .mpk import ArchiveMoviePack
from .prefetch import PREFETCH_FILENAME, Prefetch, parse_prefetch

StrPath = Union[str, "PathLike[str]"]
Messages = Callable[[str], None]

PREFETCH_READ_ERROR = "Failed to read the prefetch file"

_SWAP_LINE = re.compile(r"([^\s]+)(\s+)?->(\s+)?([^\s]+)")


def parse_swap_file(text: str) -> list[Swap]:
    """Parse lines of the form ``first -> second``; other lines are ignored."""
    return [
        Swap(match.group(1), match.group(4))
        for line in text.splitlines()
        if (match := _SWAP_LINE.search(line))
    ]


class _StoredCodec(Codec):
    """Codec that keeps chunks uncompressed and rejects chunks it cannot read."""

    def compress(self, data: bytes) -> bytes:
        return bytes(data)

    def decompress(self, data: bytes, size: int) -> bytes:
        if len(data) != size:
            raise ValueError("chunk is not stored uncompressed")
        return bytes(data)


def _setup_output(output: StrPath) -> None:
    Path(output).parent.mkdir(parents=True, exist_ok=True)


class Explorer:
    """Works on a directory of ``.bin`` and ``.mpk`` archives.

    *messages* is called with the text of every error that is skipped over
    rather than raised; without it, those texts are kept in ``skipped``.
    """

    def __init__(self, codec: Optional[Codec] = None, messages: Optional[Messages] = None) -> None:
        self.codec = codec if codec is not None else _StoredCodec()
        self.skipped: list[str] = []
        self.messages = messages if messages is not None else self.skipped.append
        self.file_map: dict[int, Path] = {}
        self.prefetch: Prefetch | None = None
        self._progress = 0
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    # -- progress ----------------------------------------------------------

    @property
    def progress(self) -> int:
        with self._lock:
            return self._progress

    def update_progress(self, count: int) -> None:
        with self._lock:
            self._progress += count

    def reset_progress(self) -> None:
        with self._lock:
            self._progress = 0

    def cancel(self) -> None:
        """Ask a running parallel extraction to stop after its current files."""
        self._cancelled.set()

    # -- lookup ------------------------------------------------------------

    def _open(self, path: StrPath) -> ArchiveBin | ArchiveMoviePack:
        path = Path(path)
        if path.suffix == ArchiveMoviePack.extension:
            return ArchiveMoviePack(path).open()
        return ArchiveBin(path, self.codec).open()

    def build_file_map(self, directory: StrPath) -> dict[int, Path]:
        """Record which archive in *directory* holds each file hash."""
        base = Path(directory)
        archives = sorted(base.glob("*.bin")) + sorted(base.glob("*.mpk"))
        for path in archives:
            try:
                archive = self._open(path)
            except ArchiveError as exc:
                self.messages(exc.message)
                continue
            for entry in archive.file_table:
                self.file_map[entry.hash] = path
        return self.file_map

    def containing_archive(self, name: str) -> Path | None:
        """Return the archive holding *name* (``.core`` if no extension), if known."""
        return self.file_map.get(file_hash(ensure_extension(name, "core")))

    # -- extraction --------------------------------------------------------

    def extract(self, archive_path: StrPath, item: int | str, output: StrPath) -> Path | None:
        """Extract an entry, by number or by name, from one archive into *output*."""
        archive = self._open(archive_path)
        if isinstance(item, int):
            return archive.extract_id(item, output)
        return archive.extract_name(item, output)

    def directory_extract(self, name: str, output: StrPath) -> Path | None:
        """Extract *name* from whichever mapped archive holds it; None if none does."""
        archive = self.containing_archive(name)
        if archive is None:
            return None
        _setup_output(output)
        return self.extract(archive, name, output)

    def parallel_extract(self, directory: StrPath, names: Iterable[str]) -> list[Path]:
        """Extract *names* under *directory* on several threads; return paths written."""
        names = list(names)
        if not names:
            return []
        workers = min(os.cpu_count() or 2, len(names))
        base = Path(directory)

        def work(name: str) -> Path | None:
            if self._cancelled.is_set():
                return None
            try:
                result = self.directory_extract(name, base / name)
            except ArchiveError as exc:
                self.messages(exc.message)
                result = None
            self.update_progress(1)
            return result

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(work, names))
        return [r for r in results if r is not None]

    def load_prefetch(self, bin_directory: StrPath) -> Prefetch:
        """Read the prefetch file from the ``initial`` archive in *bin_directory*."""
        initial = BinInitial(bin_directory, self.codec).open()
        data = initial.extract_bytes(PREFETCH_FILENAME)
        if not data:
            raise ArchiveError(PREFETCH_READ_ERROR)
        try:
            self.prefetch = parse_prefetch(data)
        except ValueError as exc:
            raise ArchiveError(PREFETCH_READ_ERROR) from exc
        return self.prefetch

    # -- writing -----------------------------------------------------------

    @staticmethod
    def list_files(directory: StrPath) -> list[str]:
        """Return every file below *directory* as a sorted relative POSIX path."""
        base = Path(directory)
        return sorted(p.relative_to(base).as_posix() for p in base.rglob("*") if p.is_file())

    def pack(self, files: Iterable[str], directory: StrPath, filename: StrPath) -> int:
        """Create archive *filename* from *files* under *directory*."""
        return ArchiveBin(filename, self.codec).create(directory, files)

    def repack(self, files: Iterable[str], filename: StrPath, directory: StrPath) -> bool:
        """Replace entries of archive *filename* with *files* under *directory*."""
        return ArchiveBin(filename, self.codec).open().update(directory, files)

    def swap(self, data_dir: StrPath, swap_file: StrPath) -> dict[Path, list[Swap]]:
        """Apply the swaps listed in *swap_file* to every ``.bin`` in *data_dir*."""
        try:
            text = Path(swap_file).read_text(encoding="utf-8", errors="surrogateescape")
        except OSError as exc:
            raise ArchiveError(FILE_OPEN_ERROR) from exc
        swaps = parse_swap_file(text)
        applied: dict[Path, list[Swap]] = {}
        for path in sorted(Path(data_dir).glob("*.bin")):
            try:
                archive = ArchiveBin(path, self.codec).open()
            except ArchiveError as exc:
                self.messages(exc.message)
                continue
            done = archive.swap_entries(swaps)
            if done:
                applied[path] = done
        return applied