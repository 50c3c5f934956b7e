import random
import zlib
from pathlib import Path

import pytest

from decima_explorer.archive import FILE_INDEX_ERROR, FILE_NAME_ERROR, ArchiveError, Swap
from decima_explorer.bin import (
    ArchiveBin,
    BinChunkEntry,
    BinFileEntry,
    BinHeader,
    BinInitial,
    Codec,
)
from decima_explorer.hashing import file_hash


class ZlibCodec(Codec):
    def compress(self, data):
        return zlib.compress(data)

    def decompress(self, data, size):
        try:
            out = zlib.decompress(data)
        except zlib.error as exc:
            raise ValueError(str(exc)) from exc
        if len(out) != size:
            raise ValueError("size mismatch")
        return out


class BrokenCodec(ZlibCodec):
    def decompress(self, data, size):
        raise ValueError("broken")


BIG = random.Random(1).randbytes(300_000)
CONTENTS = {
    "models/a.core": b"alpha contents",
    "models/big.core": BIG,
    "sounds/b.core": b"bravo" * 100,
}


def write_sources(root: Path, contents: dict) -> Path:
    for name, data in contents.items():
        target = root / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    return root


def make_archive(tmp_path, contents=CONTENTS, name="out.bin"):
    src = write_sources(tmp_path / "src", contents)
    out = tmp_path / name
    ArchiveBin(out, ZlibCodec()).create(src, list(contents))
    return out


def opened(path, codec=None):
    return ArchiveBin(path, codec or ZlibCodec()).open()


def test_round_trip_extracts_every_file(tmp_path):
    archive = opened(make_archive(tmp_path))
    for name, data in CONTENTS.items():
        assert archive.extract_bytes(name) == data


def test_created_header_fixed_values(tmp_path):
    path = make_archive(tmp_path)
    archive = opened(path)
    assert archive.header.magic == 0x20304050
    assert archive.header.key == 0x7FF6
    assert archive.header.max_chunk_size == 0x40000
    assert not archive.is_encrypted
    assert archive.header.data_size == sum(len(d) for d in CONTENTS.values())
    assert archive.header.file_table_count == len(CONTENTS)
    assert archive.header.chunk_table_count == len(archive.chunk_table)
    assert sum(c.uncompressed_size for c in archive.chunk_table) == archive.header.data_size
    assert archive.header.file_size == path.stat().st_size
    assert path.read_bytes()[:4] == b"\x50\x40\x30\x20"


def test_file_entries_hash_names_in_order(tmp_path):
    archive = opened(make_archive(tmp_path))
    assert [e.hash for e in archive.file_table] == [file_hash(n) for n in CONTENTS]
    assert [e.entry_num for e in archive.file_table] == [0, 1, 2]


def test_missing_input_is_skipped_but_keeps_index(tmp_path):
    src = write_sources(tmp_path / "src", {"a.core": b"one", "b.core": b"two"})
    out = tmp_path / "out.bin"
    count = ArchiveBin(out, ZlibCodec()).create(src, ["a.core", "gone.core", "b.core"])
    archive = opened(out)
    assert count == 2
    assert [e.entry_num for e in archive.file_table] == [0, 2]
    assert archive.extract_bytes("b.core") == b"two"


def test_struct_round_trips():
    header = BinHeader(0x20304050, 0x7FF6, 1000, 900, 3, 2, 0x40000)
    file_entry = BinFileEntry(4, 5, 6, 7, 8, 9)
    chunk_entry = BinChunkEntry(1, 2, 3, 4, 5, 6)
    assert len(header.pack()) == 40
    assert BinHeader.unpack(header.pack()) == header
    assert BinFileEntry.unpack(file_entry.pack()) == file_entry
    assert BinChunkEntry.unpack(chunk_entry.pack()) == chunk_entry


def test_extract_id_writes_with_core_extension(tmp_path):
    archive = opened(make_archive(tmp_path))
    written = archive.extract_id(2, tmp_path / "third")
    assert written == tmp_path / "third.core"
    assert written.read_bytes() == CONTENTS["sounds/b.core"]


def test_extract_id_missing_raises(tmp_path):
    archive = opened(make_archive(tmp_path))
    with pytest.raises(ArchiveError) as info:
        archive.extract_id(99, tmp_path / "x")
    assert info.value.message == FILE_INDEX_ERROR


def test_extract_name_and_missing_name(tmp_path):
    archive = opened(make_archive(tmp_path))
    written = archive.extract_name("models/a", tmp_path / "a_out.bin", False)
    assert written.read_bytes() == CONTENTS["models/a.core"]
    assert archive.extract_name("nope", tmp_path / "n", True) is None
    with pytest.raises(ArchiveError) as info:
        archive.extract_name("nope", tmp_path / "n", False)
    assert info.value.message == FILE_NAME_ERROR


def test_extract_bytes_adds_core_extension(tmp_path):
    archive = opened(make_archive(tmp_path))
    assert archive.extract_bytes("sounds/b") == CONTENTS["sounds/b.core"]


def test_open_errors(tmp_path):
    with pytest.raises(ArchiveError):
        opened(tmp_path / "missing.bin")
    bogus = tmp_path / "bogus.bin"
    bogus.write_bytes(b"\x00" * 64)
    with pytest.raises(ArchiveError):
        opened(bogus)


def test_decompress_failure_raises(tmp_path):
    archive = opened(make_archive(tmp_path), BrokenCodec())
    with pytest.raises(ArchiveError):
        archive.extract_bytes("models/a.core")


def test_update_replaces_contents(tmp_path):
    path = make_archive(tmp_path)
    patch = write_sources(tmp_path / "patch", {"models/a.core": b"new alpha data"})
    assert opened(path).update(patch, ["models/a.core"]) is True
    archive = opened(path)
    assert archive.extract_bytes("models/a.core") == b"new alpha data"
    assert archive.extract_bytes("models/big.core") == BIG
    assert archive.extract_bytes("sounds/b.core") == CONTENTS["sounds/b.core"]
    assert archive.header.file_size == path.stat().st_size


def test_update_ignores_unknown_names(tmp_path):
    path = make_archive(tmp_path)
    patch = write_sources(tmp_path / "patch", {"unknown.core": b"data"})
    before = path.read_bytes()
    assert opened(path).update(patch, ["unknown.core"]) is False
    assert path.read_bytes() == before


def test_encrypted_update_round_trip(tmp_path):
    path = make_archive(tmp_path, {"a.core": b"plain", "b.core": b"other"})
    archive = opened(path)
    plain_header = archive.header.pack()
    archive.header.magic = 0x21304050
    patch = write_sources(tmp_path / "patch", {"a.core": b"secret payload"})
    assert archive.update(patch, ["a.core"])

    reopened = opened(path)
    assert reopened.is_encrypted
    assert reopened.header == archive.header
    assert reopened.extract_bytes("a.core") == b"secret payload"
    assert path.read_bytes()[8:40] != archive.header.pack()[8:40]
    assert plain_header[8:40] != path.read_bytes()[8:40]


def test_swap_entries(tmp_path):
    path = make_archive(tmp_path, {"a.core": b"first", "b.core": b"second"})
    archive = opened(path)
    assert archive.swap_entries([Swap("a", "b"), Swap("a", "missing")]) == [Swap("a", "b")]
    reopened = opened(path)
    assert reopened.extract_bytes("a.core") == b"second"
    assert reopened.extract_bytes("b.core") == b"first"


def test_nuke_hashes(tmp_path):
    path = make_archive(tmp_path, {"a.core": b"first", "b.core": b"second"})
    assert opened(path).nuke_hashes(["a.core", "zzz.core"]) == ["a.core"]
    reopened = opened(path)
    assert reopened.file_table[0].hash == 0
    with pytest.raises(ArchiveError):
        reopened.extract_bytes("a.core")
    assert reopened.extract_bytes("b.core") == b"second"


def test_initial_plain_name(tmp_path):
    make_archive(tmp_path, {"x.core": b"x"}, name="initial.bin")
    initial = BinInitial(tmp_path, ZlibCodec()).open()
    assert initial.extract_bytes("x.core") == b"x"


def test_initial_hashed_name(tmp_path):
    make_archive(tmp_path, {"x.core": b"y"}, name="7017f9bb9d52fc1c4433599203cc51b1.bin")
    initial = BinInitial(tmp_path, ZlibCodec()).open()
    assert initial.path.name == "7017f9bb9d52fc1c4433599203cc51b1.bin"
    assert initial.extract_bytes("x.core") == b"y"


def test_initial_missing(tmp_path):
    with pytest.raises(ArchiveError) as info:
        BinInitial(tmp_path, ZlibCodec()).open()
    assert info.value.message == "Failed to find initial archive"