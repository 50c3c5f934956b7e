import struct

import pytest

from decima_explorer.archive import FILE_OPEN_ERROR, ArchiveError, Swap
from decima_explorer.bin import INVALID_MAGIC_ERROR
from decima_explorer.explorer import Explorer, parse_swap_file
from decima_explorer.hashing import file_hash

BIG = bytes(range(256)) * 1200


@pytest.fixture
def src(tmp_path):
    root = tmp_path / "src"
    (root / "models").mkdir(parents=True)
    (root / "models" / "a.core").write_bytes(b"alpha" * 100)
    (root / "models" / "b.core").write_bytes(BIG)
    (root / "readme.txt").write_bytes(b"notes")
    return root


@pytest.fixture
def packed(tmp_path, src):
    data = tmp_path / "data"
    data.mkdir()
    explorer = Explorer()
    explorer.pack(explorer.list_files(src), src, data / "game.bin")
    return data


def prefetch_bytes(names):
    body = struct.pack("<QI16s", 0, 0, bytes(16)) + struct.pack("<I", len(names))
    for name in names:
        raw = name.encode()
        body += struct.pack("<II", len(raw), 0) + raw
    body += struct.pack("<I", len(names)) + struct.pack(f"<{len(names)}I", *range(len(names)))
    return body + struct.pack("<I", 0)


def test_parse_swap_file():
    text = "models/a -> models/b\nnot a swap\nc->d\r\n  e   ->   f  "
    assert parse_swap_file(text) == [
        Swap("models/a", "models/b"),
        Swap("c", "d"),
        Swap("e", "f"),
    ]


def test_list_files(src):
    assert Explorer.list_files(src) == ["models/a.core", "models/b.core", "readme.txt"]


def test_pack_and_extract_by_name(tmp_path, packed, src):
    out = Explorer().extract(packed / "game.bin", "models/b.core", tmp_path / "b.core")
    assert out.read_bytes() == BIG


def test_extract_by_id_adds_extension(tmp_path, packed, src):
    out = Explorer().extract(packed / "game.bin", 0, tmp_path / "first")
    assert out == tmp_path / "first.core"
    assert out.read_bytes() == (src / "models" / "a.core").read_bytes()


def test_extract_missing_archive(tmp_path):
    with pytest.raises(ArchiveError) as err:
        Explorer().extract(tmp_path / "none.bin", "x.core", tmp_path / "x")
    assert err.value.message == FILE_OPEN_ERROR


def test_build_file_map(packed):
    explorer = Explorer()
    mapping = explorer.build_file_map(packed)
    assert mapping[file_hash("readme.txt")] == packed / "game.bin"
    assert explorer.containing_archive("models/a") == packed / "game.bin"
    assert explorer.containing_archive("models/zzz.core") is None


def test_build_file_map_reports_bad_archive(packed):
    (packed / "broken.bin").write_bytes(b"junk" * 20)
    seen = []
    explorer = Explorer(messages=seen.append)
    explorer.build_file_map(packed)
    assert seen == [INVALID_MAGIC_ERROR]
    assert explorer.containing_archive("models/a.core") == packed / "game.bin"


def test_build_file_map_includes_movie_pack(tmp_path):
    payload = b"movie bytes"
    name = "movies/intro.bk2"
    header = struct.pack("<4I", 0, 0, 1, 48)
    entry = struct.pack("<QIIQQ", file_hash(name), 0, 0, len(payload), 48)
    path = tmp_path / "movies.mpk"
    path.write_bytes(header + entry + payload)
    explorer = Explorer()
    explorer.build_file_map(tmp_path)
    assert explorer.containing_archive(name) == path
    out = explorer.extract(path, name, tmp_path / "intro.bk2")
    assert out.read_bytes() == payload


def test_directory_extract_missing_returns_none(tmp_path, packed):
    explorer = Explorer()
    explorer.build_file_map(packed)
    assert explorer.directory_extract("nowhere.core", tmp_path / "out" / "x") is None


def test_parallel_extract(tmp_path, packed, src):
    explorer = Explorer()
    explorer.build_file_map(packed)
    dest = tmp_path / "dest"
    names = ["models/a.core", "models/b.core", "readme.txt"]
    written = explorer.parallel_extract(dest, names)
    assert sorted(written) == sorted(dest / n for n in names)
    for name in names:
        assert (dest / name).read_bytes() == (src / name).read_bytes()
    assert explorer.progress == len(names)


def test_parallel_extract_counts_missing(tmp_path, packed):
    explorer = Explorer()
    explorer.build_file_map(packed)
    assert explorer.parallel_extract(tmp_path / "dest", ["missing.core"]) == []
    assert explorer.progress == 1


def test_repack_replaces_content(tmp_path, packed, src):
    (src / "models" / "a.core").write_bytes(b"replaced content")
    explorer = Explorer()
    assert explorer.repack(explorer.list_files(src), packed / "game.bin", src) is True
    out = explorer.extract(packed / "game.bin", "models/a.core", tmp_path / "a.core")
    assert out.read_bytes() == b"replaced content"
    out_b = explorer.extract(packed / "game.bin", "models/b.core", tmp_path / "b.core")
    assert out_b.read_bytes() == BIG


def test_swap(tmp_path, packed, src):
    swap_file = tmp_path / "swaps.txt"
    swap_file.write_text("models/a -> models/b\n")
    explorer = Explorer()
    applied = explorer.swap(packed, swap_file)
    assert applied == {packed / "game.bin": [Swap("models/a", "models/b")]}
    out = explorer.extract(packed / "game.bin", "models/a.core", tmp_path / "a.core")
    assert out.read_bytes() == BIG


def test_load_prefetch(tmp_path):
    src = tmp_path / "src"
    (src / "prefetch").mkdir(parents=True)
    (src / "prefetch" / "fullgame.prefetch.core").write_bytes(prefetch_bytes(["a", "b"]))
    data = tmp_path / "data"
    data.mkdir()
    explorer = Explorer()
    explorer.pack(explorer.list_files(src), src, data / "initial.bin")
    prefetch = explorer.load_prefetch(data)
    assert [s.text for s in prefetch.strings] == ["a", "b"]
    assert prefetch.filesizes == [0, 1]