# decima-explorer

Tools for working with Decima engine data archives. It covers `.bin` packed
archives, including encrypted ones, and `.mpk` movie packs. With it you can:

- extract single files by entry number or by name
- extract a file by name from a whole data directory
- list the names held in the game's prefetch file
- pack a directory into a new `.bin`
- repack changed files into an existing `.bin`
- swap file entries between names

It has no dependencies outside the standard library.

## Installation

```
pip install .
```

## Command line

```
decima-explorer -e inputfile fileid outputfile
decima-explorer -e inputfile filename outputfile
decima-explorer -e datadirectory filename outputfile
decima-explorer -e datadirectory filename
decima-explorer -r binfile directory-of-core-files
decima-explorer -p directory-of-core-files outputfile
decima-explorer -s datadirectory swapfile.txt
decima-explorer -l datadirectory
```

Long forms are accepted too: `-extract`, `-repack`, `-pack`, `-swap` and
`-list`. Run with no arguments, or with wrong ones, to get the usage text.
The command exits with status 0 on success and 1 on error.

### `-e`: extract

- **From a single archive.** When the second argument is an archive file,
  the third argument picks the entry. All digits means an entry number;
  anything else is a file name.
- **From a data directory.** When the second argument is a directory, every
  `.bin` and `.mpk` in it is indexed. The named file is then extracted from
  whichever archive holds it. Entry numbers are refused in this mode.

When no output path is given, the file name itself is used as the output
path. Names and output paths without an extension get `.core` added.

### `-l`: list

Reads `prefetch/fullgame.prefetch.core` from the data directory's initial
archive. That archive is `initial.bin`, or its hashed-name form. Every name
the prefetch file holds is written to `file_list.txt` in the current
directory, one per line and ending in CR LF.

### `-p` and `-r`: pack and repack

- `-p` packs every file below a directory into a new `.bin`.
- `-r` replaces the contents of matching entries in an existing `.bin`. The
  new data is appended as extra chunks. Files whose names are not already in
  the archive are skipped.

### `-s`: swap

Exchanges the hashes of entry pairs in every `.bin` of a data directory. The
swap file holds one swap per line:

```
first/file -> second/file
```

Each swap applied is printed.

## Library use

```python
from decima_explorer.hashing import file_hash
from decima_explorer.mpk import ArchiveMoviePack

print(hex(file_hash("prefetch/fullgame.prefetch.core")))

pack = ArchiveMoviePack("movies.mpk").open()
pack.extract_id(0, "first_movie.bk2")
```

### Supplying a codec

To read compressed `.bin` archives, write a subclass of
`decima_explorer.bin.Codec` and pass it to `ArchiveBin`, `BinInitial` or
`Explorer`. The subclass implements two methods, `compress(data)` and
`decompress(data, size)`. When data cannot be handled, the method should
raise `ValueError`.

```python
from decima_explorer.bin import ArchiveBin, Codec

class MyCodec(Codec):
    def compress(self, data): ...
    def decompress(self, data, size): ...

archive = ArchiveBin("data.bin", MyCodec()).open()
content = archive.extract_bytes("some/file")
```

### Modules

| Module | What it holds |
| --- | --- |
| `decima_explorer.hashing` | `murmur3_x86_32`, `murmur3_x86_128`, `murmur3_x64_128` and `file_hash` |
| `decima_explorer.prefetch` | `Prefetch`, `PrefetchString`, `parse_prefetch`, `read_prefetch`, `write_file_table` and `stream_file_table` |
| `decima_explorer.archive` | shared decryption helpers, `Salts`, `Swap`, `ensure_extension` and `ArchiveError` |
| `decima_explorer.bin` | `ArchiveBin`, `BinInitial`, `Codec` and the table entry dataclasses |
| `decima_explorer.mpk` | `ArchiveMoviePack`, `MoviePackHeader` and `MoviePackEntry` |
| `decima_explorer.explorer` | `Explorer`, for directory-wide work, and `parse_swap_file` |
| `decima_explorer.cli` | the `decima-explorer` command (`main`) and `Command` |

Errors are raised as `decima_explorer.archive.ArchiveError`. Its `message`
attribute holds the error text.

## What it does not do

- **No chunk compressor is included.** The `decima-explorer` command, and an
  `Explorer` created without a codec, write `.bin` chunks uncompressed. They
  can read back only chunks stored that way. Extracting from compressed
  `.bin` archives, such as those shipped with the game, fails with "Failed to
  decompress data" until you supply your own `Codec`. This limit does not
  apply to `.mpk` movie packs, whose data is not compressed.
- **No graphical interface.** Only the command line and the library are
  provided.