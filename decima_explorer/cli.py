"""Command-line front end for extracting, listing, packing and swapping archive files."""

from __future__ import annotations

import sys
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence

from .archive import ArchiveError
from .explorer import Explorer
from .prefetch import FILE_LIST_NAME, write_file_table

PROGRAM_NAME = "Decima Explorer"
VERSION = "2.7"

USAGE = (
    "Usage:\t decima-explorer [-e/-extract] inputfile fileid outputfile \n"
    "\t decima-explorer [-e/-extract] inputfile filename outputfile\n"
    "\t decima-explorer [-e/-extract] [directory containing data files] filename outputfile\n"
    "\t decima-explorer [-e/-extract] [directory containing data files] filename\n"
    "\t decima-explorer [-r/-repack] [bin file to repack] "
    "[directory containing directories of core files]\n"
    "\t decima-explorer [-p/-pack] [directory containing directories of core files] outputfile\n"
    "\t decima-explorer [-s/-swap] [directory containing data files] [swap text file]\n"
    "\t decima-explorer [-l/-list] [directory containing data files]\n"
    "Available Options:\n"
    "\tList:    \t-l, -list\n"
    "\tPack:\t\t-p, -pack\n"
    "\tSwap:\t\t-s, -swap\n"
    "\tRepack:\t\t-r, -repack\n"
    "\tExtract: \t-e, -extract\n"
)

DIRECTORY_ID_ERROR = "IDs cannot be used with directory extract"


class Command(Enum):
    LIST = "list"
    EXTRACT = "extract"
    PACK = "pack"
    REPACK = "repack"
    SWAP = "swap"


_ALIASES = {
    "-extract": Command.EXTRACT,
    "-e": Command.EXTRACT,
    "-list": Command.LIST,
    "-l": Command.LIST,
    "-repack": Command.REPACK,
    "-r": Command.REPACK,
    "-pack": Command.PACK,
    "-p": Command.PACK,
    "-swap": Command.SWAP,
    "-s": Command.SWAP,
}

# Accepted argument counts, not counting the program name.
_ARG_COUNTS = {
    Command.EXTRACT: (3, 4),
    Command.LIST: (2, 2),
    Command.REPACK: (3, 3),
    Command.PACK: (3, 3),
    Command.SWAP: (3, 3),
}


def parse_command(arg: str) -> Command:
    """Return the command named by an option such as ``-e``; raise ValueError if unknown."""
    try:
        return _ALIASES[arg]
    except KeyError:
        raise ValueError(f"unknown command: {arg}") from None


def _show_error(message: str) -> None:
    print(f"Error: {message}")


def _is_number(arg: str) -> bool:
    return arg.isascii() and arg.isdigit()


def _check_input(args: Sequence[str]) -> Command | None:
    if not args or not args[0].startswith("-"):
        return None
    try:
        command = parse_command(args[0])
    except ValueError:
        return None
    low, high = _ARG_COUNTS[command]
    return command if low <= len(args) <= high else None


def _output_arg(args: Sequence[str]) -> str:
    return args[3] if len(args) == 4 else args[2]


def _file_extract(explorer: Explorer, args: Sequence[str]) -> int:
    explorer.reset_progress()
    output = _output_arg(args)
    Path(output).parent.mkdir(parents=True, exist_ok=True)
    item: int | str = int(args[2]) if _is_number(args[2]) else args[2]
    try:
        explorer.extract(args[1], item, output)
    except ArchiveError as exc:
        _show_error(exc.message)
        print(f"Progress: {explorer.progress}/1")
        return 1
    explorer.update_progress(1)
    print(f"Progress: {explorer.progress}/1")
    print(f"finished extracting file {output}")
    return 0


def _dir_extract(explorer: Explorer, args: Sequence[str]) -> int:
    explorer.reset_progress()
    explorer.build_file_map(args[1])
    if _is_number(args[2]):
        _show_error(DIRECTORY_ID_ERROR)
        return 1
    explorer.directory_extract(args[2], _output_arg(args))
    explorer.update_progress(1)
    print(f"Progress: {explorer.progress}/1")
    print("extraction finished")
    return 0


def _extract(explorer: Explorer, args: Sequence[str]) -> int:
    if Path(args[1]).is_dir():
        return _dir_extract(explorer, args)
    return _file_extract(explorer, args)


def _list(explorer: Explorer, args: Sequence[str]) -> int:
    write_file_table(explorer.load_prefetch(args[1]), FILE_LIST_NAME)
    print(f"File table extracted to {FILE_LIST_NAME}")
    return 0


def _repack(explorer: Explorer, args: Sequence[str]) -> int:
    explorer.repack(explorer.list_files(args[2]), args[1], args[2])
    return 0


def _pack(explorer: Explorer, args: Sequence[str]) -> int:
    explorer.pack(explorer.list_files(args[1]), args[1], args[2])
    return 0


def _swap(explorer: Explorer, args: Sequence[str]) -> int:
    for path, swaps in explorer.swap(args[1], args[2]).items():
        for swap in swaps:
            print(f"swapping {swap.first} for {swap.second} in bin file {path}")
    return 0


_HANDLERS: dict[Command, Callable[[Explorer, Sequence[str]], int]] = {
    Command.EXTRACT: _extract,
    Command.LIST: _list,
    Command.REPACK: _repack,
    Command.PACK: _pack,
    Command.SWAP: _swap,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the command line; return the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    print(f"Running {PROGRAM_NAME} v{VERSION}:")
    command = _check_input(args)
    if command is None:
        print(USAGE)
        return 1
    explorer = Explorer(messages=_show_error)
    try:
        return _HANDLERS[command](explorer, args)
    except ArchiveError as exc:
        _show_error(exc.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())