"""Walk-through of storing, listing, searching and extracting a file."""

from __future__ import annotations

import argparse
import shutil
from os import PathLike
from pathlib import Path
from typing import Union

from stowr.config import Config
from stowr.index import FileEntry, create_index
from stowr.storage import StorageManager

PathArg = Union[str, "PathLike[str]"]

SAMPLE_TEXT = "Hello, Stowr!"


def run_demo(workdir: PathArg | None = None) -> list[FileEntry]:
    """Store a sample file in ``workdir``, show it, extract it and clean up.

    Returns the entries that were listed while the file was stored.
    """
    base = Path(workdir) if workdir is not None else Path.cwd()
    print("Stowr Core Library Basic Example")

    storage_dir = base / "example_storage"
    sample = base / "example.txt"
    config = Config(storage_path=storage_dir)
    storage = StorageManager(config, create_index(config))
    sample.write_text(SAMPLE_TEXT, encoding="utf-8")

    try:
        print(f"Storing file: {sample.name}")
        storage.store_file(sample, False)

        print("\nStored files:")
        files = storage.list_files()
        for entry in files:
            ratio = entry.compressed_size / entry.file_size * 100.0
            print(
                f"- {entry.original_path} ({entry.file_size} bytes -> "
                f"{entry.compressed_size} bytes, {ratio:.1f}% compression)"
            )

        print("\nSearching for *.txt files:")
        for entry in storage.search_files("*.txt"):
            print(f"Found: {entry.original_path}")

        print("\nExtracting file to extracted_example.txt")
        storage.owe_file(sample)
    finally:
        for leftover in (sample, base / "extracted_example.txt"):
            leftover.unlink(missing_ok=True)
        shutil.rmtree(storage_dir, ignore_errors=True)

    print("Example completed successfully!")
    return files


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the stowr usage example.")
    parser.add_argument("--workdir", default=None, help="directory to work in")
    args = parser.parse_args(argv)
    run_demo(args.workdir)
    return 0