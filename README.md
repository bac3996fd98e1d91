# stowr

`stowr` keeps files in a compressed store and records where they came from,
so they can be put back later. It offers:

- compression with gzip, zstd or lz4, each with its own level rules;
- content deduplication: a file whose bytes are already stored becomes a
  reference to the existing copy instead of a second copy;
- optional delta compression: a file similar enough to one already stored
  is kept as a difference against it;
- an index of stored files, kept either as JSON or in SQLite;
- batch storing and extracting from list files with glob patterns and
  `!`-prefixed exclusions.

## Installation

```
pip install stowr
```

To run the tests:

```
pip install "stowr[test]"
pytest
```

## Quick start

```python
from pathlib import Path

from stowr.config import Config
from stowr.index import create_index
from stowr.storage import StorageManager

config = Config(storage_path=Path("./example_storage"))
storage = StorageManager(config, create_index(config))

Path("example.txt").write_text("Hello, Stowr!")
storage.store_file(Path("example.txt"), False)

for entry in storage.list_files():
    print(entry.original_path, entry.file_size, entry.compressed_size)

for entry in storage.search_files("*.txt"):
    print("found", entry.original_path)

# Put the file back where it was and drop it from the store.
storage.owe_file(Path("example.txt"))
```

Failures raise `stowr.config.StowrError` (delta failures raise its subclass
`stowr.delta.DeltaError`). Progress messages are printed to standard output
and warnings to standard error.

## The storage manager

`stowr.storage.StorageManager(config, index)` stores each file in one of
three ways:

- if deduplication is enabled and a stored base file has the same SHA-256
  hash, an index entry referring to that stored copy is added;
- otherwise, if delta compression is enabled and the most similar stored base
  file reaches `similarity_threshold`, the file is stored as a compressed
  delta against it;
- otherwise the whole file is compressed into the storage directory under a
  new UUID name with the algorithm's extension (`.gz`, `.zst`, `.lz4`).

A path that is already in the index is not stored again. With
`delete_source=True` the source file is removed afterwards.

Other methods:

- `owe_file(file_path)` restores a file to its original path and removes it
  from the index; stored data still used by other entries is kept;
- `rename_file(old_path, new_path)` and `move_file(file_path, new_location)`
  change the recorded original path of a stored file;
- `delete_file(file_path)` removes a file from the index and deletes its
  stored data without extracting it;
- `search_files(pattern)` returns entries whose path matches a shell-style
  pattern, or contains `pattern` as a substring when it is not a valid pattern;
- `store_files_from_list(list_file, delete_source)` and
  `owe_files_from_list(list_file)` work through a list file: one path or
  pattern per line, blank lines and `#` lines skipped, `!pattern` for
  exclusions. Storing expands patterns against the file system; extracting
  matches them against stored paths, where `**` crosses directories and `*`
  and `?` stay within one;
- `owe_all_files()` extracts everything;
- `dedup_stats()`, `delta_stats()`, `is_dedup_enabled()`,
  `is_delta_enabled()` and `similarity_threshold()` report on the store.

When `multithread` is greater than 1, extraction from a list file
decompresses on a thread pool; storing always runs one file at a time.

## Configuration

`stowr.config.Config` holds the settings. `Config.load()` reads
`.stowr/config.json` in the current directory and writes the defaults there
if it is missing. Settings are changed by key with `Config.set(key, value)`
and written back with `Config.save()`; `Config.list()` returns every key with
its current value.

| Key                          | Values                          | Default            |
|------------------------------|---------------------------------|--------------------|
| `storage.path`               | a directory                     | `.stowr/storage`   |
| `index.mode`                 | `auto`, `json`, `sqlite`        | `auto`             |
| `multithread`                | a number greater than 0         | `1`                |
| `compression.algorithm`      | `gzip`, `zstd`, `lz4`           | `gzip`             |
| `compression.level`          | gzip 0-9, zstd 1-22, lz4 unused | `6`                |
| `dedup.enable`               | `true`, `false`                 | `true`             |
| `delta.enable`               | `true`, `false`                 | `false`            |
| `delta.similarity_threshold` | 0.0 to 1.0                      | `0.7`              |
| `delta.algorithm`            | `simple`, `xdelta`, `bsdiff`    | `simple`           |

Changing `compression.algorithm` resets the level to that algorithm's
default. Only the `simple` delta algorithm can produce deltas; the others
raise `DeltaError`.

## Index

`stowr.index.create_index(config)` opens a `JsonIndex` (`index.json`) or a
`SqliteIndex` (`index.db`) in the storage directory. In `auto` mode the JSON
index is used unless it already holds 1000 or more entries, in which case an
SQLite index is opened instead; entries are not copied between the two.
Each entry is a `FileEntry`.

## Lower-level modules

- `stowr.codec`: `compress_bytes`, `decompress_bytes`, `compress_to_file`,
  `decompress_file`, `read_compressed` and `algorithm_for_path`;
- `stowr.dedup`: `calculate_hash` and `ContentDeduplicator`, a hash-to-storage
  map with reference counts;
- `stowr.delta`: `DeltaStorage` with `calculate_similarity`, `create_delta`,
  `apply_delta` and base-file bookkeeping, and `infer_file_type`;
- `stowr.patterns`: `glob_to_regex`, `parse_pattern_list` and the matching
  helpers used by the storage manager.

## Service layer

`stowr.service.StorageService(config=None)` wraps a `StorageManager` for use
behind an application front end. Its commands (`store_file`, `extract_file`,
`delete_file`, `rename_file`, `move_file`) return a message string on
success, and `list_files` and `search_files` return `FileInfo` records (path,
size, compressed size, creation time and compression ratio in percent).
Errors are raised as `StowrError`, as with the storage manager.

## Demo

```
stowr-demo
```

stores a small sample file in the current directory (or the one given with
`--workdir`), lists and searches the store, extracts the file again and
removes the files it created.

## What is not included

There is no command-line tool for storing, extracting or configuring files;
`stowr-demo` is the only command. All other operations are used from Python.