"""Pattern handling for file lists: wildcard expansion, exclusion and index search."""

from __future__ import annotations

import glob as _glob
import os
import re
from os import PathLike
from pathlib import Path
from typing import Union

from stowr.config import StowrError

PathArg = Union[str, "PathLike[str]"]

_WILDCARDS = ("*", "?", "[")
_SEPARATORS = {"/", os.sep}
_REGEX_SPECIALS = "^$(){}|+."


def glob_to_regex(pattern: str) -> str:
    """Translate a wildcard pattern into an anchored regular expression.

    ``**`` matches across directories, ``*`` and ``?`` stay within one path
    component, and both ``/`` and ``\\`` match either separator.
    """
    parts = ["^"]
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "*":
            if i + 1 < len(pattern) and pattern[i + 1] == "*":
                parts.append(".*")
                i += 1
            else:
                parts.append(r"[^/\\]*")
        elif c == "?":
            parts.append(r"[^/\\]")
        elif c in "[]":
            parts.append(c)
        elif c in "\\/":
            parts.append(r"[/\\]")
        elif c in _REGEX_SPECIALS:
            parts.append("\\" + c)
        else:
            parts.append(c)
        i += 1
    parts.append("$")
    return "".join(parts)


def parse_pattern_list(text: str) -> tuple[list[str], list[str]]:
    """Split a pattern list into include and exclude patterns.

    Blank lines and lines starting with ``#`` are skipped; lines starting
    with ``!`` are exclude patterns.
    """
    include: list[str] = []
    exclude: list[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("!"):
            exclude.append(line[1:])
        else:
            include.append(line)
    return include, exclude


def has_wildcards(pattern: str) -> bool:
    """Return True if ``pattern`` contains ``*``, ``?`` or ``[``."""
    return any(w in pattern for w in _WILDCARDS)


def _char_class(specs: str, negate: bool) -> str:
    items: list[str] = []
    k = 0
    while k < len(specs):
        if k + 3 <= len(specs) and specs[k + 1] == "-":
            lo, hi = specs[k], specs[k + 2]
            if lo <= hi:
                items.append(f"{re.escape(lo)}-{re.escape(hi)}")
            k += 3
        else:
            items.append(re.escape(specs[k]))
            k += 1
    if not items:
        return "." if negate else "(?!)"
    return f"[{'^' if negate else ''}{''.join(items)}]"


def _compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a shell-style pattern; raise ValueError if it is malformed."""
    parts: list[str] = []
    n = len(pattern)
    i = 0
    while i < n:
        c = pattern[i]
        if c == "?":
            parts.append(".")
            i += 1
        elif c == "*":
            start = i
            while i < n and pattern[i] == "*":
                i += 1
            count = i - start
            if count > 2:
                raise ValueError("wildcards are either regular `*` or recursive `**`")
            if count == 1:
                parts.append(".*")
                continue
            if start > 0 and pattern[start - 1] not in _SEPARATORS:
                raise ValueError("recursive wildcards must form a single path component")
            if i == n:
                parts.append(".*")
            elif pattern[i] in _SEPARATORS:
                parts.append("(?:.*/)?")
                i += 1
            else:
                raise ValueError("recursive wildcards must form a single path component")
        elif c == "[":
            if i + 4 <= n and pattern[i + 1] == "!":
                j = pattern.find("]", i + 3)
                if j != -1:
                    parts.append(_char_class(pattern[i + 2 : j], negate=True))
                    i = j + 1
                    continue
            elif i + 3 <= n and pattern[i + 1] != "!":
                j = pattern.find("]", i + 2)
                if j != -1:
                    parts.append(_char_class(pattern[i + 1 : j], negate=False))
                    i = j + 1
                    continue
            raise ValueError("invalid range pattern")
        else:
            parts.append(re.escape(c))
            i += 1
    return re.compile("".join(parts), re.DOTALL)


def _glob_paths(pattern: str) -> list[Path]:
    try:
        _compile_glob(pattern)
    except ValueError as exc:
        raise StowrError(f"Failed to parse glob pattern: {exc}") from exc
    found = dict.fromkeys(_glob.glob(pattern, recursive=True))
    return sorted(Path(p) for p in found)


def expand_glob(pattern: str) -> list[Path]:
    """Return the regular files on disk matching ``pattern``, sorted."""
    return [path for path in _glob_paths(pattern) if path.is_file()]


def matches_glob(file_path: PathArg, pattern: str) -> bool:
    """Return True if expanding ``pattern`` on disk yields ``file_path``."""
    target = Path(file_path)
    return any(path == target for path in _glob_paths(pattern))


def matches_stored(path: PathArg, pattern: str) -> bool:
    """Match a stored path against a wildcard pattern via :func:`glob_to_regex`."""
    try:
        regex = re.compile(glob_to_regex(pattern))
    except re.error as exc:
        raise StowrError(f"Failed to compile regex pattern: {exc}") from exc
    return regex.fullmatch(str(path)) is not None


def search_matches(path: PathArg, pattern: str) -> bool:
    """Match a path for searching: a shell pattern, or a substring if invalid."""
    text = str(path)
    try:
        regex = _compile_glob(pattern)
    except ValueError:
        return pattern in text
    return regex.fullmatch(text) is not None