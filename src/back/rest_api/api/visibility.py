"""Visibility filter: decides which workspace entries an account may see.

Rules, in order:

1. The path is normalized to a workspace-relative, forward-slash form.
   Paths that escape the workspace are never visible.
2. Dot rule: a path with a ``.``-prefixed segment is hidden unless the
   effective ``with_dot`` flag is on (explicit argument, else the
   account's flag or the global flag).
3. Exclude patterns: a match on the path or on any ancestor directory
   hides it.
4. Include patterns (``files``): an empty list allows everything;
   otherwise a file must match at least one pattern and a directory must
   match one or be able to contain a match.

Glob syntax: ``*`` and ``?`` stay within one path segment, ``**`` spans
segments, ``[...]`` is a character class. A pattern without ``/`` is
matched against the leaf name, so ``*.md`` finds markdown files at any
depth. ``dir/**`` also matches ``dir`` itself.
"""
from __future__ import annotations

import fnmatch
import posixpath
import re
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import Iterable

ROOT = ''


def normalize_relative(path: str | Path, root: Path) -> str | None:
    """Normalize ``path`` to a workspace-relative posix path.

    Returns ``''`` for the workspace root and None when the path points
    outside the workspace.
    """
    raw = str(path).replace('\\', '/')
    root_posix = root.as_posix().rstrip('/')
    if raw.startswith('/') and (raw == root_posix or raw.startswith(root_posix + '/')):
        raw = raw[len(root_posix):]
    raw = raw.lstrip('/')
    if not raw:
        return ROOT
    normalized = posixpath.normpath(raw)
    if normalized == '.':
        return ROOT
    if normalized == '..' or normalized.startswith('../'):
        return None
    return normalized


def _clean_pattern(pattern: str) -> str:
    pattern = pattern.strip().replace('\\', '/')
    while pattern.startswith('./'):
        pattern = pattern[2:]
    return pattern.lstrip('/')


@lru_cache(maxsize=512)
def _compile_glob(pattern: str) -> re.Pattern:
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        i += 1
        if c == '*':
            if i < n and pattern[i] == '*':
                i += 1
                if i < n and pattern[i] == '/':
                    i += 1
                    out.append('(?:.*/)?')
                else:
                    out.append('.*')
            else:
                out.append('[^/]*')
        elif c == '?':
            out.append('[^/]')
        elif c == '[':
            j = pattern.find(']', i + 1 if i < n and pattern[i] in '!]' else i)
            if j == -1:
                out.append(re.escape(c))
                continue
            body = pattern[i:j].replace('\\', '\\\\')
            i = j + 1
            if body.startswith('!'):
                body = '^' + body[1:]
            elif body.startswith('^'):
                body = '\\' + body
            out.append(f'[{body}]')
        else:
            out.append(re.escape(c))
    return re.compile(f"(?s:{''.join(out)})\\Z")


def glob_match(rel_path: str, pattern: str) -> bool:
    """Match a workspace-relative path against one glob pattern."""
    pattern = _clean_pattern(pattern)
    if not pattern:
        return False
    if '/' not in pattern:
        return _compile_glob(pattern).match(PurePosixPath(rel_path).name) is not None
    if _compile_glob(pattern).match(rel_path):
        return True
    if pattern.endswith('/**'):
        return _compile_glob(pattern[:-3]).match(rel_path) is not None
    return False


def _may_contain_match(rel_dir: str, pattern: str) -> bool:
    """True if some path below ``rel_dir`` could match ``pattern``."""
    pattern = _clean_pattern(pattern)
    if not pattern:
        return False
    if '/' not in pattern:
        return True
    pattern_parts = pattern.split('/')
    for index, part in enumerate(rel_dir.split('/')):
        if index >= len(pattern_parts) - 1:
            return False
        if pattern_parts[index] == '**':
            return True
        if not fnmatch.fnmatchcase(part, pattern_parts[index]):
            return False
    return True


def _ancestors(rel_path: str) -> list[str]:
    parts = rel_path.split('/')
    return ['/'.join(parts[:i]) for i in range(1, len(parts))]


class VisibilityFilter:
    """Evaluates include/exclude globs and the dot-file policy."""

    def __init__(self, workspace_root: Path, with_dot: bool = False):
        self.workspace_root = Path(workspace_root).resolve()
        self.with_dot = with_dot

    def normalize(self, path: str | Path) -> str | None:
        return normalize_relative(path, self.workspace_root)

    def effective_with_dot(self, account_with_dot: bool | None, override: bool | None = None) -> bool:
        """Resolve the dot-file flag: explicit override, else account or global."""
        if override is not None:
            return override
        return bool(account_with_dot) or self.with_dot

    def is_visible(
        self,
        path: str | Path,
        *,
        is_dir: bool,
        files: Iterable[str] = (),
        exclude: Iterable[str] = (),
        with_dot: bool | None = None,
    ) -> bool:
        """Return True if the entry at ``path`` may be disclosed."""
        rel = self.normalize(path)
        if rel is None:
            return False
        if rel == ROOT:
            return True

        allow_dot = with_dot if with_dot is not None else self.with_dot
        if not allow_dot and any(part.startswith('.') for part in rel.split('/')):
            return False

        exclude = [p for p in exclude if p]
        for candidate in [rel, *_ancestors(rel)]:
            if any(glob_match(candidate, p) for p in exclude):
                return False

        files = [p for p in files if p]
        if not files:
            return True
        if any(glob_match(rel, p) for p in files):
            return True
        if is_dir:
            return any(_may_contain_match(rel, p) for p in files)
        return False
