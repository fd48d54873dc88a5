"""In-memory file system used by the dry-run interpreter.

Holds the files seeded by the caller plus everything written during one
simulated run, so a read after a write sees the written content. Paths are
normalised to slash-separated form without ``./`` segments.

Unknown paths are treated as absent by ``exists``. Reading one yields a
placeholder unless the file system is ``strict``, in which case it raises
``FileNotFoundError`` the way the production interpreter would.
"""

from __future__ import annotations

import posixpath
from collections.abc import Mapping

from conjure._glob import filter_glob
from conjure._vendor import FrozenDict


def normalize_path(path: str) -> str:
    normalized = posixpath.normpath(path.replace("\\", "/"))
    return "" if normalized == "." else normalized


def _parents(path: str) -> list[str]:
    parents = []
    parent = posixpath.dirname(path)
    while parent and parent not in ("/", "."):
        parents.append(parent)
        parent = posixpath.dirname(parent)
    return parents


def placeholder_content(path: str) -> str:
    return f"[mock content of {path}]"


class MemoryFileSystem:
    def __init__(self, files: Mapping[str, str] | None = None, *, strict: bool = False) -> None:
        self.strict = strict
        self._files: dict[str, str] = {}
        self._dirs: set[str] = set()
        self._deleted: set[str] = set()
        for path, content in (files or {}).items():
            self._store(normalize_path(path), content)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def files(self) -> FrozenDict:
        return FrozenDict(self._files)

    @property
    def deleted(self) -> frozenset[str]:
        return frozenset(self._deleted)

    def _store(self, path: str, content: str) -> None:
        self._files[path] = content
        self._deleted.discard(path)
        self._dirs.update(_parents(path))

    def _is_dir(self, path: str) -> bool:
        if path in self._dirs or path == "":
            return True
        prefix = path + "/"
        return any(name.startswith(prefix) for name in self._files)

    def _under(self, root: str) -> list[str]:
        if not root:
            return list(self._files)
        prefix = root + "/"
        return [name for name in self._files if name.startswith(prefix)]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def exists(self, path: str) -> bool:
        key = normalize_path(path)
        return key in self._files or self._is_dir(key)

    def read(self, path: str) -> str:
        key = normalize_path(path)
        if key in self._files:
            return self._files[key]
        if self.strict or key in self._deleted:
            raise FileNotFoundError(f"No such file: {path}")
        return placeholder_content(path)

    def write(self, path: str, content: str) -> None:
        self._store(normalize_path(path), content)

    def append(self, path: str, content: str, *, create_if_missing: bool = True) -> None:
        key = normalize_path(path)
        if key in self._files:
            self._files[key] += content
        elif create_if_missing:
            self._store(key, content)
        else:
            raise FileNotFoundError(f"No such file: {path}")

    def mkdir(self, path: str, *, recursive: bool = True) -> None:
        key = normalize_path(path)
        parents = _parents(key)
        if not recursive:
            if key in self._files or self._is_dir(key):
                raise FileExistsError(f"File exists: {path}")
            if self.strict and parents and not self._is_dir(parents[0]):
                raise FileNotFoundError(f"No such directory: {parents[0]}")
        self._dirs.add(key)
        self._dirs.update(parents)
        self._deleted.discard(key)

    def glob(self, pattern: str, cwd: str = ".") -> list[str]:
        root = normalize_path(cwd)
        offset = len(root) + 1 if root else 0
        return filter_glob(pattern, [name[offset:] for name in self._under(root)])

    def copy_file(self, source: str, dest: str) -> None:
        self.write(dest, self.read(source))

    def copy_directory(self, source: str, dest: str) -> None:
        src_root, dest_root = normalize_path(source), normalize_path(dest)
        if self.strict and not self._is_dir(src_root):
            raise FileNotFoundError(f"No such directory: {source}")
        offset = len(src_root) + 1 if src_root else 0
        for name in self._under(src_root):
            self._store(posixpath.join(dest_root, name[offset:]), self._files[name])
        self._dirs.add(dest_root)
        self._dirs.update(_parents(dest_root))

    def delete_file(self, path: str) -> None:
        key = normalize_path(path)
        if key not in self._files and (self.strict or key in self._deleted):
            raise FileNotFoundError(f"No such file: {path}")
        self._files.pop(key, None)
        self._deleted.add(key)

    def delete_directory(self, path: str) -> None:
        key = normalize_path(path)
        for name in self._under(key):
            del self._files[name]
            self._deleted.add(name)
        prefix = key + "/"
        self._dirs = {d for d in self._dirs if d != key and not d.startswith(prefix)}
        self._deleted.add(key)


__all__ = ["MemoryFileSystem", "normalize_path", "placeholder_content"]
