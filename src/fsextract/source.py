"""Source trees the extractor reads from.

A source hands out `Entry` metadata by logical path, lists directory
children by name, and streams regular file content.
"""

from __future__ import annotations

import io
import logging
import posixpath
import tarfile
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Protocol

from .entry import Entry, EntryType, device_number_of
from .errors import NotFoundError, SourceError

log = logging.getLogger(__name__)

_DEFAULT_DIR_MODE = 0o755


class Source(Protocol):
    def lookup(self, path: str) -> Entry: ...

    def list_children(self, entry: Entry) -> Iterator[str]: ...

    def open(self, entry: Entry) -> BinaryIO: ...

    def close(self) -> None: ...


def normalize_path(name: str) -> str:
    """Map an archive member name or user path onto an absolute logical path."""
    name = name.strip()
    if name in ("", ".", "./", "/"):
        return "/"
    return posixpath.normpath("/" + name.lstrip("/"))


def _has_parent_ref(name: str) -> bool:
    return ".." in PurePosixPath(name).parts


@dataclass
class _Tree:
    entries: dict[str, Entry] = field(default_factory=dict)
    children: dict[str, list[str]] = field(default_factory=dict)

    def add(self, entry: Entry) -> None:
        missing: list[str] = []
        ancestor = entry.path
        while ancestor != "/":
            ancestor = posixpath.dirname(ancestor)
            if ancestor in self.entries:
                break
            missing.append(ancestor)
        for path in reversed(missing):
            self._insert(Entry(path=path, type="directory", mode=_DEFAULT_DIR_MODE))
        self._insert(entry)

    def _insert(self, entry: Entry) -> None:
        path = entry.path
        if path != "/":
            parent = posixpath.dirname(path)
            if not self.entries[parent].is_dir:
                log.warning("%s is below non-directory %s and cannot be reached", path, parent)
            names = self.children.setdefault(parent, [])
            name = posixpath.basename(path)
            if name not in names:
                names.append(name)
        if entry.is_dir:
            _ = self.children.setdefault(path, [])
        else:
            dropped = self.children.pop(path, None)
            if dropped:
                self._forget_below(path)
        self.entries[path] = entry

    def _forget_below(self, path: str) -> None:
        prefix = path.rstrip("/") + "/"
        for key in [k for k in self.entries if k.startswith(prefix)]:
            del self.entries[key]
            _ = self.children.pop(key, None)

    def lookup(self, path: str) -> Entry:
        entry = self.entries.get(normalize_path(path))
        if entry is None:
            raise NotFoundError(path)
        return entry

    def list_children(self, entry: Entry) -> Iterator[str]:
        if not entry.is_dir:
            raise SourceError(f"{entry.path} is not a directory", path=entry.path)
        names = self.children.get(entry.path)
        if names is None:
            raise NotFoundError(entry.path)
        return iter(list(names))


class MemorySource:
    """A source tree held entirely in memory.

    Parents are created on demand as 0755 root-owned directories; adding
    an entry at an existing path replaces it.
    """

    def __init__(self) -> None:
        self._tree = _Tree()
        self._content: dict[str, bytes] = {}
        self._tree.add(Entry(path="/", type="directory", mode=_DEFAULT_DIR_MODE))

    def add(self, entry: Entry, content: bytes | None = None) -> Entry:
        entry = _with_path(entry, normalize_path(entry.path))
        self._tree.add(entry)
        if entry.type == "regular":
            self._content[entry.path] = content if content is not None else b""
        else:
            _ = self._content.pop(entry.path, None)
        return entry

    def add_dir(self, path: str, mode: int = _DEFAULT_DIR_MODE, **kw: int) -> Entry:
        return self.add(Entry(path=path, type="directory", mode=mode, **kw))

    def add_file(
        self,
        path: str,
        content: bytes,
        mode: int = 0o644,
        *,
        size: int | None = None,
        **kw: int,
    ) -> Entry:
        entry = Entry(
            path=path,
            type="regular",
            mode=mode,
            size=len(content) if size is None else size,
            **kw,
        )
        return self.add(entry, content)

    def add_symlink(self, path: str, target: str, **kw: int) -> Entry:
        return self.add(
            Entry(path=path, type="symlink", mode=0o777, symlink_target=target, **kw)
        )

    def add_node(
        self,
        path: str,
        kind: EntryType,
        mode: int = 0o644,
        *,
        major: int = 0,
        minor: int = 0,
        **kw: int,
    ) -> Entry:
        return self.add(
            Entry(
                path=path,
                type=kind,
                mode=mode,
                device_number=device_number_of(major, minor),
                **kw,
            )
        )

    def lookup(self, path: str) -> Entry:
        return self._tree.lookup(path)

    def list_children(self, entry: Entry) -> Iterator[str]:
        return self._tree.list_children(entry)

    def open(self, entry: Entry) -> BinaryIO:
        data = self._content.get(entry.path)
        if entry.type != "regular" or data is None:
            raise SourceError(f"{entry.path} has no content", path=entry.path)
        return io.BytesIO(data)

    def close(self) -> None:
        return None


def _with_path(entry: Entry, path: str) -> Entry:
    if entry.path == path:
        return entry
    return Entry(
        path=path,
        type=entry.type,
        mode=entry.mode,
        uid=entry.uid,
        gid=entry.gid,
        size=entry.size,
        mtime=entry.mtime,
        symlink_target=entry.symlink_target,
        device_number=entry.device_number,
    )


class TarSource:
    """Random-access source over a tar archive (.tar, .tar.gz, .tar.bz2, .tar.xz)."""

    def __init__(self, tar_path: str | Path | None = None, *, fileobj: BinaryIO | None = None):
        if tar_path is None and fileobj is None:
            raise ValueError("Either tar_path or fileobj must be provided")
        if tar_path is not None and fileobj is not None:
            raise ValueError("Cannot provide both tar_path and fileobj")

        self.name = str(tar_path) if tar_path is not None else "<stream>"
        try:
            if tar_path is not None:
                self._tar = tarfile.open(tar_path, mode="r:*")
            else:
                self._tar = tarfile.open(fileobj=fileobj, mode="r:*")
        except (tarfile.TarError, OSError) as exc:
            raise SourceError(f"cannot open {self.name}: {exc}", path=self.name) from exc

        self._tree = _Tree()
        self._members: dict[str, tarfile.TarInfo] = {}
        self._tree.add(Entry(path="/", type="directory", mode=_DEFAULT_DIR_MODE))
        try:
            self._index()
        except (tarfile.TarError, OSError) as exc:
            self._tar.close()
            raise SourceError(f"cannot read {self.name}: {exc}", path=self.name) from exc

    def __enter__(self) -> TarSource:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _index(self) -> None:
        for member in self._tar.getmembers():
            if _has_parent_ref(member.name):
                log.warning("skipping %s: member name escapes the archive root", member.name)
                continue
            path = normalize_path(member.name)
            entry = self._to_entry(path, member)
            if entry is None:
                continue
            self._tree.add(entry)
            if entry.type == "regular":
                self._members[path] = member
            else:
                _ = self._members.pop(path, None)

    def _to_entry(self, path: str, member: tarfile.TarInfo) -> Entry | None:
        kind: EntryType
        size = 0
        target = ""
        devno = 0
        if member.isdir():
            kind = "directory"
        elif member.issym():
            kind = "symlink"
            target = member.linkname
            if not target:
                log.warning("skipping symlink %s with empty target", path)
                return None
        elif member.islnk():
            kind = "regular"
            linked = self._members.get(normalize_path(member.linkname))
            if linked is None:
                log.warning("skipping hard link %s: target %s not found", path, member.linkname)
                return None
            size = linked.size
        elif member.isreg():
            kind = "regular"
            size = member.size
        elif member.isfifo():
            kind = "fifo"
        elif member.ischr() or member.isblk():
            kind = "char-device" if member.ischr() else "block-device"
            try:
                devno = device_number_of(member.devmajor, member.devminor)
            except ValueError as exc:
                log.warning("skipping %s: %s", path, exc)
                return None
        else:
            kind = "irregular"

        return Entry(
            path=path,
            type=kind,
            mode=member.mode,
            uid=member.uid,
            gid=member.gid,
            size=size,
            mtime=int(member.mtime),
            symlink_target=target,
            device_number=devno,
        )

    def lookup(self, path: str) -> Entry:
        return self._tree.lookup(path)

    def list_children(self, entry: Entry) -> Iterator[str]:
        return self._tree.list_children(entry)

    def open(self, entry: Entry) -> BinaryIO:
        member = self._members.get(entry.path)
        if member is None:
            raise SourceError(f"{entry.path} has no content", path=entry.path)
        try:
            fp = self._tar.extractfile(member)
        except (tarfile.TarError, OSError) as exc:
            raise SourceError(f"cannot read {entry.path}: {exc}", path=entry.path) from exc
        if fp is None:
            raise SourceError(f"{entry.path} has no content", path=entry.path)
        return fp

    def close(self) -> None:
        self._tar.close()


def open_source(path: str | Path) -> Source:
    p = Path(path)
    if not p.is_file():
        raise SourceError(f"{path}: no such archive", path=str(path))
    try:
        is_tar = tarfile.is_tarfile(p)
    except OSError as exc:
        raise SourceError(f"cannot read {path}: {exc}", path=str(path)) from exc
    if not is_tar:
        raise SourceError(f"{path}: unsupported archive format", path=str(path))
    return TarSource(p)
