"""Metadata of one archive entry."""

from __future__ import annotations

import posixpath
import stat
import time
from dataclasses import dataclass
from typing import Literal

EntryType = Literal[
    "regular",
    "directory",
    "symlink",
    "fifo",
    "socket",
    "block-device",
    "char-device",
    "irregular",
]

_TYPE_BITS: dict[str, int] = {
    "regular": stat.S_IFREG,
    "directory": stat.S_IFDIR,
    "symlink": stat.S_IFLNK,
    "fifo": stat.S_IFIFO,
    "socket": stat.S_IFSOCK,
    "block-device": stat.S_IFBLK,
    "char-device": stat.S_IFCHR,
    "irregular": 0,
}

_DEVICE_TYPES = frozenset({"block-device", "char-device"})


MAX_MINOR = 255


def device_number_of(major: int, minor: int) -> int:
    major, minor = int(major), int(minor)
    if major < 0 or not 0 <= minor <= MAX_MINOR:
        raise ValueError(f"device {major}:{minor} cannot be encoded as major*256+minor")
    return major * 256 + minor


@dataclass(frozen=True)
class Entry:
    """Information about one entry of a source tree.

    `mode` holds permission bits only (including setuid/setgid/sticky);
    the type bits follow from `type` and are available as `st_mode`.
    Regular file content is read through the owning source, never from
    the entry itself.
    """

    path: str
    type: EntryType
    mode: int = 0o644
    uid: int = 0
    gid: int = 0
    size: int = 0
    mtime: int = 0
    symlink_target: str = ""
    device_number: int = 0

    def __post_init__(self) -> None:
        if self.type not in _TYPE_BITS:
            raise ValueError(f"unknown entry type {self.type!r} for {self.path}")
        object.__setattr__(self, "mode", stat.S_IMODE(self.mode))
        if self.type == "symlink" and not self.symlink_target:
            raise ValueError(f"symlink {self.path} has no target")
        if self.type != "symlink" and self.symlink_target:
            raise ValueError(f"{self.type} {self.path} cannot have a symlink target")

    @property
    def name(self) -> str:
        if self.path == "/":
            return "/"
        return posixpath.basename(self.path.rstrip("/"))

    @property
    def is_dir(self) -> bool:
        return self.type == "directory"

    @property
    def is_symlink(self) -> bool:
        return self.type == "symlink"

    @property
    def is_device(self) -> bool:
        return self.type in _DEVICE_TYPES

    @property
    def is_whiteout(self) -> bool:
        # overlayfs marks deleted paths with a 0/0 char device of the same name.
        return self.type == "char-device" and self.device_number == 0

    @property
    def perm(self) -> int:
        return self.mode

    @property
    def st_mode(self) -> int:
        return _TYPE_BITS[self.type] | self.mode

    @property
    def major(self) -> int:
        return self.device_number // 256

    @property
    def minor(self) -> int:
        return self.device_number % 256

    def format_listing(self) -> str:
        name = self.path
        if self.is_dir and self.path != "/":
            name += "/"
        link = f" -> {self.symlink_target}" if self.is_symlink else ""

        if self.is_device:
            size_or_dev = f"{self.major:5d}, {self.minor:5d}"
        else:
            size_or_dev = f"{self.size:12d}"

        if self.type == "irregular":
            mode_str = "?" + stat.filemode(self.mode)[1:]
        else:
            mode_str = stat.filemode(self.st_mode)
        when = time.strftime("%b %e %H:%M", time.gmtime(self.mtime))
        return f"{mode_str:>11s} {self.uid:4d} {self.gid:4d} {size_or_dev} {when} {name}{link}"
