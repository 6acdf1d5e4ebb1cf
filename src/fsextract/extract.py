"""Materialize a source tree onto the local filesystem.

The extractor walks the source pre-order and creates one filesystem
object per entry, then restores ownership and permissions as requested.
Directories whose recorded mode would keep us from writing their
children are opened up for the duration of the run; the recorded modes
are put back by cleanups that run once, in order, after the walk.
"""

from __future__ import annotations

import logging
import os
import shutil
import socket
import stat
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from .entry import Entry
from .errors import (
    ExtractError,
    PathEscapeError,
    SizeMismatchError,
    SourceError,
    TargetError,
    UnsupportedTypeError,
)
from .fsops import DEFAULT_FILE_PERM, FsOps, select_fs_ops
from .log import VERBOSE
from .source import Source, normalize_path
from .walk import Abort, VisitResult, walk

log = logging.getLogger(__name__)

DEFAULT_DIR_PERM = 0o755
# mode the current uid can always write to
OPEN_DIR_PERM = 0o777
# owner bits a directory needs while its children are being written
_OWNER_RWX = 0o700

_COPY_CHUNK = 1024 * 1024

Cleanup = Callable[[], None]


def _no_cleanup() -> None:
    return None


@dataclass(frozen=True)
class ExtractOptions:
    owners: bool = False
    perms: bool = False
    devices: bool = False
    sockets: bool = False
    whiteouts: bool = False
    strict_cleanup: bool = False


class Extractor:
    """One extraction run of `path` from `source` into `target_dir`."""

    def __init__(
        self,
        source: Source,
        target_dir: str | Path,
        *,
        path: str = "/",
        options: ExtractOptions | None = None,
        ops: FsOps | None = None,
    ) -> None:
        self.source = source
        self.target_dir = os.path.abspath(os.fspath(target_dir))
        self.path = normalize_path(path)
        self.options = options or ExtractOptions()
        self.ops = ops
        # resolved by run()
        self._ops: FsOps
        self._cleanups: list[Cleanup] = []

    def run(self) -> None:
        if self.ops is None:
            self.ops = select_fs_ops()
        self._ops = self.ops
        self._cleanups = []
        log.debug("extractor: source=%r target=%s path=%s options=%r ops=%r",
                  self.source, self.target_dir, self.path, self.options, self.ops)

        try:
            outcome = walk(self.source, self.path, self._visit)
        finally:
            cleanup_error = self._run_cleanups()

        if outcome is not None and outcome.cause is not None:
            raise outcome.cause
        if cleanup_error is not None and self.options.strict_cleanup:
            raise cleanup_error

    def _run_cleanups(self) -> Exception | None:
        first: Exception | None = None
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            try:
                cleanup()
            except (ExtractError, OSError) as exc:
                log.info("Cleanup failed: %s", exc)
                if first is None:
                    first = exc
        return first

    def _visit(self, path: str, entry: Entry | None, error: SourceError | None) -> VisitResult:
        if error is not None or entry is None:
            log.info("extract called with %s and %s", path, error)
            return Abort(error)
        try:
            self._extract(path, entry)
        except (ExtractError, OSError) as exc:
            log.info("extracting %s failed: %s", path, exc)
            return Abort(exc)
        return None

    def _extract(self, path: str, entry: Entry) -> None:
        opts = self.options
        if entry.is_whiteout:
            if not opts.whiteouts:
                log.debug("not extracting white-out file %s", path)
                return
            self._apply_whiteout(path)
            return

        kind = entry.type
        if kind == "socket" and not opts.sockets:
            log.debug("skipping socket %s", path)
            return
        if entry.is_device and not opts.devices:
            log.debug("skipping %s node %s", kind, path)
            return

        log.log(VERBOSE, "%s", path)
        target = self._target_path(path)
        if kind == "directory":
            self._extract_dir(path, target)
        elif kind == "symlink":
            self._extract_symlink(path, target, entry)
        elif kind == "fifo":
            self._extract_fifo(path, target, entry)
        elif kind == "socket":
            self._extract_socket(path, target, entry)
        elif entry.is_device:
            self._extract_device(path, target, entry)
        elif kind == "regular":
            self._extract_regular(path, target, entry)
        else:
            raise UnsupportedTypeError(path, "irregular")

        self._restore_metadata(path, target, entry)

    def _restore_metadata(self, path: str, target: str, entry: Entry) -> None:
        if self.options.owners:
            log.debug("chown(%s, %d, %d)", path, entry.uid, entry.gid)
            self._ops.chown(target, entry.uid, entry.gid)

        # symlink permissions cannot be set.
        if not self.options.perms or entry.is_symlink:
            return

        mode = entry.perm
        suffix = ""
        # owner x is added with rw: children are created through this directory.
        if entry.is_dir and mode & _OWNER_RWX != _OWNER_RWX:
            recorded = mode
            mode |= _OWNER_RWX
            suffix = "(+rwx)"
            self._cleanups.append(self._restore_dir_mode(path, target, recorded))
        log.debug("chmod(%s, %04o)%s", path, mode, suffix)
        self._ops.chmod(target, mode)

    def _restore_dir_mode(self, path: str, target: str, mode: int) -> Cleanup:
        ops = self._ops

        def cleanup() -> None:
            log.debug("fixing %s back to %04o", path, mode)
            ops.chmod(target, mode)

        return cleanup

    def _target_path(self, path: str) -> str:
        rel = normalize_path(path).lstrip("/")
        target = os.path.join(self.target_dir, rel) if rel else self.target_dir
        if target == self.target_dir:
            return target
        base = os.path.realpath(self.target_dir)
        parent = os.path.realpath(os.path.dirname(target))
        if parent != base and not parent.startswith(base + os.sep):
            raise PathEscapeError(target, base)
        return target

    def _apply_whiteout(self, path: str) -> None:
        target = self._target_path(path)
        if not os.path.lexists(target):
            return
        log.debug("applying white-out by removing '%s'", path)
        if os.path.isdir(target) and not os.path.islink(target):
            shutil.rmtree(target)
        else:
            os.unlink(target)

    def _extract_dir(self, path: str, target: str) -> None:
        log.debug("mkdir %s", path)
        # no _create here: an existing directory is reused, not replaced.
        try:
            os.mkdir(target, DEFAULT_DIR_PERM)
        except FileExistsError:
            if stat.S_ISDIR(os.lstat(target).st_mode):
                return
            log.debug("replacing non-directory %s", path)
            os.unlink(target)
            os.mkdir(target, DEFAULT_DIR_PERM)

    def _extract_symlink(self, path: str, target: str, entry: Entry) -> None:
        log.debug("symlink: %s -> %s", path, entry.symlink_target)
        self._create(target, entry, lambda: os.symlink(entry.symlink_target, target))

    def _extract_fifo(self, path: str, target: str, entry: Entry) -> None:
        log.debug("mkfifo: %s", path)
        self._create(target, entry, lambda: os.mkfifo(target, DEFAULT_FILE_PERM))

    def _extract_socket(self, path: str, target: str, entry: Entry) -> None:
        log.debug("socket: %s", path)

        def bind() -> None:
            # listening creates the socket node; nothing is served from it.
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.bind(target)
                sock.listen(1)

        self._create(target, entry, bind)

    def _extract_device(self, path: str, target: str, entry: Entry) -> None:
        log.debug("%s: %s (%d, %d)", entry.type, path, entry.major, entry.minor)
        ops = self._ops
        self._create(target, entry, lambda: ops.mknod(target, entry))

    def _extract_regular(self, path: str, target: str, entry: Entry) -> None:
        log.debug("file: %s (%d bytes)", path, entry.size)

        def write() -> None:
            with self.source.open(entry) as src:
                fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, DEFAULT_FILE_PERM)
                with os.fdopen(fd, "wb") as dst:
                    written = _copy(path, src, dst)
            if written != entry.size:
                raise SizeMismatchError(path, target, written, entry.size)

        self._create(target, entry, write)

    def _create(self, target: str, entry: Entry, creator: Callable[[], None]) -> None:
        cleanup = self._prepare_write(target, entry)
        try:
            creator()
        except BaseException:
            try:
                cleanup()
            except (ExtractError, OSError) as exc:
                # the creation error is the one worth reporting.
                log.info("prepare-write cleanup for %s failed: %s", target, exc)
            raise
        cleanup()

    def _prepare_write(self, target: str, entry: Entry) -> Cleanup:
        """Make `target` creatable and return the cleanup that undoes our changes.

        The parent must be an existing directory. If it is not writable it
        is opened up with OPEN_DIR_PERM and the returned cleanup puts the
        old mode back; the caller runs it once after its creation attempt.
        Whatever occupies `target` is removed, except that an existing
        directory is left alone when `entry` is a directory too.
        """
        ops = self._ops
        parent = os.path.dirname(target)
        try:
            parent_st = os.stat(parent)
        except OSError as exc:
            raise TargetError(f"cannot stat parent of {target}: {exc}", path=target) from exc
        if not stat.S_ISDIR(parent_st.st_mode):
            raise TargetError(f"dirname({target}) = {parent} : not a directory", path=target)

        cleanup: Cleanup = _no_cleanup
        if not os.access(parent, os.W_OK):
            old_mode = stat.S_IMODE(parent_st.st_mode)

            def set_back() -> None:
                ops.chmod(parent, old_mode)

            ops.chmod(parent, OPEN_DIR_PERM)
            if not os.access(parent, os.W_OK):
                try:
                    set_back()
                except (ExtractError, OSError) as exc:
                    raise TargetError(
                        f"cannot make {parent} writable, failed setting back", path=target
                    ) from exc
                raise TargetError(f"cannot make {parent} writable", path=target)
            cleanup = set_back

        try:
            _clear_target(target, entry)
        except OSError:
            try:
                cleanup()
            except (ExtractError, OSError) as exc:
                log.info("prepare-write cleanup for %s failed: %s", target, exc)
            raise
        return cleanup


def _clear_target(target: str, entry: Entry) -> None:
    try:
        st = os.lstat(target)
    except FileNotFoundError:
        return
    if stat.S_ISDIR(st.st_mode):
        if entry.is_dir:
            return
        shutil.rmtree(target)
        return
    os.unlink(target)


def _copy(path: str, src: BinaryIO, dst: BinaryIO) -> int:
    written = 0
    while True:
        try:
            chunk = src.read(_COPY_CHUNK)
        except Exception as exc:
            raise SourceError(f"reading {path} failed: {exc}", path=path) from exc
        if not chunk:
            return written
        _ = dst.write(chunk)
        written += len(chunk)


def extract(
    source: Source,
    target_dir: str | Path,
    *,
    path: str = "/",
    options: ExtractOptions | None = None,
    ops: FsOps | None = None,
) -> None:
    Extractor(source, target_dir, path=path, options=options, ops=ops).run()
