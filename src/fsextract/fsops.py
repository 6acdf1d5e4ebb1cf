"""Privileged filesystem operations (chmod, chown, mknod).

Root emulators such as fakeroot intercept these calls in different ways,
so the extractor goes through one of three interchangeable providers,
picked once per run by `select_fs_ops`:

- `DirectFsOps` issues the syscalls from this process.
- `CommandFsOps` runs the `chmod`/`chown`/`mknod` utilities, for
  emulators that only see child processes calling libc.
- `LibraryFsOps` resolves the emulator's own exported libc entry points
  and calls them in-process.
"""

from __future__ import annotations

import ctypes
import logging
import os
import stat
import subprocess
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Literal, Protocol, cast

from .entry import Entry
from .errors import FsOpsUnavailableError, OperationError

log = logging.getLogger(__name__)

DEFAULT_FILE_PERM = 0o644

ROOT_EMULATION_MARKER = "FAKEROOTKEY"
FSOPS_ENV = "FSEXTRACT_FSOPS"

FAKEROOT_LIBRARIES: tuple[str, ...] = (
    "libfakeroot-sysv.so",
    "libfakeroot-0.so",
    "libfakeroot.so",
)

# glibc's version argument for __xmknod on Linux.
_MKNOD_VER_LINUX = 0

FsOpsMode = Literal["auto", "direct", "command", "library"]
FSOPS_MODES: tuple[str, ...] = ("auto", "direct", "command", "library")

_NODE_TYPE_BITS: dict[str, int] = {
    "block-device": stat.S_IFBLK,
    "char-device": stat.S_IFCHR,
    "fifo": stat.S_IFIFO,
}


class FsOps(Protocol):
    def chmod(self, path: str, mode: int) -> None: ...

    def chown(self, path: str, uid: int, gid: int) -> None: ...

    def mknod(self, path: str, entry: Entry) -> None: ...


def _node_type_bits(path: str, entry: Entry) -> int:
    bits = _NODE_TYPE_BITS.get(entry.type)
    if bits is None:
        raise OperationError("mknod", path, f"{entry.type} is not a char, block or fifo")
    return bits


class DirectFsOps:
    def chmod(self, path: str, mode: int) -> None:
        try:
            os.chmod(path, stat.S_IMODE(mode))
        except OSError as exc:
            raise OperationError("chmod", path, str(exc)) from exc

    def chown(self, path: str, uid: int, gid: int) -> None:
        try:
            os.lchown(path, uid, gid)
        except OSError as exc:
            raise OperationError("chown", path, str(exc)) from exc

    def mknod(self, path: str, entry: Entry) -> None:
        mode = DEFAULT_FILE_PERM | _node_type_bits(path, entry)
        try:
            os.mknod(path, mode, os.makedev(entry.major, entry.minor))
        except OSError as exc:
            raise OperationError("mknod", path, str(exc)) from exc

    def __repr__(self) -> str:
        return "DirectFsOps()"


class CommandFsOps:
    """Run the coreutils programs, which an LD_PRELOAD emulator does see."""

    def __init__(self, runner: Callable[..., subprocess.CompletedProcess[str]] | None = None):
        self._runner = runner

    def _run(self, op: str, path: str, argv: Sequence[str]) -> None:
        runner = self._runner or subprocess.run
        log.debug("%s argv: %s", op, list(argv))
        try:
            res = runner(
                list(argv),
                text=True,
                capture_output=True,
                check=False,
            )
        except OSError as exc:
            raise OperationError(op, path, f"{type(exc).__name__}: {exc}") from exc
        if res.returncode != 0:
            detail = (res.stderr or "").strip() or f"exit status {res.returncode}"
            raise OperationError(op, path, detail)

    def chmod(self, path: str, mode: int) -> None:
        self._run("chmod", path, ["chmod", f"{stat.S_IMODE(mode):04o}", path])

    def chown(self, path: str, uid: int, gid: int) -> None:
        self._run("chown", path, ["chown", "--no-dereference", f"{uid}:{gid}", path])

    def mknod(self, path: str, entry: Entry) -> None:
        bits = _node_type_bits(path, entry)
        if bits == stat.S_IFCHR:
            argv = [path, "c", str(entry.major), str(entry.minor)]
        elif bits == stat.S_IFBLK:
            argv = [path, "b", str(entry.major), str(entry.minor)]
        else:
            argv = [path, "p"]
        try:
            self._run("mknod", path, ["mknod", f"--mode={entry.perm:o}", *argv])
        except OperationError:
            if os.path.lexists(path):
                raise OperationError("mknod", path, "file exists") from None
            raise

    def __repr__(self) -> str:
        return "CommandFsOps()"


def _load_first(
    names: Sequence[str], loader: Callable[..., Any]
) -> tuple[Any, str]:
    errors: list[str] = []
    for name in names:
        try:
            return loader(name, use_errno=True), name
        except OSError as exc:
            errors.append(f"{name}: {exc}")
    raise FsOpsUnavailableError(
        "unable to open a handle to the library: " + "; ".join(errors)
    )


def _symbol(lib: Any, libname: str, name: str) -> Any:
    try:
        return getattr(lib, name)
    except AttributeError as exc:
        raise FsOpsUnavailableError(
            f"error resolving symbol {name!r} in {libname}: {exc}"
        ) from exc


class LibraryFsOps:
    """Call the root emulator's exported chmod/lchown/mknod through ctypes."""

    def __init__(
        self,
        libraries: Sequence[str] = FAKEROOT_LIBRARIES,
        *,
        loader: Callable[..., Any] = ctypes.CDLL,
        get_errno: Callable[[], int] = ctypes.get_errno,
    ) -> None:
        lib, self.library = _load_first(libraries, loader)
        self._get_errno = get_errno

        self._chmod = _symbol(lib, self.library, "chmod")
        self._chmod.argtypes = [ctypes.c_char_p, ctypes.c_uint]
        self._chmod.restype = ctypes.c_int

        self._lchown = _symbol(lib, self.library, "lchown")
        self._lchown.argtypes = [ctypes.c_char_p, ctypes.c_uint, ctypes.c_uint]
        self._lchown.restype = ctypes.c_int

        # mknod used to be a macro around __xmknod; glibc 2.33 exports it directly.
        self._xmknod = True
        try:
            self._mknod = _symbol(lib, self.library, "__xmknod")
            self._mknod.argtypes = [
                ctypes.c_int,
                ctypes.c_char_p,
                ctypes.c_uint,
                ctypes.POINTER(ctypes.c_uint64),
            ]
        except FsOpsUnavailableError:
            self._xmknod = False
            self._mknod = _symbol(lib, self.library, "mknod")
            self._mknod.argtypes = [ctypes.c_char_p, ctypes.c_uint, ctypes.c_uint64]
        self._mknod.restype = ctypes.c_int

    def _check(self, op: str, path: str, rc: int) -> None:
        if rc == 0:
            return
        errno = self._get_errno()
        detail = os.strerror(errno) if errno else f"returned {rc}"
        raise OperationError(op, path, f"[Errno {errno}] {detail}")

    def chmod(self, path: str, mode: int) -> None:
        rc = self._chmod(os.fsencode(path), stat.S_IMODE(mode))
        self._check("chmod", path, cast(int, rc))

    def chown(self, path: str, uid: int, gid: int) -> None:
        rc = self._lchown(os.fsencode(path), uid, gid)
        self._check("chown", path, cast(int, rc))

    def mknod(self, path: str, entry: Entry) -> None:
        mode = DEFAULT_FILE_PERM | _node_type_bits(path, entry)
        dev = os.makedev(entry.major, entry.minor)
        if self._xmknod:
            rc = self._mknod(
                _MKNOD_VER_LINUX, os.fsencode(path), mode, ctypes.byref(ctypes.c_uint64(dev))
            )
        else:
            rc = self._mknod(os.fsencode(path), mode, dev)
        self._check("mknod", path, cast(int, rc))

    def __repr__(self) -> str:
        return f"LibraryFsOps(library={self.library!r})"


def is_root_emulated(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return bool(env.get(ROOT_EMULATION_MARKER))


def select_fs_ops(
    mode: str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    library_factory: Callable[[], FsOps] = LibraryFsOps,
) -> FsOps:
    env = os.environ if environ is None else environ
    if mode is None:
        mode = env.get(FSOPS_ENV) or "auto"
    if mode not in FSOPS_MODES:
        raise ValueError(
            f"unknown fsops mode {mode!r}; expected one of {', '.join(FSOPS_MODES)}"
        )

    if mode == "direct":
        return DirectFsOps()
    if mode == "command":
        return CommandFsOps()
    if mode == "library":
        return library_factory()

    if not is_root_emulated(env):
        return DirectFsOps()
    try:
        return library_factory()
    except FsOpsUnavailableError as exc:
        log.warning("root emulation detected but %s; running external commands instead", exc)
        return CommandFsOps()
