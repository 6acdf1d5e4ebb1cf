"""fsextract: materialize filesystem image trees onto disk."""

from __future__ import annotations

__version__ = "0.3.0"

from .entry import Entry, EntryType, device_number_of
from .errors import (
    ExtractError,
    FsOpsUnavailableError,
    NotFoundError,
    OperationError,
    PathEscapeError,
    SizeMismatchError,
    SourceError,
    TargetError,
    UnsupportedTypeError,
)
from .extract import ExtractOptions, Extractor, extract
from .fsops import CommandFsOps, DirectFsOps, FsOps, LibraryFsOps, select_fs_ops
from .source import MemorySource, Source, TarSource, open_source
from .walk import CONTINUE, SKIP_DIR, Abort, walk

__all__ = [
    "CONTINUE",
    "SKIP_DIR",
    "Abort",
    "CommandFsOps",
    "DirectFsOps",
    "Entry",
    "EntryType",
    "ExtractError",
    "ExtractOptions",
    "Extractor",
    "FsOps",
    "FsOpsUnavailableError",
    "LibraryFsOps",
    "MemorySource",
    "NotFoundError",
    "OperationError",
    "PathEscapeError",
    "SizeMismatchError",
    "Source",
    "SourceError",
    "TarSource",
    "TargetError",
    "UnsupportedTypeError",
    "device_number_of",
    "extract",
    "open_source",
    "select_fs_ops",
    "walk",
]
