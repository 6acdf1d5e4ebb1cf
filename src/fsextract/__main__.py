"""Module entrypoint.

Allows: python -m fsextract
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import textwrap
from collections.abc import Sequence
from typing import cast

from . import __version__
from . import log as log_mod
from .entry import Entry
from .errors import ExtractError, SourceError
from .extract import DEFAULT_DIR_PERM, ExtractOptions, extract
from .fsops import FSOPS_MODES, select_fs_ops
from .source import open_source
from .walk import VisitResult, walk

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


def _build_parser() -> argparse.ArgumentParser:
    epilog = textwrap.dedent(
        """\
        Exit codes:
          0   Success
          1   Source or extraction error
          2   Usage error
        """
    )

    parser = argparse.ArgumentParser(
        prog="fsextract",
        description="List or extract filesystem image archives.",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _ = parser.add_argument(
        "--version",
        action="version",
        version=f"fsextract {__version__}",
        help="Print version and exit.",
    )
    sub = parser.add_subparsers(dest="command")

    list_cmd = sub.add_parser("list", help="List contents of an archive.")
    _ = list_cmd.add_argument("archive", help="Path to the archive.")
    _ = list_cmd.add_argument(
        "path",
        nargs="?",
        default="/",
        help="Start listing at PATH inside the archive (default: /).",
    )

    ext = sub.add_parser(
        "extract", help="Extract contents of an archive to a directory."
    )
    _ = ext.add_argument("archive", help="Path to the archive.")
    _ = ext.add_argument("out_dir", help="Directory to extract into (created if missing).")
    _ = ext.add_argument("--path", default="/", help="Start at PATH (default: /).")
    _ = ext.add_argument("--devs", action="store_true", help="Extract devices (mknod).")
    _ = ext.add_argument(
        "--sockets", action="store_true", help="Extract sockets (unix domain sockets)."
    )
    _ = ext.add_argument(
        "--perms", action="store_true", help="Extract file permissions (chmod)."
    )
    _ = ext.add_argument("--owners", action="store_true", help="Extract file owners (chown).")
    _ = ext.add_argument(
        "--whiteouts",
        action="store_true",
        help="Apply whiteout files during extraction.",
    )
    _ = ext.add_argument(
        "--strict-cleanup",
        action="store_true",
        help="Fail when restoring a directory mode after extraction fails.",
    )
    _ = ext.add_argument(
        "--fsops",
        choices=FSOPS_MODES,
        default=None,
        help=(
            "How to run chmod/chown/mknod (default: $FSEXTRACT_FSOPS or auto; auto "
            "uses the fakeroot library when FAKEROOTKEY is set)."
        ),
    )
    _ = ext.add_argument(
        "--log-level",
        choices=tuple(log_mod.LEVELS),
        default=os.environ.get(log_mod.LOG_LEVEL_ENV) or "info",
        help="Change level of verbosity (default: info).",
    )
    return parser


def _list_main(archive: str, path: str) -> int:
    try:
        source = open_source(archive)
    except SourceError as exc:
        print(f"error opening archive: {exc}", file=sys.stderr)
        return EXIT_ERROR

    errors = 0

    def print_entry(p: str, entry: Entry | None, err: SourceError | None) -> VisitResult:
        nonlocal errors
        if err is not None:
            errors += 1
            print(f"{p}: {err}", file=sys.stderr)
            return None
        if entry is not None:
            print(entry.format_listing())
        return None

    try:
        _ = walk(source, path, print_entry)
    finally:
        source.close()
    return EXIT_ERROR if errors else EXIT_OK


def _extract_main(args: argparse.Namespace) -> int:
    archive = cast(str, args.archive)
    out_dir = cast(str, args.out_dir)
    try:
        log_mod.configure(cast(str, args.log_level))
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE

    try:
        ops = select_fs_ops(cast(str | None, args.fsops))
    except (ValueError, ExtractError) as exc:
        print(f"cannot set up filesystem operations: {exc}", file=sys.stderr)
        return EXIT_ERROR

    try:
        source = open_source(archive)
    except SourceError as exc:
        print(f"error opening archive: {exc}", file=sys.stderr)
        return EXIT_ERROR

    options = ExtractOptions(
        owners=bool(args.owners),
        perms=bool(args.perms),
        devices=bool(args.devs),
        sockets=bool(args.sockets),
        whiteouts=bool(args.whiteouts),
        strict_cleanup=bool(args.strict_cleanup),
    )

    log.info("Extracting %s to %s.", archive, out_dir)
    try:
        try:
            os.mkdir(out_dir, DEFAULT_DIR_PERM)
        except FileExistsError:
            pass
        extract(source, out_dir, path=cast(str, args.path), options=options, ops=ops)
    except (ExtractError, OSError) as exc:
        print(f"extract failed: {exc}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        source.close()
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv))
    except SystemExit as e:
        return int(e.code) if isinstance(e.code, int) else EXIT_USAGE

    command = cast(str | None, getattr(args, "command", None))
    if command is None:
        parser.print_help()
        return EXIT_OK

    if command == "list":
        return _list_main(cast(str, args.archive), cast(str, args.path))
    if command == "extract":
        return _extract_main(args)

    print(f"Unknown command: {command}", file=sys.stderr)
    return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())
