from __future__ import annotations

import io
import logging
import tarfile
from collections.abc import Iterator
from pathlib import Path

import pytest

from fsextract import __version__
from fsextract.__main__ import main


@pytest.fixture(autouse=True)
def _restore_logger() -> Iterator[None]:
    logger = logging.getLogger("fsextract")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def _write_archive(path: Path) -> Path:
    with tarfile.open(path, "w") as tf:
        d = tarfile.TarInfo("etc")
        d.type = tarfile.DIRTYPE
        d.mode = 0o755
        tf.addfile(d)

        data = b"nameserver 10.0.0.1\n"
        f = tarfile.TarInfo("etc/resolv.conf")
        f.size = len(data)
        f.mode = 0o600
        f.mtime = 0
        tf.addfile(f, io.BytesIO(data))

        s = tarfile.TarInfo("etc/localtime")
        s.type = tarfile.SYMTYPE
        s.linkname = "/usr/share/zoneinfo/UTC"
        tf.addfile(s)
    return path


def test_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["--version"]) == 0
    assert __version__ in capsys.readouterr().out


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 0
    assert "usage:" in capsys.readouterr().out


def test_unknown_option_is_a_usage_error() -> None:
    assert main(["extract", "--bogus"]) == 2


def test_list_prints_one_line_per_entry(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "fs.tar")

    assert main(["list", str(archive)]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 4
    assert lines[0].endswith(" /")
    assert lines[1].endswith(" /etc/")
    assert lines[2].startswith("-rw-------")
    assert lines[2].endswith(" /etc/resolv.conf")
    assert lines[3].endswith(" /etc/localtime -> /usr/share/zoneinfo/UTC")


def test_list_from_a_subpath(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    archive = _write_archive(tmp_path / "fs.tar")

    assert main(["list", str(archive), "/etc/resolv.conf"]) == 0

    out = capsys.readouterr().out.splitlines()
    assert len(out) == 1
    assert "resolv.conf" in out[0]


def test_list_missing_path_reports_and_fails(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "fs.tar")

    assert main(["list", str(archive), "/nope"]) == 1
    assert "/nope" in capsys.readouterr().err


def test_list_rejects_non_archive(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    junk = tmp_path / "junk"
    _ = junk.write_text("not an archive\n", encoding="utf-8")

    assert main(["list", str(junk)]) == 1
    assert "error opening archive" in capsys.readouterr().err


def test_extract_creates_output_directory(tmp_path: Path) -> None:
    archive = _write_archive(tmp_path / "fs.tar")
    out = tmp_path / "out"

    rc = main(["extract", str(archive), str(out), "--perms", "--fsops", "direct"])

    assert rc == 0
    assert (out / "etc" / "resolv.conf").read_bytes() == b"nameserver 10.0.0.1\n"
    assert (out / "etc" / "resolv.conf").stat().st_mode & 0o777 == 0o600
    assert (out / "etc" / "localtime").is_symlink()


def test_extract_honors_path_option(tmp_path: Path) -> None:
    archive = _write_archive(tmp_path / "fs.tar")
    out = tmp_path / "out"
    (out / "etc").mkdir(parents=True)

    rc = main(
        ["extract", str(archive), str(out), "--path", "/etc/localtime", "--fsops", "direct"]
    )

    assert rc == 0
    assert (out / "etc" / "localtime").is_symlink()
    assert not (out / "etc" / "resolv.conf").exists()


def test_extract_failure_returns_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "fs.tar")
    out = tmp_path / "out"

    rc = main(
        ["extract", str(archive), str(out), "--path", "/etc/resolv.conf", "--fsops", "direct"]
    )

    assert rc == 1
    assert "extract failed" in capsys.readouterr().err


def test_extract_bad_fsops_env_is_an_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "fs.tar")
    monkeypatch.setenv("FSEXTRACT_FSOPS", "telepathy")

    assert main(["extract", str(archive), str(tmp_path / "out")]) == 1
    assert "telepathy" in capsys.readouterr().err
    assert not (tmp_path / "out").exists()


def test_extract_missing_archive_is_an_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    rc = main(["extract", str(tmp_path / "none.tar"), str(tmp_path / "out"), "--fsops", "direct"])

    assert rc == 1
    assert "no such archive" in capsys.readouterr().err


def test_extract_log_level_verbose_names_each_entry(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    archive = _write_archive(tmp_path / "fs.tar")

    rc = main(
        [
            "extract",
            str(archive),
            str(tmp_path / "out"),
            "--fsops",
            "direct",
            "--log-level",
            "verbose",
        ]
    )

    assert rc == 0
    err = capsys.readouterr().err
    assert "Extracting" in err
    assert "/etc/resolv.conf" in err
