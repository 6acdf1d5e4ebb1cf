from __future__ import annotations

import stat

import pytest

from fsextract.entry import Entry, device_number_of


def test_whiteout_is_zero_zero_char_device() -> None:
    wh = Entry(path="/a/b", type="char-device", mode=0)
    assert wh.is_whiteout is True
    assert wh.is_device is True

    tty = Entry(path="/dev/tty", type="char-device", device_number=device_number_of(5, 0))
    assert tty.is_whiteout is False

    blk = Entry(path="/dev/loop0", type="block-device", device_number=0)
    assert blk.is_whiteout is False


def test_device_number_splits_into_major_minor() -> None:
    e = Entry(path="/dev/sda1", type="block-device", device_number=device_number_of(8, 1))
    assert e.device_number == 8 * 256 + 1
    assert (e.major, e.minor) == (8, 1)


def test_mode_keeps_permission_bits_and_derives_type_bits() -> None:
    e = Entry(path="/bin/su", type="regular", mode=stat.S_IFREG | 0o4755)
    assert e.mode == 0o4755
    assert e.perm == 0o4755
    assert stat.S_ISREG(e.st_mode)

    d = Entry(path="/etc", type="directory", mode=0o500)
    assert stat.S_ISDIR(d.st_mode)
    assert d.is_dir is True


def test_symlink_target_is_required_and_exclusive() -> None:
    with pytest.raises(ValueError):
        _ = Entry(path="/l", type="symlink")
    with pytest.raises(ValueError):
        _ = Entry(path="/f", type="regular", symlink_target="x")
    with pytest.raises(ValueError):
        _ = Entry(path="/f", type="whatever")  # type: ignore[arg-type]


def test_name_of_root_and_nested_paths() -> None:
    assert Entry(path="/", type="directory").name == "/"
    assert Entry(path="/usr/lib", type="directory").name == "lib"


def test_format_listing_shapes() -> None:
    f = Entry(path="/etc/passwd", type="regular", mode=0o644, uid=0, gid=0, size=12)
    line = f.format_listing()
    assert line.startswith("-rw-r--r--")
    assert line.endswith(" /etc/passwd")
    assert " 12 " in line

    d = Entry(path="/etc", type="directory", mode=0o755)
    assert d.format_listing().endswith(" /etc/")
    assert Entry(path="/", type="directory").format_listing().endswith(" /")

    link = Entry(path="/bin/sh", type="symlink", mode=0o777, symlink_target="busybox")
    assert link.format_listing().startswith("lrwxrwxrwx")
    assert link.format_listing().endswith("/bin/sh -> busybox")

    dev = Entry(path="/dev/null", type="char-device", mode=0o666, device_number=device_number_of(1, 3))
    assert dev.format_listing().startswith("crw-rw-rw-")
    assert "    1,     3 " in dev.format_listing()


def test_device_number_rejects_values_the_encoding_cannot_hold() -> None:
    assert device_number_of(7, 255) == 7 * 256 + 255
    with pytest.raises(ValueError):
        _ = device_number_of(7, 256)
    with pytest.raises(ValueError):
        _ = device_number_of(-1, 0)
