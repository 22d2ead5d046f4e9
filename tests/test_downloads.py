"""Download filename and file writing tests."""

from datetime import datetime

import pytest

from hibiscus.services.downloads import generate_filename, sanitize_filename, save_download

NOW = datetime(2024, 5, 17, 14, 3, 9)


def test_sanitize_filename():
    assert sanitize_filename('a <red> fox: "wild"?') == "a_red_fox_wild"
    assert sanitize_filename("many   spaces\there") == "many_spaces_here"


@pytest.mark.parametrize(
    "filename_format, kind, expected",
    [
        ("both", "image", "2024-05-17/a_red_fox_14-03-09.png"),
        ("prompt", "image", "2024-05-17/a_red_fox.png"),
        ("timestamp", "video", "2024-05-17/2024-05-17_14-03-09.mp4"),
    ],
)
def test_generate_filename(filename_format, kind, expected):
    assert generate_filename("a red fox", kind, filename_format, now=NOW) == expected


def test_generate_filename_truncates_long_prompts():
    name = generate_filename("x" * 200, "image", "prompt", now=NOW)

    assert name == f"2024-05-17/{'x' * 50}.png"


def test_save_download_creates_dated_folder(tmp_path):
    target = save_download(b"data", tmp_path / "Hibiscus", "2024-05-17/fox.png")

    assert target == tmp_path / "Hibiscus" / "2024-05-17" / "fox.png"
    assert target.read_bytes() == b"data"
