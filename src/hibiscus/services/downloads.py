"""Auto-download of delivered assets to the local download directory."""

import re
from datetime import datetime
from pathlib import Path
from typing import Optional

_INVALID_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE_RE = re.compile(r"\s+")
_UNDERSCORES_RE = re.compile(r"_+")


def sanitize_filename(text: str) -> str:
    """Strip characters invalid in filenames and collapse whitespace to underscores."""
    text = _INVALID_CHARS_RE.sub("", text)
    text = _WHITESPACE_RE.sub("_", text)
    return _UNDERSCORES_RE.sub("_", text).strip()


def generate_filename(
    prompt: str,
    kind: str,
    filename_format: str = "both",
    now: Optional[datetime] = None,
) -> str:
    """Relative path ``<YYYY-MM-DD>/<name>.<ext>`` for an asset.

    Args:
        prompt: Generation prompt (used for the name)
        kind: "video" gets .mp4, everything else .png
        filename_format: "prompt", "timestamp" or "both"
        now: Timestamp to use (defaults to local now)
    """
    now = now or datetime.now()
    date_str = now.strftime("%Y-%m-%d")
    time_str = now.strftime("%H-%M-%S")

    if filename_format == "prompt":
        name = sanitize_filename(prompt[:50])
    elif filename_format == "timestamp":
        name = f"{date_str}_{time_str}"
    else:
        name = f"{sanitize_filename(prompt[:30])}_{time_str}"

    ext = "mp4" if kind == "video" else "png"
    return f"{date_str}/{name}.{ext}"


def save_download(content: bytes, download_dir: str | Path, relative_path: str) -> Path:
    """Write content under the download directory, creating folders as needed."""
    target = Path(download_dir) / relative_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
    return target
