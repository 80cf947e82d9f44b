# blockget/utils.py
"""
Shared helper functions for formatting, validation, and file naming.
"""
from pathlib import Path
from typing import Union
from urllib.parse import unquote, urlparse
import glob
import os

UNIT_LABELS = ("B", "KB", "M", "G", "T")


def format_bytes(size: Union[int, float]) -> str:
    """Converts bytes into a human-readable base-1024 string (B, KB, M, G, T)."""
    if not isinstance(size, (int, float)):
        return "0.000B"
    value = float(size)
    n = 0
    while value >= 1024 and n < len(UNIT_LABELS) - 1:
        value /= 1024
        n += 1
    return f"{value:.3f}{UNIT_LABELS[n]}"


def is_valid_url(url: str) -> bool:
    """Performs a basic check to see if a string is an http(s) URL."""
    try:
        result = urlparse(url)
        return result.scheme in ("http", "https") and bool(result.netloc)
    except ValueError:
        return False


def get_default_filename(url: str) -> str:
    """Extracts a filename from a URL path."""
    path = unquote(urlparse(url).path)
    filename = os.path.basename(path.rstrip("/"))
    return filename if filename not in ("", ".", "..") else "download.dat"


def block_file_path(output_path: Path, marker: str, start: int, end: int) -> Path:
    """Deterministic on-disk name of the block covering [start, end)."""
    return output_path.with_name(f"{output_path.name}.{marker}-{start}-{end}")


def block_file_glob(output_path: Path, marker: str) -> str:
    return f"{glob.escape(output_path.name)}.{marker}-*-*"
