# blockget/resume.py
"""
Length-based resume detection for destination and block files.

Only the file size is consulted. A file with the right length but damaged
content is reported as complete; there is no checksum to compare against.
"""

import os
from pathlib import Path

from blockget.errors import FilesystemError
from blockget.models import ResumeInfo, ResumeStatus


def detect_resume(path: Path, expected_size: int) -> ResumeInfo:
    """Classify ``path`` as absent, partially written or complete."""
    try:
        size = os.stat(path).st_size
    except FileNotFoundError:
        return ResumeInfo(ResumeStatus.ABSENT, 0)
    except OSError as e:
        raise FilesystemError(f"Cannot inspect {path}: {e}") from e

    if size >= expected_size:
        return ResumeInfo(ResumeStatus.COMPLETE, expected_size)
    return ResumeInfo(ResumeStatus.PARTIAL, size)
