# blockget/errors.py
"""
Exception types raised by the download engine.
"""

from typing import List


class DownloadError(Exception):
    """Base class for every failure a transfer can report."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class UnsupportedRangeError(DownloadError):
    """The server does not advertise byte-range support (or a length)."""


class AlreadyCompleteError(DownloadError):
    """The destination file is already at full size."""


class NetworkError(DownloadError):
    """Transport failure or unexpected HTTP status."""


class IncompleteTransferError(DownloadError):
    """A block ended before all of its bytes arrived."""


class SizeMismatchError(DownloadError):
    """The merged destination does not match the advertised size."""


class FilesystemError(DownloadError):
    """Creating, opening, writing or inspecting a local file failed."""


class RoundFailedError(DownloadError):
    """One or more blocks of a scheduling round failed."""

    def __init__(self, failed_blocks: List):
        self.failed_blocks = list(failed_blocks)
        details = "; ".join(
            f"[{b.start}-{b.end}) {type(b.error).__name__}: {b.error}"
            for b in self.failed_blocks
        )
        super().__init__(f"{len(self.failed_blocks)} block(s) failed: {details}")
