# blockget/models.py
"""
Data Models for the blockget downloader
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

MiB = 1024 * 1024
GiB = 1024 * MiB


class ResumeStatus(Enum):
    """How much of a local file is already on disk."""
    ABSENT = "absent"
    PARTIAL = "partial"
    COMPLETE = "complete"


class TransferState(Enum):
    PROBING = "probing"
    RESUMING = "resuming"
    SCHEDULING = "scheduling"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ResumeInfo:
    """Result of inspecting a local file against its expected size"""
    status: ResumeStatus
    offset: int = 0

    @property
    def is_complete(self) -> bool:
        return self.status is ResumeStatus.COMPLETE


@dataclass
class Block:
    """A half-open byte range [start, end) fetched into its own local file"""
    start: int
    end: int
    file_path: Path
    local_offset: int = 0
    error: Optional[BaseException] = None

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def range_header(self) -> str:
        # HTTP ranges are end-inclusive
        return f"bytes={self.start + self.local_offset}-{self.end - 1}"

    @property
    def is_complete(self) -> bool:
        return self.local_offset >= self.length


@dataclass(frozen=True)
class ServerCapabilities:
    """Detected server capabilities"""
    supports_range: bool = False
    content_length: Optional[int] = None
    accept_ranges: Optional[str] = None
    content_encoding: Optional[str] = None


@dataclass(frozen=True)
class PlanTier:
    """One row of the block planning table.

    A tier applies while the remaining byte count is <= ``max_remaining``
    (``None`` means unbounded). The block size is either ``remaining //
    divisor`` or, when ``fixed_block_size`` is set, that constant.
    """
    max_remaining: Optional[int]
    worker_count: int
    divisor: int = 1
    fixed_block_size: Optional[int] = None


@dataclass(frozen=True)
class BlockPlan:
    worker_count: int
    block_size: int


DEFAULT_TIERS: Tuple[PlanTier, ...] = (
    PlanTier(max_remaining=10 * MiB, worker_count=8, divisor=8),
    PlanTier(max_remaining=100 * MiB, worker_count=16, divisor=8),
    PlanTier(max_remaining=1 * GiB, worker_count=32, divisor=16),
    PlanTier(max_remaining=None, worker_count=64, fixed_block_size=64 * MiB),
)


@dataclass
class DownloadConfig:
    """Tunables shared by every transfer of one invocation"""
    tiers: Tuple[PlanTier, ...] = DEFAULT_TIERS
    read_buffer_size: int = 8192
    copy_buffer_size: int = 64 * 1024
    connect_timeout: float = 30.0
    read_timeout: float = 30.0
    user_agent: str = "blockget/1.0"
    progress_interval: float = 1.0
    block_marker: str = "blockget"

    @property
    def timeout(self) -> Tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)

    @property
    def max_workers(self) -> int:
        return max(tier.worker_count for tier in self.tiers)
