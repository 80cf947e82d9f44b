# blockget/engine.py
"""
Core download engine: range probing, block rounds, ordered merging and verification.
"""

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional

import certifi
import requests
from requests.adapters import HTTPAdapter

# Local imports
from blockget.block import BlockTransfer
from blockget.errors import (AlreadyCompleteError, DownloadError, FilesystemError,
                             IncompleteTransferError, NetworkError, RoundFailedError,
                             SizeMismatchError, UnsupportedRangeError)
from blockget.models import Block, BlockPlan, DownloadConfig, ServerCapabilities, TransferState
from blockget.plan import plan_blocks, split_round
from blockget.progress import ByteCounter, ProgressMonitor
from blockget.resume import detect_resume
from blockget.utils import block_file_glob, format_bytes, get_default_filename

logger = logging.getLogger(__name__)


def create_session(config: DownloadConfig) -> requests.Session:
    """Build a session whose connection pool fits the widest planning tier."""
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=4, pool_maxsize=config.max_workers)
    session.mount('http://', adapter)
    session.mount('https://', adapter)
    session.verify = certifi.where()
    session.headers.update({
        'User-Agent': config.user_agent,
        # Offsets must refer to the raw resource bytes
        'Accept-Encoding': 'identity',
    })
    return session


def probe_range(session: requests.Session, url: str, config: DownloadConfig) -> ServerCapabilities:
    """Discover content length and byte-range support without downloading the body."""
    try:
        with session.get(url, stream=True, allow_redirects=True, timeout=config.timeout) as response:
            if not 200 <= response.status_code < 300:
                raise NetworkError(f"HTTP {response.status_code} probing {url}")
            headers = response.headers
            accept_ranges = headers.get('Accept-Ranges')
            length_header = headers.get('Content-Length')
            content_encoding = headers.get('Content-Encoding')
    except requests.RequestException as e:
        raise NetworkError(f"Probing {url} failed: {e}") from e

    if (accept_ranges or "").strip().lower() != 'bytes':
        raise UnsupportedRangeError(f"{url} does not support range requests (Accept-Ranges: {accept_ranges!r})")

    try:
        content_length = int(length_header)
    except (TypeError, ValueError):
        raise UnsupportedRangeError(f"{url} did not report a usable Content-Length ({length_header!r})")
    if content_length < 0:
        raise UnsupportedRangeError(f"{url} reported a negative Content-Length")
    if content_encoding and content_encoding.strip().lower() != 'identity':
        # ranges would address the encoded representation, not the file
        raise UnsupportedRangeError(f"{url} is served with Content-Encoding: {content_encoding}")

    return ServerCapabilities(
        supports_range=True,
        content_length=content_length,
        accept_ranges=accept_ranges,
        content_encoding=content_encoding,
    )


class DownloadEngine:
    """Manages the entire download process for a single file."""

    def __init__(self, url: str, output_path, config: Optional[DownloadConfig] = None,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.output_path = Path(output_path)
        self.config = config or DownloadConfig()

        self.total_size = 0
        self.write_offset = 0
        self.counter = ByteCounter()
        self.capabilities: Optional[ServerCapabilities] = None
        self.plan: Optional[BlockPlan] = None
        self.blocks: List[Block] = []
        self.rounds_completed = 0
        self.state = TransferState.PROBING

        self._owns_session = session is None
        self.session = session

        # Callbacks for display
        self.progress_callback: Optional[Callable[[int, int, float], None]] = None
        self.status_callback: Optional[Callable[[str], None]] = None

    @classmethod
    def for_directory(cls, url: str, directory, **kwargs) -> "DownloadEngine":
        """Engine saving ``url`` under ``directory`` using the URL's basename."""
        return cls(url, Path(directory) / get_default_filename(url), **kwargs)

    @property
    def downloaded_size(self) -> int:
        return self.counter.value

    def download(self) -> Path:
        """Main download orchestration method."""
        monitor = None
        if self.session is None:
            self.session = create_session(self.config)
        try:
            self.probe()
            self.prepare()

            monitor = ProgressMonitor(self.counter, self.total_size,
                                      progress_callback=self.progress_callback,
                                      interval=self.config.progress_interval)
            monitor.start()

            self._set_state(TransferState.SCHEDULING)
            while self.write_offset < self.total_size:
                self.run_round(self.schedule_round())
                self.merge_blocks(self.blocks)
                self.blocks = []
                self.rounds_completed += 1

            self.verify()
            self._set_state(TransferState.DONE, f"Download done: {self.output_path}")
            return self.output_path
        except DownloadError as e:
            self._set_state(TransferState.FAILED, f"{self.url} -> {self.output_path}: {e.kind}: {e}")
            raise
        finally:
            if monitor is not None:
                monitor.stop()
                monitor.sample()
            if self._owns_session and self.session is not None:
                self.session.close()
                self.session = None

    def probe(self) -> ServerCapabilities:
        self._set_state(TransferState.PROBING, f"Probing {self.url}")
        self.capabilities = probe_range(self.session, self.url, self.config)
        self.total_size = self.capabilities.content_length
        self._update_status(f"Server supports range requests. Total size: {format_bytes(self.total_size)}")
        return self.capabilities

    def prepare(self):
        """Classify the destination and set the write offset to its resumed length."""
        self._set_state(TransferState.RESUMING)
        resume = detect_resume(self.output_path, self.total_size)
        if resume.is_complete:
            raise AlreadyCompleteError(
                f"{self.output_path} already exists, remove it to download again")

        try:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            self.output_path.touch(exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create {self.output_path}: {e}") from e

        self.write_offset = resume.offset
        recovered = self.recover_blocks()
        self.counter.add(self.write_offset)
        if recovered:
            self._update_status(f"Recovered {format_bytes(recovered)} from leftover block files")
        if self.write_offset:
            self._update_status(f"Resuming {self.output_path.name} at {format_bytes(self.write_offset)} "
                                f"of {format_bytes(self.total_size)}")

    def schedule_round(self) -> List[Block]:
        """Plan the next round from the bytes still missing in the destination."""
        remaining = self.total_size - self.write_offset
        self.plan = plan_blocks(remaining, self.config.tiers)
        existing = {}
        for block in self.leftover_blocks():
            # Keep the first file seen per start; later duplicates become stale
            existing.setdefault(block.start, block.end)
        self.blocks = split_round(self.write_offset, self.total_size, self.plan,
                                  self.output_path, self.config.block_marker, existing)
        logger.debug("Round %d: %d block(s) of %d bytes (%d workers) from offset %d",
                     self.rounds_completed + 1, len(self.blocks), self.plan.block_size,
                     self.plan.worker_count, self.write_offset)
        return self.blocks

    def run_round(self, blocks: List[Block]):
        """Fetch every block concurrently and wait for all of them."""
        if not blocks:
            return
        transfers = [BlockTransfer(block, self.url, self.session, self.counter, self.config)
                     for block in blocks]
        with ThreadPoolExecutor(max_workers=len(transfers),
                                thread_name_prefix="blockget-block") as executor:
            futures = [(transfer.block, executor.submit(transfer.run)) for transfer in transfers]
            for block, future in futures:
                try:
                    future.result()
                except Exception as e:
                    block.error = e
                    logger.warning("Block [%d-%d) of %s failed: %s", block.start, block.end, self.url, e)

        failed = [block for block in blocks if block.error is not None]
        if failed:
            raise RoundFailedError(failed)

    def merge_blocks(self, blocks: List[Block]):
        """Append completed block files to the destination in start-offset order."""
        if not blocks:
            return
        try:
            with open(self.output_path, 'r+b') as dest:
                for block in sorted(blocks, key=lambda b: b.start):
                    if block.start != self.write_offset:
                        raise DownloadError(
                            f"Block [{block.start}-{block.end}) does not continue destination at {self.write_offset}")
                    on_disk = block.file_path.stat().st_size
                    if on_disk < block.length:
                        raise IncompleteTransferError(
                            f"Block file {block.file_path} holds {on_disk} of {block.length} bytes")
                    self._append(dest, block.file_path, 0, block.length)
                    self._remove_block_file(block.file_path)
        except OSError as e:
            raise FilesystemError(f"Merging into {self.output_path} failed: {e}") from e

    def leftover_blocks(self) -> List[Block]:
        """Block files of this destination found on disk, ordered by start offset."""
        name_re = re.compile(
            re.escape(self.output_path.name) + r"\." + re.escape(self.config.block_marker) + r"-(\d+)-(\d+)$")
        found = []
        for path in self.output_path.parent.glob(block_file_glob(self.output_path, self.config.block_marker)):
            match = name_re.match(path.name)
            if match:
                start, end = int(match.group(1)), int(match.group(2))
                if start < end <= self.total_size:
                    found.append(Block(start=start, end=end, file_path=path))
        return sorted(found, key=lambda b: (b.start, b.end))

    def recover_blocks(self) -> int:
        """Merge the tail of block files that straddle the destination end.

        A block file ``<dest>.<marker>-<s>-<e>`` holds resource bytes from ``s``
        onward, so a file with ``s < write_offset < s + size`` (left behind by a
        merge that stopped midway) extends the destination without a request.
        Files starting exactly at the write offset are reused by the scheduler.
        Returns the bytes recovered.
        """
        recovered = 0
        try:
            with open(self.output_path, 'r+b') as dest:
                progressed = True
                while progressed and self.write_offset < self.total_size:
                    progressed = False
                    for block in self.leftover_blocks():
                        if not block.start < self.write_offset < block.end:
                            continue
                        available = min(block.file_path.stat().st_size, block.length)
                        skip = self.write_offset - block.start
                        if available <= skip:
                            continue
                        count = available - skip
                        self._append(dest, block.file_path, skip, count)
                        recovered += count
                        logger.debug("Recovered %d bytes from %s", count, block.file_path.name)
                        self._remove_block_file(block.file_path)
                        progressed = True
                        break
        except OSError as e:
            raise FilesystemError(f"Recovering blocks into {self.output_path} failed: {e}") from e
        return recovered

    def _append(self, dest, path: Path, skip: int, count: int):
        """Copy ``count`` bytes of ``path`` starting at ``skip`` to the destination write offset."""
        buffer_size = self.config.copy_buffer_size
        dest.seek(self.write_offset)
        with open(path, 'rb') as src:
            src.seek(skip)
            left = count
            while left > 0:
                data = src.read(min(buffer_size, left))
                if not data:
                    raise IncompleteTransferError(f"Block file {path} ended {left} bytes early")
                dest.write(data)
                self.write_offset += len(data)
                left -= len(data)
        dest.flush()

    def verify(self):
        """Verify the destination reached the advertised size."""
        self._set_state(TransferState.VERIFYING, "Verifying download...")
        try:
            actual_size = self.output_path.stat().st_size
        except OSError as e:
            raise FilesystemError(f"Cannot stat {self.output_path}: {e}") from e
        if actual_size != self.total_size:
            raise SizeMismatchError(
                f"{self.output_path} is {actual_size} bytes, expected {self.total_size}")
        self.remove_stale_blocks()

    def remove_stale_blocks(self):
        """Delete block files of this destination left over from differently planned runs."""
        pattern = block_file_glob(self.output_path, self.config.block_marker)
        for stale in self.output_path.parent.glob(pattern):
            self._remove_block_file(stale)

    def _remove_block_file(self, path: Path):
        try:
            os.remove(path)
        except OSError as e:
            # Destination data is already correct at this point
            logger.warning("Could not remove block file %s: %s", path, e)

    def _set_state(self, state: TransferState, message: Optional[str] = None):
        self.state = state
        logger.debug("%s: %s", self.output_path.name, state.value)
        if message:
            self._update_status(message)

    def _update_status(self, message: str):
        """Send status update to the log and the status callback."""
        if self.state is TransferState.FAILED:
            logger.error(message)
        else:
            logger.info(message)
        if self.status_callback:
            self.status_callback(message)
