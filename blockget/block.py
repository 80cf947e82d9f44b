# blockget/block.py
"""
Resumable range fetch of a single block into its own local file.
"""

import logging
from typing import Optional

import requests

from blockget.errors import FilesystemError, IncompleteTransferError, NetworkError
from blockget.models import Block, DownloadConfig, ResumeStatus
from blockget.progress import ByteCounter
from blockget.resume import detect_resume

logger = logging.getLogger(__name__)


class BlockTransfer:
    """Fetches ``block`` from ``url``, continuing from whatever is already on disk.

    The block file is owned by this object for the duration of ``run``; the
    only state shared with sibling transfers is the progress ``counter``.
    """

    def __init__(self, block: Block, url: str, session: requests.Session,
                 counter: ByteCounter, config: Optional[DownloadConfig] = None):
        self.block = block
        self.url = url
        self.session = session
        self.counter = counter
        self.config = config or DownloadConfig()

    def run(self) -> int:
        """Bring the block file to full length. Returns the bytes fetched over the network."""
        block = self.block
        resume = detect_resume(block.file_path, block.length)

        if resume.is_complete:
            block.local_offset = block.length
            self.counter.add(block.length)
            logger.debug("Block %s already complete, skipping", block.file_path.name)
            return 0

        block.local_offset = resume.offset
        if resume.offset:
            self.counter.add(resume.offset)
            logger.debug("Resuming block %s at %d/%d", block.file_path.name, resume.offset, block.length)

        mode = "r+b" if resume.status is ResumeStatus.PARTIAL else "wb"
        try:
            with open(block.file_path, mode) as f:
                f.seek(block.local_offset)
                return self._fetch_into(f)
        except OSError as e:
            raise FilesystemError(f"Block file {block.file_path}: {e}") from e

    def _fetch_into(self, f) -> int:
        block = self.block
        first_byte = block.start + block.local_offset
        headers = {'Range': block.range_header}
        written = 0

        try:
            with self.session.get(self.url, headers=headers, stream=True,
                                  timeout=self.config.timeout) as response:
                # 200 means the server ignored the range; its body is only usable from byte 0
                if response.status_code != 206 and not (response.status_code == 200 and first_byte == 0):
                    raise NetworkError(
                        f"Unexpected HTTP {response.status_code} for {headers['Range']} of {self.url}")

                for data in response.iter_content(chunk_size=self.config.read_buffer_size):
                    if not data:
                        continue
                    needed = block.length - block.local_offset
                    if len(data) > needed:
                        data = data[:needed]
                    f.write(data)
                    block.local_offset += len(data)
                    written += len(data)
                    self.counter.add(len(data))
                    if block.is_complete:
                        break
        except requests.RequestException as e:
            raise NetworkError(f"Block [{block.start}-{block.end}) of {self.url}: {e}") from e

        if not block.is_complete:
            raise IncompleteTransferError(
                f"Block [{block.start}-{block.end}) of {self.url} ended at "
                f"{block.local_offset}/{block.length} bytes")
        return written
