"""Pytest configuration and fixtures"""

import hashlib
import re
import threading
import time
from typing import Dict, List, Optional, Tuple

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from blockget.models import DownloadConfig, PlanTier

URL = "http://files.example.com/pub/archive.bin"
RANGE_RE = re.compile(r"bytes=(\d+)-(\d+)")


def make_payload(size: int) -> bytes:
    """Deterministic bytes with no short period, so misplaced blocks are visible."""
    out = bytearray()
    counter = 0
    while len(out) < size:
        out += hashlib.sha256(counter.to_bytes(8, "big")).digest()
        counter += 1
    return bytes(out[:size])


class FakeResponse:
    def __init__(self, status_code: int, headers: Dict[str, str], body: bytes = b"",
                 fail_after: Optional[int] = None, delay: float = 0.0):
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers)
        self.body = body
        self.fail_after = fail_after
        self.delay = delay
        self.closed = False

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def iter_content(self, chunk_size=1):
        if self.delay:
            time.sleep(self.delay)
        limit = len(self.body) if self.fail_after is None else min(self.fail_after, len(self.body))
        pos = 0
        while pos < limit:
            piece = self.body[pos:min(pos + chunk_size, limit)]
            pos += len(piece)
            yield piece
        if self.fail_after is not None:
            raise requests.exceptions.ChunkedEncodingError("Connection broken: connection reset")

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeSession:
    """Stand-in for requests.Session serving byte ranges of in-memory files.

    ``fail_ranges`` maps a requested first byte to how many bytes are sent before
    the connection breaks; ``delays`` maps a requested first byte to a pause
    before the body starts; ``extra`` appends bytes past the requested range.
    """

    def __init__(self, files: Optional[Dict[str, bytes]] = None,
                 pages: Optional[Dict[str, str]] = None,
                 accept_ranges: Optional[str] = "bytes",
                 send_length: bool = True,
                 fail_ranges: Optional[Dict[int, int]] = None,
                 delays: Optional[Dict[int, float]] = None,
                 ignore_range: bool = False,
                 extra: int = 0,
                 status: int = 200,
                 error: Optional[Exception] = None,
                 content_encoding: Optional[str] = None):
        self.files = files or {}
        self.pages = pages or {}
        self.accept_ranges = accept_ranges
        self.send_length = send_length
        self.fail_ranges = fail_ranges or {}
        self.delays = delays or {}
        self.ignore_range = ignore_range
        self.extra = extra
        self.status = status
        self.error = error
        self.content_encoding = content_encoding
        self.requests: List[Tuple[str, Optional[str]]] = []
        self.closed = False
        self._lock = threading.Lock()

    @property
    def range_requests(self) -> List[str]:
        return [r for _, r in self.requests if r is not None]

    def get(self, url, headers=None, stream=False, timeout=None, allow_redirects=True):
        range_header = (headers or {}).get("Range")
        with self._lock:
            self.requests.append((url, range_header))

        if self.error is not None:
            raise self.error
        if url in self.pages:
            return FakeResponse(200, {"Content-Type": "text/html"}, self.pages[url].encode("utf-8"))
        if url not in self.files:
            return FakeResponse(404, {}, b"not found")

        payload = self.files[url]
        base_headers = {}
        if self.accept_ranges is not None:
            base_headers["Accept-Ranges"] = self.accept_ranges
        if self.content_encoding is not None:
            base_headers["Content-Encoding"] = self.content_encoding

        match = RANGE_RE.fullmatch(range_header) if range_header else None
        if match is None or self.ignore_range:
            if self.send_length:
                base_headers["Content-Length"] = str(len(payload))
            return FakeResponse(self.status, base_headers, payload)

        first, last = int(match.group(1)), int(match.group(2))
        body = payload[first:last + 1] + b"\xff" * self.extra
        base_headers["Content-Length"] = str(len(body))
        base_headers["Content-Range"] = f"bytes {first}-{last}/{len(payload)}"
        return FakeResponse(206, base_headers, body,
                            fail_after=self.fail_ranges.get(first),
                            delay=self.delays.get(first, 0.0))

    def close(self):
        self.closed = True


@pytest.fixture
def payload():
    return make_payload(4000)


@pytest.fixture
def quad_config():
    """Four blocks of a quarter each, all in one round."""
    return DownloadConfig(tiers=(PlanTier(max_remaining=None, worker_count=4, divisor=4),),
                          progress_interval=0.01)


@pytest.fixture
def dest(tmp_path):
    return tmp_path / "out" / "archive.bin"
