# blockget/listing.py
"""
Directory-listing discovery for directory mode.

A listing page (Apache/nginx style autoindex) is reduced to typed entries:
links ending in "/" are sub-directories, every other direct child link is a
file. The download engine only ever sees the resulting URLs.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from html.parser import HTMLParser
from pathlib import Path
from typing import Iterator, List, Optional, Set, Tuple
from urllib.parse import unquote, urldefrag, urljoin, urlparse

import requests

from blockget.errors import NetworkError
from blockget.models import DownloadConfig
from blockget.utils import get_default_filename

logger = logging.getLogger(__name__)


class EntryKind(Enum):
    DIRECTORY = "directory"
    FILE = "file"


@dataclass(frozen=True)
class ListingEntry:
    kind: EntryKind
    url: str
    name: str


class LinkExtractor(HTMLParser):
    def __init__(self):
        super().__init__()
        self.links: List[str] = []

    def handle_starttag(self, tag, attrs):
        if tag != "a":
            return
        for name, value in attrs:
            if name == "href" and value:
                self.links.append(value.strip())


def _as_directory_url(url: str) -> str:
    return url if url.endswith("/") else url + "/"


def _is_plain_name(name: str) -> bool:
    """True when a decoded link name is a single path component."""
    if name in ("", ".", ".."):
        return False
    return not any(sep in name for sep in ("/", "\\", "\0"))


def _inside(root: Path, target: Path) -> bool:
    try:
        target.resolve().relative_to(root)
    except ValueError:
        return False
    return True


def parse_listing(html: str, base_url: str) -> List[ListingEntry]:
    """Classify the direct children linked from a listing page."""
    base_url = _as_directory_url(base_url)
    parser = LinkExtractor()
    parser.feed(html)
    parser.close()

    entries: List[ListingEntry] = []
    seen: Set[str] = set()
    for href in parser.links:
        if not href or href.startswith(("#", "?")):
            continue
        resolved, _ = urldefrag(urljoin(base_url, href))
        if urlparse(resolved).query or not resolved.startswith(base_url) or resolved == base_url:
            continue
        relative = resolved[len(base_url):]
        # only direct children; deeper links are reached by recursion
        if "/" in relative.rstrip("/"):
            continue
        if resolved in seen:
            continue
        seen.add(resolved)

        name = unquote(relative.rstrip("/"))
        if not _is_plain_name(name):
            logger.warning("Ignoring listing link %r: not a plain file name", href)
            continue
        kind = EntryKind.DIRECTORY if relative.endswith("/") else EntryKind.FILE
        entries.append(ListingEntry(kind=kind, url=resolved, name=name))
    return entries


def fetch_listing(session: requests.Session, url: str,
                  config: Optional[DownloadConfig] = None) -> List[ListingEntry]:
    config = config or DownloadConfig()
    url = _as_directory_url(url)
    try:
        response = session.get(url, timeout=config.timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise NetworkError(f"Fetching listing {url} failed: {e}") from e
    return parse_listing(response.text, url)


def walk_listing(session: requests.Session, url: str, directory,
                 config: Optional[DownloadConfig] = None) -> Iterator[Tuple[str, Path]]:
    """Yield ``(file_url, target_directory)`` for every file below ``url``, depth first.

    A failure to list the root propagates; an unreadable sub-directory is
    logged and skipped so its siblings are still visited.
    """
    root_url = _as_directory_url(url)
    root_dir = Path(directory).resolve()
    pending = [(root_url, Path(directory))]
    visited: Set[str] = set()
    while pending:
        current_url, current_dir = pending.pop()
        if current_url in visited:
            continue
        visited.add(current_url)

        try:
            entries = fetch_listing(session, current_url, config)
        except NetworkError as e:
            if current_url == root_url:
                raise
            logger.error("Skipping %s: %s", current_url, e)
            continue
        logger.debug("%s: %d entries", current_url, len(entries))
        subdirs = []
        for entry in entries:
            if entry.kind is EntryKind.DIRECTORY:
                target = current_dir / entry.name
            else:
                target = current_dir / get_default_filename(entry.url)
            if not _inside(root_dir, target):
                logger.warning("Skipping %s: %s is outside %s", entry.url, target, root_dir)
                continue
            if entry.kind is EntryKind.DIRECTORY:
                subdirs.append((entry.url, target))
            else:
                yield entry.url, current_dir
        pending.extend(reversed(subdirs))
