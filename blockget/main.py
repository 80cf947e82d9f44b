"""
blockget - resumable multi-connection HTTP downloader
Command-line entry point for single files and directory listings
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional

from blockget.engine import DownloadEngine, create_session
from blockget.errors import DownloadError
from blockget.jobs import JobPool, JobResult
from blockget.listing import walk_listing
from blockget.models import DownloadConfig
from blockget.utils import format_bytes, is_valid_url

logger = logging.getLogger("blockget")


def format_progress(path: Path, downloaded: int, total: int, speed: float) -> str:
    percent = downloaded / total * 100 if total > 0 else 100.0
    return (f"download {path} ---> {format_bytes(downloaded)}/{format_bytes(total)} "
            f"{percent:.3f}% speed:{format_bytes(speed)}/s")


def download_url(url: str, directory, config: Optional[DownloadConfig] = None,
                 printer: Callable[[str], None] = print) -> Path:
    """Download one URL into ``directory``, printing a progress line per interval."""
    engine = DownloadEngine.for_directory(url, directory, config=config)
    engine.progress_callback = lambda done, total, speed: printer(
        format_progress(engine.output_path, done, total, speed))
    printer(f"start download {engine.output_path}")
    return engine.download()


def download_directory(url: str, directory, work_num: int,
                       config: Optional[DownloadConfig] = None,
                       printer: Callable[[str], None] = print) -> List[JobResult]:
    """Download every file below a listing URL, at most ``work_num`` files at a time."""
    config = config or DownloadConfig()
    session = create_session(config)
    try:
        with JobPool(max_jobs=work_num) as pool:
            for file_url, target_dir in walk_listing(session, url, directory, config):
                pool.submit(file_url, lambda u=file_url, d=target_dir: download_url(u, d, config, printer))
            return pool.wait()
    finally:
        session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blockget",
        description="Download files over HTTP in parallel byte-range blocks, resuming interrupted runs.")
    parser.add_argument('--url', required=True, help="URL of the file (or listing) to download")
    parser.add_argument('--dir', default="download/", help="Directory to save into (default: %(default)s)")
    parser.add_argument('--work-num', type=int, default=4,
                        help="Files downloaded at the same time in directory mode (default: %(default)s)")
    parser.add_argument('--dir-flag', action='store_true', help="Treat the URL as a directory listing")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not is_valid_url(args.url):
        parser.error(f"not an http(s) URL: {args.url}")
    if args.work_num < 1:
        parser.error("--work-num must be at least 1")

    logger.info("url: %s", args.url)
    logger.info("work-num: %d", args.work_num)
    logger.info("dir: %s", args.dir)
    logger.info("dir-flag: %s", args.dir_flag)

    config = DownloadConfig()
    if args.dir_flag:
        try:
            results = download_directory(args.url, args.dir, args.work_num, config)
        except DownloadError as e:
            logger.error("Listing %s failed: %s: %s", args.url, e.kind, e)
            return 1
        failed = [r for r in results if not r.ok]
        if failed:
            logger.error("%d of %d file(s) failed:", len(failed), len(results))
            for result in failed:
                logger.error("  %s: %s: %s", result.name, type(result.error).__name__, result.error)
            return 1
        logger.info("download success: %d file(s)", len(results))
        return 0

    try:
        download_url(args.url, args.dir, config)
    except DownloadError as e:
        logger.error("Download failed: %s -> %s: %s: %s", args.url, args.dir, e.kind, e)
        return 1
    logger.info("download success")
    return 0


if __name__ == "__main__":
    sys.exit(main())
