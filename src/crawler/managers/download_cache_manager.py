# src/crawler/managers/download_cache_manager.py
import asyncio
import logging
from pathlib import Path
from typing import Set

from crawler.utils.url_utils import UrlUtils

logger = logging.getLogger(__name__)


class DownloadCacheManager:
    """
    Run-scoped record of which local asset paths are already materialised.

    A path counts as fetched once a download for it succeeded in this run, or
    when the file already exists below public_dir (checked lazily, on first
    ask). Paths that failed in this run are not handed out again.
    """

    def __init__(self, public_dir: Path):
        self.public_dir = Path(public_dir)
        self.fetched: Set[str] = set()
        self.in_flight: Set[str] = set()
        self.failed: Set[str] = set()
        self._lock = asyncio.Lock()

    def _exists_on_disk(self, local_path: str) -> bool:
        try:
            return UrlUtils.to_filesystem_path(self.public_dir, local_path).is_file()
        except ValueError:
            return False

    def should_fetch(self, local_path: str) -> bool:
        if local_path in self.fetched:
            return False
        if local_path in self.in_flight or local_path in self.failed:
            return False
        if self._exists_on_disk(local_path):
            self.fetched.add(local_path)
            return False
        return True

    def mark_fetched(self, local_path: str) -> None:
        self.in_flight.discard(local_path)
        self.failed.discard(local_path)
        self.fetched.add(local_path)

    async def claim(self, local_path: str) -> bool:
        """
        Atomically checks and reserves local_path. Exactly one caller gets True
        for a given path; it must later call release().
        """
        async with self._lock:
            if not self.should_fetch(local_path):
                return False
            self.in_flight.add(local_path)
            return True

    async def release(self, local_path: str, success: bool) -> None:
        async with self._lock:
            self.in_flight.discard(local_path)
            if success:
                self.fetched.add(local_path)
            else:
                self.failed.add(local_path)
                logger.debug("Marked %s as failed for this run.", local_path)

    def is_available(self, local_path: str) -> bool:
        """True when local_path is (or already was) successfully stored."""
        return local_path in self.fetched or self._exists_on_disk(local_path)

    def is_pending(self, local_path: str) -> bool:
        """True while a claimed download of local_path has not been released."""
        return local_path in self.in_flight
