# src/crawler/services/asset_fetcher_service.py
import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from crawler.managers.download_cache_manager import DownloadCacheManager
from crawler.model import AssetReference
from crawler.services.css_asset_scanner_service import CssAssetScannerService
from crawler.services.http_request_service import HttpRequestService
from crawler.utils.path_rewriter import PathRewriter

logger = logging.getLogger(__name__)


class AssetFetcherService:
    """
    Downloads origin assets into public_dir under their canonical local path.

    Every download is claimed through the DownloadCacheManager first, so each
    local path is requested at most once per run. Stylesheets are scanned for
    nested assets, which go through the same cache before the stylesheet is
    rewritten and stored.
    """

    def __init__(
            self,
            http: HttpRequestService,
            cache: DownloadCacheManager,
            scanner: CssAssetScannerService,
            public_dir: Path,
    ):
        self.http = http
        self.cache = cache
        self.scanner = scanner
        self.public_dir = Path(public_dir)

        self.downloaded = 0
        self.skipped = 0
        self.failed = 0
        self.css_imports_synthesized = 0

        self._waiters: Dict[str, asyncio.Event] = {}
        self._deferred: List[dict] = []

    async def fetch(self, reference: AssetReference, wait: bool = True) -> Optional[str]:
        """
        Makes sure reference.local_path exists locally.
        Returns the local path on success (or when it was already there), None on failure.

        With wait=False a download already in flight elsewhere is assumed to
        succeed; nested stylesheet fetches use this so import cycles cannot block.
        Stylesheets linked that way are rewritten again once those downloads
        settle and one of them turns out to have failed.
        """
        local_path = await self._fetch(reference, wait)
        if wait:
            self._repair_stylesheets()
        return local_path

    async def _fetch(self, reference: AssetReference, wait: bool) -> Optional[str]:
        local_path = reference.local_path

        if await self.cache.claim(local_path):
            event = asyncio.Event()
            self._waiters[local_path] = event
            success = False
            try:
                success = await self._download(reference)
            finally:
                await self.cache.release(local_path, success)
                self._waiters.pop(local_path, None)
                event.set()
            return local_path if success else None

        waiter = self._waiters.get(local_path)
        if waiter is not None:
            if not wait:
                return local_path
            await waiter.wait()

        if self.cache.is_available(local_path):
            self.skipped += 1
            return local_path
        return None

    async def fetch_all(self, references: Iterable[AssetReference], wait: bool = True) -> Dict[str, Optional[str]]:
        """Fetches every distinct reference concurrently; maps remote_url -> local path or None."""
        unique: Dict[str, AssetReference] = {}
        for reference in references:
            unique.setdefault(reference.remote_url, reference)
        if not unique:
            return {}

        results = await asyncio.gather(*(self.fetch(ref, wait=wait) for ref in unique.values()))
        return dict(zip(unique.keys(), results))

    # -------- Download --------

    async def _download(self, reference: AssetReference) -> bool:
        try:
            target = PathRewriter.local_file(self.public_dir, reference.local_path)
        except ValueError as e:
            logger.warning("Refusing to store %s: %s", reference.remote_url, e)
            self.failed += 1
            return False

        result = await self.http.perform_request(reference.remote_url)
        status = result.get("status", -99)
        content = result.get("content")
        if not (200 <= status < 300) or content is None:
            logger.warning(
                "Asset download failed for %s (status %s%s)",
                reference.remote_url, status, f", {result['error']}" if result.get("error") else "",
            )
            self.failed += 1
            return False

        headers = result.get("headers", {})
        deferred = None
        if self._is_css(reference.local_path, headers):
            base_url = result.get("final_url") or reference.remote_url
            content, deferred = await self._process_stylesheet(content, headers, reference, base_url)

        if not self._write(target, content):
            self.failed += 1
            return False

        if deferred is not None:
            self._deferred.append(deferred)
        self.downloaded += 1
        logger.debug("Stored %s -> %s", reference.remote_url, reference.local_path)
        return True

    @staticmethod
    def _is_css(local_path: str, headers: Dict[str, str]) -> bool:
        if local_path.lower().endswith(".css"):
            return True
        content_type = next((v for k, v in headers.items() if k.lower() == "content-type"), "")
        return "text/css" in content_type.lower()

    async def _process_stylesheet(
            self,
            content: bytes,
            headers: Dict[str, str],
            reference: AssetReference,
            base_url: str,
    ) -> Tuple[bytes, Optional[dict]]:
        """
        Fetches what the stylesheet references and rewrites it to local paths.
        Relative url()/@import targets resolve against base_url, the URL the
        stylesheet was finally served from.

        Returns the rewritten bytes and, when some children were still
        downloading elsewhere, the state needed to rewrite it again later.
        """
        css_text = HttpRequestService.decode(content, headers)

        children = [
            child for child in self.scanner.references(css_text, base_url)
            if child.local_path != reference.local_path
        ]
        results = await self.fetch_all(children, wait=False)

        imported = {child.remote_url: child for child in self.scanner.imports(css_text, base_url)}
        unavailable = self._unavailable(
            (remote_url for remote_url, local_path in results.items() if local_path is None), imported
        )

        pending = {
            remote_url: local_path for remote_url, local_path in results.items()
            if local_path is not None and self.cache.is_pending(local_path)
        }
        deferred = None
        if pending:
            deferred = {
                "reference": reference,
                "css_text": css_text,
                "base_url": base_url,
                "imported": imported,
                "unavailable": unavailable,
                "pending": pending,
            }
        return self.scanner.rewrite(css_text, base_url, unavailable).encode("utf-8"), deferred

    def _unavailable(self, failed: Iterable[str], imported: Dict[str, AssetReference]) -> Set[str]:
        """Failed children that keep their remote URL; failed imports get a local placeholder instead."""
        unavailable = set()
        for remote_url in failed:
            child = imported.get(remote_url)
            if child is not None and self._synthesize_import(child):
                continue
            unavailable.add(remote_url)
        return unavailable

    def _repair_stylesheets(self) -> None:
        """Rewrites stored stylesheets whose children were still downloading and then failed."""
        waiting = []
        for entry in self._deferred:
            pending = entry["pending"]
            if any(self.cache.is_pending(local_path) for local_path in pending.values()):
                waiting.append(entry)
                continue

            failed = [remote_url for remote_url, local_path in pending.items() if not self.cache.is_available(local_path)]
            if not failed:
                continue
            unavailable = entry["unavailable"] | self._unavailable(failed, entry["imported"])
            if unavailable == entry["unavailable"]:
                continue

            reference = entry["reference"]
            logger.warning("Rewriting %s: %d nested asset(s) failed after it was stored.",
                           reference.local_path, len(unavailable - entry["unavailable"]))
            content = self.scanner.rewrite(entry["css_text"], entry["base_url"], unavailable).encode("utf-8")
            target = PathRewriter.local_file(self.public_dir, reference.local_path)
            if not self._write(target, content):
                self.failed += 1
        self._deferred = waiting

    def _synthesize_import(self, child: AssetReference) -> bool:
        try:
            path = PathRewriter.local_file(self.public_dir, child.local_path)
        except ValueError:
            return False
        if self.scanner.synthesize_placeholder(path, child.remote_url):
            self.css_imports_synthesized += 1
            return True
        return False

    @staticmethod
    def _write(target: Path, content: bytes) -> bool:
        """Writes through a .part file so a partial download never sits at the final path."""
        partial = target.with_name(target.name + ".part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            partial.write_bytes(content)
            os.replace(partial, target)
            return True
        except OSError as e:
            logger.warning("Could not write %s: %s", target, e)
            for leftover in (partial, target):
                try:
                    leftover.unlink(missing_ok=True)
                except OSError:
                    logger.debug("Could not remove %s", leftover)
            return False
