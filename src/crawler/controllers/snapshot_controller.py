# src/crawler/controllers/snapshot_controller.py
import logging
import time
from typing import Dict, Iterable, List, Optional, Set

from crawler.controllers.async_controller import AsyncController
from crawler.managers.download_cache_manager import DownloadCacheManager
from crawler.managers.progress_manager import ProgressManager
from crawler.model import AssetReference, RunSummary, SnapshotSettings
from crawler.services.asset_fetcher_service import AssetFetcherService
from crawler.services.css_asset_scanner_service import CssAssetScannerService
from crawler.services.generate_default_user_agent_service import generate_default_user_agent
from crawler.services.http_request_service import HttpRequestService
from crawler.services.sitemap_service import SitemapService
from crawler.utils.path_rewriter import PathRewriter
from crawler.utils.url_utils import UrlUtils
from extractor.model import FragmentMarker, NavigationItem, PageRecord, RouteEntry
from extractor.services.header_footer_extract_service import HeaderFooterExtractService
from extractor.services.page_extract_service import PageExtractService, utc_timestamp
from sitesnap.core.managers.config_manager import config_manager
from sitesnap.core.managers.content_store_manager import HOME_SLUG, ContentStoreManager
from sitesnap.core.utils.path_utils import PathUtils

logger = logging.getLogger(__name__)


class SnapshotController(AsyncController):
    """
    Runs one snapshot of the configured site:

    1.  Reads the page list from the sitemaps.
    2.  For each page, in order: fetch HTML, extract the record, fetch its
        assets through the shared download cache, write the JSON.
    3.  Writes routes.json and navigation.json.
    4.  Extracts the shared header and footer (reference page first).

    Failures of single pages or assets are logged and counted; only a
    missing header/footer (FragmentNotFoundError) aborts the run, after all
    pages have been written.
    """

    def __init__(self, settings: Optional[SnapshotSettings] = None):
        super().__init__()
        self.settings = settings or SnapshotSettings.from_config(
            config_manager.get_nested("snapshot", {}),
            config_manager.get_nested("session", {}),
        )
        self.data_dir = PathUtils.resolve_output_dir(self.settings.data_dir)
        self.public_dir = PathUtils.resolve_output_dir(self.settings.public_dir)

        session_config = dict(config_manager.get_nested("session", {}) or {})
        session_config.update({
            "concurrency": self.settings.concurrency,
            "time_out": self.settings.timeout,
            "max_redirects": self.settings.max_redirects,
        })
        self.http = HttpRequestService(config={"session": session_config}, user_agent=generate_default_user_agent())

        self.rewriter = PathRewriter.from_settings(self.settings)
        self.cache = DownloadCacheManager(self.public_dir)
        self.asset_fetcher = AssetFetcherService(
            http=self.http,
            cache=self.cache,
            scanner=CssAssetScannerService(self.rewriter),
            public_dir=self.public_dir,
        )
        self.sitemap_service = SitemapService(self.http)
        self.page_extractor = PageExtractService(self.settings, self.rewriter)
        self.fragment_extractor = HeaderFooterExtractService(self.settings, self.rewriter)
        self.store = ContentStoreManager(self.data_dir)

        self.summary = RunSummary()
        self.documents: Dict[str, str] = {}
        self.slug_owners: Dict[str, str] = {}

    async def setup(self):
        if self._setup_done:
            return
        await self.http.initialize()
        await super().setup()

    async def shutdown(self):
        await self.http.close()
        await super().shutdown()

    # =========================================================================
    #  RUN
    # =========================================================================
    async def run(self) -> RunSummary:
        start_time = time.perf_counter()
        self.summary = RunSummary()
        self.slug_owners = {}
        await self.setup()
        try:
            urls = self._unique(await self.sitemap_service.list_all(self.settings.sitemaps))
            self.summary.pages_total = len(urls)
            logger.info("Snapshot of %s: %d page(s) listed.", self.settings.origin, len(urls))

            records = await self._process_pages(urls)
            self._write_indexes(records)
            await self.extract_shared_fragments()
        finally:
            self._collect_asset_counters()
            self.summary.duration_s = round(time.perf_counter() - start_time, 2)
            logger.info("Snapshot finished: %s", self.summary.describe())
            await self.shutdown()
        return self.summary

    @staticmethod
    def _unique(urls: Iterable[str]) -> List[str]:
        seen: Set[str] = set()
        out = []
        for url in urls:
            if url in seen:
                logger.debug("Sitemaps list %s more than once.", url)
                continue
            seen.add(url)
            out.append(url)
        return out

    async def _process_pages(self, urls: List[str]) -> List[PageRecord]:
        records: List[PageRecord] = []
        progress = ProgressManager(total=len(urls), desc="Pages", enabled=self.settings.show_progress)
        try:
            for url in urls:
                try:
                    record = await self.process_page(url)
                except Exception as e:
                    logger.error("Failed to process %s: %s", url, e, exc_info=True)
                    record = None

                if record is None:
                    self.summary.pages_failed += 1
                else:
                    self.summary.pages_processed += 1
                    if record.content.is_empty:
                        self.summary.pages_empty += 1
                    records.append(record)
                progress.advance(
                    1,
                    assets_count=self.asset_fetcher.downloaded,
                    failures_count=self.summary.pages_failed,
                )
        finally:
            progress.close(self.asset_fetcher.downloaded, self.summary.pages_failed)
        return records

    async def process_page(self, url: str) -> Optional[PageRecord]:
        """
        Fetch, extract, localise assets and store one page. None when the page
        could not be fetched or its slug already belongs to another URL.
        """
        slug, _ = UrlUtils.slug_and_path(url)
        owner = self.slug_owners.get(slug)
        if owner is not None and owner != url:
            logger.warning("Skipping %s: slug '%s' is already used by %s.", url, slug, owner)
            return None

        html, final_url = await self.http.get_text_and_url(url)
        if html is None:
            return None
        self.slug_owners[slug] = url
        self.documents[url] = html

        # Stored under the listed URL; relative references resolve against where it was served.
        record = self.page_extractor.extract(html, url, base_url=final_url)
        unavailable = await self._fetch_assets(record.asset_references, url)
        if unavailable:
            record = self.page_extractor.extract(html, url, unavailable=unavailable, base_url=final_url)

        path = self.store.write_page(record)
        logger.debug("Stored %s as %s", url, path)
        return record

    async def _fetch_assets(self, references: List[AssetReference], source: str) -> Set[str]:
        """Returns the remote URLs that could not be stored locally."""
        results = await self.asset_fetcher.fetch_all(references)
        unavailable = {remote_url for remote_url, local_path in results.items() if local_path is None}
        if unavailable:
            logger.warning("%d asset(s) of %s unavailable; keeping their remote URLs.", len(unavailable), source)
        return unavailable

    def _write_indexes(self, records: List[PageRecord]) -> None:
        self.store.write_routes(RouteEntry(slug=r.slug, path=r.path) for r in records)

        navigation: List[NavigationItem] = []
        home = next((r for r in records if r.slug == HOME_SLUG), None)
        if home is not None and home.navigation:
            navigation = home.navigation
        else:
            navigation = next((r.navigation for r in records if r.navigation), [])
        self.store.write_navigation(navigation, updated_at=utc_timestamp())

    # =========================================================================
    #  SHARED HEADER / FOOTER
    # =========================================================================
    async def extract_shared_fragments(self) -> None:
        """Raises FragmentNotFoundError when a configured header/footer is on no page."""
        reference_url = self.settings.reference_url
        if reference_url not in self.documents:
            html = await self.http.get_text(reference_url)
            if html is not None:
                self.documents = {reference_url: html, **self.documents}

        for marker in (self.settings.extractor.header, self.settings.extractor.footer):
            if marker is not None:
                await self._store_fragment(marker, reference_url)

    async def _store_fragment(self, marker: FragmentMarker, reference_url: str) -> None:
        source_url, fragment = self.fragment_extractor.locate(marker, self.documents, reference_url)
        unavailable = await self._fetch_assets(fragment.asset_references, f"{marker.name} ({source_url})")
        if unavailable:
            fragment = self.fragment_extractor.extract_fragment(
                self.documents[source_url], marker, source_url, unavailable=unavailable
            )
        self.store.write_fragment(marker.name, fragment)
        logger.info("Stored shared %s from %s.", marker.name, source_url)

    def _collect_asset_counters(self) -> None:
        self.summary.assets_downloaded = self.asset_fetcher.downloaded
        self.summary.assets_skipped = self.asset_fetcher.skipped
        self.summary.assets_failed = self.asset_fetcher.failed
        self.summary.css_imports_synthesized = self.asset_fetcher.css_imports_synthesized
