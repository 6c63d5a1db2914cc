# src/extractor/services/header_footer_extract_service.py
import copy
import logging
import posixpath
from typing import Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from crawler.model import SnapshotSettings
from crawler.services.css_asset_scanner_service import CssAssetScannerService
from crawler.utils.path_rewriter import AssetCollector, PathRewriter
from extractor.model import FragmentMarker, HeaderFooterFragment
from extractor.services.html_rewrite_service import HtmlRewriteService

logger = logging.getLogger(__name__)


class FragmentNotFoundError(Exception):
    """No crawled document contains the shared header/footer template."""

    def __init__(self, marker_name: str, documents_searched: int):
        self.marker_name = marker_name
        self.documents_searched = documents_searched
        super().__init__(
            f"Shared {marker_name} not found in any of {documents_searched} document(s)"
        )


class HeaderFooterExtractService:
    """Pulls the site-wide header and footer templates out of a crawled page."""

    def __init__(self, settings: SnapshotSettings, rewriter: Optional[PathRewriter] = None):
        self.settings = settings
        self.extractor_settings = settings.extractor
        self.rewriter = rewriter or PathRewriter.from_settings(settings)
        self.scanner = CssAssetScannerService(self.rewriter)
        self.html_rewriter = HtmlRewriteService(self.scanner, self.extractor_settings)

    def extract_fragment(
            self,
            html: str,
            marker: FragmentMarker,
            page_url: str,
            unavailable: Iterable[str] = (),
    ) -> Optional[HeaderFooterFragment]:
        """The fragment identified by marker in html, or None when the page does not carry it."""
        soup = BeautifulSoup(html or "", "html.parser")
        element = soup.select_one(marker.selector)
        if element is None:
            return None

        collector = AssetCollector(self.rewriter, unavailable)
        cleaned = copy.copy(element)
        HtmlRewriteService.strip_classes(cleaned, self.extractor_settings.invisible_classes)
        self.html_rewriter.rewrite_tree(cleaned, page_url, collector)

        fragment = HeaderFooterFragment(
            html=str(cleaned),
            inline_styles=self._inline_styles(soup, marker, page_url, collector),
            css_files=self._css_files(soup, marker, page_url, collector),
        )
        fragment.attach_assets(collector.references)
        return fragment

    def _inline_styles(self, soup: BeautifulSoup, marker: FragmentMarker, page_url: str, collector: AssetCollector) -> str:
        if not marker.style_token:
            return ""
        # The last block mentioning the token wins.
        css_text = ""
        for style in soup.find_all("style"):
            content = style.string or ""
            if marker.style_token in content:
                css_text = content
        return self.scanner.rewrite_with(css_text, page_url, collector.rewrite) if css_text else ""

    @staticmethod
    def _css_files(soup: BeautifulSoup, marker: FragmentMarker, page_url: str, collector: AssetCollector) -> List[str]:
        wanted = set(marker.css_files)
        out: List[str] = []
        if not wanted or soup.head is None:
            return out
        for link in soup.head.find_all("link", rel="stylesheet"):
            href = (link.get("href") or "").strip()
            if not href:
                continue
            try:
                basename = posixpath.basename(urlparse(href).path)
            except ValueError:
                continue
            if basename not in wanted:
                continue
            local = collector.rewrite(href, page_url)
            if local not in out:
                out.append(local)
        return out

    def locate(
            self,
            marker: FragmentMarker,
            documents: Mapping[str, str],
            reference_url: Optional[str] = None,
    ) -> Tuple[str, HeaderFooterFragment]:
        """
        Searches the reference page first, then every other document in order.

        Returns:
            (url of the document it came from, fragment)

        Raises:
            FragmentNotFoundError: when no document carries the marker.
        """
        order = [reference_url] if reference_url in documents else []
        order += [url for url in documents if url != reference_url]

        for url in order:
            fragment = self.extract_fragment(documents[url], marker, url)
            if fragment is not None:
                if url != reference_url:
                    logger.info("Shared %s taken from %s (not on the reference page).", marker.name, url)
                return url, fragment

        raise FragmentNotFoundError(marker.name, len(order))
