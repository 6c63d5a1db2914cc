# src/extractor/services/page_extract_service.py
from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup, Tag

from crawler.model import SnapshotSettings
from crawler.services.css_asset_scanner_service import CssAssetScannerService
from crawler.utils.path_rewriter import AssetCollector, PathRewriter
from crawler.utils.url_utils import UrlUtils
from extractor.model import ContentFragment, Heading, ImageRef, LinkRef, PageRecord
from extractor.services.boilerplate_classifier_service import BoilerplateClassifierService
from extractor.services.head_parse_service import HeadParseService
from extractor.services.html_rewrite_service import HtmlRewriteService

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PageExtractService:
    """
    Turns one crawled HTML document into a PageRecord.

    The content wrapper is copied before it is cleaned, so the parsed
    document itself stays untouched for the metadata and style passes.
    The asset references met while rewriting travel with the record
    (`record.asset_references`) and are not serialised.
    """

    def __init__(self, settings: SnapshotSettings, rewriter: Optional[PathRewriter] = None):
        self.settings = settings
        self.extractor_settings = settings.extractor
        self.rewriter = rewriter or PathRewriter.from_settings(settings)
        self.scanner = CssAssetScannerService(self.rewriter)
        self.html_rewriter = HtmlRewriteService(self.scanner, self.extractor_settings)
        self.classifier = BoilerplateClassifierService(self.extractor_settings.classifier)

    def extract(
            self,
            html: str,
            page_url: str,
            unavailable: Iterable[str] = (),
            base_url: Optional[str] = None,
    ) -> PageRecord:
        """
        Args:
            html: The raw page document.
            page_url: URL the page is listed under; slug and path derive from it.
            unavailable: Remote asset URLs known to be missing; they keep their absolute URL.
            base_url: URL the document was served from when a redirect moved it.
                Relative references resolve against it (default: page_url).
        """
        soup = BeautifulSoup(html or "", "html.parser")
        collector = AssetCollector(self.rewriter, unavailable)
        slug, path = UrlUtils.slug_and_path(page_url)
        base_url = base_url or page_url

        head = HeadParseService(soup, base_url, collector, self.scanner, self.extractor_settings)
        record = PageRecord(
            slug=slug,
            path=path,
            metadata=head.build_metadata(),
            navigation=head.extract_navigation(),
            content=self.extract_content(soup, base_url, collector),
            styles=head.extract_styles(),
            extracted_at=utc_timestamp(),
        )
        record.attach_assets(collector.references)
        return record

    # -------- Content --------

    def locate_wrapper(self, soup: BeautifulSoup) -> Optional[Tag]:
        scope = soup.body or soup
        for selector in self.extractor_settings.content_selectors:
            wrapper = scope.select_one(selector)
            if wrapper is not None:
                return wrapper
        return None

    def extract_content(self, soup: BeautifulSoup, page_url: str, collector: AssetCollector) -> ContentFragment:
        wrapper = self.locate_wrapper(soup)
        if wrapper is None:
            logger.info("No content wrapper found on %s; storing empty content.", page_url)
            return ContentFragment()

        cleaned = copy.copy(wrapper)
        removed = self.classifier.remove_boilerplate(cleaned)
        if removed:
            logger.debug("Dropped %d boilerplate block(s) from %s", len(removed), page_url)
        HtmlRewriteService.strip_classes(cleaned, self.extractor_settings.invisible_classes)
        self.html_rewriter.rewrite_tree(cleaned, page_url, collector)

        return ContentFragment(
            html=str(cleaned),
            elementor_id=cleaned.get("data-elementor-id") or None,
            headings=self._headings(cleaned),
            paragraphs=self._paragraphs(cleaned),
            images=self._images(cleaned),
            links=self._links(cleaned),
        )

    @staticmethod
    def _headings(root: Tag) -> List[Heading]:
        out = []
        for el in root.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
            text = el.get_text(" ", strip=True)
            if text:
                out.append(Heading(level=int(el.name[1]), tag=el.name, text=text, id=el.get("id") or None))
        return out

    def _paragraphs(self, root: Tag) -> List[str]:
        minimum = self.extractor_settings.min_paragraph_chars
        texts = (el.get_text(" ", strip=True) for el in root.find_all("p"))
        return [t for t in texts if len(t) > minimum]

    @staticmethod
    def _images(root: Tag) -> List[ImageRef]:
        out = []
        for img in root.find_all("img"):
            src = (img.get("src") or "").strip()
            if not src or src.startswith("data:"):
                continue
            out.append(ImageRef(src=src, alt=img.get("alt") or "", width=img.get("width"), height=img.get("height")))
        return out

    @staticmethod
    def _links(root: Tag) -> List[LinkRef]:
        out = []
        for a in root.find_all("a", href=True):
            href = a["href"].strip()
            if not href or href.startswith("#") or href.lower().startswith("javascript:"):
                continue
            out.append(LinkRef(href=href, text=a.get_text(" ", strip=True) or href))
        return out
