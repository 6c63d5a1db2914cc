from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from crawler.services.css_asset_scanner_service import CssAssetScannerService
from crawler.utils.path_rewriter import AssetCollector
from extractor.model import (
    ExternalStyle,
    ExtractorSettings,
    InlineStyle,
    NavigationItem,
    PageMetadata,
    PageStyles,
)

logger = logging.getLogger(__name__)

# og:/twitter: keys (prefix already stripped) whose values are URLs.
_OG_URL_KEYS = {"url", "image", "image:url", "image:secure_url", "video", "video:url", "audio"}
_TWITTER_URL_KEYS = {"image", "image:src", "player"}


class HeadParseService:
    """
    Extracts the page-wide parts of a crawled document: SEO metadata,
    navigation and stylesheets. Every URL it returns has been passed through
    the collector, so origin assets are localised and recorded.
    Note: the document is only read, never modified.
    """

    def __init__(
            self,
            soup: BeautifulSoup,
            base_url: str,
            collector: AssetCollector,
            scanner: CssAssetScannerService,
            settings: Optional[ExtractorSettings] = None,
    ):
        self.soup = soup
        self.base_url = base_url
        self.collector = collector
        self.scanner = scanner
        self.settings = settings or ExtractorSettings()

    # -------- SEO & Meta Extraction --------

    def extract_page_title(self) -> str:
        """Retrieves the content of the <title> tag."""
        el = self.soup.find("title")
        return el.get_text(strip=True) if el else ""

    def extract_meta_description(self) -> str:
        """Retrieves the content of the <meta name='description'> tag."""
        meta = self.soup.find("meta", attrs={"name": "description"})
        return (meta.get("content") or "").strip() if meta else ""

    def extract_canonical_tag(self) -> str:
        """Retrieves the href of the <link rel='canonical'> tag, as a local path."""
        link = self.soup.find("link", rel="canonical")
        href = (link.get("href") or "").strip() if link else ""
        return self.collector.rewrite(href, self.base_url) if href else ""

    def _prefixed_meta(self, attr: str, prefix: str, url_keys: set) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for tag in self.soup.find_all("meta", attrs={attr: True}):
            name = tag.get(attr) or ""
            if not name.startswith(prefix):
                continue
            key = name[len(prefix):]
            content = (tag.get("content") or "").strip()
            if not key or not content:
                continue
            if key in url_keys:
                content = self.collector.rewrite(content, self.base_url)
            out[key] = content
        return out

    def extract_open_graph_tags(self) -> Dict[str, str]:
        """All og: properties, keyed without the prefix."""
        return self._prefixed_meta("property", "og:", _OG_URL_KEYS)

    def extract_twitter_tags(self) -> Dict[str, str]:
        return self._prefixed_meta("name", "twitter:", _TWITTER_URL_KEYS)

    def extract_structured_data(self) -> Optional[Any]:
        """
        The first JSON-LD block that parses, with origin URLs inside it
        rewritten. Blocks that fail to parse are logged and skipped.
        """
        for script in self.soup.find_all("script", type="application/ld+json"):
            txt = script.string or script.get_text() or ""
            if not txt.strip():
                continue
            try:
                data = json.loads(txt)
            except json.JSONDecodeError as e:
                logger.warning("Skipping malformed JSON-LD on %s: %s", self.base_url, e)
                continue
            return self._rewrite_json(data)
        return None

    def _rewrite_json(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.collector.rewrite_embedded(value)
        if isinstance(value, list):
            return [self._rewrite_json(v) for v in value]
        if isinstance(value, dict):
            return {k: self._rewrite_json(v) for k, v in value.items()}
        return value

    def build_metadata(self) -> PageMetadata:
        return PageMetadata(
            title=self.extract_page_title(),
            description=self.extract_meta_description(),
            canonical=self.extract_canonical_tag(),
            og=self.extract_open_graph_tags(),
            twitter=self.extract_twitter_tags(),
            schema_org=self.extract_structured_data(),
        )

    # -------- Navigation --------

    def extract_navigation(self) -> List[NavigationItem]:
        """Menu entries in document order; repeated (label, href) pairs are kept once."""
        items: List[NavigationItem] = []
        seen = set()
        for anchor in self.soup.select(self.settings.navigation_selector):
            href = (anchor.get("href") or "").strip()
            label = anchor.get_text(" ", strip=True)
            if not href or not label:
                continue
            href = self.collector.rewrite(href, self.base_url)
            if (label, href) in seen:
                continue
            seen.add((label, href))
            items.append(NavigationItem(label=label, href=href))
        return items

    # -------- Styles --------

    def _clean_css(self, css_text: str) -> str:
        if self.settings.strip_lazyload_rules:
            css_text = self.scanner.strip_lazyload_rules(css_text)
        return self.scanner.rewrite_with(css_text, self.base_url, self.collector.rewrite)

    def extract_styles(self) -> PageStyles:
        styles = PageStyles()

        if self.soup.head is not None:
            for el in self.soup.head.find_all("style"):
                css_text = el.string or ""
                if css_text.strip():
                    styles.inline.append(InlineStyle(id=el.get("id") or "", content=self._clean_css(css_text)))

        if self.soup.body is not None:
            for i, el in enumerate(self.soup.body.find_all("style")):
                css_text = el.string or ""
                if css_text.strip():
                    styles.inline.append(InlineStyle(id=f"body-style-{i}", content=self._clean_css(css_text)))

        if self.soup.head is not None:
            for link in self.soup.head.find_all("link", rel="stylesheet"):
                href = (link.get("href") or "").strip()
                if not href:
                    continue
                styles.external.append(
                    ExternalStyle(href=self.collector.rewrite(href, self.base_url), id=link.get("id") or "")
                )
        return styles
