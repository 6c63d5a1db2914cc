# src/extractor/services/html_rewrite_service.py
import logging
from typing import Iterable, Optional

from bs4 import Tag

from crawler.services.css_asset_scanner_service import CssAssetScannerService
from crawler.utils.path_rewriter import AssetCollector
from crawler.utils.url_utils import UrlUtils
from extractor.model import ExtractorSettings

logger = logging.getLogger(__name__)

URL_ATTRIBUTES = ("src", "href", "poster", "data-src", "data-lazy-src", "data-bg", "data-background")
SRCSET_ATTRIBUTES = ("srcset", "data-srcset", "data-lazy-srcset")


class HtmlRewriteService:
    """
    Rewrites every URL carried by a DOM subtree onto the local layout.
    Operates in place on the given tag; callers pass a copy when the source
    document must stay intact.
    """

    def __init__(self, scanner: CssAssetScannerService, settings: Optional[ExtractorSettings] = None):
        self.scanner = scanner
        self.settings = settings or ExtractorSettings()

    def rewrite_tree(self, root: Tag, base_url: str, collector: AssetCollector) -> Tag:
        for tag in [root, *root.find_all(True)]:
            self._rewrite_attributes(tag, base_url, collector)
            if tag.name == "style" and tag.string:
                tag.string = self.rewrite_css(tag.string, base_url, collector)

        # Whatever is left: JSON blobs in <script>, absolute links in text and comments.
        host = UrlUtils.host_key(collector.rewriter.netloc)
        for text in root.find_all(string=True):
            if host in text.lower():
                new_text = collector.rewrite_embedded(str(text))
                if new_text != text:
                    text.replace_with(type(text)(new_text))
        return root

    def rewrite_css(self, css_text: str, base_url: str, collector: AssetCollector) -> str:
        if self.settings.strip_lazyload_rules:
            css_text = self.scanner.strip_lazyload_rules(css_text)
        return self.scanner.rewrite_with(css_text, base_url, collector.rewrite)

    def _rewrite_attributes(self, tag: Tag, base_url: str, collector: AssetCollector) -> None:
        for name, value in list(tag.attrs.items()):
            if not isinstance(value, str) or not value:
                continue
            lowered = name.lower()
            if lowered in URL_ATTRIBUTES:
                tag[name] = collector.rewrite(value, base_url)
            elif lowered in SRCSET_ATTRIBUTES:
                candidates = [
                    (collector.rewrite(url, base_url), descriptor)
                    for url, descriptor in UrlUtils.split_srcset(value)
                ]
                tag[name] = UrlUtils.join_srcset(candidates)
            elif lowered == "style":
                tag[name] = self.scanner.rewrite_with(value, base_url, collector.rewrite)
            else:
                tag[name] = collector.rewrite_embedded(value)

    @staticmethod
    def strip_classes(root: Tag, classes: Iterable[str]) -> None:
        """Removes the given class names everywhere in the subtree (animation placeholders)."""
        unwanted = set(classes)
        if not unwanted:
            return
        for tag in [root, *root.find_all(class_=True)]:
            current = tag.get("class")
            if not current:
                continue
            if isinstance(current, str):
                current = current.split()
            kept = [c for c in current if c not in unwanted]
            if len(kept) == len(current):
                continue
            if kept:
                tag["class"] = kept
            else:
                del tag["class"]
