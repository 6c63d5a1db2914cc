# src/extractor/services/boilerplate_classifier_service.py
from __future__ import annotations

import logging
import re
from typing import List, Optional
from urllib.parse import urlparse

from bs4 import Tag

from crawler.utils.url_utils import UrlUtils
from extractor.model import BoilerplateCandidate, ClassifierSettings, RegionKind

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)*\.[a-z]{2,}", re.IGNORECASE)
_PHONE_PATTERN = re.compile(r"\+\d[\d\s\-()]{6,}\d")
_COPYRIGHT_PATTERN = re.compile(r"©\s*\d{4}|copyright", re.IGNORECASE)

HEADER_SIGNALS = ("logo", "nav")
FOOTER_SIGNALS = ("email", "phone", "address", "copyright", "social")
CONTENT_BLOCK_TAGS = ["h1", "h2", "h3", "p"]


class BoilerplateClassifierService:
    """
    Decides whether a top-level block of page content is really a copy of the
    site header or footer that the page builder rendered inline.

    A block is boilerplate when it shows at least `signal_threshold` structural
    signals and is not substantial (more than `max_content_blocks` headings or
    paragraphs). Substantial blocks are always content.
    """

    def __init__(self, settings: Optional[ClassifierSettings] = None):
        self.settings = settings or ClassifierSettings()
        self._address_keywords = [k.lower() for k in self.settings.address_keywords]
        self._social_domains = [d.lower() for d in self.settings.social_domains]

    # -------- Signals --------

    @staticmethod
    def _matches_any(subtree: Tag, selectors: List[str]) -> bool:
        for selector in selectors:
            if subtree.css.match(selector) or subtree.select_one(selector) is not None:
                return True
        return False

    def _has_social_link(self, subtree: Tag) -> bool:
        anchors = subtree.find_all("a", href=True)
        if subtree.name == "a" and subtree.get("href"):
            anchors.insert(0, subtree)
        for anchor in anchors:
            try:
                host = UrlUtils.host_key(urlparse(anchor["href"]).netloc)
            except ValueError:
                continue
            if host and any(host == d or host.endswith("." + d) for d in self._social_domains):
                return True
        return False

    def signals(self, subtree: Tag) -> List[str]:
        text = subtree.get_text(" ", strip=True)
        lowered = text.lower()
        found = []
        if self._matches_any(subtree, self.settings.logo_selectors):
            found.append("logo")
        if self._matches_any(subtree, self.settings.nav_selectors):
            found.append("nav")
        if _EMAIL_PATTERN.search(text):
            found.append("email")
        if _PHONE_PATTERN.search(text):
            found.append("phone")
        if any(keyword in lowered for keyword in self._address_keywords):
            found.append("address")
        if _COPYRIGHT_PATTERN.search(text):
            found.append("copyright")
        if self._has_social_link(subtree):
            found.append("social")
        return found

    @staticmethod
    def content_blocks(subtree: Tag) -> int:
        count = len(subtree.find_all(CONTENT_BLOCK_TAGS))
        if subtree.name in CONTENT_BLOCK_TAGS:
            count += 1
        return count

    # -------- Verdict --------

    def classify(self, subtree: Tag) -> BoilerplateCandidate:
        signals = self.signals(subtree)
        blocks = self.content_blocks(subtree)
        kind = RegionKind.CONTENT

        if len(signals) >= self.settings.signal_threshold and blocks <= self.settings.max_content_blocks:
            header_score = sum(1 for s in signals if s in HEADER_SIGNALS)
            footer_score = sum(1 for s in signals if s in FOOTER_SIGNALS)
            if "copyright" in signals or footer_score > header_score:
                kind = RegionKind.FOOTER
            else:
                kind = RegionKind.HEADER

        return BoilerplateCandidate(element=subtree, signals=signals, content_blocks=blocks, kind=kind)

    def is_boilerplate(self, subtree: Tag) -> bool:
        return self.classify(subtree).is_boilerplate

    def remove_boilerplate(self, wrapper: Tag) -> List[BoilerplateCandidate]:
        """Drops header/footer blocks among the direct children of wrapper; returns what was removed."""
        removed = []
        for child in list(wrapper.children):
            if not isinstance(child, Tag):
                continue
            candidate = self.classify(child)
            if candidate.is_boilerplate:
                logger.debug(
                    "Removing %s block <%s class=%s> (signals: %s)",
                    candidate.kind.value, child.name, child.get("class"), ", ".join(candidate.signals),
                )
                child.decompose()
                removed.append(candidate)
        return removed
