# src/crawler/services/sitemap_service.py
import gzip
import logging
from typing import Iterable, List, Optional, Set
from xml.etree import ElementTree as ET

from crawler.services.http_request_service import HttpRequestService

logger = logging.getLogger(__name__)


def _local_name(tag: str) -> str:
    # '{http://www.sitemaps.org/schemas/sitemap/0.9}loc' -> 'loc'
    return tag.rsplit('}', 1)[-1].lower() if isinstance(tag, str) else ""


class SitemapService:
    """
    Reads the page list of a site from its XML sitemaps.

    Only <loc> is used. A <sitemapindex> is followed into each nested sitemap;
    within one list_urls() call every sitemap is read at most once, so an
    index that lists itself (or a cycle of indexes) terminates.
    """

    def __init__(self, http: HttpRequestService):
        self.http = http

    async def list_urls(self, sitemap_url: str) -> List[str]:
        """Ordered <loc> values of one sitemap (or of every sitemap an index points to)."""
        return await self._list_urls(sitemap_url, set())

    async def _list_urls(self, sitemap_url: str, visited: Set[str]) -> List[str]:
        if sitemap_url in visited:
            logger.debug("Sitemap %s already read for this index, skipping.", sitemap_url)
            return []
        visited.add(sitemap_url)

        xml_text = await self._fetch(sitemap_url)
        if xml_text is None:
            return []

        root = self.parse(xml_text, sitemap_url)
        if root is None:
            return []

        locs = self._locs(root)
        if _local_name(root.tag) == "sitemapindex":
            urls: List[str] = []
            for nested in locs:
                urls.extend(await self._list_urls(nested, visited))
            return urls

        logger.info("Sitemap %s lists %d URLs.", sitemap_url, len(locs))
        return locs

    async def list_all(self, sitemap_urls: Iterable[str]) -> List[str]:
        """Concatenation of every sitemap's URLs, in order. Duplicates are kept."""
        urls: List[str] = []
        for sitemap_url in sitemap_urls:
            urls.extend(await self.list_urls(sitemap_url))
        return urls

    @staticmethod
    def parse(xml_text: str, source: str = "") -> Optional[ET.Element]:
        try:
            return ET.fromstring(xml_text.lstrip("\ufeff").strip())
        except ET.ParseError as e:
            logger.warning("Could not parse sitemap %s: %s", source, e)
            return None

    @staticmethod
    def _locs(root: ET.Element) -> List[str]:
        locs = []
        for entry in root:
            for child in entry:
                if _local_name(child.tag) == "loc" and child.text and child.text.strip():
                    locs.append(child.text.strip())
                    break
        return locs

    async def _fetch(self, sitemap_url: str) -> Optional[str]:
        result = await self.http.perform_request(sitemap_url)
        status = result.get("status", -99)
        content = result.get("content")
        if not (200 <= status < 300) or content is None:
            logger.warning("Could not fetch sitemap %s (status %s)", sitemap_url, status)
            return None

        if content[:2] == b"\x1f\x8b":
            try:
                content = gzip.decompress(content)
            except OSError as e:
                logger.warning("Could not decompress sitemap %s: %s", sitemap_url, e)
                return None
        return HttpRequestService.decode(content, result.get("headers", {}))
