# src/crawler/utils/url_utils.py
import logging
import os
import re
from pathlib import Path
from typing import List, Tuple
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

# Extensions that identify a rendered page rather than a static asset.
# The "" entry is crucial for extensionless (pretty) permalinks.
PAGE_EXTENSIONS = frozenset([
    "", ".htm", ".html", ".xhtml", ".shtml",
    ".php", ".asp", ".aspx", ".jsp", ".jspx", ".cfm",
])

# Word characters include non-ASCII letters, so '/عنا/' keeps its own slug.
_SLUG_SEGMENT_PATTERN = re.compile(r"[^\w\-.]+")
# Slugs the store reads as the root page; no other URL may take them.
_RESERVED_SLUGS = ("home", "index")
_INDEX_DOCUMENTS = ("index.html", "index.htm", "index.php")


class UrlUtils:
    """A collection of static methods for URL parsing and manipulation."""

    @staticmethod
    def host_key(netloc: str) -> str:
        """Lowercased host without a leading 'www.' so both spellings compare equal."""
        host = (netloc or "").lower()
        return host[4:] if host.startswith("www.") else host

    @staticmethod
    def is_page_path(path: str) -> bool:
        """
        Checks if a URL path points at a rendered page (no extension or an
        HTML-like one) rather than a downloadable asset.
        """
        _, extension = os.path.splitext(path or "")
        return extension.lower() in PAGE_EXTENSIONS

    @staticmethod
    def split_srcset(srcset: str) -> List[Tuple[str, str]]:
        """Splits a srcset value into (url, descriptor) pairs."""
        out: List[Tuple[str, str]] = []
        for part in (srcset or "").split(","):
            part = part.strip()
            if not part:
                continue
            pieces = part.split(None, 1)
            out.append((pieces[0], pieces[1] if len(pieces) > 1 else ""))
        return out

    @staticmethod
    def join_srcset(candidates: List[Tuple[str, str]]) -> str:
        return ", ".join(f"{url} {desc}".strip() for url, desc in candidates)

    @staticmethod
    def to_filesystem_path(root: Path, local_path: str) -> Path:
        """
        Maps a canonical local URL path ('/static/images/a.png') onto a file
        below root. Raises ValueError if the result would escape root.
        """
        relative = unquote(local_path.split("?", 1)[0].split("#", 1)[0]).lstrip("/")
        if not relative or relative.endswith("/"):
            raise ValueError(f"Local path does not name a file: {local_path!r}")
        root_resolved = Path(root).resolve()
        target = (root_resolved / relative).resolve()
        if target != root_resolved and root_resolved not in target.parents:
            raise ValueError(f"Local path escapes the output root: {local_path!r}")
        return target

    @staticmethod
    def slug_and_path(url: str) -> Tuple[str, str]:
        """
        Derives the (slug, path) pair a crawled page is stored under.

        '/' -> ('home', '/'); '/about/' -> ('about', '/about');
        '/a/b/index.html' -> ('a/b', '/a/b'); '/news.html' -> ('news', '/news.html').

        Only the root gets 'home': a page at '/home/' is stored as 'home-page'.
        """
        try:
            raw_path = urlparse(url).path or "/"
        except ValueError:
            raw_path = "/"

        segments = [unquote(s) for s in raw_path.split("/") if s]
        if segments and segments[-1].lower() in _INDEX_DOCUMENTS:
            segments = segments[:-1]

        if not segments:
            return "home", "/"

        slug_segments = [UrlUtils._slug_segment(s) for s in segments]
        last_stem, last_ext = os.path.splitext(slug_segments[-1])
        if last_ext and last_ext in PAGE_EXTENSIONS:
            slug_segments[-1] = last_stem
        slug = "/".join(s for s in slug_segments if s)
        if slug in _RESERVED_SLUGS:
            slug = f"{slug}-page"
        return slug, "/" + "/".join(segments)

    @staticmethod
    def normalize_route_path(path: str) -> str:
        """'/about/' and 'about' compare equal; the root stays '/'."""
        stripped = (path or "").strip("/")
        return stripped if stripped else "/"

    @staticmethod
    def _slug_segment(segment: str) -> str:
        slug = _SLUG_SEGMENT_PATTERN.sub("-", segment.lower()).strip("-.")
        if slug:
            return slug
        # Nothing usable left ('/!!!/', '/../'): name it by its UTF-8 bytes.
        return segment.encode("utf-8").hex()

