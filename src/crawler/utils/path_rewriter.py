# src/crawler/utils/path_rewriter.py
"""
Maps every URL form found in crawled HTML and CSS onto the canonical local layout.

    data: URIs, fragments, mailto: ...        -> untouched
    /static/...                               -> untouched (already local)
    //host/x, /x, x, ./x, ../x, http://host/x -> resolved against the containing document
    origin + /wp-content/uploads/<rest>       -> /static/images/<rest>
    origin + page-like path                   -> /path (site-root-relative page link)
    origin + any other path                   -> /static/path
    foreign host                              -> absolute remote URL
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional
from urllib.parse import urljoin, urlparse

from crawler.model import AssetReference, SnapshotSettings
from crawler.utils.url_utils import UrlUtils

logger = logging.getLogger(__name__)

_TRAILING_PUNCTUATION = ".,;:!?"


class RewriteKind(str, Enum):
    PASSTHROUGH = "passthrough"
    LOCAL = "local"
    PAGE = "page"
    ASSET = "asset"
    REMOTE = "remote"


class Rewrite(NamedTuple):
    value: str
    kind: RewriteKind
    remote_url: Optional[str] = None

    @property
    def asset(self) -> Optional[AssetReference]:
        if self.kind is RewriteKind.ASSET and self.remote_url:
            return AssetReference(remote_url=self.remote_url, local_path=self.value)
        return None


class PathRewriter:
    """Stateless apart from the site constants it is built with."""

    def __init__(
            self,
            origin: str,
            static_prefix: str = "/static",
            upload_prefix: str = "/wp-content/uploads/",
            image_prefix: str = "/static/images/",
    ):
        parsed = urlparse(origin)
        if not parsed.netloc:
            raise ValueError(f"origin must be absolute: {origin!r}")
        self.origin = origin.rstrip("/")
        self.scheme = parsed.scheme or "https"
        self.netloc = parsed.netloc
        self._host_key = UrlUtils.host_key(parsed.netloc)
        self.static_prefix = "/" + static_prefix.strip("/")
        self.upload_prefix = "/" + upload_prefix.strip("/") + "/"
        self.image_prefix = "/" + image_prefix.strip("/") + "/"
        self._embedded_pattern = re.compile(
            r"(?:https?:)?(?:\\?/){2}(?:www\.)?" + re.escape(self._host_key)
            + r"(?=[/\\\"'\s?#)<>,]|$)(?:\\/|[^\s\"'<>()\\,])*",
            re.IGNORECASE,
        )

    @classmethod
    def from_settings(cls, settings: SnapshotSettings) -> "PathRewriter":
        return cls(
            origin=settings.origin,
            static_prefix=settings.static_prefix,
            upload_prefix=settings.upload_prefix,
            image_prefix=settings.image_prefix,
        )

    # -------- Classification --------

    def is_local(self, reference: str) -> bool:
        return reference == self.static_prefix or reference.startswith(self.static_prefix + "/")

    def is_origin(self, url: str) -> bool:
        try:
            return UrlUtils.host_key(urlparse(url).netloc) == self._host_key
        except ValueError:
            return False

    def inspect(self, raw: Optional[str], base_url: Optional[str] = None) -> Rewrite:
        """Classifies one reference and computes its canonical form. Never raises."""
        if raw is None:
            return Rewrite("", RewriteKind.PASSTHROUGH)
        ref = raw.strip()
        if not ref or ref.startswith("#") or ref[:5].lower() == "data:":
            return Rewrite(raw, RewriteKind.PASSTHROUGH)
        if self.is_local(ref):
            return Rewrite(ref, RewriteKind.LOCAL)

        try:
            scheme = urlparse(ref).scheme.lower()
            if scheme and scheme not in ("http", "https"):
                return Rewrite(raw, RewriteKind.PASSTHROUGH)
            if ref.startswith("//"):
                absolute = f"{self.scheme}:{ref}"
            else:
                absolute = urljoin(base_url or f"{self.origin}/", ref)
            parsed = urlparse(absolute)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                return Rewrite(raw, RewriteKind.PASSTHROUGH)
            parsed.port  # raises ValueError on a malformed port
        except ValueError:
            logger.debug("Leaving malformed reference untouched: %r", raw)
            return Rewrite(raw, RewriteKind.PASSTHROUGH)

        if UrlUtils.host_key(parsed.netloc) != self._host_key:
            return Rewrite(absolute, RewriteKind.REMOTE)

        path = parsed.path or "/"
        remote_url = f"{parsed.scheme}://{parsed.netloc}{path}"
        if path.startswith(self.upload_prefix):
            return Rewrite(self.image_prefix + path[len(self.upload_prefix):], RewriteKind.ASSET, remote_url)
        if UrlUtils.is_page_path(path):
            return Rewrite(path, RewriteKind.PAGE)
        return Rewrite(self.static_prefix + path, RewriteKind.ASSET, remote_url)

    def rewrite(self, raw: Optional[str], base_url: Optional[str] = None) -> str:
        """Canonical local form of raw, or raw itself when it must pass through."""
        return self.inspect(raw, base_url).value

    def asset_for(self, raw: Optional[str], base_url: Optional[str] = None) -> Optional[AssetReference]:
        return self.inspect(raw, base_url).asset

    @staticmethod
    def local_file(public_dir: Path, local_path: str) -> Path:
        """Filesystem location of a canonical local path. Raises ValueError outside public_dir."""
        return UrlUtils.to_filesystem_path(public_dir, local_path)

    # -------- Embedded URLs (JSON attributes, JSON-LD, free text) --------

    def rewrite_embedded(
            self,
            text: str,
            rewrite_fn: Optional[Callable[[str, Optional[str]], str]] = None,
    ) -> str:
        """
        Rewrites absolute origin URLs found anywhere inside text, including
        JSON-escaped ones ('https:\\/\\/host\\/path').
        """
        if not text or self._host_key not in text.lower():
            return text
        rewrite_fn = rewrite_fn or self.rewrite

        def _replace(match: re.Match) -> str:
            found = match.group(0)
            tail = ""
            while found and found[-1] in _TRAILING_PUNCTUATION:
                tail = found[-1] + tail
                found = found[:-1]
            escaped = "\\/" in found
            url = found.replace("\\/", "/")
            new_value = rewrite_fn(url, f"{self.origin}/")
            if escaped:
                new_value = new_value.replace("/", "\\/")
            return new_value + tail

        return self._embedded_pattern.sub(_replace, text)


class AssetCollector:
    """
    Rewrites references for one document while remembering every origin asset
    it localised. Assets listed as unavailable keep their absolute remote URL.
    """

    def __init__(self, rewriter: PathRewriter, unavailable: Iterable[str] = ()):
        self.rewriter = rewriter
        self.unavailable = frozenset(unavailable)
        self._found: Dict[str, AssetReference] = {}

    def rewrite(self, raw: Optional[str], base_url: Optional[str] = None) -> str:
        result = self.rewriter.inspect(raw, base_url)
        if result.kind is RewriteKind.ASSET:
            if result.remote_url in self.unavailable:
                return result.remote_url
            self._found.setdefault(result.remote_url, result.asset)
        return result.value

    def rewrite_embedded(self, text: str) -> str:
        return self.rewriter.rewrite_embedded(text, self.rewrite)

    @property
    def references(self) -> List[AssetReference]:
        return list(self._found.values())
