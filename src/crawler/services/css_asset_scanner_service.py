# src/crawler/services/css_asset_scanner_service.py
import logging
import re
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from crawler.model import AssetReference
from crawler.utils.path_rewriter import AssetCollector, PathRewriter, RewriteKind

logger = logging.getLogger(__name__)

# url(x), url('x'), url("x")
_URL_PATTERN = re.compile(
    r"url\(\s*(?:(?P<q>['\"])(?P<quoted>.*?)(?P=q)|(?P<bare>[^)'\"\s]*))\s*\)",
    re.IGNORECASE | re.DOTALL,
)
# @import "x" / @import 'x' (the url() form is covered by _URL_PATTERN)
_IMPORT_STRING_PATTERN = re.compile(r"(@import\s+)(?P<q>['\"])(?P<ref>[^'\"]+)(?P=q)", re.IGNORECASE)
# Either @import form, for listing import targets only
_IMPORT_PATTERN = re.compile(
    r"@import\s+(?:url\(\s*(?P<q1>['\"]?)(?P<u>[^'\")]+)(?P=q1)\s*\)|(?P<q2>['\"])(?P<s>[^'\"]+)(?P=q2))",
    re.IGNORECASE,
)

_LAZYLOAD_SELECTOR = r"\.e-con\.e-parent:nth-of-type\(n\+[0-9]+\):not\(\.e-lazyloaded\)"
_LAZYLOAD_PATTERNS = (
    # .e-con.e-parent:nth-of-type(n+4):not(.e-lazyloaded):not(.e-no-lazyload), ... * { background-image: none !important }
    re.compile(
        _LAZYLOAD_SELECTOR + r"(?::not\(\.e-no-lazyload\))?(?:\s*,\s*" + _LAZYLOAD_SELECTOR
        + r"(?::not\(\.e-no-lazyload\))?\s*\*)?\s*\{[^}]*background-image:\s*none\s*!important[^}]*\}"
    ),
    # whole @media blocks made of nothing but such rules
    re.compile(
        r"@media[^{]*\{[^{}]*(?:" + _LAZYLOAD_SELECTOR
        + r"[^{}]*background-image:\s*none\s*!important[^{}]*)+[^}]*\}",
        re.DOTALL,
    ),
    # leftovers with a different selector prefix
    re.compile(
        r"[^{}]*\.e-con\.e-parent[^{}]*:not\(\.e-lazyloaded\)[^{}]*\{[^}]*background-image:\s*none\s*!important[^}]*\}"
    ),
)

PLACEHOLDER_TEMPLATE = "/* Empty placeholder for missing CSS import: {ref} */\n"


class CssAssetScannerService:
    """Finds and rewrites asset references inside CSS text."""

    def __init__(self, rewriter: PathRewriter):
        self.rewriter = rewriter

    # -------- Discovery --------

    @staticmethod
    def _raw_references(css_text: str) -> List[str]:
        refs: List[str] = []
        for match in _URL_PATTERN.finditer(css_text or ""):
            ref = match.group("quoted") if match.group("q") else match.group("bare")
            if ref:
                refs.append(ref.strip())
        for match in _IMPORT_STRING_PATTERN.finditer(css_text or ""):
            refs.append(match.group("ref").strip())
        return refs

    def references(self, css_text: str, css_source_url: str) -> List[AssetReference]:
        """Unique origin assets referenced by css_text, resolved against the CSS file's own URL."""
        found: Dict[str, AssetReference] = {}
        for ref in self._raw_references(css_text):
            asset = self.rewriter.asset_for(ref, css_source_url)
            if asset is not None:
                found.setdefault(asset.remote_url, asset)
        return list(found.values())

    def scan(self, css_text: str, css_source_url: str) -> List[str]:
        return [asset.remote_url for asset in self.references(css_text, css_source_url)]

    def imports(self, css_text: str, css_source_url: str) -> List[AssetReference]:
        found: Dict[str, AssetReference] = {}
        for match in _IMPORT_PATTERN.finditer(css_text or ""):
            ref = (match.group("u") or match.group("s") or "").strip()
            result = self.rewriter.inspect(ref, css_source_url)
            if result.kind is RewriteKind.ASSET:
                found.setdefault(result.remote_url, result.asset)
        return list(found.values())

    # -------- Rewriting --------

    def rewrite_with(
            self,
            css_text: str,
            base_url: Optional[str],
            rewrite_fn: Callable[[str, Optional[str]], str],
    ) -> str:
        """Replaces every url()/@import reference in place, keeping its quote style."""
        if not css_text:
            return css_text

        def _url(match: re.Match) -> str:
            quote = match.group("q") or ""
            ref = match.group("quoted") if quote else match.group("bare")
            if not ref:
                return match.group(0)
            return f"url({quote}{rewrite_fn(ref.strip(), base_url)}{quote})"

        def _import(match: re.Match) -> str:
            quote = match.group("q")
            return f"{match.group(1)}{quote}{rewrite_fn(match.group('ref').strip(), base_url)}{quote}"

        rewritten = _URL_PATTERN.sub(_url, css_text)
        return _IMPORT_STRING_PATTERN.sub(_import, rewritten)

    def rewrite(self, css_text: str, base_url: Optional[str], unavailable: Iterable[str] = ()) -> str:
        collector = AssetCollector(self.rewriter, unavailable)
        return self.rewrite_with(css_text, base_url, collector.rewrite)

    @staticmethod
    def synthesize_placeholder(path: Path, import_ref: str) -> bool:
        """
        Creates an empty stylesheet for an @import target that could not be
        fetched, so the importing stylesheet still resolves. Only for .css
        targets that do not exist yet.
        """
        path = Path(path)
        if path.exists() or path.suffix.lower() != ".css":
            return False
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(PLACEHOLDER_TEMPLATE.format(ref=import_ref.split("?", 1)[0]), encoding="utf-8")
        except OSError as e:
            logger.warning("Could not create placeholder for %s: %s", import_ref, e)
            return False
        logger.info("Created placeholder for missing CSS import: %s", import_ref)
        return True

    @staticmethod
    def strip_lazyload_rules(css_text: str) -> str:
        """
        Removes the page builder's lazy-load rules that force
        'background-image: none' until a script adds 'e-lazyloaded'.
        """
        if not css_text or "e-lazyloaded" not in css_text:
            return css_text

        cleaned = css_text
        for pattern in _LAZYLOAD_PATTERNS:
            cleaned = pattern.sub("", cleaned)
        if cleaned == css_text:
            return css_text

        cleaned = re.sub(r"@media[^{]*\{\s*\}", "", cleaned)
        cleaned = re.sub(r"\{\s*\}", "", cleaned)
        cleaned = re.sub(r"\n\s*\n\s*\n+", "\n\n", cleaned)
        return "\n".join(line.strip() for line in cleaned.strip().splitlines())
