# ============================================
# file: src/extractor/model.py
# ============================================
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator
from pydantic.alias_generators import to_camel


# -------- Settings --------

class ClassifierSettings(BaseModel):
    signal_threshold: int = 2
    max_content_blocks: int = 3
    logo_selectors: List[str] = Field(default_factory=lambda: [
        ".elementor-widget-theme-site-logo",
        '.elementor-widget-image[data-id*="logo"]',
    ])
    nav_selectors: List[str] = Field(default_factory=lambda: [
        ".elementor-widget-nav-menu",
        ".elementor-nav-menu",
    ])
    social_domains: List[str] = Field(default_factory=lambda: [
        "linkedin.com", "youtube.com", "facebook.com", "instagram.com", "twitter.com", "x.com",
    ])
    address_keywords: List[str] = Field(default_factory=lambda: ["p.o.box", "p.o. box"])


class FragmentMarker(BaseModel):
    """Stable identifier of a shared header or footer template."""
    name: str
    selector: str
    style_token: str = ""
    css_files: List[str] = Field(default_factory=list)


class ExtractorSettings(BaseModel):
    content_selectors: List[str] = Field(default_factory=lambda: [
        '[data-elementor-type="wp-page"]',
        '[data-elementor-type="wp-post"][data-elementor-post-type="post"]',
        "main",
        ".page-content",
        "#content",
        "article",
    ])
    navigation_selector: str = ".elementor-nav-menu a.elementor-item"
    invisible_classes: List[str] = Field(default_factory=lambda: ["elementor-invisible"])
    min_paragraph_chars: int = 20
    strip_lazyload_rules: bool = True
    header: Optional[FragmentMarker] = None
    footer: Optional[FragmentMarker] = None
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)


# -------- Output schema --------

class SnapshotModel(BaseModel):
    """Base for everything written to JSON: camelCase keys on disk, snake_case in code."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class NavigationItem(SnapshotModel):
    label: str
    href: str


class PageMetadata(SnapshotModel):
    title: str = ""
    description: str = ""
    canonical: str = ""
    og: Dict[str, str] = Field(default_factory=dict)
    twitter: Dict[str, str] = Field(default_factory=dict)
    schema_org: Optional[Any] = Field(default=None, alias="schema")


class Heading(SnapshotModel):
    level: int
    tag: str
    text: str
    id: Optional[str] = None


class ImageRef(SnapshotModel):
    src: str
    alt: str = ""
    width: Optional[int] = None
    height: Optional[int] = None

    @staticmethod
    def _parse_dim(val: Any) -> Optional[int]:
        if val is None or isinstance(val, bool):
            return None
        if isinstance(val, int):
            return val
        s = str(val).strip()
        if not s:
            return None
        # "100px" -> 100, "50%" is meaningless as a pixel size
        if s.endswith("%"):
            return None
        digits = ""
        for ch in s:
            if not ch.isdigit():
                break
            digits += ch
        return int(digits) if digits else None

    @field_validator("width", "height", mode="before")
    @classmethod
    def _normalize_dims(cls, v: Any) -> Optional[int]:
        return cls._parse_dim(v)


class LinkRef(SnapshotModel):
    href: str
    text: str


class ContentFragment(SnapshotModel):
    html: str = ""
    elementor_id: Optional[str] = None
    headings: List[Heading] = Field(default_factory=list)
    paragraphs: List[str] = Field(default_factory=list)
    images: List[ImageRef] = Field(default_factory=list)
    links: List[LinkRef] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.html


class InlineStyle(SnapshotModel):
    id: str = ""
    content: str


class ExternalStyle(SnapshotModel):
    href: str
    id: str = ""


class PageStyles(SnapshotModel):
    inline: List[InlineStyle] = Field(default_factory=list)
    external: List[ExternalStyle] = Field(default_factory=list)


class _CarriesAssets(SnapshotModel):
    # Asset references discovered while rewriting; never serialised.
    _assets: List[Any] = PrivateAttr(default_factory=list)

    @property
    def asset_references(self) -> List[Any]:
        return list(self._assets)

    def attach_assets(self, assets) -> None:
        self._assets = list(assets)


class PageRecord(_CarriesAssets):
    slug: str
    path: str
    metadata: PageMetadata = Field(default_factory=PageMetadata)
    navigation: List[NavigationItem] = Field(default_factory=list)
    content: ContentFragment = Field(default_factory=ContentFragment)
    styles: PageStyles = Field(default_factory=PageStyles)
    extracted_at: str = ""


class HeaderFooterFragment(_CarriesAssets):
    html: str
    inline_styles: str = ""
    css_files: List[str] = Field(default_factory=list)


class RouteEntry(SnapshotModel):
    slug: str
    path: str


class RouteTable(SnapshotModel):
    routes: List[RouteEntry] = Field(default_factory=list)
    total: int = 0


class NavigationTable(SnapshotModel):
    items: List[NavigationItem] = Field(default_factory=list)
    updated_at: str = ""


# -------- Classification --------

class RegionKind(str, Enum):
    HEADER = "header"
    FOOTER = "footer"
    CONTENT = "content"


class BoilerplateCandidate(BaseModel):
    """One top-level subtree of the content wrapper and the verdict on it."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    element: Any = Field(default=None, exclude=True, repr=False)
    signals: List[str] = Field(default_factory=list)
    content_blocks: int = 0
    kind: RegionKind = RegionKind.CONTENT

    @property
    def is_boilerplate(self) -> bool:
        return self.kind is not RegionKind.CONTENT
