# src/crawler/model.py (Crawl Layer)
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from extractor.model import ExtractorSettings

logger = logging.getLogger(__name__)


class AssetReference(BaseModel):
    """A remote origin resource and the canonical local path it is stored under."""
    model_config = ConfigDict(frozen=True)

    remote_url: str
    local_path: str


class SnapshotSettings(BaseModel):
    origin: str
    sitemaps: List[str] = Field(default_factory=list)
    reference_page: Optional[str] = None
    data_dir: Path = Path("data")
    public_dir: Path = Path("public")
    static_prefix: str = "/static"
    upload_prefix: str = "/wp-content/uploads/"
    image_prefix: str = "/static/images/"
    concurrency: int = Field(default=4, ge=1)
    timeout: int = Field(default=30)
    max_redirects: int = Field(default=10)
    show_progress: bool = True
    extractor: ExtractorSettings = Field(default_factory=ExtractorSettings)

    @field_validator("origin", mode="before")
    @classmethod
    def _strip_origin(cls, v: Any) -> str:
        s = str(v or "").strip().rstrip("/")
        if not s.startswith(("http://", "https://")):
            raise ValueError(f"origin must be an absolute http(s) URL, got {v!r}")
        return s

    @field_validator("static_prefix", mode="before")
    @classmethod
    def _normalize_static_prefix(cls, v: Any) -> str:
        return "/" + str(v).strip("/")

    @property
    def reference_url(self) -> str:
        return self.reference_page or f"{self.origin}/"

    @classmethod
    def from_config(
            cls,
            snapshot_cfg: Optional[Dict[str, Any]],
            session_cfg: Optional[Dict[str, Any]] = None,
    ) -> "SnapshotSettings":
        """Builds settings from the 'snapshot' and 'session' sections of settings.json."""
        data = dict(snapshot_cfg or {})
        session_cfg = session_cfg or {}
        data.setdefault("concurrency", session_cfg.get("concurrency", 4))
        data.setdefault("timeout", session_cfg.get("time_out", 30))
        data.setdefault("max_redirects", session_cfg.get("max_redirects", 10))
        return cls(**data)


class RunSummary(BaseModel):
    pages_total: int = 0
    pages_processed: int = 0
    pages_failed: int = 0
    pages_empty: int = 0
    assets_downloaded: int = 0
    assets_skipped: int = 0
    assets_failed: int = 0
    css_imports_synthesized: int = 0
    duration_s: float = 0.0

    def describe(self) -> str:
        return (
            f"{self.pages_processed}/{self.pages_total} pages processed "
            f"({self.pages_failed} failed, {self.pages_empty} without content), "
            f"{self.assets_downloaded} assets downloaded, {self.assets_skipped} reused, "
            f"{self.assets_failed} failed, {self.css_imports_synthesized} CSS imports synthesized "
            f"in {self.duration_s:.2f}s"
        )
