# src/sitesnap/core/managers/content_store_manager.py
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from crawler.utils.url_utils import UrlUtils
from extractor.model import (
    HeaderFooterFragment,
    NavigationItem,
    NavigationTable,
    PageRecord,
    RouteEntry,
    RouteTable,
)
from sitesnap.core.utils.path_utils import PathUtils

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Keys that change on every run without the content changing.
VOLATILE_KEYS = ("extractedAt", "updatedAt")

HOME_SLUG = "home"


class ContentStoreManager:
    """
    Owns the JSON files under data_dir.

    Layout:
        pages/<slug>.json   one PageRecord per page
        routes.json         RouteTable
        navigation.json     NavigationTable
        header.json         HeaderFooterFragment
        footer.json         HeaderFooterFragment

    Writes are atomic and skipped when only the timestamp would change.
    Reads return None (or an empty table) on missing or invalid files.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.pages_dir = PathUtils.get_pages_dir(self.data_dir)

    # =========================================================================
    #  WRITING
    # =========================================================================
    def page_file(self, slug: str) -> Path:
        """Raises ValueError for slugs that would land outside pages/."""
        return UrlUtils.to_filesystem_path(self.pages_dir, f"{slug.strip('/') or HOME_SLUG}.json")

    def write_page(self, record: PageRecord) -> Path:
        path = self.page_file(record.slug)
        self._write_json(path, record.to_json_dict())
        return path

    def write_routes(self, entries: Iterable[RouteEntry]) -> RouteTable:
        unique: Dict[str, RouteEntry] = {}
        for entry in entries:
            unique.setdefault(entry.slug, entry)
        routes = sorted(unique.values(), key=lambda r: r.path)
        table = RouteTable(routes=routes, total=len(routes))
        self._write_json(self.data_dir / "routes.json", table.to_json_dict())
        return table

    def write_navigation(self, items: List[NavigationItem], updated_at: str) -> NavigationTable:
        table = NavigationTable(items=items, updated_at=updated_at)
        self._write_json(self.data_dir / "navigation.json", table.to_json_dict())
        return table

    def write_fragment(self, name: str, fragment: HeaderFooterFragment) -> Path:
        path = self.data_dir / f"{name}.json"
        self._write_json(path, fragment.to_json_dict())
        return path

    @staticmethod
    def _without_volatile(payload: Any) -> Any:
        if isinstance(payload, dict):
            return {k: v for k, v in payload.items() if k not in VOLATILE_KEYS}
        return payload

    def _write_json(self, path: Path, payload: Dict[str, Any]) -> bool:
        """
        Writes payload to path via a temp file and os.replace.
        Returns False when the file already holds the same content.
        """
        existing = self._read_json(path, quiet=True)
        if existing is not None and self._without_volatile(existing) == self._without_volatile(payload):
            logger.debug("Unchanged, keeping %s", path)
            return False

        path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(payload, ensure_ascii=False, indent=2) + "\n"
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote %s", path)
        return True

    # =========================================================================
    #  READING
    # =========================================================================
    @staticmethod
    def _read_json(path: Path, quiet: bool = False) -> Optional[Any]:
        if not path.is_file():
            if not quiet:
                logger.warning("Data file not found: %s", path)
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            if not quiet:
                logger.warning("Could not read %s: %s", path, e)
            return None

    def _load_model(self, path: Path, model: Type[ModelT]) -> Optional[ModelT]:
        data = self._read_json(path)
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning("Invalid data structure in %s: %s", path, e.error_count())
            return None

    def load_by_slug(self, slug: str) -> Optional[PageRecord]:
        """'' and 'index' both mean the home page."""
        slug = (slug or "").strip("/")
        if slug in ("", "index"):
            slug = HOME_SLUG
        try:
            path = self.page_file(slug)
        except ValueError:
            logger.warning("Rejected page slug %r", slug)
            return None
        return self._load_model(path, PageRecord)

    def list_routes(self) -> RouteTable:
        table = self._load_model(self.data_dir / "routes.json", RouteTable)
        return table if table is not None else RouteTable()

    def _find_route(self, path: str) -> Optional[RouteEntry]:
        wanted = UrlUtils.normalize_route_path(path)
        for route in self.list_routes().routes:
            if route.path == path or UrlUtils.normalize_route_path(route.path) == wanted:
                return route
        return None

    def load_by_path(self, path: str) -> Optional[PageRecord]:
        """'/about', 'about/' and '/about/' all find the same page."""
        route = self._find_route(path)
        return self.load_by_slug(route.slug) if route is not None else None

    def route_exists(self, path: str) -> bool:
        return self._find_route(path) is not None

    def load_navigation(self) -> NavigationTable:
        table = self._load_model(self.data_dir / "navigation.json", NavigationTable)
        return table if table is not None else NavigationTable()

    def load_header(self) -> Optional[HeaderFooterFragment]:
        return self._load_model(self.data_dir / "header.json", HeaderFooterFragment)

    def load_footer(self) -> Optional[HeaderFooterFragment]:
        return self._load_model(self.data_dir / "footer.json", HeaderFooterFragment)
