# tests/conftest.py
import asyncio
from collections import Counter

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from crawler.model import SnapshotSettings
from crawler.utils.path_rewriter import PathRewriter
from extractor.model import FragmentMarker

ORIGIN = "https://technocit.com"

HEADER_MARKER = FragmentMarker(
    name="header",
    selector='[data-elementor-type="wp-post"][data-elementor-id="3080"]',
    style_token=".elementor-3080",
    css_files=["post-3080.css", "custom-pro-widget-nav-menu.min.css", "e-sticky.min.css"],
)
FOOTER_MARKER = FragmentMarker(
    name="footer",
    selector='[data-elementor-type="wp-post"][data-elementor-id="3084"]',
    style_token=".elementor-3084",
    css_files=["post-3.css", "post-3084.css"],
)

SITE_HEADER = """
<div data-elementor-type="wp-post" data-elementor-id="3080" class="elementor elementor-3080">
  <div class="elementor-element elementor-invisible">
    <div class="elementor-widget-theme-site-logo">
      <a href="https://technocit.com/"><img src="/wp-content/uploads/2024/05/logo.svg" alt="TechnoCIT"></a>
    </div>
    <nav class="elementor-nav-menu">
      <a class="elementor-item" href="https://technocit.com/">Home</a>
      <a class="elementor-item" href="https://technocit.com/about/">About</a>
      <a class="elementor-item" href="/about/">About</a>
    </nav>
  </div>
</div>
"""

SITE_FOOTER = """
<div data-elementor-type="wp-post" data-elementor-id="3084" class="elementor elementor-3084">
  <p>Contact us at info@technocit.com or +971 4 123 4567</p>
  <p>© 2024 TechnoCIT</p>
</div>
"""


def build_page(body: str, head_extra: str = "") -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <title>TechnoCIT</title>
  <meta name="description" content="Cloud and IT services">
  <link rel="stylesheet" id="post-3080-css" href="https://technocit.com/wp-content/uploads/elementor/css/post-3080.css?ver=1">
  <link rel="stylesheet" href="/wp-content/uploads/elementor/css/post-3084.css">
  <style id="elementor-frontend-inline-css">.elementor-3080 .logo{{background:url(../wp-content/uploads/2024/05/bg.png)}}</style>
  <style>.elementor-3084 footer{{color:#000}}</style>
  {head_extra}
</head>
<body>
{SITE_HEADER}
{body}
{SITE_FOOTER}
</body>
</html>"""


@pytest.fixture
def rewriter():
    return PathRewriter(ORIGIN)


@pytest.fixture
def snapshot_settings(tmp_path):
    return SnapshotSettings(
        origin=ORIGIN,
        sitemaps=[f"{ORIGIN}/page-sitemap.xml"],
        reference_page=f"{ORIGIN}/",
        data_dir=tmp_path / "data",
        public_dir=tmp_path / "public",
        show_progress=False,
        extractor={"header": HEADER_MARKER.model_dump(), "footer": FOOTER_MARKER.model_dump()},
    )


@pytest.fixture
def make_page():
    """Factory for a full page carrying the shared header and footer around the given body."""
    return build_page


class StubSite:
    """
    Serves canned responses from a real local aiohttp server and counts the
    requests per path. Routes map a path to (status, body, headers); a route
    added with a delay answers only after that many seconds.
    """

    def __init__(self, routes=None):
        self.routes = {}
        self.hits = Counter()
        self.server = None
        self.delays = {}
        self._origin = None
        for path, response in (routes or {}).items():
            self.add(path, *response)

    def add(self, path, status=200, body=b"", headers=None, delay=0):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[path] = (status, body, dict(headers or {}))
        self.delays[path] = delay

    async def _handle(self, request):
        self.hits[request.path] += 1
        if self.delays.get(request.path):
            await asyncio.sleep(self.delays[request.path])
        status, body, headers = self.routes.get(request.path, (404, b"not found", {}))
        return web.Response(status=status, body=body, headers=headers)

    async def __aenter__(self):
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._handle)
        self.server = TestServer(app)
        await self.server.start_server()
        self._origin = f"http://{self.server.host}:{self.server.port}"
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.server.close()

    @property
    def origin(self) -> str:
        # Kept after close so expectations can be built once the server is gone.
        return self._origin

    def url(self, path: str) -> str:
        return self.origin + path


@pytest.fixture
def stub_site():
    """Factory: `async with stub_site({...}) as site:`."""
    return StubSite


@pytest.fixture
def fragment_markers():
    return HEADER_MARKER, FOOTER_MARKER
