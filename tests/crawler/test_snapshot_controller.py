# tests/crawler/test_snapshot_controller.py
import asyncio
import json

import pytest

from crawler.controllers.snapshot_controller import SnapshotController
from crawler.model import SnapshotSettings
from extractor.services.header_footer_extract_service import FragmentNotFoundError

TEMPLATE_ORIGIN = "https://technocit.com"

HOME_BODY = """
<div data-elementor-type="wp-page" data-elementor-id="2" class="elementor elementor-2">
  <div class="elementor-element"><h1>Home</h1><p>Welcome to our cloud services company.</p></div>
</div>"""

ABOUT_BODY = """
<div data-elementor-type="wp-page" data-elementor-id="12" class="elementor elementor-12">
  <div class="elementor-element elementor-invisible">
    <h1>About us</h1>
    <img src="../wp-content/uploads/2024/05/logo.svg" alt="logo">
    <a href="https://technocit.com/contact-us/">Contact</a>
  </div>
</div>"""

POST_3080_CSS = ".elementor-3080 .logo{background:url(../../2024/05/bg.png)}"


def _sitemap(site, paths):
    locs = "".join(f"<url><loc>{site.url(p)}</loc></url>" for p in paths)
    return f'<?xml version="1.0"?><urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{locs}</urlset>'


def _serve(site, make_page, sitemap_paths=("/", "/about/", "/gone/")):
    def page(body):
        return make_page(body).replace(TEMPLATE_ORIGIN, site.origin)

    html = {"Content-Type": "text/html; charset=utf-8"}
    site.add("/page-sitemap.xml", 200, _sitemap(site, sitemap_paths), {"Content-Type": "application/xml"})
    site.add("/", 200, page(HOME_BODY), html)
    site.add("/about/", 200, page(ABOUT_BODY), html)
    site.add("/wp-content/uploads/2024/05/logo.svg", 200, b"<svg/>", {"Content-Type": "image/svg+xml"})
    site.add("/wp-content/uploads/2024/05/bg.png", 200, b"PNG", {"Content-Type": "image/png"})
    site.add("/wp-content/uploads/elementor/css/post-3080.css", 200, POST_3080_CSS, {"Content-Type": "text/css"})
    site.add("/wp-content/uploads/elementor/css/post-3084.css", 200, "footer{color:#000}", {"Content-Type": "text/css"})


def _settings(site, tmp_path, markers):
    header, footer = markers
    return SnapshotSettings(
        origin=site.origin,
        sitemaps=[site.url("/page-sitemap.xml")],
        reference_page=site.url("/"),
        data_dir=tmp_path / "data",
        public_dir=tmp_path / "public",
        show_progress=False,
        extractor={"header": header.model_dump(), "footer": footer.model_dump()},
    )


def _asset_hits(site):
    return {path: count for path, count in site.hits.items() if path.startswith("/wp-content/")}


def _tree(root):
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


def test_full_snapshot_run(stub_site, make_page, fragment_markers, tmp_path):
    async def main():
        async with stub_site() as site:
            _serve(site, make_page)
            summary = await SnapshotController(_settings(site, tmp_path, fragment_markers)).run()
            return site, summary

    site, summary = asyncio.run(main())
    data_dir = tmp_path / "data"
    public_dir = tmp_path / "public"

    assert (summary.pages_total, summary.pages_processed, summary.pages_failed) == (3, 2, 1)
    assert summary.assets_failed == 0

    assert sorted(_tree(data_dir)) == [
        "footer.json", "header.json", "navigation.json", "pages/about.json", "pages/home.json", "routes.json",
    ]
    routes = json.loads((data_dir / "routes.json").read_text())
    assert routes == {"routes": [{"slug": "home", "path": "/"}, {"slug": "about", "path": "/about"}], "total": 2}

    navigation = json.loads((data_dir / "navigation.json").read_text())
    assert navigation["items"] == [{"label": "Home", "href": "/"}, {"label": "About", "href": "/about/"}]
    assert navigation["updatedAt"].endswith("Z")

    about = json.loads((data_dir / "pages/about.json").read_text())
    assert 'src="/static/images/2024/05/logo.svg"' in about["content"]["html"]
    assert 'href="/contact-us/"' in about["content"]["html"]
    assert "elementor-invisible" not in about["content"]["html"]

    header = json.loads((data_dir / "header.json").read_text())
    assert header["cssFiles"] == ["/static/images/elementor/css/post-3080.css"]

    assert (public_dir / "static/images/2024/05/logo.svg").read_bytes() == b"<svg/>"
    assert (public_dir / "static/images/elementor/css/post-3080.css").read_text() == (
        ".elementor-3080 .logo{background:url(/static/images/2024/05/bg.png)}"
    )
    assert site.hits["/wp-content/uploads/2024/05/logo.svg"] == 1
    assert site.hits["/wp-content/uploads/2024/05/bg.png"] == 1

    for name, content in {**_tree(data_dir), **_tree(public_dir)}.items():
        assert site.origin.encode() not in content, name


def test_second_run_is_idempotent(stub_site, make_page, fragment_markers, tmp_path):
    async def main():
        async with stub_site() as site:
            _serve(site, make_page)
            await SnapshotController(_settings(site, tmp_path, fragment_markers)).run()
            first_hits = _asset_hits(site)
            first_tree = _tree(tmp_path)
            summary = await SnapshotController(_settings(site, tmp_path, fragment_markers)).run()
            return first_hits, first_tree, _asset_hits(site), _tree(tmp_path), summary

    first_hits, first_tree, second_hits, second_tree, summary = asyncio.run(main())
    assert second_hits == first_hits
    assert second_tree == first_tree
    assert summary.assets_downloaded == 0


def test_reference_page_outside_sitemap_still_supplies_header(stub_site, make_page, fragment_markers, tmp_path):
    async def main():
        async with stub_site() as site:
            _serve(site, make_page, sitemap_paths=("/about/",))
            return await SnapshotController(_settings(site, tmp_path, fragment_markers)).run()

    summary = asyncio.run(main())
    assert summary.pages_processed == 1
    assert (tmp_path / "data/header.json").is_file()
    assert not (tmp_path / "data/pages/home.json").exists()


def test_missing_header_aborts_after_pages_are_written(stub_site, make_page, fragment_markers, tmp_path):
    header, footer = fragment_markers
    missing = header.model_copy(update={"selector": '[data-elementor-id="9999"]'})

    async def main():
        async with stub_site() as site:
            _serve(site, make_page)
            controller = SnapshotController(_settings(site, tmp_path, (missing, footer)))
            with pytest.raises(FragmentNotFoundError):
                await controller.run()
            return controller

    controller = asyncio.run(main())
    assert (tmp_path / "data/pages/home.json").is_file()
    assert (tmp_path / "data/routes.json").is_file()
    assert not (tmp_path / "data/header.json").exists()
    assert controller.summary.pages_processed == 2
    assert controller.http.session.closed


def test_second_url_with_taken_slug_is_not_stored(stub_site, make_page, fragment_markers, tmp_path):
    async def main():
        async with stub_site() as site:
            _serve(site, make_page, sitemap_paths=("/", "/about/", "/About/"))
            site.add("/About/", 200, make_page("<main><h1>Shadow</h1></main>"), {"Content-Type": "text/html"})
            return await SnapshotController(_settings(site, tmp_path, fragment_markers)).run()

    summary = asyncio.run(main())
    assert (summary.pages_processed, summary.pages_failed) == (2, 1)
    about = json.loads((tmp_path / "data/pages/about.json").read_text())
    assert about["path"] == "/about"
    assert "Shadow" not in about["content"]["html"]


def test_redirected_page_keeps_listed_slug_and_final_base(stub_site, make_page, fragment_markers, tmp_path):
    team_body = """
<div data-elementor-type="wp-page" data-elementor-id="40" class="elementor elementor-40">
  <div class="elementor-element"><h1>Team</h1><img src="img/team.png" alt="Team"></div>
</div>"""

    async def main():
        async with stub_site() as site:
            _serve(site, make_page, sitemap_paths=("/", "/old-team/"))
            site.add("/old-team/", 301, b"", {"Location": "/company/team/"})
            site.add("/company/team/", 200, make_page(team_body), {"Content-Type": "text/html"})
            site.add("/company/team/img/team.png", 200, b"TEAM", {"Content-Type": "image/png"})
            return await SnapshotController(_settings(site, tmp_path, fragment_markers)).run()

    summary = asyncio.run(main())
    assert summary.assets_failed == 0
    team = json.loads((tmp_path / "data/pages/old-team.json").read_text())
    assert team["path"] == "/old-team"
    assert 'src="/static/company/team/img/team.png"' in team["content"]["html"]
    assert (tmp_path / "public/static/company/team/img/team.png").read_bytes() == b"TEAM"
