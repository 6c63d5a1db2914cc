# tests/core/test_app.py
import copy

import pytest

from crawler.model import RunSummary, SnapshotSettings
from extractor.services.header_footer_extract_service import FragmentNotFoundError
from sitesnap import app
from sitesnap.core.managers.config_manager import config_manager


@pytest.fixture(autouse=True)
def restore_config():
    original = copy.deepcopy(config_manager.get_all())
    yield
    config_manager._config = original


def test_apply_overrides_casts_and_skips_garbage():
    applied = config_manager.apply_overrides(["session.concurrency=8", "snapshot.show_progress=false", "not-a-pair"])
    assert applied == 2
    assert config_manager.get_nested("session.concurrency") == 8
    assert config_manager.get_nested("snapshot.show_progress") is False


def test_main_prints_summary(monkeypatch, capsys):
    monkeypatch.setattr(app, "run_snapshot", lambda: RunSummary(pages_total=2, pages_processed=2))
    assert app.main([]) == 0
    assert "2/2 pages processed" in capsys.readouterr().out


def test_main_reports_missing_fragment(monkeypatch):
    def fail():
        raise FragmentNotFoundError("header", 3)

    monkeypatch.setattr(app, "run_snapshot", fail)
    assert app.main([]) == 1


def test_main_rejects_invalid_settings():
    assert app.main(["snapshot.origin=not-a-url"]) == 2


def test_configured_settings_are_valid():
    settings = SnapshotSettings.from_config(
        config_manager.get_nested("snapshot"),
        config_manager.get_nested("session"),
    )
    assert settings.extractor.header.name == "header"
    assert settings.extractor.footer.css_files == ["post-3.css", "post-3084.css"]
    assert settings.extractor.classifier.signal_threshold == 2
