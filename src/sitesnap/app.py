from __future__ import annotations

import asyncio
import logging
import sys

from pydantic import ValidationError

from crawler.controllers.snapshot_controller import SnapshotController
from crawler.model import RunSummary, SnapshotSettings
from extractor.services.header_footer_extract_service import FragmentNotFoundError
from sitesnap.core.managers.config_manager import config_manager
from sitesnap.core.utils.configure_logging import configure_logger

# Initialize logging based on configuration
configure_logger(
    config_manager.get_nested("debug.level", "INFO"),
    silenced_loggers=config_manager.get_nested("debug.silenced", {}),
)
logger = logging.getLogger(__name__)


def _setup_windows_event_loop_if_needed() -> None:
    """Installs Windows compatible asyncio policy if possible."""
    if not sys.platform.startswith("win"):
        return
    policy = asyncio.WindowsSelectorEventLoopPolicy()
    asyncio.set_event_loop_policy(policy)
    logger.info("Using WindowsSelectorEventLoopPolicy for asyncio on Windows.")


def run_snapshot() -> RunSummary:
    settings = SnapshotSettings.from_config(
        config_manager.get_nested("snapshot", {}),
        config_manager.get_nested("session", {}),
    )
    controller = SnapshotController(settings)
    return asyncio.run(controller.run())


def main(argv: list[str] | None = None) -> int:
    """Entrypoint: one snapshot run with the configured settings."""
    _setup_windows_event_loop_if_needed()
    config_manager.apply_overrides(sys.argv[1:] if argv is None else argv)

    try:
        summary = run_snapshot()
    except ValidationError as e:
        logger.error("Invalid snapshot settings: %s", e)
        return 2
    except FragmentNotFoundError as e:
        logger.error("Snapshot incomplete: %s", e)
        return 1

    print(summary.describe())
    return 0


if __name__ == "__main__":
    sys.exit(main())
