# src/crawler/managers/progress_manager.py
import sys
from tqdm import tqdm
import logging

logger = logging.getLogger(__name__)


class ProgressManager:
    """
    Manages the complete lifecycle of a tqdm progress bar over crawled pages.
    When disabled the bar is never drawn but the counters still work.
    """

    def __init__(self, total: int, desc: str, unit: str = "page", enabled: bool = True):
        if total <= 0:
            total = 1

        self.pbar = tqdm(
            total=total,
            desc=desc,
            unit=f" {unit}",
            dynamic_ncols=True,
            smoothing=0.1,
            mininterval=0.5,
            postfix={"assets": 0, "failures": 0},
            bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}] {postfix}",
            file=sys.stdout,
            disable=not enabled,
        )
        self._postfix = {"assets": 0, "failures": 0}

    def advance(self, steps: int = 1, assets_count: int = None, failures_count: int = None):
        """
        Increments the progress bar and updates the status counters.
        """
        if not self.pbar:
            return
        self.pbar.update(steps)

        current_postfix = self._postfix
        updated = False

        if assets_count is not None:
            current_postfix["assets"] = assets_count
            updated = True

        if failures_count is not None:
            current_postfix["failures"] = failures_count
            updated = True

        if updated:
            self.pbar.set_postfix(current_postfix, refresh=False)

    def close(self, final_assets: int, final_failures: int = 0):
        if not self.pbar:
            return

        self.pbar.set_postfix({
            "assets": final_assets,
            "failures": final_failures
        }, refresh=True)
        self.pbar.close()
        self.pbar = None
        logger.debug("ProgressManager: Progress bar closed.")
