# src/sitesnap/core/utils/path_utils.py
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class PathUtils:
    """
    A central utility for reliably retrieving important project and output paths.
    """

    # --- Package specific paths

    @staticmethod
    def get_content_root() -> Path:
        """Returns the directory holding the import packages (the 'src' dir)."""
        return Path(__file__).resolve().parents[3]

    @staticmethod
    def get_app_package_root() -> Path:
        return PathUtils.get_content_root() / "sitesnap"

    @staticmethod
    def get_project_root() -> Path:
        """
        Returns the absolute path of the project root.
        Searches upwards for a directory containing 'src' and 'pyproject.toml'.
        Falls back to the current working directory for non-editable installs.
        """
        current_path = Path(__file__).resolve().parent
        while current_path != current_path.parent:
            src_dir = current_path / "src"
            pyproject_toml = current_path / "pyproject.toml"
            if src_dir.is_dir() and pyproject_toml.is_file():
                return current_path
            current_path = current_path.parent
        logger.debug("No project root found above %s, using cwd.", Path(__file__))
        return Path.cwd()

    # --- Output paths ---

    @staticmethod
    def resolve_output_dir(configured: str | Path, base_dir: Path | None = None) -> Path:
        """
        Resolves a configured output directory. Relative paths are anchored
        at base_dir (or the project root). The directory is created if needed.
        """
        path = Path(configured).expanduser()
        if not path.is_absolute():
            path = (base_dir or PathUtils.get_project_root()) / path
        path.mkdir(parents=True, exist_ok=True)
        return path

    @staticmethod
    def get_pages_dir(data_dir: Path) -> Path:
        """Returns the directory holding one JSON document per page."""
        path = data_dir / "pages"
        path.mkdir(parents=True, exist_ok=True)
        return path
