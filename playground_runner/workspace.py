"""Per-attempt scratch directories."""

from __future__ import annotations

import logging
from pathlib import Path
import shutil
import tempfile

logger = logging.getLogger(__name__)


class WorkspaceManager:
    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)

    def create(self, template_id: str) -> Path:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        path = Path(tempfile.mkdtemp(prefix=f"{template_id}-", dir=str(self.base_dir)))
        logger.debug("Created workspace %s", path)
        return path

    def cleanup(self, path: str | Path) -> None:
        shutil.rmtree(path, ignore_errors=True)
        logger.debug("Removed workspace %s", path)
