"""
Artifact Sinks - where finished exports are delivered.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .exceptions import PersistenceError


logger = logging.getLogger(__name__)


class ArtifactSink(ABC):
    """Accepts (content, suggested_name, mime_type) and makes it available to the user."""

    @abstractmethod
    def deliver(self, content: str, suggested_name: str, mime_type: str) -> Optional[str]:
        """Returns a location for the artifact when the sink has one."""
        ...


class FileArtifactSink(ArtifactSink):
    """Writes artifacts into a directory, overwriting same-named files."""

    def __init__(self, output_dir: str = "exports") -> None:
        self.output_dir = Path(output_dir)

    def deliver(self, content: str, suggested_name: str, mime_type: str) -> Optional[str]:
        path = self.output_dir / Path(suggested_name).name
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e
        logger.info(f"Wrote {mime_type} export to {path} ({len(content)} chars)")
        return str(path)
