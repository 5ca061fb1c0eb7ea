"""Saving and restoring scan progress."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_RESUME_FILE_NAME = "resume.cfg"


def default_resume_folder_path() -> Path:
    """Folder holding the resume file, under the user's config directory."""
    try:
        home = Path.home()
    except (RuntimeError, KeyError):
        return Path(DEFAULT_RESUME_FILE_NAME)
    return home / ".config" / "portprobe"


def default_resume_file_path() -> Path:
    return default_resume_folder_path() / DEFAULT_RESUME_FILE_NAME


@dataclass
class ResumeConfig:
    """Scan progression: the current retry, shuffle seed and index."""

    retry: int = 0
    seed: int = 0
    index: int = 0
    lock: threading.RLock = field(
        default_factory=threading.RLock, repr=False, compare=False
    )

    def _to_dict(self) -> dict[str, int]:
        with self.lock:
            return {"retry": self.retry, "seed": self.seed, "index": self.index}

    def save(self, path: str | Path | None = None) -> None:
        """Write the progression as JSON, creating the folder if needed."""
        target = Path(path) if path is not None else default_resume_file_path()
        data = json.dumps(self._to_dict(), indent="\t")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(data, encoding="utf-8")

    def load(self, path: str | Path | None = None) -> None:
        """Read the progression from a JSON file; missing keys are kept."""
        logger.info("Resuming from save checkpoint")
        source = Path(path) if path is not None else default_resume_file_path()
        data = json.loads(source.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"invalid resume data in {source}")
        with self.lock:
            self.retry = int(data.get("retry", self.retry))
            self.seed = int(data.get("seed", self.seed))
            self.index = int(data.get("index", self.index))

    def should_save(self) -> bool:
        return True

    def cleanup(self, path: str | Path | None = None) -> None:
        """Remove the resume file if it exists."""
        target = Path(path) if path is not None else default_resume_file_path()
        if target.is_file():
            target.unlink()