from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from tubely.core.logging import get_logger

from .faststart import processing_path_for

logger = get_logger(component="staging")


@dataclass(slots=True)
class StagedUpload:
    raw_path: Path
    processed_path: Path

    def paths(self) -> tuple[Path, Path]:
        return self.raw_path, self.processed_path


@contextmanager
def staged_upload(
    temp_dir: Optional[Path] = None,
    *,
    prefix: str = "tubely-upload",
    suffix: str = ".mp4",
) -> Iterator[StagedUpload]:
    """Reserve a unique raw upload path plus its fast-start sibling.

    Both files are removed when the block exits, however it exits.
    """
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=str(temp_dir) if temp_dir else None)
    os.close(fd)
    raw_path = Path(name)
    staged = StagedUpload(raw_path=raw_path, processed_path=processing_path_for(raw_path))
    logger.debug("temp_artifact_created", path=str(raw_path))
    try:
        yield staged
    finally:
        for path in staged.paths():
            try:
                path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning("temp_artifact_cleanup_failed", path=str(path), error=str(cleanup_error))


__all__ = ["StagedUpload", "staged_upload"]
