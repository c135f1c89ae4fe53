# interfaces/storage.py
# JSON file persistence for the delegators snapshot

import asyncio
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from ..aggregator import invert, rebuild
from ..logging_utils import get_logger
from ..models import CacheSnapshot, DelegatorsWithTimestamp


logger = get_logger(__name__)

FILE_MODE = 0o644


def atomic_write_text(path: Path, data: str) -> None:
    """Write `data` next to `path` and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=path.name + ".", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        # mkstemp creates 0600
        os.chmod(tmp_name, FILE_MODE)
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)


class SnapshotFile:
    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def _load_sync(self) -> CacheSnapshot:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info(f"No cache file at {self.path}")
            return CacheSnapshot()
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read cache file {self.path}: {e}")
            return CacheSnapshot()
        if not content.strip():
            logger.info("File is empty")
            return CacheSnapshot()
        try:
            document = DelegatorsWithTimestamp.model_validate_json(content)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable cache file {self.path}: {e}")
            return CacheSnapshot()
        return rebuild(invert(document.delegators), document.timestamp)

    def _save_sync(self, snapshot: CacheSnapshot) -> None:
        document = snapshot.to_document()
        atomic_write_text(self.path, document.model_dump_json(indent=2))

    async def load(self) -> CacheSnapshot:
        """Persisted snapshot, or an empty one (timestamp 0) if there is nothing usable."""
        return await asyncio.to_thread(self._load_sync)

    async def save(self, snapshot: CacheSnapshot) -> None:
        await asyncio.to_thread(self._save_sync, snapshot)
        logger.info("Updated delegators file")
