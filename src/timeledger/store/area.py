"""Directory-backed storage area."""

import asyncio
import logging
import shutil
from pathlib import Path

from timeledger.errors import StorageError
from timeledger.store.base import StorageArea

logger = logging.getLogger(__name__)


class DirectoryStorageArea(StorageArea):
    """A folder on disk that holds a store's files."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def is_available(self) -> bool:
        return await asyncio.to_thread(self._path.is_dir)

    async def create(self) -> None:
        try:
            await asyncio.to_thread(self._path.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(e) from e
        logger.info(f"Created storage area: {self._path}")

    async def remove(self) -> None:
        if not await self.is_available():
            return None
        try:
            await asyncio.to_thread(shutil.rmtree, self._path)
        except OSError as e:
            raise StorageError(e) from e
        logger.info(f"Removed storage area: {self._path}")
