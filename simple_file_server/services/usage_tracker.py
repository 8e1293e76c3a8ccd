import asyncio
import logging
from pathlib import Path

import aiofiles.os

logger = logging.getLogger("simple_file_server")


class UsageTracker:
    """Keeps the running total of bytes stored in the upload folder.

    The total is only ever recomputed by a full rescan of the folder, never
    adjusted by deltas. `lock` serialises admission, commit and rescan for the
    folder; the tracker itself enforces no policy.
    """

    def __init__(self, folder: Path):
        self.folder = Path(folder)
        self.space_used: int = 0
        self.lock = asyncio.Lock()

    async def initialize(self):
        """Create the upload folder if needed and compute the current usage."""
        logger.info("Initializing usage tracker...")

        if not await aiofiles.os.path.isdir(self.folder):
            await aiofiles.os.makedirs(self.folder, exist_ok=True)
            self.space_used = 0
            logger.info(f"Created upload folder {self.folder}")
            return

        await self.recompute()
        logger.info(f"Current disk usage: {self.space_used / (1024*1024):.2f} MB")

    async def recompute(self) -> int:
        """Rescan the folder (non-recursive) and sum the sizes of its files.

        Raises:
            OSError: the folder or one of its entries could not be read
        """
        used = 0
        for name in await aiofiles.os.listdir(self.folder):
            path = self.folder / name
            if not await aiofiles.os.path.isfile(path):
                continue
            stat = await aiofiles.os.stat(path)
            used += stat.st_size

        previous = self.space_used
        self.space_used = used
        logger.debug(f"Disk usage rescanned. Previous: {previous}, New: {used}")
        return used

    def remaining(self, limit: int) -> int:
        return max(limit - self.space_used, 0)
