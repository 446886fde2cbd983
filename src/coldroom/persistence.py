"""
Snapshot Persistence

The in-memory AppState is the source of truth. This module writes it to a
single JSON file as a best-effort shadow: opportunistically after every
mutation, and on a fixed interval regardless of activity.
"""

import asyncio
import json
import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from .state import AppState

logger = logging.getLogger(__name__)

FLUSH_INTERVAL = 30  # seconds between forced flushes


class SnapshotStore:
    """
    Reads and writes the snapshot file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Dict[str, Any]:
        """
        Load the snapshot.

        Returns:
            The decoded snapshot, or {} if the file is missing or unreadable
        """
        if not os.path.exists(self.path):
            logger.warning(f"Data file {self.path} not found, starting fresh")
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load data file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Data file {self.path} does not hold an object")
            return {}
        logger.info(f"Data loaded from {self.path}")
        return data

    def save(self, snapshot: Dict[str, Any]):
        """
        Write the snapshot atomically.

        Raises:
            OSError: If the file cannot be written
        """
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(
            prefix=".coldroom-", suffix=".json", dir=directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


class Persister:
    """
    Schedules snapshot writes off the event loop.

    The snapshot dict is built on the loop, so it is consistent with the
    in-memory state at that instant; only the file write runs in a worker
    thread. At most one write is in flight, and a flush requested during a
    write causes exactly one follow-up write.
    """

    def __init__(self, state: AppState, store: SnapshotStore):
        self.state = state
        self.store = store
        self._executor = ThreadPoolExecutor(max_workers=1)
        self._dirty = False
        self._writing = False
        self._task: Optional[asyncio.Task] = None

    @property
    def dirty(self) -> bool:
        return self._dirty

    def mark_dirty(self):
        """
        Record a mutation and schedule an opportunistic flush.

        Safe to call without a running event loop (the periodic or shutdown
        flush will pick the change up).
        """
        self._dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if not self._writing:
            self._task = loop.create_task(self.flush())

    async def flush(self) -> bool:
        """
        Write the snapshot if there are unsaved changes.

        Returns:
            True if a write succeeded
        """
        if self._writing:
            return False
        wrote = False
        self._writing = True
        try:
            while self._dirty:
                self._dirty = False
                snapshot = self.state.to_snapshot()
                loop = asyncio.get_running_loop()
                try:
                    await loop.run_in_executor(self._executor, self.store.save, snapshot)
                    wrote = True
                except Exception as e:
                    logger.error(f"Failed to save data file {self.store.path}: {e}")
                    self._dirty = True
                    break
        finally:
            self._writing = False
        return wrote

    async def flush_now(self) -> bool:
        """Force a write regardless of the dirty flag."""
        self._dirty = True
        if self._task is not None and not self._task.done():
            await self._task
        return await self.flush()

    async def periodic_flush(self, interval: float = FLUSH_INTERVAL):
        """
        Periodic task forcing a flush every `interval` seconds.
        """
        logger.info("Starting periodic flush task")
        while True:
            try:
                await asyncio.sleep(interval)
                self._dirty = True
                await self.flush()
            except asyncio.CancelledError:
                logger.info("Periodic flush task cancelled")
                raise
            except Exception as e:
                logger.error(f"Error in periodic flush: {e}")

    def close(self):
        self._executor.shutdown(wait=True)
