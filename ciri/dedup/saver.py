"""
Cache Save Coordinator Module

Background task that persists the dedup cache after it changes.
Command handlers only call `notify()`; any number of notifications
raised before the next save collapse into a single save cycle, and
the file write runs in a worker thread without holding the cache lock.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from ciri.dedup import codec
from ciri.dedup.cache import ScopedCache
from ciri.errors import CacheSaveError

logger = logging.getLogger(__name__)

SaveFunc = Callable[[dict[int, list[int]], Path], None]


class SaverState(Enum):
    """Coordinator states."""
    IDLE = "idle"
    SAVING = "saving"


class SaveCoordinator:
    """
    Debounced, coalescing writer for a ScopedCache.

    Flow per cycle:
      1. wait for the dirty flag
      2. wait `debounce_seconds` so bursts of changes share one save
      3. snapshot the cache (brief lock), clear the flag
      4. write the snapshot off the event loop

    A notify() that lands after step 3 sets the flag again, so the last
    change is always picked up by the following cycle.
    """

    def __init__(
        self,
        cache: ScopedCache,
        path: Union[str, Path],
        debounce_seconds: float = 2.0,
        poll_interval: float = 1.0,
        save_func: Optional[SaveFunc] = None,
    ):
        self.cache = cache
        self.path = Path(path)
        self.debounce_seconds = debounce_seconds
        self.poll_interval = poll_interval
        self._save_func = save_func or codec.save

        self.state = SaverState.IDLE
        self.saves_completed = 0
        self.saves_failed = 0

        self._dirty = asyncio.Event()
        self._stop = asyncio.Event()
        self._write_lock = asyncio.Lock()
        self._last_failed = False
        self._task: Optional[asyncio.Task] = None

    def notify(self) -> None:
        """Mark the cache as changed. Cheap, never blocks, never queues."""
        self._dirty.set()

    @property
    def is_dirty(self) -> bool:
        return self._dirty.is_set()

    @property
    def has_unsaved_changes(self) -> bool:
        return self._dirty.is_set() or self._last_failed

    def start(self, stop_event: Optional[asyncio.Event] = None) -> asyncio.Task:
        """Spawn `run()` as a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(stop_event))
        return self._task

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Save loop. Runs until `stop_event` (or shutdown()) is set.

        Args:
            stop_event: Optional external event that ends the loop.
        """
        logger.info(f"Cache save loop started (path={self.path})")
        linker = None
        if stop_event is not None:
            if stop_event.is_set():
                self._stop.set()
            linker = asyncio.create_task(self._link_stop(stop_event))
        try:
            await self._loop()
        finally:
            if linker is not None:
                linker.cancel()
        logger.info("Cache save loop stopped")

    async def _link_stop(self, stop_event: asyncio.Event) -> None:
        """Forward an external stop signal to the internal one."""
        await stop_event.wait()
        self._stop.set()

    async def _loop(self) -> None:
        while True:
            if self._stop.is_set():
                break

            try:
                await asyncio.wait_for(
                    self._dirty.wait(),
                    timeout=self.poll_interval,
                )
            except asyncio.TimeoutError:
                continue  # Re-check stop conditions

            if self.debounce_seconds > 0:
                # Shutdown cuts the debounce short
                try:
                    await asyncio.wait_for(
                        self._stop.wait(),
                        timeout=self.debounce_seconds,
                    )
                except asyncio.TimeoutError:
                    pass

            await self._save_cycle()

    async def flush(self) -> bool:
        """Snapshot and write right now. Returns True on success."""
        return await self._save_cycle()

    async def shutdown(self, timeout: float = 5.0) -> bool:
        """
        Stop the loop and make one last save attempt, bounded by `timeout`.

        Failures are logged, never raised.
        """
        try:
            return await asyncio.wait_for(self._final_save(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Final cache save did not finish within {timeout}s")
            return False
        except Exception as e:
            logger.error(f"Final cache save failed: {e}", exc_info=True)
            return False

    async def _final_save(self) -> bool:
        self._stop.set()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
                logger.debug("Cache save loop was cancelled")
            except Exception as e:
                logger.error(f"Cache save loop crashed: {e}", exc_info=True)

        if not self.has_unsaved_changes:
            return True
        logger.info("Saving cache before exit...")
        return await self.flush()

    async def _save_cycle(self) -> bool:
        async with self._write_lock:
            self.state = SaverState.SAVING
            try:
                snapshot = self.cache.snapshot()
            finally:
                self.state = SaverState.IDLE
            # Cleared only after a successful snapshot, with no await in between
            self._dirty.clear()

            try:
                await asyncio.to_thread(self._save_func, snapshot, self.path)
            except CacheSaveError as e:
                self._record_failure()
                logger.error(f"Failed to save cache: {e}")
                return False
            except Exception as e:
                self._record_failure()
                logger.error(f"Unexpected error saving cache: {e}", exc_info=True)
                return False

            self._last_failed = False
            self.saves_completed += 1
            logger.debug(
                f"Cache saved ({sum(len(v) for v in snapshot.values())} entries, "
                f"{len(snapshot)} chats)"
            )
            return True

    def _record_failure(self) -> None:
        self._last_failed = True
        self.saves_failed += 1
