"""
Cache Persistence Module

Reads and writes the dedup cache as a single JSON file:

    {"<chat id>": [<item id>, ...], ...}

Each list is ordered oldest first. Membership indexes are never stored;
they are rebuilt from the lists on load.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Union

from pydantic import TypeAdapter, ValidationError

from ciri.dedup.cache import DEFAULT_CAPACITY, ScopedCache
from ciri.errors import CacheLoadError, CacheSaveError

logger = logging.getLogger(__name__)

_schema = TypeAdapter(dict[int, list[int]])


def load(path: Union[str, Path], capacity: int = DEFAULT_CAPACITY) -> ScopedCache:
    """
    Load a cache file.

    Raises CacheLoadError when the file is missing, unreadable or does not
    match the schema. Never returns partial data.
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise CacheLoadError(f"Cannot read cache file {path}: {e}") from e

    try:
        data = _schema.validate_json(raw)
    except ValidationError as e:
        raise CacheLoadError(
            f"Invalid cache file {path}: {e.error_count()} error(s), "
            f"first: {e.errors()[0]['msg']}"
        ) from e

    return ScopedCache.from_snapshot(data, capacity)


def load_or_empty(
    path: Union[str, Path], capacity: int = DEFAULT_CAPACITY
) -> ScopedCache:
    """Startup helper: load the cache, or fall back to an empty one."""
    path = Path(path)
    if not path.exists():
        logger.info(f"No cache file at {path}, starting empty")
        return ScopedCache(capacity)

    try:
        cache = load(path, capacity)
    except CacheLoadError as e:
        logger.warning(f"Failed to load cache, starting empty: {e}")
        return ScopedCache(capacity)

    logger.info(
        f"Loaded {cache.total_entries()} used entries "
        f"in {cache.scope_count} chats from {path}"
    )
    return cache


def save(
    cache: Union[ScopedCache, dict[int, list[int]]],
    path: Union[str, Path],
) -> None:
    """
    Write the cache (or a snapshot of it) to `path`.

    Writes to a temp file next to the target and replaces it atomically,
    so a failed save leaves the previous file intact.
    Raises CacheSaveError on failure.
    """
    snapshot = cache.snapshot() if isinstance(cache, ScopedCache) else cache
    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")

    try:
        data = {str(scope): list(items) for scope, items in snapshot.items() if items}
        payload = json.dumps(data)
    except (TypeError, ValueError) as e:
        raise CacheSaveError(f"Cannot serialize cache: {e}") from e

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            logger.debug(f"Could not remove temp file {tmp_path}")
        raise CacheSaveError(f"Cannot write cache file {path}: {e}") from e

    logger.debug(f"Saved {sum(len(v) for v in data.values())} entries to {path}")
