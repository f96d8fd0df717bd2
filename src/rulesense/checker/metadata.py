"""
Metric metadata sources.

Checks that need to know a metric's type (counter, gauge, ...) ask a
``MetadataSource``. There is no live backend client here: metadata is
read from configuration, and ``CachedMetadataSource`` makes sure that
concurrent checks looking up the same metric ask the wrapped source
only once.
"""

from __future__ import annotations

import logging
import threading
from typing import Mapping, Protocol, runtime_checkable

from rulesense.keylock import KeyLock

logger = logging.getLogger(__name__)

_MISSING = object()


@runtime_checkable
class MetadataSource(Protocol):
    """Anything that can tell the type of a metric."""

    def metric_type(self, name: str) -> str | None:
        """Return the metric type, or None when it is not known."""
        ...


class StaticMetadataSource:
    """Metadata from a fixed ``{metric name: type}`` mapping."""

    def __init__(self, types: Mapping[str, str] | None = None) -> None:
        self._types = {name: kind.lower() for name, kind in (types or {}).items()}

    def metric_type(self, name: str) -> str | None:
        return self._types.get(name)

    def __len__(self) -> int:
        return len(self._types)


class CachedMetadataSource:
    """
    Caching wrapper around another metadata source.

    Lookups of the same metric are serialised with a ``KeyLock`` so only
    the first caller reaches the wrapped source; everyone else waits and
    reads the cached answer. Lookups of different metrics run in parallel.
    """

    def __init__(self, inner: MetadataSource) -> None:
        self.inner = inner
        self._locks = KeyLock()
        self._cache: dict[str, str | None] = {}
        self._stats_lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def metric_type(self, name: str) -> str | None:
        with self._locks.locked(name):
            cached = self._cache.get(name, _MISSING)
            if cached is not _MISSING:
                with self._stats_lock:
                    self.hits += 1
                return cached  # type: ignore[return-value]

            with self._stats_lock:
                self.misses += 1
            logger.debug("Metadata cache miss for %s", name)
            value = self.inner.metric_type(name)
            self._cache[name] = value
            return value

    def clear(self) -> None:
        self._cache.clear()
