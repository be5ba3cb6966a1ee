"""
registry.py — Process-wide owner of loaded classifier artifacts.

Each artifact is a lazily initialised singleton:

    • registered once with a synchronous loader (file I/O, parsing)
    • loaded on first ``acquire`` in a worker thread, never on import
    • concurrent first use shares one in-flight load
    • cached for the process lifetime once loaded; treated as immutable
    • a failed load is NOT cached; the next caller retries
    • reference counts track current users (``lease`` / ``release``)

Classifiers receive the registry by injection, so tests can register
in-memory models without touching disk.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

from lifeline.core.errors import ArtifactLoadError

logger = logging.getLogger(__name__)

Loader = Callable[[], Any]


@dataclass
class _Entry:
    loader: Loader
    value: Any = None
    loaded: bool = False
    refcount: int = 0
    load_count: int = 0
    in_flight: Optional[asyncio.Future] = None
    last_error: Optional[str] = None


class ModelRegistry:
    """Named, memoised, reference-counted artifact singletons."""

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}

    # ---- Registration ----

    def register(self, name: str, loader: Loader) -> None:
        """Register (or replace, if not yet loaded) the loader for ``name``."""
        entry = self._entries.get(name)
        if entry is not None and entry.loaded:
            raise ValueError(f"artifact '{name}' is already loaded")
        self._entries[name] = _Entry(loader=loader)

    def register_loaded(self, name: str, value: Any) -> None:
        """Register an already-built artifact (tests, injected models)."""
        self._entries[name] = _Entry(
            loader=lambda: value, value=value, loaded=True,
        )

    def names(self) -> List[str]:
        return list(self._entries)

    def _entry(self, name: str) -> _Entry:
        try:
            return self._entries[name]
        except KeyError:
            raise ArtifactLoadError(name, "no loader registered") from None

    # ---- Loading ----

    async def _load(self, name: str, entry: _Entry) -> Any:
        if entry.loaded:
            return entry.value

        if entry.in_flight is None:
            entry.in_flight = asyncio.ensure_future(self._run_loader(name, entry))

        # shield: one waiter's cancellation must not abort the shared load
        return await asyncio.shield(entry.in_flight)

    async def _run_loader(self, name: str, entry: _Entry) -> Any:
        start = time.perf_counter()
        try:
            value = await asyncio.to_thread(entry.loader)
        except ArtifactLoadError as e:
            entry.last_error = e.message
            logger.warning("Artifact %s failed to load: %s", name, e.message,
                           extra={"artifact": name})
            raise
        except Exception as e:
            entry.last_error = str(e)
            logger.warning("Artifact %s failed to load: %s", name, e,
                           extra={"artifact": name})
            raise ArtifactLoadError(name, str(e)) from e
        finally:
            entry.in_flight = None

        entry.value = value
        entry.loaded = True
        entry.load_count += 1
        entry.last_error = None
        logger.info(
            "Artifact %s loaded in %.1fms", name, (time.perf_counter() - start) * 1000,
            extra={"artifact": name},
        )
        return value

    async def acquire(self, name: str) -> Any:
        """Return the artifact, loading it on first use; bumps the refcount."""
        entry = self._entry(name)
        value = await self._load(name, entry)
        entry.refcount += 1
        return value

    def release(self, name: str) -> None:
        entry = self._entry(name)
        if entry.refcount > 0:
            entry.refcount -= 1

    @asynccontextmanager
    async def lease(self, name: str) -> AsyncIterator[Any]:
        """``async with registry.lease("urgency") as artifacts: ...``"""
        value = await self.acquire(name)
        try:
            yield value
        finally:
            self.release(name)

    async def prewarm(self, names: Optional[Iterable[str]] = None) -> Dict[str, bool]:
        """
        Load artifacts ahead of first use.

        Failures are logged and reported, never raised; the classifiers
        fall back on their own at triage time.
        """
        targets = list(names) if names is not None else self.names()
        results = await asyncio.gather(
            *(self._load(n, self._entry(n)) for n in targets),
            return_exceptions=True,
        )
        status = {n: not isinstance(r, BaseException) for n, r in zip(targets, results)}
        if all(status.values()):
            logger.info("Model artifacts pre-warmed: %s", ", ".join(targets))
        else:
            logger.warning("Pre-warm incomplete: %s", status)
        return status

    # ---- Introspection ----

    def is_loaded(self, name: str) -> bool:
        entry = self._entries.get(name)
        return bool(entry and entry.loaded)

    def refcount(self, name: str) -> int:
        return self._entry(name).refcount

    def load_count(self, name: str) -> int:
        return self._entry(name).load_count

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {
                "loaded": e.loaded,
                "refcount": e.refcount,
                "last_error": e.last_error,
            }
            for name, e in self._entries.items()
        }
