"""
Request deduplication: at most one concurrent upstream fetch per (symbol, asset class).

The first caller for a key creates the in-flight entry and its loader is
submitted once to a worker pool; later callers attach to the same future.
Every waiter blocks on the shared future with its own timeout, so one waiter
giving up never cancels the fetch the others are still waiting on.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import UpstreamTimeout
from .base import AssetClass, Quote

logger = logging.getLogger(__name__)

_Key = Tuple[str, AssetClass]


@dataclass
class _InFlightRequest:
    future: "Future[Quote]" = field(default_factory=Future)
    waiters: int = 0


class RequestDeduplicator:
    """Collapses concurrent identical requests into one loader invocation."""

    def __init__(self, max_workers: int = 8) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="quote-fetch"
        )
        self._inflight: Dict[_Key, _InFlightRequest] = {}
        self._lock = threading.Lock()

    def fetch(
        self,
        symbol: str,
        asset_class: AssetClass,
        loader: Callable[[], Quote],
        timeout: Optional[float] = None,
    ) -> Quote:
        key = (symbol.upper(), asset_class)
        with self._lock:
            entry = self._inflight.get(key)
            leader = entry is None
            if entry is None:
                entry = _InFlightRequest()
                self._inflight[key] = entry
            entry.waiters += 1

        if leader:
            logger.debug("Dedup: new fetch for %s:%s", asset_class.value, key[0])
            try:
                self._executor.submit(self._run, key, entry, loader)
            except RuntimeError as exc:
                # pool already shut down: withdraw the entry and fail anyone who attached
                with self._lock:
                    if self._inflight.get(key) is entry:
                        del self._inflight[key]
                    entry.waiters -= 1
                entry.future.set_exception(exc)
                raise
        else:
            logger.debug("Dedup: attaching to in-flight fetch for %s:%s", asset_class.value, key[0])

        try:
            return entry.future.result(timeout=timeout)
        except FuturesTimeout:
            raise UpstreamTimeout(
                f"{asset_class.value}:{key[0]}", f"waiter gave up after {timeout:.2f}s"
            ) from None
        finally:
            with self._lock:
                entry.waiters -= 1

    def _run(self, key: _Key, entry: _InFlightRequest, loader: Callable[[], Quote]) -> None:
        error: Optional[BaseException] = None
        result: Optional[Quote] = None
        try:
            result = loader()
        except Exception as exc:
            error = exc
        # Unpublish before completing so a caller arriving afterwards starts a new fetch
        # instead of attaching to a finished one.
        with self._lock:
            if self._inflight.get(key) is entry:
                del self._inflight[key]
        if error is not None:
            entry.future.set_exception(error)
        else:
            entry.future.set_result(result)

    def pending_keys(self) -> List[str]:
        with self._lock:
            return [f"{ac.value}:{sym}" for sym, ac in self._inflight]

    def waiter_count(self, symbol: str, asset_class: AssetClass) -> int:
        with self._lock:
            entry = self._inflight.get((symbol.upper(), asset_class))
            return entry.waiters if entry else 0

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
