"""
Quota ledger and credential rotation.

QuotaLedger owns the per-credential call counters. Each counter has its own
lock (single writer); selecting a credential additionally takes a
per-provider lock so two callers can never both claim the last unit.

Counting is optimistic: reserve() increments before the upstream call, and
the reservation is rolled back if the call fails. The counter therefore ends
up equal to the number of successful calls made with the credential.
A provider-reported daily quota rejection forces headroom to zero regardless
of the local count, until the next daily reset. A short-term throttle (HTTP
429, per-minute limits) only blocks the credential until `blocked_until`.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from ..db.kv import KeyValueStore
from ..errors import QuotaExhausted
from .base import Credential, CredentialUsage

logger = logging.getLogger(__name__)

QUOTA_NAMESPACE = "quota"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_reset_boundary(now: datetime, reset_hour_utc: int = 0) -> datetime:
    """First daily boundary strictly after `now` (UTC midnight by default)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    boundary = now.replace(hour=reset_hour_utc, minute=0, second=0, microsecond=0)
    if boundary <= now:
        boundary += timedelta(days=1)
    return boundary


@dataclass
class _Counter:
    credential: Credential
    reset_hour_utc: int
    used_today: int = 0
    reset_at: Optional[datetime] = None
    rejected: bool = False
    blocked_until: Optional[datetime] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def headroom(self, now: datetime) -> int:
        if self.rejected:
            return 0
        if self.blocked_until is not None and now < self.blocked_until:
            return 0
        return max(0, self.credential.daily_quota - self.used_today)

    @property
    def ratio(self) -> float:
        if self.credential.daily_quota <= 0:
            return 1.0
        return self.used_today / self.credential.daily_quota


class QuotaLedger:
    """Remaining call budget per (provider, credential), reset on a daily boundary."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock
        self._counters: Dict[str, List[_Counter]] = {}
        self._provider_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration / persistence
    # ------------------------------------------------------------------

    def register(self, credential: Credential, reset_hour_utc: int = 0) -> None:
        """Add a credential, restoring today's usage from the store if present."""
        now = self._clock()
        counter = _Counter(
            credential=credential,
            reset_hour_utc=reset_hour_utc,
            reset_at=next_reset_boundary(now, reset_hour_utc),
        )
        saved = self._store.get(QUOTA_NAMESPACE, credential.ledger_key) if self._store else None
        if saved:
            try:
                saved_reset = datetime.fromisoformat(saved["resetAt"])
                if saved_reset.tzinfo is None:
                    saved_reset = saved_reset.replace(tzinfo=timezone.utc)
                if now < saved_reset:
                    used = int(saved.get("usedToday", 0))
                    counter.used_today = min(max(0, used), credential.daily_quota)
                    counter.reset_at = saved_reset
                    counter.rejected = bool(saved.get("rejected", False))
                if saved.get("blockedUntil"):
                    blocked = datetime.fromisoformat(saved["blockedUntil"])
                    if blocked.tzinfo is None:
                        blocked = blocked.replace(tzinfo=timezone.utc)
                    if now < blocked:
                        counter.blocked_until = blocked
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring unreadable quota state for %s", credential.ledger_key)

        with self._registry_lock:
            counters = self._counters.setdefault(credential.provider, [])
            counters[:] = [c for c in counters if c.credential.credential_id != credential.credential_id]
            counters.append(counter)
            self._provider_locks.setdefault(credential.provider, threading.Lock())
        self._persist(counter)
        logger.debug(
            "Registered credential %s (used %d/%d)",
            credential.ledger_key, counter.used_today, credential.daily_quota,
        )

    def _persist(self, counter: _Counter) -> None:
        if self._store is None:
            return
        self._store.put(
            QUOTA_NAMESPACE,
            counter.credential.ledger_key,
            {
                "usedToday": counter.used_today,
                "resetAt": counter.reset_at.isoformat(timespec="seconds") if counter.reset_at else None,
                "rejected": counter.rejected,
                "blockedUntil": (
                    counter.blocked_until.isoformat(timespec="seconds") if counter.blocked_until else None
                ),
            },
        )

    def _provider_state(self, provider: str):
        with self._registry_lock:
            return list(self._counters.get(provider, [])), self._provider_locks.get(provider)

    def _find(self, credential: Credential) -> Optional[_Counter]:
        counters, _ = self._provider_state(credential.provider)
        for c in counters:
            if c.credential.credential_id == credential.credential_id:
                return c
        return None

    # ------------------------------------------------------------------
    # Daily reset
    # ------------------------------------------------------------------

    def _maybe_reset(self, counters: List[_Counter]) -> None:
        now = self._clock()
        if not any(c.reset_at is not None and now >= c.reset_at for c in counters):
            return
        for c in counters:
            with c.lock:
                c.used_today = 0
                c.rejected = False
                c.reset_at = next_reset_boundary(now, c.reset_hour_utc)
                self._persist(c)
        logger.info("Quota reset for %s", counters[0].credential.provider)

    def reset_provider(self, provider: str) -> None:
        """Zero every credential of a provider now (manual reset)."""
        counters, lock = self._provider_state(provider)
        if lock is None:
            return
        now = self._clock()
        with lock:
            for c in counters:
                with c.lock:
                    c.used_today = 0
                    c.rejected = False
                    c.blocked_until = None
                    c.reset_at = next_reset_boundary(now, c.reset_hour_utc)
                    self._persist(c)

    # ------------------------------------------------------------------
    # Reservation protocol
    # ------------------------------------------------------------------

    def has_headroom(self, provider: str) -> bool:
        counters, lock = self._provider_state(provider)
        if not counters or lock is None:
            return True
        with lock:
            self._maybe_reset(counters)
            now = self._clock()
            return any(c.headroom(now) > 0 for c in counters)

    def reserve(self, provider: str) -> Optional[Credential]:
        """
        Claim one unit from the least-used credential with headroom.

        Returns None for providers with no registered credentials (unmetered).
        Raises QuotaExhausted when every credential is at zero headroom.
        """
        counters, lock = self._provider_state(provider)
        if not counters or lock is None:
            return None
        with lock:
            self._maybe_reset(counters)
            now = self._clock()
            candidates = sorted(
                (c for c in counters if c.headroom(now) > 0),
                key=lambda c: (c.ratio, c.used_today),
            )
            for c in candidates:
                with c.lock:
                    if c.headroom(now) <= 0:
                        continue
                    c.used_today += 1
                    try:
                        self._persist(c)
                    except Exception:
                        c.used_today -= 1
                        raise
                    return c.credential
        logger.warning("All %d credentials exhausted for %s", len(counters), provider)
        raise QuotaExhausted(provider)

    def commit(self, credential: Credential) -> None:
        """The reserved call succeeded; the unit stays counted."""
        counter = self._find(credential)
        if counter is not None:
            logger.debug(
                "Quota %s: %d/%d used",
                credential.ledger_key, counter.used_today, credential.daily_quota,
            )

    def rollback(self, credential: Credential) -> None:
        """The reserved call failed before the provider counted it; give the unit back."""
        counter = self._find(credential)
        if counter is None:
            return
        with counter.lock:
            if counter.rejected or counter.used_today <= 0:
                return
            counter.used_today -= 1
            self._persist(counter)

    def mark_exhausted(self, credential: Credential) -> None:
        """Provider said this key is over quota: zero its headroom until the next reset."""
        counter = self._find(credential)
        if counter is None:
            return
        with counter.lock:
            counter.used_today = credential.daily_quota
            counter.rejected = True
            self._persist(counter)
        logger.warning("Credential %s rejected by provider, rotating", credential.ledger_key)

    def block(self, credential: Credential, seconds: float) -> None:
        """
        Provider throttled this key: no headroom for `seconds`, then usable again.

        The throttled call was not counted by the provider, so its reservation
        is given back.
        """
        counter = self._find(credential)
        if counter is None:
            return
        with counter.lock:
            counter.blocked_until = self._clock() + timedelta(seconds=max(0.0, seconds))
            if not counter.rejected and counter.used_today > 0:
                counter.used_today -= 1
            self._persist(counter)
        logger.warning(
            "Credential %s throttled by provider, blocked for %.0fs", credential.ledger_key, seconds
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def usage(self, provider: str) -> List[CredentialUsage]:
        counters, _ = self._provider_state(provider)
        out = []
        for c in counters:
            with c.lock:
                out.append(CredentialUsage(
                    provider=provider,
                    credential_id=c.credential.credential_id,
                    used_today=c.used_today,
                    daily_quota=c.credential.daily_quota,
                    reset_at=c.reset_at.isoformat(timespec="seconds") if c.reset_at else "",
                ))
        return out

    def snapshot(self) -> Dict[str, List[CredentialUsage]]:
        with self._registry_lock:
            providers = list(self._counters)
        return {p: self.usage(p) for p in providers}


class CredentialRotator:
    """
    Picks the best credential for a provider and rotates on exhaustion/rejection.

    Usage:
        cred = rotator.acquire("alphavantage")   # may raise QuotaExhausted
        try:
            quote = adapter.fetch(symbol, cred)
        except QuotaRejected as exc:
            rotator.reject(cred, exc.retry_after_s)  # then acquire() again
        except Exception:
            rotator.release(cred, success=False)
        else:
            rotator.release(cred, success=True)
    """

    def __init__(self, ledger: QuotaLedger) -> None:
        self._ledger = ledger

    @property
    def ledger(self) -> QuotaLedger:
        return self._ledger

    def acquire(self, provider: str) -> Optional[Credential]:
        return self._ledger.reserve(provider)

    def release(self, credential: Optional[Credential], success: bool) -> None:
        if credential is None:
            return
        if success:
            self._ledger.commit(credential)
        else:
            self._ledger.rollback(credential)

    def reject(self, credential: Optional[Credential], retry_after_s: Optional[float] = None) -> None:
        """Daily rejection (no retry_after_s) exhausts the key; a throttle only blocks it."""
        if credential is None:
            return
        if retry_after_s is None:
            self._ledger.mark_exhausted(credential)
        else:
            self._ledger.block(credential, retry_after_s)

    def has_headroom(self, provider: str) -> bool:
        return self._ledger.has_headroom(provider)

    def usage_report(self, provider: str) -> List[CredentialUsage]:
        return self._ledger.usage(provider)
