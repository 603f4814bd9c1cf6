"""
EntryPoint — Throttling Ledger

Anti-DoS penalties for senders whose operations fail post-execution validation.
A failed validation costs the bundler a whole bundle, so repeat offenders are
banned from admission for a while and have part of their stake slashed.

Policy (thresholds from ThrottleConfig):
  failure  — consecutive_failures += 1. On reaching failure_threshold:
             banned_until = now + ban_duration_s, and slash_fraction of
             stake_held moves to stake_slashed. Every further failure while
             at or above the threshold extends the ban and slashes again.
  success  — consecutive_failures = 0. An existing ban is not lifted early.

The ledger is process-wide state with an explicit owner: build one, pass it to
the dispatcher (which reports outcomes) and to admission control
(which calls is_banned). Nothing else mutates records; callers receive copies.

Records are keyed by normalise_address(), the identity AccountRegistry
resolves senders with, so respelling an address cannot dodge a ban.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable

import structlog

from entrypoint.config import ThrottleConfig
from entrypoint.primitives.common import normalise_address
from entrypoint.systems.throttle.types import ThrottleRecord

logger = structlog.get_logger()


class ThrottlingLedger:
    """Tracks validation failures, bans and stake per sender."""

    def __init__(
        self,
        config: ThrottleConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or ThrottleConfig()
        self._clock = clock
        self._records: dict[str, ThrottleRecord] = {}
        self._logger = logger.bind(system="entrypoint.throttle")

    # ── Outcome reporting ────────────────────────────────────────

    def record_failure(self, sender: str) -> ThrottleRecord:
        """Count a validation failure and apply the ban/slash policy."""
        now = self._clock()
        sender = normalise_address(sender)
        record = self._records.setdefault(sender, ThrottleRecord(sender=sender))
        record.consecutive_failures += 1
        record.total_failures += 1
        record.last_failure_at = now

        if record.consecutive_failures >= self._config.failure_threshold:
            record.banned_until = max(
                record.banned_until or now,
                now + self._config.ban_duration_s,
            )
            slashed = int(record.stake_held * self._config.slash_fraction)
            record.stake_held -= slashed
            record.stake_slashed += slashed
            self._logger.warning(
                "sender_banned",
                sender=sender,
                consecutive_failures=record.consecutive_failures,
                banned_until=record.banned_until,
                slashed=slashed,
            )
        else:
            self._logger.info(
                "sender_validation_failure",
                sender=sender,
                consecutive_failures=record.consecutive_failures,
                threshold=self._config.failure_threshold,
            )

        return dataclasses.replace(record)

    def record_success(self, sender: str) -> ThrottleRecord:
        """Reset the sender's failure streak."""
        sender = normalise_address(sender)
        record = self._records.get(sender)
        if record is None:
            return ThrottleRecord(sender=sender)

        if record.consecutive_failures:
            self._logger.debug(
                "sender_failure_streak_reset",
                sender=sender,
                previous_streak=record.consecutive_failures,
            )
        record.consecutive_failures = 0
        return dataclasses.replace(record)

    # ── Admission queries ────────────────────────────────────────

    def is_banned(self, sender: str, at_time: float | None = None) -> bool:
        """Return True if the sender must not be admitted at at_time (default: now)."""
        record = self._records.get(normalise_address(sender))
        if record is None:
            return False
        return record.is_banned(self._clock() if at_time is None else at_time)

    def banned_senders(self, at_time: float | None = None) -> list[str]:
        now = self._clock() if at_time is None else at_time
        return sorted(s for s, r in self._records.items() if r.is_banned(now))

    def get(self, sender: str) -> ThrottleRecord | None:
        record = self._records.get(normalise_address(sender))
        return dataclasses.replace(record) if record is not None else None

    # ── Stake & governance ───────────────────────────────────────

    def deposit_stake(self, sender: str, amount: int) -> ThrottleRecord:
        if amount <= 0:
            raise ValueError(f"Stake deposit must be positive, got {amount}")
        sender = normalise_address(sender)
        record = self._records.setdefault(sender, ThrottleRecord(sender=sender))
        record.stake_held += amount
        return dataclasses.replace(record)

    def unban(self, sender: str) -> None:
        """Manually lift a ban and clear the streak (governance action)."""
        record = self._records.get(normalise_address(sender))
        if record is not None:
            record.banned_until = None
            record.consecutive_failures = 0
            self._logger.info("sender_manually_unbanned", sender=sender)

    @property
    def stats(self) -> dict[str, int]:
        now = self._clock()
        return {
            "tracked_senders": len(self._records),
            "banned_senders": sum(1 for r in self._records.values() if r.is_banned(now)),
            "total_failures": sum(r.total_failures for r in self._records.values()),
            "total_slashed": sum(r.stake_slashed for r in self._records.values()),
        }
