"""
EntryPoint — Throttle Types
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ThrottleRecord:
    """
    Per-sender penalty state.

    Created on the sender's first validation failure (or first stake deposit)
    and never deleted. Times are in the throttling ledger's clock units
    (seconds by default, block heights if it is given a height clock).
    """

    sender: str
    consecutive_failures: int = 0
    total_failures: int = 0
    banned_until: float | None = None
    stake_held: int = 0
    stake_slashed: int = 0
    last_failure_at: float | None = None

    def is_banned(self, at_time: float) -> bool:
        return self.banned_until is not None and at_time < self.banned_until
