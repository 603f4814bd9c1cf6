"""
EntryPoint — Gas Metering

A GasMeter is the deterministic resource bound applied to account code. Every
metered ledger access charges it; when the limit would be crossed it raises
OutOfGas, leaves `used` pinned at the limit and sets `exhausted`.
The flag stays set even if account code catches the OutOfGas, so callers
check it after a normal return.
"""

from __future__ import annotations


class OutOfGas(Exception):
    """The metered call exceeded its gas limit."""

    def __init__(self, limit: int, requested: int, reason: str = "") -> None:
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Out of gas: limit {limit}, requested {requested}{detail}")
        self.limit = limit
        self.requested = requested
        self.reason = reason


class GasMeter:
    """Counts gas charged against a fixed limit."""

    def __init__(self, limit: int) -> None:
        if limit < 0:
            raise ValueError(f"Gas limit must be non-negative, got {limit}")
        self.limit = limit
        self.used = 0
        self.exhausted = False

    def charge(self, amount: int, reason: str = "") -> None:
        if amount < 0:
            raise ValueError(f"Cannot charge negative gas: {amount}")
        requested = self.used + amount
        if requested > self.limit:
            self.used = self.limit
            self.exhausted = True
            raise OutOfGas(self.limit, requested, reason)
        self.used = requested

    @property
    def remaining(self) -> int:
        return self.limit - self.used

    def __repr__(self) -> str:
        return f"<GasMeter used={self.used} limit={self.limit}>"
