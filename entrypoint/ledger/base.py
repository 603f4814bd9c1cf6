"""
EntryPoint — Ledger State Contract

The ledger is the single shared mutable resource of a bundle. The engine treats
it as an external collaborator and only relies on this contract:

  read(key)          — current value, or default
  write(key, value)  — mutate the working state
  snapshot()         — opaque handle marking the current working state
  revert_to(handle)  — discard every write made after the handle was taken
  commit()           — make the working state durable, invalidating handles
  release(handle)    — forget a handle the caller will not revert to again
  read_only_view()   — a view that can read but never write

Implementations signal unrecoverable storage trouble with LedgerFatalError.
Everything else (unknown keys, bad handles) is a recoverable LedgerError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from entrypoint.ledger.gas import GasMeter
    from entrypoint.ledger.view import ReadOnlyLedgerView


# ─── Errors ───────────────────────────────────────────────────────


class LedgerError(Exception):
    """Base class for ledger errors."""


class LedgerFatalError(LedgerError):
    """Unrecoverable ledger failure (corruption, global exhaustion). Bundle-fatal."""


class UnknownSnapshot(LedgerError):
    """A snapshot handle that was never issued or has been invalidated."""

    def __init__(self, handle: int) -> None:
        super().__init__(f"Unknown or invalidated snapshot handle: {handle!r}")
        self.handle = handle


class ReadOnlyViolation(LedgerError):
    """A write was attempted through a read-only view."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Write to {key!r} refused: ledger view is read-only")
        self.key = key


# ─── Contract ─────────────────────────────────────────────────────


class LedgerState(ABC):
    """Transactional key/value state consumed by the bundle engine."""

    @abstractmethod
    def read(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def write(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def snapshot(self) -> int:
        ...

    @abstractmethod
    def revert_to(self, handle: int) -> None:
        ...

    @abstractmethod
    def commit(self) -> None:
        ...

    def release(self, handle: int) -> None:
        """Drop a snapshot handle. Stores that keep no per-handle state ignore this."""

    def read_only_view(
        self,
        meter: GasMeter | None = None,
        read_gas_cost: int = 0,
    ) -> ReadOnlyLedgerView:
        """Return a view over the current working state that refuses writes."""
        from entrypoint.ledger.view import ReadOnlyLedgerView

        return ReadOnlyLedgerView(self, meter=meter, read_gas_cost=read_gas_cost)
