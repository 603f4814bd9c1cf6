"""
EntryPoint — Ledger Views

Account code never touches a LedgerState directly. It receives one of two
wrappers:

  MeteredLedger     — phase 1. Reads and writes are charged to the operation's
                      execution GasMeter.
  ReadOnlyLedgerView — phase 2. Reads are charged to the validation GasMeter;
                      any write raises ReadOnlyViolation and is
                      remembered on `violation`.

Neither wrapper exposes snapshot/revert/commit. Only the engine and the
controller own the ledger's transaction boundaries.
"""

from __future__ import annotations

from typing import Any

from entrypoint.ledger.base import LedgerState, ReadOnlyViolation
from entrypoint.ledger.gas import GasMeter


class ReadOnlyLedgerView:
    """Read-only window onto a ledger's current working state."""

    def __init__(
        self,
        ledger: LedgerState,
        meter: GasMeter | None = None,
        read_gas_cost: int = 0,
    ) -> None:
        self._ledger = ledger
        self._meter = meter
        self._read_gas_cost = read_gas_cost
        self.violation: ReadOnlyViolation | None = None

    def read(self, key: str, default: Any = None) -> Any:
        if self._meter is not None:
            self._meter.charge(self._read_gas_cost, reason=f"read {key}")
        return self._ledger.read(key, default)

    def write(self, key: str, value: Any) -> None:
        violation = ReadOnlyViolation(key)
        if self.violation is None:
            self.violation = violation
        raise violation

    @property
    def gas_used(self) -> int:
        return self._meter.used if self._meter is not None else 0


class MeteredLedger:
    """Read/write access to a ledger, charging every access to a GasMeter."""

    def __init__(
        self,
        ledger: LedgerState,
        meter: GasMeter,
        read_gas_cost: int,
        write_gas_cost: int,
    ) -> None:
        self._ledger = ledger
        self._meter = meter
        self._read_gas_cost = read_gas_cost
        self._write_gas_cost = write_gas_cost

    def read(self, key: str, default: Any = None) -> Any:
        self._meter.charge(self._read_gas_cost, reason=f"read {key}")
        return self._ledger.read(key, default)

    def write(self, key: str, value: Any) -> None:
        self._meter.charge(self._write_gas_cost, reason=f"write {key}")
        self._ledger.write(key, value)

    @property
    def gas_used(self) -> int:
        return self._meter.used
