"""
EntryPoint — Ledger

The transactional state contract the bundle engine runs against, an in-memory
reference implementation, gas metering, and the views handed to account code.
"""

from entrypoint.ledger.base import (
    LedgerError,
    LedgerFatalError,
    LedgerState,
    ReadOnlyViolation,
    UnknownSnapshot,
)
from entrypoint.ledger.gas import GasMeter, OutOfGas
from entrypoint.ledger.memory import InMemoryLedger
from entrypoint.ledger.view import MeteredLedger, ReadOnlyLedgerView

__all__ = [
    "GasMeter",
    "InMemoryLedger",
    "LedgerError",
    "LedgerFatalError",
    "LedgerState",
    "MeteredLedger",
    "OutOfGas",
    "ReadOnlyLedgerView",
    "ReadOnlyViolation",
    "UnknownSnapshot",
]
