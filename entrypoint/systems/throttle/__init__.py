"""
EntryPoint — Throttle

Per-sender penalties for failed post-execution validations. Admission control
asks is_banned() before letting a sender into a bundle.
"""

from entrypoint.systems.throttle.ledger import ThrottlingLedger
from entrypoint.systems.throttle.types import ThrottleRecord

__all__ = ["ThrottleRecord", "ThrottlingLedger"]
