"""
EntryPoint — Shared Primitives

The types every system exchanges: operations, bundles, ids and timestamps.
"""

from entrypoint.primitives.common import (
    EPBaseModel,
    Identified,
    Timestamped,
    new_id,
    normalise_address,
    utc_now,
)
from entrypoint.primitives.operation import Bundle, Operation

__all__ = [
    "Bundle",
    "EPBaseModel",
    "Identified",
    "Operation",
    "Timestamped",
    "new_id",
    "normalise_address",
    "utc_now",
]
