"""
EntryPoint — Operation & Bundle Primitives

An Operation is one requested state-mutating action plus the metadata the
dispatcher needs to decide whether to validate it after execution. A Bundle is
an ordered batch of Operations submitted together by one relayer.

Design notes:
- Both are frozen. Nothing downstream may reorder or edit a bundle once it has
  been submitted; execution and validation walk the same tuple.
- call_data and signature are opaque bytes. Their internal layout belongs to
  the account implementation, except for the 4-byte selector prefix of the
  signature, which is parsed in exactly one place (dispatch/selector.py).
- operation_hash is computed once at construction from every field except the
  signature, so re-signing cannot change the identity of the operation.
"""

from __future__ import annotations

import hashlib

import orjson
from pydantic import Field, PrivateAttr

from entrypoint.primitives.common import EPBaseModel, new_id


class Operation(EPBaseModel):
    """One account-abstracted operation inside a bundle."""

    model_config = {"frozen": True, "populate_by_name": True}

    sender: str
    target: str
    call_data: bytes = b""
    signature: bytes = b""
    nonce: int = 0
    call_gas_limit: int = Field(default=200_000, ge=0)
    max_fee_per_gas: int = Field(default=1, ge=0)

    _operation_hash: str = PrivateAttr(default="")

    def model_post_init(self, __context: object) -> None:
        self._operation_hash = hashlib.sha256(self.pack()).hexdigest()

    def pack(self) -> bytes:
        """Canonical encoding of the operation, without its signature."""
        return orjson.dumps(
            {
                "sender": self.sender,
                "target": self.target,
                "call_data": self.call_data.hex(),
                "nonce": self.nonce,
                "call_gas_limit": self.call_gas_limit,
                "max_fee_per_gas": self.max_fee_per_gas,
            },
            option=orjson.OPT_SORT_KEYS,
        )

    @property
    def operation_hash(self) -> str:
        return self._operation_hash


class Bundle(EPBaseModel):
    """
    An ordered batch of operations processed with a single compensation step.

    Order is load-bearing: execution order == validation order == submission order.
    """

    model_config = {"frozen": True, "populate_by_name": True}

    bundle_id: str = Field(default_factory=new_id)
    operations: tuple[Operation, ...] = ()
    beneficiary: str = Field(min_length=1)

    @property
    def senders(self) -> list[str]:
        """Distinct senders in submission order."""
        seen: dict[str, None] = {}
        for op in self.operations:
            seen.setdefault(op.sender, None)
        return list(seen)

    def __len__(self) -> int:
        return len(self.operations)
