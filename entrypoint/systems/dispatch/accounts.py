"""
EntryPoint — Built-in Accounts

Reference account implementations. Real deployments register their own
Account subclasses; these cover the common shapes and back the test suite.

StorageAccount      — call_data sets / increments storage slots of the target
TransferAccount     — call_data moves balance from sender to target
ExpectationAccount  — StorageAccount that also validates post-execution
                      expectations carried in its signature payload

Encodings (JSON via orjson):
  StorageAccount call_data:   {"set": {"slot": value}, "add": {"slot": delta}}
  TransferAccount call_data:  {"amount": int}
  Expectation payload:        {"target": "<address>", "equals": {"slot": value}}
                              ("target" defaults to the operation's target)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import orjson

from entrypoint.systems.dispatch.account import Account, ValidatingAccount
from entrypoint.systems.dispatch.errors import ValidationRevert
from entrypoint.systems.dispatch.selector import RequestsValidation, parse_signature

if TYPE_CHECKING:
    from entrypoint.ledger.view import MeteredLedger, ReadOnlyLedgerView
    from entrypoint.primitives.operation import Operation


def storage_key(address: str, slot: str) -> str:
    """Ledger key of a storage slot owned by address."""
    return f"storage:{address}:{slot}"


def balance_key(address: str) -> str:
    """Ledger key of an address's balance."""
    return f"balance:{address}"


def decode_object(data: bytes) -> dict[str, Any]:
    """Decode a JSON object, raising ValueError for anything else."""
    if not data:
        return {}
    try:
        decoded = orjson.loads(data)
    except orjson.JSONDecodeError as exc:
        raise ValueError(f"Malformed JSON payload: {exc}") from exc
    if not isinstance(decoded, dict):
        raise ValueError(f"Expected a JSON object, got {type(decoded).__name__}")
    return decoded


def encode_object(obj: dict[str, Any]) -> bytes:
    return orjson.dumps(obj, option=orjson.OPT_SORT_KEYS)


# ─── StorageAccount ───────────────────────────────────────────────


class StorageAccount(Account):
    """Writes to the target's storage slots."""

    description = "Set or increment storage slots of the target"

    def execute(self, operation: Operation, state: MeteredLedger) -> None:
        calls = decode_object(operation.call_data)

        for slot, value in calls.get("set", {}).items():
            state.write(storage_key(operation.target, slot), value)

        for slot, delta in calls.get("add", {}).items():
            if not isinstance(delta, int):
                raise ValueError(f"Increment for {slot!r} must be an int, got {delta!r}")
            key = storage_key(operation.target, slot)
            state.write(key, (state.read(key, 0) or 0) + delta)


# ─── TransferAccount ──────────────────────────────────────────────


class TransferAccount(Account):
    """Moves balance from the sender to the target."""

    description = "Transfer balance to the target"

    def execute(self, operation: Operation, state: MeteredLedger) -> None:
        calls = decode_object(operation.call_data)
        amount = calls.get("amount", 0)
        if not isinstance(amount, int) or amount < 0:
            raise ValueError(f"Transfer amount must be a non-negative int, got {amount!r}")

        source = balance_key(operation.sender)
        balance = state.read(source, 0)
        if balance < amount:
            raise ValueError(f"Insufficient balance: {balance} < {amount}")

        dest = balance_key(operation.target)
        state.write(source, balance - amount)
        state.write(dest, state.read(dest, 0) + amount)


# ─── ExpectationAccount ───────────────────────────────────────────


class ExpectationAccount(StorageAccount, ValidatingAccount):
    """
    A storage account that checks, after the whole bundle has run, that the
    storage slots named in its signature payload hold the expected values.
    """

    description = "Storage account with post-execution expectations"

    def validate_post_execution(
        self,
        operation: Operation,
        operation_hash: str,
        view: ReadOnlyLedgerView,
    ) -> None:
        decision = parse_signature(operation.signature)
        if not isinstance(decision, RequestsValidation):
            return

        try:
            expectations = decode_object(decision.payload)
        except ValueError as exc:
            raise ValidationRevert(f"malformed expectations: {exc}") from exc

        target = expectations.get("target", operation.target)
        for slot, expected in expectations.get("equals", {}).items():
            actual = view.read(storage_key(target, slot))
            if actual != expected:
                raise ValidationRevert(
                    f"{target}.{slot}: expected {expected!r}, found {actual!r}"
                )


def expectation_payload(equals: dict[str, Any], target: str | None = None) -> bytes:
    """Encode an ExpectationAccount signature payload."""
    body: dict[str, Any] = {"equals": equals}
    if target is not None:
        body["target"] = target
    return encode_object(body)
