"""
EntryPoint — Account ABCs

Accounts are the pluggable business logic behind operation senders.

An Account knows:
  - Which address it answers for (address)
  - How to apply an operation's effect to the ledger (execute)

A ValidatingAccount additionally exposes the post-execution validation entry
point. The dispatcher only calls it when the operation's signature selector
asks for it, and only after every operation in the bundle has executed, so the
view it receives reflects the bundle's final cumulative state.

Contract for validate_post_execution:
  - Return normally to pass. Raise ValidationRevert(reason) to fail.
  - The view is read-only and gas-metered. Writes raise ReadOnlyViolation,
    exceeding the budget raises OutOfGas. Both count as failures.
  - Must be a pure function of (operation, operation_hash, view). No I/O,
    no clocks, no hidden state.

Accounts that do not subclass ValidatingAccount have no validation entry point;
an operation from such an account that requests validation fails as
unreachable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from entrypoint.ledger.view import MeteredLedger, ReadOnlyLedgerView
    from entrypoint.primitives.operation import Operation


class Account(ABC):
    """
    Base class for all accounts.

    Subclass this and register with the AccountRegistry to make an address
    able to send operations.
    """

    address: str = ""
    description: str = ""

    def __init__(self, address: str | None = None) -> None:
        if address is not None:
            self.address = address

    @abstractmethod
    def execute(self, operation: Operation, state: MeteredLedger) -> None:
        """
        Apply the operation's effect.

        Raise to fail the operation. The engine reverts this operation's own
        writes and records the failure; the bundle carries on.
        """
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} address={self.address!r}>"


class ValidatingAccount(Account):
    """An account exposing the post-execution validation entry point."""

    @abstractmethod
    def validate_post_execution(
        self,
        operation: Operation,
        operation_hash: str,
        view: ReadOnlyLedgerView,
    ) -> None:
        ...
