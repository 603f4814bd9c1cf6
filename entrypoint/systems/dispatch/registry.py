"""
EntryPoint — Account Registry

The registry maps sender addresses to their Account implementations.

Registration happens before bundles are handled. Lookups during a bundle are
O(1) and side-effect-free; the registry never changes while a bundle is in
flight (the controller holds its lock across both phases).

Addresses are keyed by normalise_address(), the same canonical identity the
ThrottlingLedger uses, so a spelling that resolves to an account also resolves
to its throttle record.
"""

from __future__ import annotations

import structlog

from entrypoint.primitives.common import normalise_address
from entrypoint.systems.dispatch.account import Account, ValidatingAccount

logger = structlog.get_logger()


class AccountRegistry:
    """
    Registry of accounts able to send operations.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._logger = logger.bind(system="entrypoint.registry")

    def register(self, account: Account) -> None:
        """
        Register an account under its address.

        Raises ValueError if the address is empty or already registered.
        """
        if not account.address:
            raise ValueError(f"Account {account!r} has no address set")
        key = normalise_address(account.address)
        if key in self._accounts:
            raise ValueError(
                f"Account for address {key!r} already registered: "
                f"existing: {self._accounts[key]!r}, new: {account!r}"
            )
        self._accounts[key] = account
        self._logger.debug(
            "account_registered",
            address=key,
            validating=isinstance(account, ValidatingAccount),
        )

    def get(self, address: str) -> Account | None:
        """Look up an account by address. Returns None if unknown."""
        return self._accounts.get(normalise_address(address))

    def get_strict(self, address: str) -> Account:
        """
        Look up an account; raise KeyError if not found.
        """
        account = self.get(address)
        if account is None:
            raise KeyError(
                f"No account registered for address {address!r} "
                f"(normalised: {normalise_address(address)!r})"
            )
        return account

    def get_validator(self, address: str) -> ValidatingAccount | None:
        """Return the account only if it exposes the validation entry point."""
        account = self.get(address)
        if isinstance(account, ValidatingAccount):
            return account
        return None

    def list_addresses(self) -> list[str]:
        """Return all registered addresses."""
        return sorted(self._accounts.keys())

    def __contains__(self, address: str) -> bool:
        return self.get(address) is not None

    def __len__(self) -> int:
        return len(self._accounts)

    def __repr__(self) -> str:
        return f"<AccountRegistry accounts={len(self._accounts)}>"
