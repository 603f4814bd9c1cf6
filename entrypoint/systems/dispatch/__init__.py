"""
EntryPoint — Dispatch (Bundle Execution & Post-Execution Validation)

Executes a bundle of operations against the shared ledger, then gives every
operation that asked for it a read-only look at the bundle's final state
before any fees are paid out. One failed validation reverts the bundle.

Public interface:
  EntryPointService                  — main service class
  BundleController                   — phase ordering, compensation, commit/revert
  ExecutionEngine                    — phase 1
  PostExecutionValidationDispatcher  — phase 2
  Account / ValidatingAccount        — ABCs for account implementations
  AccountRegistry                    — registry of accounts by address
  BundleResult / BundleReverted      — success payload / composite failure
"""

from entrypoint.systems.dispatch.account import Account, ValidatingAccount
from entrypoint.systems.dispatch.controller import BundleController
from entrypoint.systems.dispatch.dispatcher import PostExecutionValidationDispatcher
from entrypoint.systems.dispatch.engine import ExecutionEngine
from entrypoint.systems.dispatch.errors import BundleReverted
from entrypoint.systems.dispatch.registry import AccountRegistry
from entrypoint.systems.dispatch.service import EntryPointService
from entrypoint.systems.dispatch.types import BundleResult

__all__ = [
    "Account",
    "AccountRegistry",
    "BundleController",
    "BundleResult",
    "BundleReverted",
    "EntryPointService",
    "ExecutionEngine",
    "PostExecutionValidationDispatcher",
    "ValidatingAccount",
]
