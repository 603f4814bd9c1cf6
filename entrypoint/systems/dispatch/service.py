"""
EntryPoint — Service

The bundle submission surface. EntryPointService receives ordered operations
from a relayer, runs them through the BundleController, and hands back either
the relayer's compensation or a structured revert.

Lifecycle:
  initialize()        — builds engine, dispatcher, controller and audit logger
  handle_ops()        — main entry point: operations + beneficiary → BundleResult
  handle_bundle()     — same, for a pre-built Bundle
  is_banned()         — throttle query for admission control
  register_account()  — add an account to the registry
  shutdown()          — log final stats

The ledger and the throttling ledger are injected, not created here: both are
long-lived, process-wide state that outlives any one service instance.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from entrypoint.config import DispatchMode, EntryPointConfig
from entrypoint.ledger.base import LedgerState
from entrypoint.primitives.operation import Bundle, Operation
from entrypoint.systems.dispatch.account import Account
from entrypoint.systems.dispatch.audit import AuditLogger, AuditSink
from entrypoint.systems.dispatch.controller import BundleController
from entrypoint.systems.dispatch.dispatcher import PostExecutionValidationDispatcher
from entrypoint.systems.dispatch.engine import ExecutionEngine
from entrypoint.systems.dispatch.errors import BundleReverted
from entrypoint.systems.dispatch.registry import AccountRegistry
from entrypoint.systems.dispatch.types import BundleFailure, BundleResult
from entrypoint.systems.throttle.ledger import ThrottlingLedger

logger = structlog.get_logger()


class EntryPointService:
    """
    The bundle execution service.

    Owns and wires:
      - AccountRegistry: maps senders to account implementations
      - ExecutionEngine: phase 1
      - PostExecutionValidationDispatcher: phase 2
      - BundleController: phase ordering, compensation, commit/revert
      - AuditLogger: one record per bundle
    """

    system_id: str = "entrypoint"

    def __init__(
        self,
        config: EntryPointConfig,
        ledger: LedgerState,
        throttle: ThrottlingLedger | None = None,
        registry: AccountRegistry | None = None,
        audit_sink: AuditSink | None = None,
    ) -> None:
        self._config = config
        self._ledger = ledger
        self._throttle = throttle or ThrottlingLedger(config.throttle)
        self._registry = registry or AccountRegistry()
        self._audit_sink = audit_sink
        self._logger = logger.bind(system="entrypoint")
        self._initialized = False

        self._audit: AuditLogger | None = None
        self._controller: BundleController | None = None

        self._total_bundles: int = 0
        self._successful_bundles: int = 0
        self._reverted_bundles: int = 0

    async def initialize(self) -> None:
        """
        Build the engine, dispatcher and controller.

        Must be called before handle_ops(). Idempotent.
        """
        if self._initialized:
            return

        self._audit = AuditLogger(sink=self._audit_sink)
        engine = ExecutionEngine(self._ledger, self._registry, self._config.execution)
        dispatcher = PostExecutionValidationDispatcher(
            self._ledger,
            self._registry,
            self._throttle,
            self._config.dispatch,
        )
        self._controller = BundleController(
            ledger=self._ledger,
            engine=engine,
            dispatcher=dispatcher,
            throttle=self._throttle,
            audit_logger=self._audit,
            config=self._config.dispatch,
        )

        self._initialized = True
        self._logger.info(
            "entrypoint_initialized",
            instance_id=self._config.instance_id,
            accounts=len(self._registry),
            dispatch_mode=self._config.dispatch.mode.value,
            rollback_policy=self._config.dispatch.rollback_policy.value,
        )

    async def handle_ops(
        self,
        operations: Iterable[Operation],
        beneficiary: str,
        mode: DispatchMode | None = None,
    ) -> BundleResult:
        """Bundle the operations in the given order and handle them."""
        bundle = Bundle(operations=tuple(operations), beneficiary=beneficiary)
        return await self.handle_bundle(bundle, mode=mode)

    async def handle_bundle(
        self,
        bundle: Bundle,
        mode: DispatchMode | None = None,
    ) -> BundleResult:
        """
        Handle a bundle.

        Returns the BundleResult on success. Raises BundleReverted otherwise.
        """
        if not self._initialized or self._controller is None:
            raise RuntimeError(
                "EntryPointService.initialize() must be called before handle_bundle()"
            )

        self._total_bundles += 1
        try:
            result = await self._controller.handle(bundle, mode=mode)
        except BundleReverted:
            self._reverted_bundles += 1
            raise

        self._successful_bundles += 1
        return result

    async def try_handle_ops(
        self,
        operations: Iterable[Operation],
        beneficiary: str,
        mode: DispatchMode | None = None,
    ) -> BundleResult | BundleFailure:
        """Like handle_ops(), but returns the structured failure instead of raising."""
        try:
            return await self.handle_ops(operations, beneficiary, mode=mode)
        except BundleReverted as exc:
            return exc.to_failure()

    def is_banned(self, sender: str, at_time: float | None = None) -> bool:
        return self._throttle.is_banned(sender, at_time)

    def register_account(self, account: Account) -> None:
        self._registry.register(account)
        self._logger.info("account_registered_runtime", address=account.address)

    @property
    def throttle(self) -> ThrottlingLedger:
        return self._throttle

    @property
    def registry(self) -> AccountRegistry:
        return self._registry

    async def shutdown(self) -> None:
        """Graceful shutdown. Logs final stats."""
        self._logger.info(
            "entrypoint_shutdown",
            total_bundles=self._total_bundles,
            successful=self._successful_bundles,
            reverted=self._reverted_bundles,
            throttle=self._throttle.stats,
            audit_stats=self._audit.stats if self._audit else {},
        )

    @property
    def stats(self) -> dict:
        """Return current operational statistics."""
        return {
            "initialized": self._initialized,
            "total_bundles": self._total_bundles,
            "successful_bundles": self._successful_bundles,
            "reverted_bundles": self._reverted_bundles,
            "account_count": len(self._registry),
            "controller": self._controller.stats if self._controller else {},
            "throttle": self._throttle.stats,
            "audit": self._audit.stats if self._audit else {},
        }
