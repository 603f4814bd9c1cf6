"""
EntryPoint — Bundle Controller

The controller is the external entry point for a bundle. It owns phase
ordering and the ledger's transaction boundaries.

Stages:
  1. Admission — refuse the bundle if any sender is currently banned
  2. Bundle snapshot — the point a reverted bundle returns to
  3. Execution — ExecutionEngine runs every operation (phase 1)
  4. Validation — dispatcher validates every operation (phase 2)
  5. Compensation — credit collected fees to the beneficiary
  6. Commit
  7. Audit — async, after the bundle's fate is sealed

Failure handling:
  - ExecutionFatal, or a ledger fatal during validation, compensation or
    commit: revert to the bundle snapshot, no compensation,
    BundleReverted(EXECUTION_FATAL).
  - Validation failure: no compensation. Under RollbackPolicy.FULL the
    ledger returns to the bundle snapshot; under RETAIN phase-1 mutations
    are committed as they stand.

Every log entry emitted while a bundle is handled carries its bundle_id.

Bundles on one controller are serialised by an asyncio lock. The phases
themselves are synchronous and never yield, so nothing can observe or touch
the ledger between execution and validation.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import structlog

from entrypoint.config import DispatchConfig, DispatchMode, RollbackPolicy
from entrypoint.ledger.base import LedgerFatalError, LedgerState
from entrypoint.primitives.operation import Bundle
from entrypoint.systems.dispatch.accounts import balance_key
from entrypoint.systems.dispatch.audit import AuditLogger
from entrypoint.systems.dispatch.dispatcher import PostExecutionValidationDispatcher
from entrypoint.systems.dispatch.engine import ExecutionEngine
from entrypoint.systems.dispatch.errors import BundleReverted, ExecutionFatal
from entrypoint.systems.dispatch.types import BundleResult, ExecutionReport, FailureKind
from entrypoint.systems.throttle.ledger import ThrottlingLedger
from entrypoint.telemetry.logging import bundle_context

logger = structlog.get_logger()


class BundleController:
    """
    Orchestrates execute-all → validate-all → compensate for one bundle at a time.
    """

    def __init__(
        self,
        ledger: LedgerState,
        engine: ExecutionEngine,
        dispatcher: PostExecutionValidationDispatcher,
        throttle: ThrottlingLedger,
        audit_logger: AuditLogger,
        config: DispatchConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._engine = engine
        self._dispatcher = dispatcher
        self._throttle = throttle
        self._audit = audit_logger
        self._config = config
        self._clock = clock
        self._lock = asyncio.Lock()
        self._logger = logger.bind(system="entrypoint.controller")
        self._bundles_handled: int = 0
        self._bundles_reverted: int = 0
        self._total_compensation: int = 0

    def admit(self, bundle: Bundle, at_time: float | None = None) -> list[str]:
        """Return the bundle's senders that are banned at at_time (default: now)."""
        now = self._clock() if at_time is None else at_time
        return [s for s in bundle.senders if self._throttle.is_banned(s, now)]

    async def handle(
        self,
        bundle: Bundle,
        mode: DispatchMode | None = None,
    ) -> BundleResult:
        """
        Process a bundle end to end.

        Returns the compensation and per-operation outcome log on success.
        Raises BundleReverted, naming the first failing operation, otherwise.
        """
        async with self._lock:
            with bundle_context(bundle.bundle_id):
                return await self._handle_locked(bundle, mode)

    async def _handle_locked(
        self,
        bundle: Bundle,
        mode: DispatchMode | None,
    ) -> BundleResult:
        start_time = time.monotonic()
        self._logger.info(
            "bundle_start",
            operations=len(bundle),
            beneficiary=bundle.beneficiary,
        )

        try:
            result = self._process(bundle, mode, start_time)
        except BundleReverted as exc:
            self._bundles_reverted += 1
            duration_ms = int((time.monotonic() - start_time) * 1000)
            self._logger.warning(
                "bundle_reverted",
                bundle_id=bundle.bundle_id,
                failure_kind=exc.kind.value,
                op_index=exc.operation_index,
                duration_ms=duration_ms,
            )
            await self._audit.log(
                AuditLogger.build_record(bundle, error=exc, duration_ms=duration_ms)
            )
            raise

        self._bundles_handled += 1
        self._total_compensation += result.compensation
        self._logger.info(
            "bundle_complete",
            compensation=result.compensation,
            total_gas_used=result.total_gas_used,
            duration_ms=result.duration_ms,
        )
        await self._audit.log(
            AuditLogger.build_record(bundle, result=result, duration_ms=result.duration_ms)
        )
        return result

    def _process(
        self,
        bundle: Bundle,
        mode: DispatchMode | None,
        start_time: float,
    ) -> BundleResult:
        # ── STAGE 1: Admission ────────────────────────────────────
        banned = self.admit(bundle)
        if banned:
            first = next(i for i, op in enumerate(bundle.operations) if op.sender in banned)
            raise BundleReverted(
                bundle_id=bundle.bundle_id,
                kind=FailureKind.SENDER_BANNED,
                operation_index=first,
                operation_hash=bundle.operations[first].operation_hash,
                reason=f"banned senders: {', '.join(banned)}".encode(),
            )

        # ── STAGE 2: Bundle snapshot ──────────────────────────────
        bundle_snapshot = self._ledger.snapshot()

        # ── STAGE 3: Execution ────────────────────────────────────
        try:
            report = self._engine.execute_all(bundle)
        except ExecutionFatal as exc:
            self._revert_bundle(bundle_snapshot)
            raise BundleReverted.from_execution(bundle.bundle_id, exc) from exc

        # ── STAGE 4: Validation ───────────────────────────────────
        try:
            validations = self._dispatcher.validate_all(bundle, report.outcomes, mode=mode)
        except BundleReverted as exc:
            exc.execution_outcomes = report.outcomes
            self._settle_validation_revert(bundle, bundle_snapshot)
            raise
        except LedgerFatalError as exc:
            raise self._ledger_fatal(bundle, bundle_snapshot, "validation", exc, report) from exc

        # ── STAGE 5-6: Compensation & commit ──────────────────────
        compensation = report.total_fees
        try:
            if compensation:
                key = balance_key(bundle.beneficiary)
                self._ledger.write(key, self._ledger.read(key, 0) + compensation)
            self._ledger.commit()
        except LedgerFatalError as exc:
            raise self._ledger_fatal(
                bundle, bundle_snapshot, "compensation and commit", exc, report
            ) from exc

        return BundleResult(
            bundle_id=bundle.bundle_id,
            beneficiary=bundle.beneficiary,
            compensation=compensation,
            total_gas_used=report.total_gas_used,
            execution_outcomes=report.outcomes,
            validation_outcomes=validations,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )

    def _revert_bundle(self, bundle_snapshot: int) -> None:
        self._ledger.revert_to(bundle_snapshot)
        self._ledger.release(bundle_snapshot)

    def _ledger_fatal(
        self,
        bundle: Bundle,
        bundle_snapshot: int,
        stage: str,
        exc: LedgerFatalError,
        report: ExecutionReport,
    ) -> BundleReverted:
        self._revert_bundle(bundle_snapshot)
        self._logger.error("bundle_ledger_fatal", stage=stage, error=str(exc))
        return BundleReverted(
            bundle_id=bundle.bundle_id,
            kind=FailureKind.EXECUTION_FATAL,
            message=f"Ledger failure during {stage}: {exc}",
            execution_outcomes=report.outcomes,
        )

    def _settle_validation_revert(self, bundle: Bundle, bundle_snapshot: int) -> None:
        if self._config.rollback_policy == RollbackPolicy.FULL:
            self._revert_bundle(bundle_snapshot)
        else:
            self._ledger.commit()
        self._logger.info(
            "bundle_state_settled",
            rollback_policy=self._config.rollback_policy.value,
        )

    @property
    def stats(self) -> dict[str, int]:
        return {
            "bundles_handled": self._bundles_handled,
            "bundles_reverted": self._bundles_reverted,
            "total_compensation": self._total_compensation,
        }
