"""
EntryPoint — Execution Engine (phase 1)

Executes every operation of a bundle, in submission order, against the ledger.

Per operation:
  1. Snapshot the ledger (snapshot_before)
  2. Resolve the sender's account
  3. Run account.execute() through a MeteredLedger bounded by call_gas_limit
  4. On failure, revert to snapshot_before: the operation is atomic, but
     earlier operations keep their effects and the bundle carries on
  5. Snapshot again (snapshot_after), charge base gas + metered gas

Failures of a single operation (unknown sender, account exception, out of
gas) are recorded on its ExecutionOutcome, never raised.

The only bundle-fatal paths are a LedgerFatalError from the ledger and the
cumulative gas of the bundle crossing max_bundle_gas. Both raise ExecutionFatal.

The engine is the sole writer of the ledger while phase 1 runs.
"""

from __future__ import annotations

import structlog

from entrypoint.config import ExecutionConfig
from entrypoint.ledger.base import LedgerFatalError, LedgerState
from entrypoint.ledger.gas import GasMeter, OutOfGas
from entrypoint.ledger.view import MeteredLedger
from entrypoint.primitives.operation import Bundle, Operation
from entrypoint.systems.dispatch.errors import ExecutionFatal
from entrypoint.systems.dispatch.registry import AccountRegistry
from entrypoint.systems.dispatch.types import ExecutionOutcome, ExecutionReport

logger = structlog.get_logger()


class ExecutionEngine:
    """Runs phase 1 of a bundle."""

    def __init__(
        self,
        ledger: LedgerState,
        registry: AccountRegistry,
        config: ExecutionConfig,
    ) -> None:
        self._ledger = ledger
        self._registry = registry
        self._config = config
        self._logger = logger.bind(system="entrypoint.engine")

    def execute_all(self, bundle: Bundle) -> ExecutionReport:
        """
        Execute every operation in order.

        Returns the ordered outcomes plus the cumulative gas and fees used
        for compensation. Raises ExecutionFatal on a ledger-level failure.
        """
        report = ExecutionReport()

        for index, operation in enumerate(bundle.operations):
            try:
                outcome = self._execute_one(index, operation)
            except LedgerFatalError as exc:
                self._logger.error(
                    "execution_fatal",
                    bundle_id=bundle.bundle_id,
                    op_index=index,
                    error=str(exc),
                )
                raise ExecutionFatal(
                    operation_index=index,
                    operation_hash=operation.operation_hash,
                    message=f"Ledger failure while executing operation {index}: {exc}",
                ) from exc

            report.outcomes.append(outcome)
            report.total_gas_used += outcome.gas_used
            report.total_fees += outcome.fee

            if report.total_gas_used > self._config.max_bundle_gas:
                self._logger.error(
                    "bundle_gas_exhausted",
                    bundle_id=bundle.bundle_id,
                    op_index=index,
                    total_gas_used=report.total_gas_used,
                    max_bundle_gas=self._config.max_bundle_gas,
                )
                raise ExecutionFatal(
                    operation_index=index,
                    operation_hash=operation.operation_hash,
                    message=(
                        f"Bundle gas {report.total_gas_used} exceeds "
                        f"max_bundle_gas {self._config.max_bundle_gas}"
                    ),
                )

        self._logger.debug(
            "execution_complete",
            bundle_id=bundle.bundle_id,
            operations=len(report.outcomes),
            failed=len(report.failed_indices),
            total_gas_used=report.total_gas_used,
        )
        return report

    def _execute_one(self, index: int, operation: Operation) -> ExecutionOutcome:
        snapshot_before = self._ledger.snapshot()
        meter = GasMeter(operation.call_gas_limit)
        state = MeteredLedger(
            self._ledger,
            meter,
            read_gas_cost=self._config.read_gas_cost,
            write_gas_cost=self._config.write_gas_cost,
        )

        error = ""
        account = self._registry.get(operation.sender)
        if account is None:
            error = f"No account registered for sender {operation.sender!r}"
        else:
            try:
                account.execute(operation, state)
            except LedgerFatalError:
                raise
            except OutOfGas as exc:
                error = str(exc)
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
            else:
                if meter.exhausted:
                    error = f"Out of gas: limit {meter.limit} (suppressed by account)"

        succeeded = not error
        if not succeeded:
            self._ledger.revert_to(snapshot_before)
            self._logger.warning(
                "operation_execution_failed",
                op_index=index,
                sender=operation.sender,
                error=error[:200],
            )

        gas_used = self._config.base_gas_per_op + meter.used
        return ExecutionOutcome(
            index=index,
            operation_hash=operation.operation_hash,
            sender=operation.sender,
            gas_used=gas_used,
            fee=gas_used * operation.max_fee_per_gas,
            execution_succeeded=succeeded,
            snapshot_before=snapshot_before,
            snapshot_after=self._ledger.snapshot(),
            error=error,
        )
