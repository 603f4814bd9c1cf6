"""
EntryPoint — Bundle Audit Logger

Every handled bundle, successful or reverted, leaves one audit record: who got
compensated, how much gas was burnt, which operation sank a reverted bundle
and why. Operators use the trail to spot abusive senders and to reconcile
relayer payouts.

The logger always emits the record to the structured log. If a sink is
configured (e.g. a persistence adapter), the record is also handed to it.
A failing sink is counted and logged, it never fails the bundle.

Call data is NEVER logged raw, only a SHA-256 digest over all operations.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from entrypoint.primitives.operation import Bundle
from entrypoint.systems.dispatch.errors import BundleReverted
from entrypoint.systems.dispatch.types import AuditRecord, BundleResult

logger = structlog.get_logger()

AuditSink = Callable[[dict[str, Any]], Awaitable[None]]


class AuditLogger:
    """Records every handled bundle as a permanent audit trail."""

    def __init__(self, sink: AuditSink | None = None) -> None:
        self._sink = sink
        self._logger = logger.bind(system="entrypoint.audit")
        self._records_written: int = 0
        self._records_failed: int = 0

    @staticmethod
    def build_record(
        bundle: Bundle,
        result: BundleResult | None = None,
        error: BundleReverted | None = None,
        duration_ms: int = 0,
    ) -> AuditRecord:
        call_data_hash = AuditRecord.hash_call_data(
            [op.call_data for op in bundle.operations]
        )
        if result is not None:
            return AuditRecord(
                bundle_id=bundle.bundle_id,
                beneficiary=bundle.beneficiary,
                result="success",
                operation_count=len(bundle),
                call_data_hash=call_data_hash,
                compensation=result.compensation,
                total_gas_used=result.total_gas_used,
                validations_invoked=sum(
                    1 for v in result.validation_outcomes if v.validation_invoked
                ),
                duration_ms=duration_ms,
            )

        return AuditRecord(
            bundle_id=bundle.bundle_id,
            beneficiary=bundle.beneficiary,
            result="reverted",
            operation_count=len(bundle),
            call_data_hash=call_data_hash,
            total_gas_used=sum(o.gas_used for o in error.execution_outcomes) if error else 0,
            failure_kind=error.kind.value if error else "",
            failing_index=error.operation_index if error else None,
            validations_invoked=sum(
                1 for v in error.validation_outcomes if v.validation_invoked
            ) if error else 0,
            duration_ms=duration_ms,
        )

    async def log(self, record: AuditRecord) -> None:
        """Emit the record to the structured log and, if configured, the sink."""
        self._logger.info(
            "bundle_audit",
            bundle_id=record.bundle_id,
            result=record.result,
            beneficiary=record.beneficiary,
            operations=record.operation_count,
            compensation=record.compensation,
            total_gas_used=record.total_gas_used,
            failure_kind=record.failure_kind or None,
            failing_index=record.failing_index,
            call_data_hash=record.call_data_hash[:12] + "...",
        )

        if self._sink is None:
            self._records_written += 1
            return

        try:
            await self._sink(record.model_dump(mode="json"))
            self._records_written += 1
        except Exception as exc:
            self._records_failed += 1
            self._logger.error(
                "audit_sink_write_failed",
                bundle_id=record.bundle_id,
                error=str(exc),
            )

    @property
    def stats(self) -> dict[str, int]:
        return {
            "records_written": self._records_written,
            "records_failed": self._records_failed,
        }
