"""
EntryPoint — Post-Execution Validation Dispatcher (phase 2)

The dispatcher runs strictly after every operation of a bundle has executed and
strictly before compensation. It walks the bundle in submission order and
drives each operation through

  PENDING → SELECTOR_CHECKED → {SKIPPED | INVOKED} → {PASSED | FAILED} → FINALIZED

Dispatch rules:
  - The signature selector decides. No match (or a signature too short to
    carry one) → SKIPPED, the account is never called, no gas is charged.
  - Match → the sender's validate_post_execution() runs against a read-only,
    gas-metered view of the ledger *as it stands after the whole bundle*.
    Every invoked callback therefore sees the same final state, whatever its
    position in the bundle.
  - Return → PASSED. ValidationRevert or any other exception → FAILED
    (VALIDATION_FAILED). Exhausted validation gas → FAILED
    (VALIDATION_RESOURCE_EXCEEDED). Both hold when the account catches the
    OutOfGas or ReadOnlyViolation itself and returns normally: the meter and
    the view remember what happened. Sender without a validation entry point →
    FAILED (VALIDATION_UNREACHABLE).

A FAILED operation is fatal to the whole bundle: the dispatcher raises
BundleReverted naming the first failing operation. In SHORT_CIRCUIT mode
later operations are left PENDING and never evaluated; in EVALUATE_ALL mode
every operation is evaluated first, so the revert carries a full diagnostic
log.

Every PASSED or FAILED outcome is reported to the ThrottlingLedger as soon as
it is decided. SKIPPED outcomes do not touch the sender's throttle record.

The dispatcher never writes to the ledger.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from entrypoint.config import DispatchConfig, DispatchMode
from entrypoint.ledger.base import LedgerFatalError, LedgerState
from entrypoint.ledger.gas import GasMeter, OutOfGas
from entrypoint.primitives.operation import Bundle, Operation
from entrypoint.systems.dispatch.errors import (
    BundleReverted,
    ValidationRevert,
    validation_error_for,
)
from entrypoint.systems.dispatch.registry import AccountRegistry
from entrypoint.systems.dispatch.selector import Skipped, parse_signature
from entrypoint.systems.dispatch.types import (
    ExecutionOutcome,
    FailureKind,
    ValidationOutcome,
    ValidationState,
)
from entrypoint.systems.throttle.ledger import ThrottlingLedger

logger = structlog.get_logger()


class PostExecutionValidationDispatcher:
    """Runs phase 2 of a bundle."""

    def __init__(
        self,
        ledger: LedgerState,
        registry: AccountRegistry,
        throttle: ThrottlingLedger,
        config: DispatchConfig,
    ) -> None:
        self._ledger = ledger
        self._registry = registry
        self._throttle = throttle
        self._config = config
        self._logger = logger.bind(system="entrypoint.dispatcher")

    def validate_all(
        self,
        bundle: Bundle,
        execution_outcomes: Sequence[ExecutionOutcome],
        mode: DispatchMode | None = None,
    ) -> list[ValidationOutcome]:
        """
        Validate every operation of an executed bundle, in bundle order.

        Returns the FINALIZED outcomes when nothing failed. Raises
        BundleReverted (chained to the typed ValidationError) otherwise.
        """
        _check_ordering(bundle, execution_outcomes)
        mode = mode or self._config.mode

        outcomes = [
            ValidationOutcome(index=i, operation_hash=op.operation_hash, sender=op.sender)
            for i, op in enumerate(bundle.operations)
        ]
        first_failure: ValidationOutcome | None = None

        for operation, outcome in zip(bundle.operations, outcomes):
            self._validate_one(operation, outcome)
            self._report(outcome)

            if outcome.failed:
                if first_failure is None:
                    first_failure = outcome
                if mode == DispatchMode.SHORT_CIRCUIT:
                    break

        if first_failure is not None:
            error = validation_error_for(first_failure)
            self._logger.warning(
                "bundle_validation_failed",
                bundle_id=bundle.bundle_id,
                op_index=first_failure.index,
                failure_kind=first_failure.failure_kind,
                mode=mode.value,
                evaluated=sum(1 for o in outcomes if o.state != ValidationState.PENDING),
            )
            raise BundleReverted.from_validation(bundle.bundle_id, error, outcomes) from error

        for outcome in outcomes:
            outcome.advance(ValidationState.FINALIZED)

        self._logger.debug(
            "bundle_validation_passed",
            bundle_id=bundle.bundle_id,
            invoked=sum(1 for o in outcomes if o.validation_invoked),
            skipped=sum(1 for o in outcomes if not o.validation_invoked),
        )
        return outcomes

    def _validate_one(self, operation: Operation, outcome: ValidationOutcome) -> None:
        outcome.advance(ValidationState.SELECTOR_CHECKED)
        decision = parse_signature(operation.signature)
        if isinstance(decision, Skipped):
            outcome.advance(ValidationState.SKIPPED)
            self._logger.debug(
                "operation_validation_skipped",
                op_index=outcome.index,
                reason=decision.reason,
                selector=decision.selector,
            )
            return

        outcome.selector_matched = True
        outcome.validation_invoked = True
        outcome.advance(ValidationState.INVOKED)

        validator = self._registry.get_validator(operation.sender)
        if validator is None:
            reason = (
                "sender not registered"
                if operation.sender not in self._registry
                else "sender exposes no validation entry point"
            )
            self._fail(outcome, FailureKind.VALIDATION_UNREACHABLE, reason.encode())
            return

        meter = GasMeter(self._config.validation_gas_limit)
        view = self._ledger.read_only_view(
            meter=meter,
            read_gas_cost=self._config.validation_read_gas_cost,
        )
        try:
            validator.validate_post_execution(operation, operation.operation_hash, view)
        except LedgerFatalError:
            raise
        except OutOfGas as exc:
            self._fail(outcome, FailureKind.VALIDATION_RESOURCE_EXCEEDED, str(exc).encode())
        except ValidationRevert as exc:
            self._fail(outcome, FailureKind.VALIDATION_FAILED, exc.reason)
        except Exception as exc:
            self._fail(
                outcome,
                FailureKind.VALIDATION_FAILED,
                f"{type(exc).__name__}: {exc}".encode(),
            )
        else:
            # A callback that swallows OutOfGas or ReadOnlyViolation still fails
            if meter.exhausted:
                self._fail(
                    outcome,
                    FailureKind.VALIDATION_RESOURCE_EXCEEDED,
                    f"Out of gas: limit {meter.limit} (suppressed by account)".encode(),
                )
            elif view.violation is not None:
                self._fail(
                    outcome,
                    FailureKind.VALIDATION_FAILED,
                    f"ReadOnlyViolation: {view.violation} (suppressed by account)".encode(),
                )
            else:
                outcome.validation_passed = True
                outcome.advance(ValidationState.PASSED)
        finally:
            outcome.gas_used = meter.used

    def _fail(self, outcome: ValidationOutcome, kind: FailureKind, reason: bytes) -> None:
        outcome.failure_kind = kind
        outcome.revert_reason = reason
        outcome.advance(ValidationState.FAILED)
        self._logger.info(
            "operation_validation_failed",
            op_index=outcome.index,
            sender=outcome.sender,
            failure_kind=kind.value,
            reason=reason[:120].decode(errors="replace"),
        )

    def _report(self, outcome: ValidationOutcome) -> None:
        if outcome.state == ValidationState.PASSED:
            self._throttle.record_success(outcome.sender)
        elif outcome.state == ValidationState.FAILED:
            self._throttle.record_failure(outcome.sender)


def _check_ordering(bundle: Bundle, execution_outcomes: Sequence[ExecutionOutcome]) -> None:
    """Phase 2 must walk exactly the operations phase 1 executed, in the same order."""
    if len(execution_outcomes) != len(bundle.operations):
        raise ValueError(
            f"Bundle {bundle.bundle_id} has {len(bundle.operations)} operations "
            f"but {len(execution_outcomes)} execution outcomes"
        )
    for i, (operation, executed) in enumerate(zip(bundle.operations, execution_outcomes)):
        if executed.index != i or executed.operation_hash != operation.operation_hash:
            raise ValueError(
                f"Execution outcome {i} does not match bundle order "
                f"(index {executed.index}, hash {executed.operation_hash[:12]})"
            )
