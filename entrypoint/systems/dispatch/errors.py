"""
EntryPoint — Dispatch Errors

Error taxonomy for bundle handling.

Absorbed (recorded on outcomes, never propagated):
  MalformedSignature          — signature too short to carry a selector → SKIPPED
  individual execution failure — recorded on ExecutionOutcome

Fatal (abort the whole bundle):
  ValidationFailed            — callback reverted or raised
  ValidationUnreachable       — selector matched but no validation entry point
  ValidationResourceExceeded  — callback ran out of validation gas
  ExecutionFatal              — ledger-level failure during phase 1

Every fatal kind reaches the caller as BundleReverted, which wraps the
originating error as its cause and names the first failing operation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from entrypoint.systems.dispatch.types import BundleFailure, FailureKind

if TYPE_CHECKING:
    from entrypoint.systems.dispatch.types import ExecutionOutcome, ValidationOutcome


class EntryPointError(Exception):
    """Base class for all EntryPoint errors."""


class MalformedSignature(EntryPointError):
    """The signature blob is too short to carry a 4-byte selector."""

    def __init__(self, length: int) -> None:
        super().__init__(f"Signature of {length} bytes cannot carry a 4-byte selector")
        self.length = length


class ValidationRevert(EntryPointError):
    """
    Raised by account validation callbacks to reject an operation.

    reason is an opaque diagnostic payload surfaced to the bundle submitter.
    """

    def __init__(self, reason: bytes | str = b"") -> None:
        if isinstance(reason, str):
            reason = reason.encode()
        super().__init__(reason.decode(errors="replace") or "validation reverted")
        self.reason = reason


# ─── Validation failures ──────────────────────────────────────────


class ValidationError(EntryPointError):
    """A post-execution validation that did not pass. Always bundle-fatal."""

    kind: FailureKind = FailureKind.VALIDATION_FAILED

    def __init__(
        self,
        operation_index: int,
        operation_hash: str,
        reason: bytes = b"",
        message: str = "",
    ) -> None:
        super().__init__(message or f"Validation failed for operation {operation_index}")
        self.operation_index = operation_index
        self.operation_hash = operation_hash
        self.reason = reason


class ValidationFailed(ValidationError):
    """The account's callback explicitly reverted or raised."""

    kind = FailureKind.VALIDATION_FAILED


class ValidationUnreachable(ValidationError):
    """The selector requested validation but the account exposes no entry point."""

    kind = FailureKind.VALIDATION_UNREACHABLE


class ValidationResourceExceeded(ValidationError):
    """The callback exhausted its validation gas budget."""

    kind = FailureKind.VALIDATION_RESOURCE_EXCEEDED


_VALIDATION_ERRORS: dict[FailureKind, type[ValidationError]] = {
    FailureKind.VALIDATION_FAILED: ValidationFailed,
    FailureKind.VALIDATION_UNREACHABLE: ValidationUnreachable,
    FailureKind.VALIDATION_RESOURCE_EXCEEDED: ValidationResourceExceeded,
}


def validation_error_for(outcome: ValidationOutcome, message: str = "") -> ValidationError:
    """Build the typed validation error matching a FAILED outcome."""
    kind = outcome.failure_kind or FailureKind.VALIDATION_FAILED
    error_cls = _VALIDATION_ERRORS.get(kind, ValidationFailed)
    return error_cls(
        operation_index=outcome.index,
        operation_hash=outcome.operation_hash,
        reason=outcome.revert_reason or b"",
        message=message,
    )


# ─── Execution failures ───────────────────────────────────────────


class ExecutionFatal(EntryPointError):
    """Unrecoverable phase-1 failure. Aborts the bundle immediately."""

    def __init__(self, operation_index: int, operation_hash: str, message: str) -> None:
        super().__init__(message)
        self.operation_index = operation_index
        self.operation_hash = operation_hash


# ─── Composite ────────────────────────────────────────────────────


class BundleReverted(EntryPointError):
    """
    The externally visible failure of a bundle.

    Identifies the first failing operation and why. Carries whatever
    per-operation outcomes were produced before the abort, for diagnostics.
    """

    def __init__(
        self,
        bundle_id: str,
        kind: FailureKind,
        operation_index: int | None = None,
        operation_hash: str = "",
        reason: bytes = b"",
        message: str = "",
        execution_outcomes: list[ExecutionOutcome] | None = None,
        validation_outcomes: list[ValidationOutcome] | None = None,
    ) -> None:
        where = f" at operation {operation_index}" if operation_index is not None else ""
        super().__init__(message or f"Bundle {bundle_id} reverted: {kind.value}{where}")
        self.bundle_id = bundle_id
        self.kind = kind
        self.operation_index = operation_index
        self.operation_hash = operation_hash
        self.reason = reason
        self.execution_outcomes = execution_outcomes or []
        self.validation_outcomes = validation_outcomes or []

    @classmethod
    def from_validation(
        cls,
        bundle_id: str,
        error: ValidationError,
        validation_outcomes: list[ValidationOutcome],
    ) -> BundleReverted:
        return cls(
            bundle_id=bundle_id,
            kind=error.kind,
            operation_index=error.operation_index,
            operation_hash=error.operation_hash,
            reason=error.reason,
            message=str(error),
            validation_outcomes=validation_outcomes,
        )

    @classmethod
    def from_execution(cls, bundle_id: str, error: ExecutionFatal) -> BundleReverted:
        return cls(
            bundle_id=bundle_id,
            kind=FailureKind.EXECUTION_FATAL,
            operation_index=error.operation_index,
            operation_hash=error.operation_hash,
            message=str(error),
        )

    def to_failure(self) -> BundleFailure:
        return BundleFailure(
            bundle_id=self.bundle_id,
            kind=self.kind,
            operation_index=self.operation_index,
            operation_hash=self.operation_hash,
            reason=self.reason,
            message=str(self),
        )
