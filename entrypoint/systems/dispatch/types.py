"""
EntryPoint — Dispatch Types

All types internal to bundle execution and post-execution validation.

Design notes:
- ExecutionOutcome is written once by the ExecutionEngine during phase 1 and
  never touched again. The dispatcher and controller only read it.
- ValidationOutcome is owned by the dispatcher. Its state only moves forward
  through the per-operation state machine; advance() refuses anything else.
- BundleResult is what a successful handle() returns. Failures are raised as
  BundleReverted (errors.py), whose to_failure() yields a BundleFailure.
"""

from __future__ import annotations

import enum
import hashlib
from datetime import datetime

from pydantic import Field

from entrypoint.primitives.common import EPBaseModel, Identified, Timestamped, utc_now

# ─── Enums ────────────────────────────────────────────────────────


class ValidationState(enum.StrEnum):
    PENDING = "pending"
    SELECTOR_CHECKED = "selector_checked"
    SKIPPED = "skipped"
    INVOKED = "invoked"
    PASSED = "passed"
    FAILED = "failed"
    FINALIZED = "finalized"


class FailureKind(enum.StrEnum):
    VALIDATION_FAILED = "validation_failed"
    VALIDATION_UNREACHABLE = "validation_unreachable"
    VALIDATION_RESOURCE_EXCEEDED = "validation_resource_exceeded"
    EXECUTION_FATAL = "execution_fatal"
    SENDER_BANNED = "sender_banned"


_TRANSITIONS: dict[ValidationState, frozenset[ValidationState]] = {
    ValidationState.PENDING: frozenset({ValidationState.SELECTOR_CHECKED}),
    ValidationState.SELECTOR_CHECKED: frozenset(
        {ValidationState.SKIPPED, ValidationState.INVOKED}
    ),
    ValidationState.SKIPPED: frozenset({ValidationState.FINALIZED}),
    ValidationState.INVOKED: frozenset({ValidationState.PASSED, ValidationState.FAILED}),
    ValidationState.PASSED: frozenset({ValidationState.FINALIZED}),
    ValidationState.FAILED: frozenset(),
    ValidationState.FINALIZED: frozenset(),
}


# ─── Phase 1 ──────────────────────────────────────────────────────


class ExecutionOutcome(EPBaseModel):
    """The recorded result of executing one operation."""

    index: int
    operation_hash: str
    sender: str
    gas_used: int = 0
    fee: int = 0
    execution_succeeded: bool = False
    snapshot_before: int
    snapshot_after: int | None = None
    error: str = ""


class ExecutionReport(EPBaseModel):
    """Everything phase 1 hands to phase 2 and to compensation."""

    outcomes: list[ExecutionOutcome] = Field(default_factory=list)
    total_gas_used: int = 0
    total_fees: int = 0

    @property
    def failed_indices(self) -> list[int]:
        return [o.index for o in self.outcomes if not o.execution_succeeded]


# ─── Phase 2 ──────────────────────────────────────────────────────


class ValidationOutcome(EPBaseModel):
    """The per-operation record of the post-execution validation state machine."""

    index: int
    operation_hash: str
    sender: str
    state: ValidationState = ValidationState.PENDING
    selector_matched: bool = False
    validation_invoked: bool = False
    # Meaningless unless validation_invoked
    validation_passed: bool = False
    failure_kind: FailureKind | None = None
    revert_reason: bytes | None = None
    gas_used: int = 0

    def advance(self, new_state: ValidationState) -> None:
        """Move to new_state, refusing any transition out of order."""
        allowed = _TRANSITIONS[self.state]
        if new_state not in allowed:
            raise ValueError(
                f"Illegal validation transition for op {self.index}: "
                f"{self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    @property
    def failed(self) -> bool:
        return self.state == ValidationState.FAILED


# ─── Bundle Results ───────────────────────────────────────────────


class BundleResult(EPBaseModel):
    """Returned by BundleController.handle() when both phases succeed."""

    bundle_id: str
    beneficiary: str
    compensation: int
    total_gas_used: int
    execution_outcomes: list[ExecutionOutcome] = Field(default_factory=list)
    validation_outcomes: list[ValidationOutcome] = Field(default_factory=list)
    duration_ms: int = 0


class BundleFailure(EPBaseModel):
    """Structured failure payload for callers that prefer data to exceptions."""

    bundle_id: str
    kind: FailureKind
    operation_index: int | None = None
    operation_hash: str = ""
    reason: bytes = b""
    message: str = ""


# ─── Audit Record ─────────────────────────────────────────────────


class AuditRecord(Identified, Timestamped):
    """
    Permanent record of one handled bundle.

    Call data is hashed, not stored raw.
    """

    bundle_id: str
    beneficiary: str
    result: str            # "success" | "reverted"
    operation_count: int
    call_data_hash: str
    compensation: int = 0
    total_gas_used: int = 0
    failure_kind: str = ""
    failing_index: int | None = None
    validations_invoked: int = 0
    duration_ms: int = 0
    handled_at: datetime = Field(default_factory=utc_now)

    @staticmethod
    def hash_call_data(chunks: list[bytes]) -> str:
        digest = hashlib.sha256()
        for chunk in chunks:
            digest.update(len(chunk).to_bytes(8, "big"))
            digest.update(chunk)
        return digest.hexdigest()
