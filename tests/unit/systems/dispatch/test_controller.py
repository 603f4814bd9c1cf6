"""
Unit tests for the BundleController.

Tests phase ordering, compensation, rollback policies, admission control and
auditing. The ledger is a real InMemoryLedger; no mocks are needed.
"""

from __future__ import annotations

import asyncio

import pytest

from entrypoint.config import DispatchConfig, ExecutionConfig, RollbackPolicy, ThrottleConfig
from entrypoint.ledger import InMemoryLedger, LedgerFatalError
from entrypoint.primitives.operation import Bundle, Operation
from entrypoint.systems.dispatch.accounts import (
    ExpectationAccount,
    StorageAccount,
    balance_key,
    encode_object,
    expectation_payload,
    storage_key,
)
from entrypoint.systems.dispatch.audit import AuditLogger
from entrypoint.systems.dispatch.controller import BundleController
from entrypoint.systems.dispatch.dispatcher import PostExecutionValidationDispatcher
from entrypoint.systems.dispatch.engine import ExecutionEngine
from entrypoint.systems.dispatch.errors import BundleReverted
from entrypoint.systems.dispatch.registry import AccountRegistry
from entrypoint.systems.dispatch.selector import with_validation_request
from entrypoint.systems.dispatch.types import FailureKind, ValidationState
from entrypoint.systems.throttle import ThrottlingLedger


# ─── Fixtures ─────────────────────────────────────────────────────


class _FragileLedger(InMemoryLedger):
    def write(self, key, value):
        if key.endswith(":boom"):
            raise LedgerFatalError("storage corrupted")
        super().write(key, value)


class _UncommittableLedger(InMemoryLedger):
    def commit(self):
        raise LedgerFatalError("disk full")


def make_controller(
    ledger: InMemoryLedger | None = None,
    rollback_policy: RollbackPolicy = RollbackPolicy.FULL,
    throttle: ThrottlingLedger | None = None,
    audit_sink=None,
) -> tuple[BundleController, InMemoryLedger, ThrottlingLedger]:
    ledger = ledger if ledger is not None else InMemoryLedger()
    throttle = throttle or ThrottlingLedger(ThrottleConfig(), clock=lambda: 0.0)
    registry = AccountRegistry()
    registry.register(StorageAccount("alice"))
    registry.register(ExpectationAccount("bob"))

    config = DispatchConfig(rollback_policy=rollback_policy)
    controller = BundleController(
        ledger=ledger,
        engine=ExecutionEngine(ledger, registry, ExecutionConfig()),
        dispatcher=PostExecutionValidationDispatcher(ledger, registry, throttle, config),
        throttle=throttle,
        audit_logger=AuditLogger(sink=audit_sink),
        config=config,
        clock=lambda: 0.0,
    )
    return controller, ledger, throttle


def write_op(sender: str = "alice", **slots) -> Operation:
    return Operation(sender=sender, target="c", call_data=encode_object({"set": slots}))


def expect_op(sender: str = "bob", **equals) -> Operation:
    return Operation(
        sender=sender,
        target="c",
        signature=with_validation_request(expectation_payload(equals)),
    )


def bundle_of(*operations: Operation, beneficiary: str = "relayer") -> Bundle:
    return Bundle(operations=operations, beneficiary=beneficiary)


# ─── Tests: Success path ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_successful_bundle_compensates_and_commits():
    controller, ledger, _ = make_controller()

    result = await controller.handle(bundle_of(write_op(x=1), expect_op(x=1)))

    # alice: base + one write. bob: base only.
    assert result.compensation == 26_000 + 21_000
    assert result.total_gas_used == 47_000
    assert ledger.read(balance_key("relayer")) == 47_000
    assert ledger.read(storage_key("c", "x")) == 1
    assert ledger.pending_writes == 0
    assert ledger.committed_version == 1
    assert all(v.state == ValidationState.FINALIZED for v in result.validation_outcomes)
    assert [e.index for e in result.execution_outcomes] == [0, 1]


@pytest.mark.asyncio
async def test_compensation_adds_to_existing_balance():
    controller, ledger, _ = make_controller(ledger=InMemoryLedger({"balance:relayer": 5}))
    result = await controller.handle(bundle_of(write_op(x=1)))
    assert ledger.read(balance_key("relayer")) == 5 + result.compensation


@pytest.mark.asyncio
async def test_failed_execution_still_pays_but_not_its_writes():
    controller, ledger, _ = make_controller()
    bad = Operation(sender="alice", target="c", call_data=b"[1, 2]")

    result = await controller.handle(bundle_of(bad, write_op(y=2)))

    assert result.execution_outcomes[0].execution_succeeded is False
    assert result.compensation == 21_000 + 26_000
    assert ledger.read(storage_key("c", "y")) == 2


# ─── Tests: Validation failure ────────────────────────────────────


@pytest.mark.asyncio
async def test_validation_failure_full_rollback():
    controller, ledger, _ = make_controller()

    with pytest.raises(BundleReverted) as exc_info:
        await controller.handle(bundle_of(write_op(x=4), expect_op(x=5)))

    exc = exc_info.value
    assert exc.kind == FailureKind.VALIDATION_FAILED
    assert exc.operation_index == 1
    assert len(exc.execution_outcomes) == 2
    assert ledger.read(storage_key("c", "x")) is None
    assert ledger.read(balance_key("relayer")) is None
    assert controller.stats["total_compensation"] == 0


@pytest.mark.asyncio
async def test_validation_failure_retain_policy_keeps_writes_without_pay():
    controller, ledger, _ = make_controller(rollback_policy=RollbackPolicy.RETAIN)

    with pytest.raises(BundleReverted):
        await controller.handle(bundle_of(write_op(x=4), expect_op(x=5)))

    assert ledger.read(storage_key("c", "x")) == 4
    assert ledger.read(balance_key("relayer")) is None
    assert ledger.pending_writes == 0


@pytest.mark.asyncio
async def test_ledger_recovers_after_reverted_bundle():
    controller, ledger, _ = make_controller()
    with pytest.raises(BundleReverted):
        await controller.handle(bundle_of(write_op(x=4), expect_op(x=5)))

    assert ledger.open_snapshots == 0

    result = await controller.handle(bundle_of(write_op(x=5), expect_op(x=5)))
    assert ledger.read(storage_key("c", "x")) == 5
    assert ledger.read(balance_key("relayer")) == result.compensation
    assert controller.stats == {
        "bundles_handled": 1,
        "bundles_reverted": 1,
        "total_compensation": result.compensation,
    }


# ─── Tests: Execution fatal ───────────────────────────────────────


@pytest.mark.asyncio
async def test_execution_fatal_reverts_everything():
    controller, ledger, _ = make_controller(
        ledger=_FragileLedger(),
        rollback_policy=RollbackPolicy.RETAIN,
    )

    with pytest.raises(BundleReverted) as exc_info:
        await controller.handle(bundle_of(write_op(x=1), write_op(boom=1)))

    assert exc_info.value.kind == FailureKind.EXECUTION_FATAL
    assert exc_info.value.operation_index == 1
    assert ledger.read(storage_key("c", "x")) is None
    assert ledger.read(balance_key("relayer")) is None


@pytest.mark.asyncio
async def test_ledger_fatal_during_compensation_reverts_bundle():
    records: list[dict] = []

    async def sink(record: dict) -> None:
        records.append(record)

    controller, ledger, _ = make_controller(ledger=_FragileLedger(), audit_sink=sink)

    with pytest.raises(BundleReverted) as exc_info:
        await controller.handle(bundle_of(write_op(x=1), beneficiary="boom"))

    exc = exc_info.value
    assert exc.kind == FailureKind.EXECUTION_FATAL
    assert isinstance(exc.__cause__, LedgerFatalError)
    assert len(exc.execution_outcomes) == 1
    assert ledger.read(storage_key("c", "x")) is None
    assert ledger.read(balance_key("boom")) is None
    assert controller.stats["bundles_reverted"] == 1
    assert controller.stats["total_compensation"] == 0
    assert [r["result"] for r in records] == ["reverted"]


@pytest.mark.asyncio
async def test_ledger_fatal_during_commit_reverts_bundle():
    controller, ledger, _ = make_controller(ledger=_UncommittableLedger())

    with pytest.raises(BundleReverted) as exc_info:
        await controller.handle(bundle_of(write_op(x=1)))

    assert exc_info.value.kind == FailureKind.EXECUTION_FATAL
    assert ledger.read(storage_key("c", "x")) is None
    assert ledger.read(balance_key("relayer")) is None
    assert ledger.open_snapshots == 0


# ─── Tests: Admission ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_banned_sender_is_refused_before_execution():
    throttle = ThrottlingLedger(ThrottleConfig(failure_threshold=1), clock=lambda: 0.0)
    throttle.record_failure("bob")
    controller, ledger, _ = make_controller(throttle=throttle)

    assert controller.admit(bundle_of(write_op(x=1), expect_op(x=1))) == ["bob"]
    with pytest.raises(BundleReverted) as exc_info:
        await controller.handle(bundle_of(write_op(x=1), expect_op(x=1)))

    assert exc_info.value.kind == FailureKind.SENDER_BANNED
    assert exc_info.value.operation_index == 1
    assert b"bob" in exc_info.value.reason
    assert ledger.read(storage_key("c", "x")) is None


@pytest.mark.asyncio
async def test_ban_applies_to_every_spelling_of_a_hex_sender():
    throttle = ThrottlingLedger(ThrottleConfig(failure_threshold=1), clock=lambda: 0.0)
    throttle.record_failure("0xABC")
    controller, ledger, _ = make_controller(throttle=throttle)

    with pytest.raises(BundleReverted) as exc_info:
        await controller.handle(bundle_of(write_op("0xabc", x=1)))

    assert exc_info.value.kind == FailureKind.SENDER_BANNED
    assert exc_info.value.operation_index == 0
    assert ledger.read(storage_key("c", "x")) is None

@pytest.mark.asyncio
async def test_admission_respects_ban_expiry():
    throttle = ThrottlingLedger(
        ThrottleConfig(failure_threshold=1, ban_duration_s=10.0), clock=lambda: 0.0
    )
    throttle.record_failure("alice")
    controller, _, _ = make_controller(throttle=throttle)
    bundle = bundle_of(write_op(x=1))
    assert controller.admit(bundle, at_time=5.0) == ["alice"]
    assert controller.admit(bundle, at_time=10.0) == []


@pytest.mark.asyncio
async def test_validation_failure_feeds_throttle():
    controller, _, throttle = make_controller()
    with pytest.raises(BundleReverted):
        await controller.handle(bundle_of(expect_op(x=5)))
    assert throttle.get("bob").consecutive_failures == 1


# ─── Tests: Audit ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_audit_sink_receives_one_record_per_bundle():
    records: list[dict] = []

    async def sink(record: dict) -> None:
        records.append(record)

    controller, _, _ = make_controller(audit_sink=sink)
    ok = bundle_of(write_op(x=1))
    bad = bundle_of(write_op(x=4), expect_op(x=5))

    await controller.handle(ok)
    with pytest.raises(BundleReverted):
        await controller.handle(bad)

    assert [r["result"] for r in records] == ["success", "reverted"]
    assert records[0]["bundle_id"] == ok.bundle_id
    assert records[0]["compensation"] == 26_000
    assert records[1]["failure_kind"] == FailureKind.VALIDATION_FAILED.value
    assert records[1]["failing_index"] == 1
    assert records[1]["validations_invoked"] == 1
    assert "call_data" not in records[0]


@pytest.mark.asyncio
async def test_failing_audit_sink_does_not_fail_bundle():
    async def sink(record: dict) -> None:
        raise ConnectionError("sink down")

    controller, ledger, _ = make_controller(audit_sink=sink)
    result = await controller.handle(bundle_of(write_op(x=1)))
    assert ledger.read(balance_key("relayer")) == result.compensation
    assert controller._audit.stats == {"records_written": 0, "records_failed": 1}


# ─── Tests: Serialisation ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_concurrent_bundles_are_serialised():
    controller, ledger, _ = make_controller()
    first, second = await asyncio.gather(
        controller.handle(bundle_of(write_op(x=1))),
        controller.handle(bundle_of(write_op(y=2))),
    )
    assert ledger.read(balance_key("relayer")) == first.compensation + second.compensation
    assert ledger.committed_version == 2
