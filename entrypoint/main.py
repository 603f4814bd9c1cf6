"""
EntryPoint — Application Entry Point

Bootstraps an EntryPointService from configuration, and replays bundle files
against an in-memory ledger for local simulation:

    entrypoint-replay bundle.json
    python -m entrypoint.main bundle.json --config config/default.yaml

Bundle file format (JSON):

    {
      "beneficiary": "relayer",
      "accounts": {"alice": "storage", "bob": "expectation", "carol": "transfer"},
      "state": {"balance:carol": 100},
      "operations": [
        {"sender": "alice", "target": "counter", "call": {"set": {"value": 5}}},
        {"sender": "bob", "target": "bob",
         "expect": {"target": "counter", "equals": {"value": 5}}}
      ]
    }

"call" is encoded as the operation's call_data. "expect" opts the operation
into post-execution validation with an ExpectationAccount payload.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Any

import orjson
import structlog
from dotenv import load_dotenv

from entrypoint.config import DispatchMode, EntryPointConfig, load_config
from entrypoint.ledger.base import LedgerState
from entrypoint.ledger.memory import InMemoryLedger
from entrypoint.primitives.operation import Bundle, Operation
from entrypoint.systems.dispatch.account import Account
from entrypoint.systems.dispatch.accounts import (
    ExpectationAccount,
    StorageAccount,
    TransferAccount,
    encode_object,
    expectation_payload,
)
from entrypoint.systems.dispatch.audit import AuditSink
from entrypoint.systems.dispatch.errors import BundleReverted
from entrypoint.systems.dispatch.registry import AccountRegistry
from entrypoint.systems.dispatch.selector import with_validation_request
from entrypoint.systems.dispatch.service import EntryPointService
from entrypoint.telemetry.logging import setup_logging

logger = structlog.get_logger()

ACCOUNT_KINDS: dict[str, type[Account]] = {
    "storage": StorageAccount,
    "transfer": TransferAccount,
    "expectation": ExpectationAccount,
}


async def create_service(
    config: EntryPointConfig | None = None,
    ledger: LedgerState | None = None,
    registry: AccountRegistry | None = None,
    audit_sink: AuditSink | None = None,
) -> EntryPointService:
    """
    Load configuration, set up logging and return an initialized service.

    Without an explicit config, the YAML file named by ENTRYPOINT_CONFIG_PATH
    (default config/default.yaml) is loaded, then env overrides applied.
    """
    if config is None:
        load_dotenv()
        config_path = os.environ.get("ENTRYPOINT_CONFIG_PATH", "config/default.yaml")
        config = load_config(config_path)
    else:
        config_path = None

    setup_logging(config.logging, instance_id=config.instance_id)
    logger.info(
        "entrypoint_starting",
        instance_id=config.instance_id,
        config_path=config_path,
    )

    service = EntryPointService(
        config=config,
        ledger=ledger if ledger is not None else InMemoryLedger(),
        registry=registry,
        audit_sink=audit_sink,
    )
    await service.initialize()
    return service


# ─── Bundle Files ─────────────────────────────────────────────────


def load_bundle_file(path: str | Path) -> tuple[Bundle, AccountRegistry, dict[str, Any]]:
    """Parse a bundle file into a Bundle, its account registry and initial ledger state."""
    raw = orjson.loads(Path(path).read_bytes())
    if not isinstance(raw, dict):
        raise ValueError(f"Bundle file {path} must contain a JSON object")

    registry = AccountRegistry()
    for address, kind in raw.get("accounts", {}).items():
        account_cls = ACCOUNT_KINDS.get(kind)
        if account_cls is None:
            raise ValueError(
                f"Unknown account kind {kind!r} for {address!r}. "
                f"Expected one of: {', '.join(sorted(ACCOUNT_KINDS))}"
            )
        registry.register(account_cls(address))

    operations = [
        _operation_from_dict(i, entry) for i, entry in enumerate(raw.get("operations", []))
    ]
    bundle = Bundle(operations=operations, beneficiary=raw.get("beneficiary", ""))
    return bundle, registry, raw.get("state", {})


def _operation_from_dict(index: int, entry: dict[str, Any]) -> Operation:
    signature = b"\x00\x00\x00\x00"
    if "expect" in entry:
        expect = entry["expect"]
        signature = with_validation_request(
            expectation_payload(expect.get("equals", {}), target=expect.get("target"))
        )

    try:
        return Operation(
            sender=entry["sender"],
            target=entry.get("target", entry["sender"]),
            call_data=encode_object(entry["call"]) if "call" in entry else b"",
            signature=signature,
            nonce=entry.get("nonce", index),
            call_gas_limit=entry.get("call_gas_limit", 200_000),
            max_fee_per_gas=entry.get("max_fee_per_gas", 1),
        )
    except KeyError as exc:
        raise ValueError(f"Operation {index} is missing field {exc}") from exc


async def replay(
    path: str | Path,
    config: EntryPointConfig | None = None,
    mode: DispatchMode | None = None,
) -> tuple[int, dict[str, Any]]:
    """
    Run a bundle file against a fresh in-memory ledger.

    Returns (exit_code, report): 0 with the result and final ledger state when
    the bundle lands, 1 with the structured failure when it reverts.
    """
    bundle, registry, state = load_bundle_file(path)
    ledger = InMemoryLedger(state)
    service = await create_service(config=config, ledger=ledger, registry=registry)

    try:
        result = await service.handle_bundle(bundle, mode=mode)
    except BundleReverted as exc:
        failure = exc.to_failure()
        report = failure.model_dump(mode="json", exclude={"reason"})
        report["reason"] = failure.reason.decode(errors="replace")
        return 1, {"status": "reverted", "failure": report}
    finally:
        await service.shutdown()

    return 0, {
        "status": "success",
        "bundle_id": result.bundle_id,
        "compensation": result.compensation,
        "total_gas_used": result.total_gas_used,
        "executions": [
            {
                "index": e.index,
                "succeeded": e.execution_succeeded,
                "gas_used": e.gas_used,
                "error": e.error,
            }
            for e in result.execution_outcomes
        ],
        "validations_invoked": [
            v.index for v in result.validation_outcomes if v.validation_invoked
        ],
        "state": ledger.as_dict(),
    }


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Replay a bundle file through the EntryPoint against an in-memory ledger"
    )
    parser.add_argument("bundle", help="Path to the bundle JSON file")
    parser.add_argument(
        "--config",
        default=None,
        help="YAML config file (default: ENTRYPOINT_CONFIG_PATH)",
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in DispatchMode],
        default=None,
        help="Override the configured dispatch mode",
    )
    return parser.parse_args(argv)


def cli(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    config = load_config(args.config) if args.config else None
    mode = DispatchMode(args.mode) if args.mode else None

    code, report = asyncio.run(replay(args.bundle, config=config, mode=mode))
    sys.stdout.write(orjson.dumps(report, option=orjson.OPT_INDENT_2).decode() + "\n")
    return code


if __name__ == "__main__":
    sys.exit(cli())
