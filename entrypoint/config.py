"""
EntryPoint — Configuration System

All configuration is Pydantic-validated and loaded from:
1. default.yaml (defaults)
2. Environment variables (overrides)

Every tunable parameter of the bundle engine lives here.
"""

from __future__ import annotations

import enum
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Policy Enums ─────────────────────────────────────────────────


class DispatchMode(enum.StrEnum):
    SHORT_CIRCUIT = "short_circuit"  # Stop validating at the first failure
    EVALUATE_ALL = "evaluate_all"    # Validate every op, then revert with full diagnostics


class RollbackPolicy(enum.StrEnum):
    FULL = "full"      # Validation failure reverts every phase-1 mutation
    RETAIN = "retain"  # Phase-1 mutations are committed, compensation is withheld


# ─── Sub-configs ──────────────────────────────────────────────────


class ExecutionConfig(BaseModel):
    base_gas_per_op: int = 21_000
    read_gas_cost: int = 800
    write_gas_cost: int = 5_000
    # Cumulative gas ceiling for a whole bundle. Crossing it is bundle-fatal.
    max_bundle_gas: int = 30_000_000


class DispatchConfig(BaseModel):
    # Budget for each post-execution validation callback, separate from call_gas_limit
    validation_gas_limit: int = 50_000
    validation_read_gas_cost: int = 800
    mode: DispatchMode = DispatchMode.SHORT_CIRCUIT
    rollback_policy: RollbackPolicy = RollbackPolicy.FULL


class ThrottleConfig(BaseModel):
    failure_threshold: int = 3
    ban_duration_s: float = 3600.0
    slash_fraction: float = Field(default=0.1, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_threshold(self) -> ThrottleConfig:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        return self


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


# ─── Root Configuration ──────────────────────────────────────────


class EntryPointConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="ENTRYPOINT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = "entrypoint-default"

    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    throttle: ThrottleConfig = Field(default_factory=ThrottleConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str | Path | None = None) -> EntryPointConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    overrides: dict[str, Any] = {}
    if instance_id := os.environ.get("ENTRYPOINT_INSTANCE_ID"):
        overrides["instance_id"] = instance_id
    if mode := os.environ.get("ENTRYPOINT_DISPATCH__MODE"):
        overrides.setdefault("dispatch", {})["mode"] = mode
    if policy := os.environ.get("ENTRYPOINT_DISPATCH__ROLLBACK_POLICY"):
        overrides.setdefault("dispatch", {})["rollback_policy"] = policy
    if gas_limit := os.environ.get("ENTRYPOINT_DISPATCH__VALIDATION_GAS_LIMIT"):
        overrides.setdefault("dispatch", {})["validation_gas_limit"] = int(gas_limit)
    if threshold := os.environ.get("ENTRYPOINT_THROTTLE__FAILURE_THRESHOLD"):
        overrides.setdefault("throttle", {})["failure_threshold"] = int(threshold)
    if log_level := os.environ.get("ENTRYPOINT_LOGGING__LEVEL"):
        overrides.setdefault("logging", {})["level"] = log_level

    return EntryPointConfig(**_deep_merge(raw, overrides))
