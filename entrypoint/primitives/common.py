"""
EntryPoint — Common Primitives

Shared base classes and utilities used across all systems.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field
from ulid import ULID


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def normalise_address(address: str) -> str:
    """
    Canonical identity of a sender or account address.

    Hex addresses ("0xAbC...") compare case-insensitively, so checksummed and
    lower-case spellings name the same account. Any other identity string is
    kept exactly, minus surrounding whitespace.
    """
    address = address.strip()
    if address[:2].lower() == "0x":
        return "0x" + address[2:].lower()
    return address


# ─── Base Models ──────────────────────────────────────────────────


class EPBaseModel(BaseModel):
    """Base model for all EntryPoint primitives."""

    model_config = {"populate_by_name": True, "from_attributes": True}


class Timestamped(EPBaseModel):
    """Mixin for models with creation timestamps."""

    created_at: datetime = Field(default_factory=utc_now)


class Identified(EPBaseModel):
    """Mixin for models with ULID IDs."""

    id: str = Field(default_factory=new_id)
