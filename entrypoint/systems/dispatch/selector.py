"""
EntryPoint — Selector Extraction

An operation opts into post-execution validation by prefixing its signature
with POST_EXECUTION_SELECTOR. This module is the only place that looks inside
a signature blob: parse_signature() turns it into one of two variants

  Skipped             — no validation requested (or blob too short to say)
  RequestsValidation  — selector matched; payload is the remainder of the blob

so call sites branch on a type, never on byte offsets.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from entrypoint.systems.dispatch.errors import MalformedSignature

SELECTOR_LENGTH = 4

# First four bytes of sha3_256("validatePostExecution(bytes32)")
POST_EXECUTION_SELECTOR: bytes = hashlib.sha3_256(
    b"validatePostExecution(bytes32)"
).digest()[:SELECTOR_LENGTH]


def extract_selector(signature: bytes) -> bytes:
    """Return the 4-byte selector prefix. Raises MalformedSignature if too short."""
    if len(signature) < SELECTOR_LENGTH:
        raise MalformedSignature(len(signature))
    return bytes(signature[:SELECTOR_LENGTH])


@dataclass(frozen=True)
class Skipped:
    """The signature does not request post-execution validation."""

    reason: str
    selector: bytes = b""


@dataclass(frozen=True)
class RequestsValidation:
    """The signature requests post-execution validation."""

    selector: bytes
    payload: bytes = b""


SelectorDecision = Skipped | RequestsValidation


def parse_signature(
    signature: bytes,
    expected: bytes = POST_EXECUTION_SELECTOR,
) -> SelectorDecision:
    """
    Classify a signature blob.

    Malformed blobs are treated as an opt-out rather than an error.
    """
    try:
        selector = extract_selector(signature)
    except MalformedSignature as exc:
        return Skipped(reason=str(exc))

    if selector != expected:
        return Skipped(reason="selector_mismatch", selector=selector)
    return RequestsValidation(selector=selector, payload=bytes(signature[SELECTOR_LENGTH:]))


def with_validation_request(payload: bytes = b"") -> bytes:
    """Build a signature blob that opts into post-execution validation."""
    return POST_EXECUTION_SELECTOR + payload
