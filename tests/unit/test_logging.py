"""
Unit tests for logging helpers.
"""

from __future__ import annotations

import structlog

from entrypoint.telemetry.logging import _hex_bytes, bundle_context


def test_bytes_rendered_as_hex():
    event = _hex_bytes(None, "info", {"event": "x", "selector": b"\x01\xab", "n": 3})
    assert event == {"event": "x", "selector": "0x01ab", "n": 3}


def test_long_bytes_truncated():
    event = _hex_bytes(None, "info", {"reason": b"\xff" * 40})
    assert event["reason"] == "0x" + "ff" * 32 + "...(+8B)"


def test_bundle_context_binds_and_unbinds():
    structlog.contextvars.clear_contextvars()
    with bundle_context("01BUNDLE", relayer="r1"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["bundle_id"] == "01BUNDLE"
        assert bound["relayer"] == "r1"
    assert "bundle_id" not in structlog.contextvars.get_contextvars()
