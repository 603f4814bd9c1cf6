"""
EntryPoint — Observability Infrastructure

Structured logging.
"""

from entrypoint.telemetry.logging import bundle_context, setup_logging

__all__ = ["bundle_context", "setup_logging"]
