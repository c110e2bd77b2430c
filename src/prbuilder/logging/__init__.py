"""Structured logging for prbuilder.

This module provides structured JSON logging with:
- structlog configuration for consistent log formatting
- Secret redaction for tokens, webhook secrets and signatures
- Audit events for reconciliation cycles, triggers and webhooks

Usage:
    from prbuilder.logging import configure_logging, log_cycle_complete

    configure_logging(verbose=True)
"""

from prbuilder.logging.audit import (
    configure_logging,
    get_logger,
    log_build_triggered,
    log_cycle_complete,
    log_pr_classified,
    log_pr_failure,
    log_rate_limit,
    log_status_reported,
    log_webhook_received,
    redact_secrets,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "log_build_triggered",
    "log_cycle_complete",
    "log_pr_classified",
    "log_pr_failure",
    "log_rate_limit",
    "log_status_reported",
    "log_webhook_received",
    "redact_secrets",
]
