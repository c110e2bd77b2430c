"""Structured JSON logging and reconciliation audit events.

This module provides:
- structlog configuration for JSON logging to stderr
- Secret redaction (GitHub tokens, webhook secrets, signatures)
- Structured log events for cycles, classifications, triggers and webhooks
"""

from __future__ import annotations

import logging
import re
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from structlog.typing import EventDict, WrappedLogger

SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # GitHub tokens (ghp_, gho_, ghu_, ghs_, ghr_ prefixes)
    (re.compile(r"(gh[pousr]_[A-Za-z0-9_]{36,})"), "[REDACTED_GITHUB_TOKEN]"),
    (re.compile(r"(token[=:]\s*['\"]?)([A-Za-z0-9_-]{20,})"), r"\1[REDACTED]"),
    # Webhook shared secrets
    (re.compile(r"(secret[s]?[=:]\s*['\"]?)([^\s'\",\]]+)", re.IGNORECASE), r"\1[REDACTED]"),
    # X-Hub-Signature values
    (re.compile(r"(sha(?:1|256)=)([0-9a-fA-F]{40,64})"), r"\1[REDACTED_SIGNATURE]"),
    (re.compile(r"(Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(authorization[=:]\s*['\"]?)([^\s'\"]+)", re.IGNORECASE), r"\1[REDACTED]"),
]

# Event dict keys whose values are always dropped
SECRET_KEYS = frozenset({"secret", "secrets", "signature", "token"})


def redact_secrets(value: Any) -> Any:
    """Redact sensitive values from a string, dict, or list.

    Args:
        value: Value to redact. Can be str, dict, list, or other.

    Returns:
        Value with sensitive data redacted
    """
    if isinstance(value, str):
        result = value
        for pattern, replacement in SECRET_PATTERNS:
            result = pattern.sub(replacement, result)
        return result

    if isinstance(value, dict):
        return {
            k: "[REDACTED]" if k in SECRET_KEYS and v else redact_secrets(v)
            for k, v in value.items()
        }

    if isinstance(value, list):
        return [redact_secrets(item) for item in value]

    return value


def _redact_processor(
    _logger: WrappedLogger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """structlog processor that redacts secrets from log events."""
    return redact_secrets(event_dict)


def configure_logging(
    verbose: bool = False,
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        verbose: If True, enable DEBUG level. Otherwise INFO.
        json_output: If True, output JSON. Otherwise use console format.
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )

    processors: list[Callable[..., Any]] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_processor,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured structlog logger."""
    return structlog.get_logger(name)


def log_cycle_complete(
    repository: str,
    outcome: str,
    counts: dict[str, int],
    triggered: list[int],
    evicted: list[int],
    failures: int,
    duration_ms: float,
) -> None:
    """Log completion of a reconciliation cycle.

    Args:
        repository: owner/name
        outcome: Cycle outcome (completed, rate_limited, empty, failed)
        counts: Pull requests per classification
        triggered: PR numbers that got a build
        evicted: PR numbers removed from the cache
        failures: Number of per-PR failures
        duration_ms: Cycle duration in milliseconds
    """
    log = get_logger("prbuilder.cycle")
    log_func = log.info if failures == 0 else log.warning
    log_func(
        "cycle_complete",
        repository=repository,
        outcome=outcome,
        counts=counts,
        triggered=triggered,
        evicted=evicted,
        failures=failures,
        duration_ms=round(duration_ms, 2),
    )


def log_pr_classified(
    repository: str,
    number: int,
    classification: str,
    changes: list[str],
) -> None:
    """Log the diff result for one pull request."""
    log = get_logger("prbuilder.state")
    log.debug(
        "pr_classified",
        repository=repository,
        number=number,
        classification=classification,
        changes=changes,
    )


def log_build_triggered(
    repository: str,
    number: int,
    head_sha: str,
    reason: str,
    trigger: str,
    error: str | None = None,
) -> None:
    """Log a build trigger attempt.

    Args:
        repository: owner/name
        number: PR number
        head_sha: Commit being built
        reason: Why the build was requested
        trigger: Build trigger implementation name
        error: Error message if starting the build failed
    """
    log = get_logger("prbuilder.builds")
    log_func = log.info if error is None else log.error
    log_func(
        "build_triggered",
        repository=repository,
        number=number,
        head_sha=head_sha,
        reason=reason,
        trigger=trigger,
        error=error,
    )


def log_status_reported(
    repository: str,
    sha: str,
    state: str,
    description: str,
    reporter: str,
    error: str | None = None,
) -> None:
    """Log a commit status report attempt."""
    log = get_logger("prbuilder.status")
    log_func = log.info if error is None else log.warning
    log_func(
        "status_reported",
        repository=repository,
        sha=sha,
        state=state,
        description=description,
        reporter=reporter,
        error=error,
    )


def log_pr_failure(
    repository: str,
    number: int,
    stage: str,
    error: str,
) -> None:
    """Log an isolated per-PR failure."""
    log = get_logger("prbuilder.failures")
    log.warning(
        "pr_failure",
        repository=repository,
        number=number,
        stage=stage,
        error=error,
    )


def log_webhook_received(
    event: str,
    repository: str | None,
    number: int | None,
    accepted: bool,
    reason: str,
) -> None:
    """Log an inbound webhook delivery and what was done with it."""
    log = get_logger("prbuilder.webhook")
    log_func = log.info if accepted else log.warning
    log_func(
        "webhook_received",
        webhook_event=event,
        repository=repository,
        number=number,
        accepted=accepted,
        reason=reason,
    )


def log_rate_limit(
    remaining: int | None,
    limit: int | None,
    reset_at: str | None,
    allowed: bool,
) -> None:
    """Log a rate limit gate decision.

    Args:
        remaining: Remaining API calls, None when the query failed
        limit: Total API call limit
        reset_at: ISO timestamp when limit resets
        allowed: Whether the cycle may proceed
    """
    log = get_logger("prbuilder.ratelimit")

    if not allowed:
        log.warning(
            "rate_limit_exhausted",
            remaining=remaining,
            limit=limit,
            reset_at=reset_at,
            message=f"Skipping cycle until {reset_at}",
        )
    elif remaining is None:
        log.info("rate_limit_unavailable", message="Rate limit unknown, proceeding")
    else:
        log.debug(
            "rate_limit_check",
            remaining=remaining,
            limit=limit,
            reset_at=reset_at,
        )
