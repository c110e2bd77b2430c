"""CLI entry point for prbuilder.

This module provides the Typer-based CLI with commands:
- prbuilder run: Run in daemon mode (continuous polling)
- prbuilder run-once: Run a single reconciliation cycle
- prbuilder validate: Validate configuration
- prbuilder webhook: Replay a webhook delivery from a file
- prbuilder sign: Compute the signature of a payload file

Exit codes:
- 0: Success
- 1: Configuration error
- 2: Authentication error
- 3: Partial failure
- 4: Fatal error
"""

from __future__ import annotations

import asyncio
import random
import signal
import time
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from prbuilder import __version__
from prbuilder.actions import build_reporters, build_trigger_from_config
from prbuilder.config import load_config
from prbuilder.config.loader import ConfigError
from prbuilder.config.schema import SignatureAlgorithm
from prbuilder.github import GitHubClient, validate_token
from prbuilder.github.auth import AuthenticationError
from prbuilder.logging import configure_logging, get_logger
from prbuilder.watcher import ConfigurationError, CycleOutcome, RepositoryWatcher
from prbuilder.webhook import (
    InvalidPayloadError,
    SignatureMismatchError,
    SignatureVerifier,
    WebhookIngress,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    import structlog

    from prbuilder.actions import BuildTrigger
    from prbuilder.config.schema import Config
    from prbuilder.watcher import CycleReport
    from prbuilder.webhook import WebhookResult


class ExitCode(IntEnum):
    """CLI exit codes."""

    SUCCESS = 0
    CONFIG_ERROR = 1
    AUTH_ERROR = 2
    PARTIAL_FAILURE = 3
    FATAL_ERROR = 4


app = typer.Typer(
    name="prbuilder",
    help="prbuilder - build GitHub pull requests when they change.",
    add_completion=False,
    no_args_is_help=True,
)

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option(
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"prbuilder {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """prbuilder - build GitHub pull requests when they change."""


def _error(message: str) -> None:
    typer.echo(typer.style(f"✗ {message}", fg=typer.colors.RED), err=True)


def _load_or_exit(config: Path | None) -> Config:
    try:
        return load_config(config)
    except ConfigError as e:
        _error(f"Configuration error: {e}")
        raise typer.Exit(ExitCode.CONFIG_ERROR) from e


@app.command()
def validate(
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Validate configuration without running.

    Loads the configuration file, expands environment variables,
    and validates against the schema. Exits with code 0 if valid,
    or code 1 if there are errors.
    """
    configure_logging(verbose=verbose, json_output=False)
    cfg = _load_or_exit(config)
    typer.echo(typer.style("✓ Configuration is valid", fg=typer.colors.GREEN))

    if verbose:
        typer.echo("\nConfiguration summary:")
        typer.echo(f"  Version: {cfg.version}")
        typer.echo(f"  GitHub API: {cfg.github.base_url}")
        typer.echo(f"  Poll interval: {cfg.github.poll_interval}s")
        typer.echo(f"  Status reporter: {cfg.status.reporter.value} ({cfg.status.context})")
        typer.echo(f"  Build trigger: {cfg.build.type.value}")
        active = len(cfg.get_active_repositories())
        typer.echo(f"  Repositories: {len(cfg.repositories)} ({active} active)")
        for repo in cfg.repositories:
            flags = []
            if repo.disabled:
                flags.append("disabled")
            if not repo.secrets:
                flags.append("no webhook secret")
            suffix = f" [{', '.join(flags)}]" if flags else ""
            typer.echo(f"    - {repo.full_name}{suffix}")

    raise typer.Exit(ExitCode.SUCCESS)


@app.command("run")
def run_daemon(
    config: ConfigOption = None,
    once: Annotated[
        bool,
        typer.Option(
            "--once",
            help="Run one cycle and exit (same as run-once).",
        ),
    ] = False,
    verbose: VerboseOption = False,
    poll_interval: Annotated[
        int | None,
        typer.Option(
            "--poll-interval",
            help="Override poll interval in seconds (10-3600).",
            min=10,
            max=3600,
        ),
    ] = None,
) -> None:
    """Run in daemon mode (continuous polling).

    Reconciles the open pull requests of every configured repository,
    reports pending statuses and starts builds. Runs until interrupted.
    """
    configure_logging(verbose=verbose)
    log = get_logger("prbuilder.cli")
    cfg = _load_or_exit(config)
    _run_impl(cfg, once=once, poll_interval=poll_interval or cfg.github.poll_interval, log=log)


@app.command("run-once")
def run_once(
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Run a single reconciliation cycle and exit."""
    configure_logging(verbose=verbose)
    log = get_logger("prbuilder.cli")
    cfg = _load_or_exit(config)
    _run_impl(cfg, once=True, poll_interval=cfg.github.poll_interval, log=log)


@app.command()
def webhook(
    body_file: Annotated[
        Path,
        typer.Argument(help="File holding the raw delivery body.", exists=True, dir_okay=False),
    ],
    event: Annotated[
        str,
        typer.Option("--event", "-e", help="X-GitHub-Event header value."),
    ],
    signature: Annotated[
        str | None,
        typer.Option("--signature", "-s", help="Signature header value."),
    ] = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Replay a webhook delivery through the ingress.

    Authenticates the body against the repository's secrets and
    reconciles the pull request it refers to.
    """
    configure_logging(verbose=verbose)
    cfg = _load_or_exit(config)
    raw_body = body_file.read_bytes()

    try:
        result = asyncio.run(_replay_webhook(cfg, raw_body, signature, event))
    except AuthenticationError as e:
        _error(f"Authentication error: {e}")
        raise typer.Exit(ExitCode.AUTH_ERROR) from e
    except SignatureMismatchError as e:
        _error(str(e))
        raise typer.Exit(ExitCode.AUTH_ERROR) from e
    except ConfigurationError as e:
        _error(f"Configuration error: {e}")
        raise typer.Exit(ExitCode.CONFIG_ERROR) from e
    except InvalidPayloadError as e:
        _error(f"Invalid payload: {e}")
        raise typer.Exit(ExitCode.FATAL_ERROR) from e

    if not result.dispatched:
        typer.echo(f"Ignored: {result.reason}")
        raise typer.Exit(ExitCode.SUCCESS)

    typer.echo(f"Reconciled {result.repository}#{result.number}")
    report = result.report
    if report is not None:
        _echo_report(report)
        if not report.ok:
            raise typer.Exit(ExitCode.PARTIAL_FAILURE)
    raise typer.Exit(ExitCode.SUCCESS)


@app.command()
def sign(
    body_file: Annotated[
        Path,
        typer.Argument(help="File holding the payload to sign.", exists=True, dir_okay=False),
    ],
    secret: Annotated[
        str,
        typer.Option(
            "--secret",
            envvar="PRBUILDER_WEBHOOK_SECRET",
            help="Shared webhook secret.",
        ),
    ],
    algorithm: Annotated[
        SignatureAlgorithm,
        typer.Option("--algorithm", "-a", help="HMAC hash algorithm."),
    ] = SignatureAlgorithm.SHA1,
) -> None:
    """Print the signature header for a payload file."""
    verifier = SignatureVerifier(algorithm)
    try:
        header = verifier.sign(body_file.read_bytes(), secret)
    except ValueError as e:
        _error(str(e))
        raise typer.Exit(ExitCode.CONFIG_ERROR) from e
    typer.echo(f"{verifier.header_name}: {header}")


@dataclass
class _RunTotals:
    cycles: int = 0
    triggered: int = 0
    evicted: int = 0
    failures: int = 0
    config_errors: int = 0


def _create_client(cfg: Config) -> GitHubClient:
    return GitHubClient(
        base_url=cfg.github.base_url,
        timeout=cfg.github.request_timeout,
        max_retries=cfg.github.max_retries,
    )


def _build_watchers(
    cfg: Config,
    client: GitHubClient,
    trigger: BuildTrigger,
) -> list[RepositoryWatcher]:
    return [
        RepositoryWatcher(
            client,
            repo,
            reporters=build_reporters(cfg, client, repo),
            build_triggers=[trigger],
        )
        for repo in cfg.repositories
    ]


def _echo_report(report: CycleReport) -> None:
    typer.echo(f"  {report.repository}: {report.outcome.value}")
    counts = ", ".join(f"{name}={value}" for name, value in report.counts.items() if value)
    if counts:
        typer.echo(f"    Pull requests: {counts}")
    if report.triggered:
        typer.echo(f"    Triggered: {', '.join(f'#{n}' for n in report.triggered)}")
    if report.evicted:
        typer.echo(f"    Evicted: {', '.join(f'#{n}' for n in report.evicted)}")
    for failure in report.failures:
        typer.echo(
            typer.style(
                f"    #{failure.number} failed ({failure.stage}): {failure.error}",
                fg=typer.colors.YELLOW,
            )
        )


async def _validate_auth(cfg: Config, log: structlog.stdlib.BoundLogger) -> None:
    """Validate GitHub authentication.

    Raises:
        AuthenticationError: If authentication fails
    """
    result = await validate_token(base_url=cfg.github.base_url)
    log.info("GitHub authentication successful", user=result["user"])


async def _check_all(
    watchers: Sequence[RepositoryWatcher],
    totals: _RunTotals,
    log: structlog.stdlib.BoundLogger,
) -> list[CycleReport]:
    """Run one cycle over every watcher concurrently."""
    results = await asyncio.gather(
        *(watcher.check() for watcher in watchers),
        return_exceptions=True,
    )
    totals.cycles += 1
    reports: list[CycleReport] = []
    for watcher, result in zip(watchers, results, strict=True):
        if isinstance(result, ConfigurationError):
            totals.config_errors += 1
            log.error("Repository misconfigured", repository=watcher.full_name, error=str(result))
            continue
        if isinstance(result, BaseException):
            totals.failures += 1
            log.error(
                "Cycle failed",
                repository=watcher.full_name,
                error=str(result),
                error_type=type(result).__name__,
            )
            continue
        reports.append(result)
        totals.triggered += len(result.triggered)
        totals.evicted += len(result.evicted)
        if result.outcome == CycleOutcome.FAILED:
            totals.failures += 1
        totals.failures += len(result.failures)
    return reports


# Global flag for graceful shutdown
_shutdown_requested = False


def _signal_handler(signum: int, _frame: object) -> None:
    """Handle shutdown signals."""
    global _shutdown_requested  # noqa: PLW0603
    _shutdown_requested = True
    signal_name = signal.Signals(signum).name
    typer.echo(f"\n⚡ Received {signal_name}, shutting down gracefully...")


async def _run_cycles(
    cfg: Config,
    *,
    once: bool,
    poll_interval: int,
    log: structlog.stdlib.BoundLogger,
) -> _RunTotals:
    """Poll until shutdown (or once), keeping watchers and caches alive."""
    totals = _RunTotals()
    trigger = build_trigger_from_config(cfg.build)

    async with _create_client(cfg) as client:
        watchers = _build_watchers(cfg, client, trigger)
        try:
            while True:
                log.info("Starting cycle", cycle=totals.cycles + 1, repositories=len(watchers))
                reports = await _check_all(watchers, totals, log)
                if once:
                    for report in reports:
                        _echo_report(report)
                if once or _shutdown_requested:
                    break

                # Sleep with jitter (0-10% of poll_interval)
                sleep_time = poll_interval + random.uniform(0, poll_interval * 0.1)
                log.debug("Sleeping until next cycle", sleep_seconds=sleep_time)

                # Sleep in small increments to check for shutdown signal
                sleep_end = time.monotonic() + sleep_time
                while time.monotonic() < sleep_end and not _shutdown_requested:
                    await asyncio.sleep(min(1.0, sleep_end - time.monotonic()))
                if _shutdown_requested:
                    break
        finally:
            await trigger.drain()

    return totals


def _run_impl(
    cfg: Config,
    *,
    once: bool,
    poll_interval: int,
    log: structlog.stdlib.BoundLogger,
) -> None:
    """Validate credentials, then run cycles and translate totals to an exit code."""
    global _shutdown_requested  # noqa: PLW0603
    _shutdown_requested = False

    if not cfg.repositories:
        log.warning("No repositories configured")
        typer.echo(typer.style("No repositories configured", fg=typer.colors.YELLOW))
        raise typer.Exit(ExitCode.SUCCESS)

    try:
        asyncio.run(_validate_auth(cfg, log))
    except AuthenticationError as e:
        _error(f"Authentication error: {e}")
        raise typer.Exit(ExitCode.AUTH_ERROR) from e

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)
    if not once:
        signal.signal(signal.SIGINT, _signal_handler)
        signal.signal(signal.SIGTERM, _signal_handler)
        typer.echo(
            typer.style(
                f"🚀 Starting continuous polling (interval: {poll_interval}s)",
                fg=typer.colors.GREEN,
                bold=True,
            )
        )
        typer.echo("Press Ctrl+C to stop.")

    try:
        totals = asyncio.run(_run_cycles(cfg, once=once, poll_interval=poll_interval, log=log))
    except AuthenticationError as e:
        _error(f"Authentication error: {e}")
        raise typer.Exit(ExitCode.AUTH_ERROR) from e
    except Exception as e:
        log.exception("Reconciliation failed")
        _error(f"Fatal error: {e}")
        raise typer.Exit(ExitCode.FATAL_ERROR) from e
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)

    typer.echo()
    typer.echo(typer.style("Cycle complete" if once else "Daemon stopped", bold=True))
    typer.echo(f"  Cycles: {totals.cycles}")
    typer.echo(f"  Builds triggered: {totals.triggered}")
    typer.echo(f"  Pull requests evicted: {totals.evicted}")

    if totals.config_errors:
        typer.echo(
            typer.style(
                f"  Misconfigured repositories: {totals.config_errors}",
                fg=typer.colors.RED,
            )
        )
        raise typer.Exit(ExitCode.CONFIG_ERROR)

    if totals.failures:
        typer.echo(typer.style(f"  Failures: {totals.failures}", fg=typer.colors.YELLOW))
        raise typer.Exit(ExitCode.PARTIAL_FAILURE)

    raise typer.Exit(ExitCode.SUCCESS)


async def _replay_webhook(
    cfg: Config,
    raw_body: bytes,
    signature: str | None,
    event: str,
) -> WebhookResult:
    trigger = build_trigger_from_config(cfg.build)
    async with _create_client(cfg) as client:
        ingress = WebhookIngress(
            _build_watchers(cfg, client, trigger),
            SignatureVerifier(cfg.webhook.signature_algorithm),
            require_signature=cfg.webhook.require_signature,
        )
        try:
            return await ingress.receive(raw_body, signature, event)
        finally:
            await trigger.drain()
