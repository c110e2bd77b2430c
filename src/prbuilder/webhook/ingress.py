"""Webhook ingress.

Transport-agnostic handling of GitHub webhook deliveries: whatever
receives the HTTP request passes the raw body, the signature header and
the X-GitHub-Event header to WebhookIngress.receive(). The ingress:
- parses JSON or form-encoded ("payload=...") bodies
- finds the watcher of the delivery's repository
- authenticates the delivery against that repository's secrets
- reconciles the referenced pull request with check_one()
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

from prbuilder.logging import log_webhook_received
from prbuilder.webhook.signature import SignatureVerifier

if TYPE_CHECKING:
    from collections.abc import Iterable

    from prbuilder.watcher import CycleReport, RepositoryWatcher

logger = logging.getLogger(__name__)

# Comment actions that can carry a new build request
_COMMENT_ACTIONS = frozenset({"created", "edited"})


class WebhookError(Exception):
    """Base exception for rejected webhook deliveries."""


class InvalidPayloadError(WebhookError):
    """Raised when a delivery body cannot be parsed or has malformed fields."""


class SignatureMismatchError(WebhookError):
    """Raised when a delivery is not signed with a known secret."""

    def __init__(self, message: str, *, repository: str) -> None:
        super().__init__(message)
        self.repository = repository


@dataclass(frozen=True)
class WebhookResult:
    """What the ingress did with an authenticated delivery."""

    event: str
    repository: str | None
    number: int | None
    dispatched: bool
    reason: str
    report: CycleReport | None = None


def parse_payload(raw_body: bytes) -> dict[str, Any]:
    """Parse a delivery body sent as application/json or form-encoded.

    Raises:
        InvalidPayloadError: If the body is neither.
    """
    try:
        text = raw_body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidPayloadError("Payload is not UTF-8") from e

    stripped = text.lstrip()
    if stripped.startswith("payload="):
        values = parse_qs(stripped).get("payload")
        if not values:
            raise InvalidPayloadError("Empty form payload")
        text = values[0]

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidPayloadError(f"Payload is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise InvalidPayloadError("Payload must be a JSON object")
    return payload


def extract_pull_request_number(event: str, payload: dict[str, Any]) -> int | None:
    """Get the pull request a delivery refers to, None if it refers to none."""
    if event == "pull_request":
        pull_request = _object_field(payload, "pull_request")
        return _pull_request_number(payload.get("number") or pull_request.get("number"))

    if event == "issue_comment":
        if payload.get("action") not in _COMMENT_ACTIONS:
            return None
        issue = _object_field(payload, "issue")
        # Plain issues have no pull_request key
        if not issue.get("pull_request"):
            return None
        return _pull_request_number(issue.get("number"))

    return None


def _object_field(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidPayloadError(f"Payload field '{key}' must be an object")
    return value


def _pull_request_number(value: Any) -> int | None:
    if value is None:
        return None
    # bool is an int subclass but never a pull request number
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvalidPayloadError(f"Invalid pull request number: {value!r}")
    try:
        number = int(value)
    except ValueError as e:
        raise InvalidPayloadError(f"Invalid pull request number: {value!r}") from e
    if number <= 0:
        raise InvalidPayloadError(f"Invalid pull request number: {value!r}")
    return number


def repository_full_name(payload: dict[str, Any]) -> str | None:
    """Get the owner/name a delivery refers to, None if it names none.

    Raises:
        InvalidPayloadError: If the repository fields have the wrong shape.
    """
    full_name = _object_field(payload, "repository").get("full_name")
    if full_name is None:
        return None
    if not isinstance(full_name, str):
        raise InvalidPayloadError("Payload field 'repository.full_name' must be a string")
    return full_name or None


class WebhookIngress:
    """Authenticates deliveries and dispatches them to repository watchers."""

    def __init__(
        self,
        watchers: Iterable[RepositoryWatcher],
        verifier: SignatureVerifier | None = None,
        *,
        require_signature: bool = True,
    ) -> None:
        """Initialize webhook ingress.

        Args:
            watchers: One watcher per configured repository.
            verifier: Signature verifier (sha1 if None).
            require_signature: Reject deliveries for repositories without secrets.
        """
        self._watchers = {w.full_name.lower(): w for w in watchers}
        self._verifier = verifier or SignatureVerifier()
        self._require_signature = require_signature

    @property
    def verifier(self) -> SignatureVerifier:
        """Get the signature verifier."""
        return self._verifier

    async def receive(
        self,
        raw_body: bytes,
        signature_header: str | None,
        event_name: str,
    ) -> WebhookResult:
        """Handle one delivery.

        Args:
            raw_body: Request body exactly as received.
            signature_header: Value of the verifier's signature header.
            event_name: Value of X-GitHub-Event.

        Returns:
            WebhookResult describing the dispatch.

        Raises:
            InvalidPayloadError: If the body cannot be parsed or names its
                repository or pull request with the wrong types.
            SignatureMismatchError: If authentication fails. Nothing is
                dispatched in that case.
            ConfigurationError: Propagated from check_one().
        """
        try:
            payload = parse_payload(raw_body)
            repository = repository_full_name(payload)
        except InvalidPayloadError as e:
            log_webhook_received(event_name, None, None, accepted=False, reason=str(e))
            raise

        watcher = self._watchers.get(repository.lower()) if repository else None
        if watcher is None:
            reason = "repository not watched"
            log_webhook_received(event_name, repository, None, accepted=False, reason=reason)
            return WebhookResult(event_name, repository, None, dispatched=False, reason=reason)

        self._authenticate(watcher, raw_body, signature_header, event_name)

        try:
            number = extract_pull_request_number(event_name, payload)
        except InvalidPayloadError as e:
            log_webhook_received(event_name, repository, None, accepted=False, reason=str(e))
            raise
        if number is None:
            reason = f"nothing to reconcile for '{event_name}'"
            log_webhook_received(event_name, repository, None, accepted=True, reason=reason)
            return WebhookResult(event_name, repository, None, dispatched=False, reason=reason)

        log_webhook_received(event_name, repository, number, accepted=True, reason="dispatched")
        report = await watcher.check_one(number)
        return WebhookResult(
            event_name,
            repository,
            number,
            dispatched=True,
            reason="dispatched",
            report=report,
        )

    def _authenticate(
        self,
        watcher: RepositoryWatcher,
        raw_body: bytes,
        signature_header: str | None,
        event_name: str,
    ) -> None:
        secrets = watcher.config.secrets
        if not secrets:
            if not self._require_signature:
                return
            reason = "no secret configured"
        elif self._verifier.verify_any(raw_body, signature_header, secrets):
            return
        else:
            reason = "signature mismatch"

        log_webhook_received(event_name, watcher.full_name, None, accepted=False, reason=reason)
        raise SignatureMismatchError(
            f"Rejected delivery for {watcher.full_name}: {reason}",
            repository=watcher.full_name,
        )
