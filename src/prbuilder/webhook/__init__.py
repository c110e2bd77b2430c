"""Webhook authentication and dispatch."""

from prbuilder.webhook.ingress import (
    InvalidPayloadError,
    SignatureMismatchError,
    WebhookError,
    WebhookIngress,
    WebhookResult,
    extract_pull_request_number,
    parse_payload,
    repository_full_name,
)
from prbuilder.webhook.signature import SignatureVerifier

__all__ = [
    "InvalidPayloadError",
    "SignatureMismatchError",
    "SignatureVerifier",
    "WebhookError",
    "WebhookIngress",
    "WebhookResult",
    "extract_pull_request_number",
    "parse_payload",
    "repository_full_name",
]
