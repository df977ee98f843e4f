"""Webhook signature verification for GitHub, GitLab and Bitbucket deliveries.

Every check here is the only thing standing between an anonymous POST and a
redeploy, so verification never raises on malformed input and every secret
comparison goes through :func:`hmac.compare_digest`.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import secrets
from collections.abc import Mapping

SIGNATURE_PREFIX = "sha256="


class WebhookProvider(str, enum.Enum):
    github = "github"
    gitlab = "gitlab"
    bitbucket = "bitbucket"


def generate_webhook_secret() -> str:
    """Return a fresh 32-byte secret, hex encoded."""
    return secrets.token_hex(32)


def sign_payload(secret: str, payload: bytes) -> str:
    """Return the ``sha256=<hex>`` header value for *payload*."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def _constant_time_equals(received: str, expected: str) -> bool:
    received_bytes = received.encode("utf-8")
    expected_bytes = expected.encode("utf-8")
    # Unequal lengths leak nothing beyond the (public) digest length.
    if len(received_bytes) != len(expected_bytes):
        return False
    return hmac.compare_digest(received_bytes, expected_bytes)


def verify_hmac_signature(payload: bytes, signature: str | None, secret: str | None) -> bool:
    """Validate a ``sha256=`` HMAC header (GitHub ``X-Hub-Signature-256``, Bitbucket ``X-Hub-Signature``)."""
    if not secret or not isinstance(signature, str) or not signature.startswith(SIGNATURE_PREFIX):
        return False
    if not isinstance(payload, (bytes, bytearray)):
        return False
    try:
        expected = sign_payload(secret, bytes(payload))
    except (TypeError, UnicodeEncodeError):
        return False
    return _constant_time_equals(signature, expected)


def verify_token(token: str | None, secret: str | None) -> bool:
    """Validate GitLab's ``X-Gitlab-Token``, which carries the secret verbatim."""
    if not token or not secret or not isinstance(token, str):
        return False
    try:
        return _constant_time_equals(token, secret)
    except UnicodeEncodeError:
        return False


def verify_signature(
    provider: WebhookProvider,
    payload: bytes,
    headers: Mapping[str, str],
    secret: str | None,
) -> bool:
    """Authenticate a delivery for *provider*. Header keys must be lowercase."""
    if provider == WebhookProvider.github:
        return verify_hmac_signature(payload, headers.get("x-hub-signature-256"), secret)
    if provider == WebhookProvider.gitlab:
        return verify_token(headers.get("x-gitlab-token"), secret)
    if provider == WebhookProvider.bitbucket:
        return verify_hmac_signature(payload, headers.get("x-hub-signature"), secret)
    return False
