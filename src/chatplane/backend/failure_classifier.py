"""Deterministic diagnosis of backend call failures.

Every failed call surfaces to the user as ``network_or_process_failure``;
the classifier adds a stable ``reason_code`` so logs and messages say *why*
(quota, auth, model, rate limit, transient or anything else).
"""

from __future__ import annotations

from dataclasses import dataclass

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
    "exceeded",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "invalid x-api-key",
    "authentication",
    "not logged in",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "model_not_found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "rate_limit",
    "overloaded",
    "please retry",
    "try again later",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "network error",
    "could not resolve host",
    "dns",
)
_AUTH_STATUS_CODES = (401, 403)
_RATE_LIMIT_STATUS_CODES = (429, 529)
TRANSIENT_EXIT_CODES = (137, 143)


@dataclass(slots=True, frozen=True)
class BackendFailureClassification:
    """Normalized diagnosis of one failed call."""

    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def hint(self) -> str:
        return self.matched_rule.replace("_", " ")


def classify_backend_failure(
    *,
    backend: str,
    output: str,
    status_code: int | None = None,
    exit_code: int | None = None,
) -> BackendFailureClassification:
    """Classify a failed HTTP response or process run.

    Text patterns win over status and exit codes; a quota message sent with
    HTTP 429 is still a quota problem.
    """

    haystack = output.lower()

    for rule, patterns in (
        ("billing_or_quota", _BILLING_OR_QUOTA_PATTERNS),
        ("access_or_auth", _ACCESS_OR_AUTH_PATTERNS),
        ("model_not_available", _MODEL_NOT_AVAILABLE_PATTERNS),
        ("rate_limit", _RATE_LIMIT_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return _classified(backend, rule, pattern)

    if status_code in _AUTH_STATUS_CODES:
        return _classified(backend, "access_or_auth", None)
    if status_code in _RATE_LIMIT_STATUS_CODES:
        return _classified(backend, "rate_limit", None)

    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if (
        pattern is not None
        or (status_code is not None and status_code >= 500)  # noqa: PLR2004
        or exit_code in TRANSIENT_EXIT_CODES
    ):
        return _classified(backend, "transient", pattern)

    return _classified(backend, "non_retryable", None)


def _classified(backend: str, rule: str, pattern: str | None) -> BackendFailureClassification:
    return BackendFailureClassification(
        reason_code=f"{_slug(backend)}_{rule}",
        matched_rule=rule,
        matched_pattern=pattern,
    )


def _slug(backend: str) -> str:
    return backend.strip().lower().replace("-", "_")


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
