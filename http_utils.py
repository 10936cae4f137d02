from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping
import random

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
_DNS_ERROR_TOKENS = (
    "name or service not known",
    "nodename nor servname provided",
    "temporary failure in name resolution",
    "failed to resolve",
    "getaddrinfo failed",
)


@dataclass
class RetryPolicy:
    retries: int = 0
    backoff: float = 0.0
    request_delay: float = 0.0
    retry_statuses: set[int] = field(default_factory=lambda: set(DEFAULT_RETRY_STATUSES))

    def __post_init__(self) -> None:
        self.retries = max(0, int(self.retries))
        self.backoff = max(0.0, float(self.backoff))
        self.request_delay = max(0.0, float(self.request_delay))
        if not self.retry_statuses:
            self.retry_statuses = set(DEFAULT_RETRY_STATUSES)

    @property
    def attempts(self) -> int:
        return self.retries + 1

    def should_retry(self, status_code: int, attempt: int) -> bool:
        return status_code in self.retry_statuses and attempt < self.attempts

    def delay_for_attempt(self, attempt: int) -> float:
        if self.backoff <= 0:
            return 0.0
        delay = self.backoff * (2 ** (attempt - 1))
        delay += random.uniform(0.0, self.backoff)
        return delay


def retry_after_seconds(headers: Mapping[str, str] | None) -> float:
    if not headers:
        return 0.0
    value = headers.get("retry-after") or headers.get("Retry-After")
    if not value:
        return 0.0
    try:
        return max(0.0, float(value))
    except ValueError:
        return 0.0


def is_dns_error(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(token in message for token in _DNS_ERROR_TOKENS)
