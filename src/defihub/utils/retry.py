"""Retry policy for optimistic-concurrency conflicts."""

from __future__ import annotations

from tenacity import retry, retry_if_exception_type, stop_after_attempt

from defihub.errors import ConcurrencyConflict

# One retry with refreshed state; the wrapped operation must re-read everything.
retry_on_conflict = retry(
    retry=retry_if_exception_type(ConcurrencyConflict),
    stop=stop_after_attempt(2),
    reraise=True,
)
