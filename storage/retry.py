"""
Retry/backoff and rate-limit-aware HTTP GET helper.
Centralizes request retry logic for the hosting API client (via storage.cache.rate_limited_get).
"""

import os
import time
import random
import logging
import email.utils
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import requests

log = logging.getLogger(__name__)

# retry/backoff defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("TIMETRACKER_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("TIMETRACKER_BACKOFF_BASE", "0.5"))
_env_jitter = os.getenv("TIMETRACKER_BACKOFF_JITTER")
DEFAULT_BACKOFF_JITTER = float(_env_jitter) if _env_jitter else None
DEFAULT_MAX_BACKOFF = float(os.getenv("TIMETRACKER_MAX_BACKOFF", "60.0"))

# hard cap on a single sleep, whatever the server asks for
MAX_SINGLE_WAIT = 300.0

# runtime-overrides (set from CLI at startup)
_runtime: Dict[str, Optional[float]] = {'max_retries': None, 'backoff_base': None, 'backoff_jitter': None, 'max_backoff': None}


def configure_retry(
    max_retries: Optional[int] = None, backoff_base: Optional[float] = None, backoff_jitter: Optional[float] = None, max_backoff: Optional[float] = None
):
    """Configure retry/backoff defaults at runtime (e.g. from CLI)."""
    if max_retries is not None:
        _runtime['max_retries'] = int(max_retries)
    if backoff_base is not None:
        _runtime['backoff_base'] = float(backoff_base)
    if backoff_jitter is not None:
        _runtime['backoff_jitter'] = float(backoff_jitter)
    if max_backoff is not None:
        _runtime['max_backoff'] = float(max_backoff)


def reset_retry():
    """Drop runtime overrides and fall back to environment defaults."""
    for key in _runtime:
        _runtime[key] = None


class RetryPolicy:
    """Resolved retry parameters for one request."""

    def __init__(self, max_retries: int, base: float, jitter: float, max_backoff: float):
        self.max_retries = max(1, int(max_retries))
        self.base = base
        self.jitter = jitter
        self.max_backoff = max_backoff

    @classmethod
    def resolve(
        cls,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_jitter: Optional[float] = None,
        max_backoff: Optional[float] = None,
    ) -> 'RetryPolicy':
        """Explicit arguments win, then runtime overrides, then environment defaults."""

        def pick(explicit, key, default):
            if explicit is not None:
                return explicit
            if _runtime[key] is not None:
                return _runtime[key]
            return default

        base = float(pick(backoff_base, 'backoff_base', DEFAULT_BACKOFF_BASE))
        jitter = pick(backoff_jitter, 'backoff_jitter', DEFAULT_BACKOFF_JITTER)
        return cls(
            max_retries=int(pick(max_retries, 'max_retries', DEFAULT_MAX_RETRIES)),
            base=base,
            jitter=float(jitter) if jitter is not None else base,
            max_backoff=float(pick(max_backoff, 'max_backoff', DEFAULT_MAX_BACKOFF)),
        )

    def next_backoff(self, backoff: float) -> float:
        return min(backoff * 2, self.max_backoff)

    def wait_seconds(self, backoff: float, retry_after: Optional[float] = None, reset_at: Optional[float] = None) -> float:
        """Seconds to sleep before the next attempt: Retry-After, then rate-limit reset, then backoff."""
        if retry_after is not None:
            wait = retry_after
        elif reset_at:
            wait = max(0.0, reset_at - time.time())
        else:
            wait = backoff
        return min(wait + random.uniform(0, self.jitter), MAX_SINGLE_WAIT)


def _parse_retry_after(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        pass
    try:
        dt = email.utils.parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _header_number(headers: Dict[str, Any], key: str, cast):
    val = headers.get(key)
    if val is None:
        return None
    try:
        return cast(val)
    except (TypeError, ValueError):
        return None


def _parse_rate_headers(resp):
    headers = getattr(resp, 'headers', None) or {}
    retry_after = _parse_retry_after(headers.get('Retry-After'))
    remaining = _header_number(headers, 'X-RateLimit-Remaining', int)
    reset_at = _header_number(headers, 'X-RateLimit-Reset', float)
    return retry_after, remaining, reset_at


def _parse_body(resp):
    """Return decoded JSON, or the raw text when the body is not JSON (e.g. empty)."""
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'text', None)


def _should_retry(status: int, retry_after: Optional[float], remaining: Optional[int]) -> bool:
    if status in (429, 502, 503, 504):
        return True
    # GitHub signals an exhausted primary/secondary limit with 403 + headers
    if status == 403 and (retry_after is not None or (remaining is not None and remaining <= 0)):
        return True
    return False


def perform_request_with_retries(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    session=None,
    timeout: Optional[float] = None,
    policy: Optional[RetryPolicy] = None,
) -> Dict[str, Any]:
    """
    Perform a GET, retrying transient failures.

    Returns a dict with 'response' (decoded body, or error text), 'status' (0 for transport errors)
    and 'timestamp'. Never raises for HTTP or transport errors; callers decide what a status means.
    """
    policy = policy or RetryPolicy.resolve()
    getter = session.get if session is not None else requests.get
    backoff = policy.base
    last: Dict[str, Any] = {'response': None, 'status': 0, 'timestamp': time.time()}

    for attempt in range(policy.max_retries):
        try:
            resp = getter(url, headers=headers or {}, params=params or {}, timeout=timeout)
        except requests.RequestException as ex:
            log.debug("GET %s failed on attempt %d: %s", url, attempt + 1, ex)
            last = {'response': str(ex), 'status': 0, 'timestamp': time.time()}
            if attempt + 1 < policy.max_retries:
                time.sleep(policy.wait_seconds(backoff))
                backoff = policy.next_backoff(backoff)
            continue

        status = getattr(resp, 'status_code', 0)
        if 200 <= status < 300:
            return {'response': _parse_body(resp), 'status': status, 'timestamp': time.time()}

        retry_after, remaining, reset_at = _parse_rate_headers(resp)
        last = {'response': _parse_body(resp), 'status': status, 'timestamp': time.time()}
        if not _should_retry(status, retry_after, remaining):
            return last
        if attempt + 1 < policy.max_retries:
            wait = policy.wait_seconds(backoff, retry_after, reset_at)
            log.info("GET %s returned %s; retrying in %.1fs", url, status, wait)
            time.sleep(wait)
            backoff = policy.next_backoff(backoff)

    return last


__all__ = ["configure_retry", "reset_retry", "RetryPolicy", "perform_request_with_retries"]
