"""
ReviewDesk - Outbound HTTP
Timeout-bounded calls that return a typed result instead of raising
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)


class Outcome:
    SUCCESS = 'success'
    TRANSIENT = 'transient'  # worth retrying later
    FATAL = 'fatal'          # retrying won't help


@dataclass
class CallResult:
    """Result of one outbound call"""
    outcome: str
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @property
    def transient(self) -> bool:
        return self.outcome == Outcome.TRANSIENT

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

    @classmethod
    def success(cls, data: Any = None, status_code: int = 200) -> 'CallResult':
        return cls(Outcome.SUCCESS, status_code=status_code, data=data)

    @classmethod
    def transient_failure(cls, error: str, status_code: int = None, timed_out: bool = False) -> 'CallResult':
        return cls(Outcome.TRANSIENT, status_code=status_code, error=error, timed_out=timed_out)

    @classmethod
    def fatal_failure(cls, error: str, status_code: int = None) -> 'CallResult':
        return cls(Outcome.FATAL, status_code=status_code, error=error)


def classify_status(status_code: int) -> str:
    """Map an HTTP status to an outcome: 2xx/3xx ok, 408/429/5xx transient, other 4xx fatal"""
    if status_code < 400:
        return Outcome.SUCCESS
    if status_code in (408, 429) or status_code >= 500:
        return Outcome.TRANSIENT
    return Outcome.FATAL


def call_json(
    method: str,
    url: str,
    timeout: float,
    session: requests.Session = None,
    expect_json: bool = True,
    **kwargs
) -> CallResult:
    """
    Make one HTTP call and classify what happened.

    Args:
        method: HTTP method
        url: Target URL
        timeout: Seconds before the call is abandoned
        session: requests session to use (injected in tests)
        expect_json: Parse the body as JSON on success

    Returns:
        CallResult with the parsed body in `data` on success
    """
    http = session or requests

    try:
        response = http.request(method, url, timeout=timeout, **kwargs)
    except requests.exceptions.Timeout:
        logger.warning(f"{method} {url.split('?')[0]} timed out after {timeout}s")
        return CallResult.transient_failure(f"Request timeout after {timeout}s", timed_out=True)
    except requests.exceptions.ConnectionError as e:
        return CallResult.transient_failure(f"Connection error: {e}")
    except requests.exceptions.RequestException as e:
        return CallResult.fatal_failure(f"Request failed: {e}")

    outcome = classify_status(response.status_code)
    if outcome != Outcome.SUCCESS:
        error_text = (response.text or '')[:300]
        return CallResult(outcome, status_code=response.status_code, error=f"HTTP {response.status_code}: {error_text}")

    if not expect_json:
        return CallResult.success(status_code=response.status_code)

    try:
        data = response.json()
    except ValueError:
        return CallResult.fatal_failure('Malformed JSON response', status_code=response.status_code)

    return CallResult.success(data, status_code=response.status_code)
