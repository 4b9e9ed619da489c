"""HTTP helpers shared by the upstream fetchers."""

import logging
import time
from typing import Any, Callable, Optional

import requests

from wxdash.config import (
    MAX_FETCH_ATTEMPTS,
    REQUEST_TIMEOUT,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
)
from wxdash.errors import FetchFailed

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_delay: float = RETRY_BASE_DELAY,
                  max_delay: float = RETRY_MAX_DELAY) -> float:
    """Delay before retrying after a failed attempt (0-based), capped."""
    return min(base_delay * (2 ** attempt), max_delay)


def fetch_json_with_retry(
    session: requests.Session,
    url: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    source: str = "http",
    max_attempts: int = MAX_FETCH_ATTEMPTS,
    base_delay: float = RETRY_BASE_DELAY,
    max_delay: float = RETRY_MAX_DELAY,
    timeout: int = REQUEST_TIMEOUT,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """GET a JSON document, retrying 503s and transport errors.

    Retries use exponential backoff (``base_delay * 2**attempt``, capped at
    ``max_delay``). Any other HTTP error status fails immediately.

    Args:
        session: requests session to issue the call on
        url: URL to fetch
        params: Query parameters
        headers: Extra request headers
        source: Upstream name recorded on the raised error
        max_attempts: Total attempts, including the first
        sleep: Sleep function (injected by tests)

    Returns:
        Decoded JSON body

    Raises:
        FetchFailed: On a non-retryable status, an undecodable body, or
            once all attempts are exhausted
    """
    last_error = None
    for attempt in range(max_attempts):
        try:
            response = session.get(url, params=params, headers=headers, timeout=timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            last_error = f"{type(e).__name__}: {e}"
        else:
            if response.status_code == 503:
                last_error = "HTTP 503 Service Unavailable"
            elif response.status_code >= 400:
                raise FetchFailed(f"HTTP {response.status_code} from {url}", source=source)
            else:
                try:
                    return response.json()
                except ValueError as e:
                    raise FetchFailed(f"Invalid JSON from {url}: {e}", source=source) from e

        if attempt < max_attempts - 1:
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"Attempt {attempt + 1}/{max_attempts} for {url} failed ({last_error}). "
                f"Retrying in {delay:.1f}s..."
            )
            sleep(delay)

    logger.error(f"All {max_attempts} attempts for {url} failed: {last_error}")
    raise FetchFailed(
        f"{url} unavailable after {max_attempts} attempts: {last_error}", source=source
    )


def fetch_json_optional(
    session: requests.Session,
    url: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: int = REQUEST_TIMEOUT,
) -> Optional[Any]:
    """GET a JSON document once, returning None on any failure.

    For supplementary data (alerts, observations, tide stations) whose
    absence should not fail the whole fetch.
    """
    try:
        response = session.get(url, params=params, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        logger.warning(f"Optional fetch of {url} failed: {e}")
        return None

    if response.status_code >= 400:
        logger.warning(f"Optional fetch of {url} returned HTTP {response.status_code}")
        return None

    try:
        return response.json()
    except ValueError as e:
        logger.warning(f"Optional fetch of {url} returned invalid JSON: {e}")
        return None
