"""HTTP fetching with timeouts, rate-limit handling and exponential backoff."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

RATE_LIMITED = 429


class FetchError(RuntimeError):
    """A request that still failed after its retry budget was spent."""

    def __init__(self, url: str, message: str, status: Optional[int] = None, attempts: int = 0):
        super().__init__(f"{message} ({url}, {attempts} attempt(s))")
        self.url = url
        self.status = status
        self.attempts = attempts


class ResilientFetchClient:
    """
    Wrapper around ``httpx.AsyncClient`` that retries failed requests.

    Retry policy:
      - HTTP 429 waits ``base_delay_s * (n + 1)`` before the n-th rate-limit
        retry. Rate-limit retries have their own budget and never consume
        the failure budget.
      - Any other non-2xx status, network error or timeout waits
        ``base_delay_s * 2**n`` (1s, 2s, 4s ...) before the n-th retry.
      - Once ``max_retries`` retries are spent the last error is raised as
        FetchError.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout_s: float = 10.0,
        max_retries: int = 3,
        base_delay_s: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            client: Shared AsyncClient (one is created when omitted)
            headers: Headers sent with every request
            timeout_s: Default hard timeout per attempt
            max_retries: Default retries after the first attempt
            base_delay_s: Backoff unit
            sleep: Awaitable used for backoff waits
        """
        self._owns_client = client is None
        self.http_client = client or httpx.AsyncClient()
        self.headers = dict(headers or {})
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay_s = base_delay_s
        self._sleep = sleep

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def fetch_json(
        self,
        url: str,
        timeout_s: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> Any:
        """
        GET a URL and decode its JSON body.

        Raises:
            FetchError: retries exhausted, or the body is not JSON
        """
        response, attempts = await self._request(url, timeout_s, max_retries)
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(url, f"Invalid JSON body: {e}", response.status_code, attempts) from e

    async def fetch_bytes(
        self,
        url: str,
        timeout_s: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> bytes:
        """GET a URL and return the raw body."""
        response, _ = await self._request(url, timeout_s, max_retries)
        return response.content

    async def _request(
        self,
        url: str,
        timeout_s: Optional[float],
        max_retries: Optional[int],
    ) -> Tuple[httpx.Response, int]:
        """Returns the successful response and the number of attempts it took."""
        timeout_s = self.timeout_s if timeout_s is None else timeout_s
        max_retries = self.max_retries if max_retries is None else max_retries

        failures = 0
        rate_limited = 0

        while True:
            status: Optional[int] = None
            try:
                response = await self.http_client.get(url, headers=self.headers, timeout=timeout_s)
            except httpx.HTTPError as e:
                error = f"{type(e).__name__}: {e}"
            else:
                status = response.status_code
                if response.is_success:
                    return response, failures + rate_limited + 1

                if status == RATE_LIMITED and rate_limited < max_retries:
                    delay = self.base_delay_s * (rate_limited + 1)
                    rate_limited += 1
                    logger.warning(
                        f"Rate limited on {url}; retrying in {delay:.1f}s ({rate_limited}/{max_retries})"
                    )
                    await self._sleep(delay)
                    continue

                error = f"HTTP {status}: {response.reason_phrase}"

            if failures >= max_retries:
                logger.error(f"Giving up on {url} after {failures + rate_limited + 1} attempt(s): {error}")
                raise FetchError(url, error, status, failures + rate_limited + 1)

            delay = self.base_delay_s * (2 ** failures)
            failures += 1
            logger.warning(f"{error} from {url}; retrying in {delay:.1f}s ({failures}/{max_retries})")
            await self._sleep(delay)
