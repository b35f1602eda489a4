import asyncio
from typing import Any, Dict, Optional

import httpx
from httpx import HTTPStatusError, TimeoutException

from contract_ai.core.exceptions import APIClientError, APITimeoutError
from contract_ai.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Client errors worth another attempt
RETRYABLE_4XX = frozenset({408, 429})


class BaseLLMClient:
    """JSON-over-HTTP client for model APIs (vision chat completions, OCR annotation).

    Every call is one bounded request/response: bearer auth, a per-request
    timeout, and at most ``max_retries`` attempts with exponential backoff.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: float = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            api_key: Bearer token
            base_url: Endpoint URL; ``endpoint`` arguments are appended to it
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts
            retry_delay: Base delay for exponential backoff
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.transport = transport

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _headers(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def call_api(
        self,
        endpoint: str = "",
        method: str = "POST",
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Send one JSON request, retrying transient failures.

        Args:
            endpoint: Path appended to ``base_url``
            method: HTTP method; GET sends ``payload`` as query parameters
            payload: JSON body
            headers: Additional headers

        Returns:
            Decoded JSON response

        Raises:
            APIClientError: On a non-retryable status or when retries run out
            APITimeoutError: If the last attempt timed out
        """
        url = f"{self.base_url}{endpoint}" if endpoint else self.base_url
        request_headers = self._headers(headers)
        LOGGER.debug(f"Calling model API: {url}", extra={"method": method, "timeout": self.timeout})

        async with self._build_client() as client:
            for attempt in range(1, self.max_retries + 1):
                last = attempt == self.max_retries
                try:
                    if method.upper() == "GET":
                        response = await client.get(url, headers=request_headers, params=payload)
                    else:
                        response = await client.post(url, headers=request_headers, json=payload)
                    response.raise_for_status()
                    return response.json()

                except HTTPStatusError as e:
                    status = e.response.status_code
                    body = e.response.text[:500]
                    LOGGER.warning(
                        f"Model API returned {status} (attempt {attempt}/{self.max_retries})",
                        extra={"url": url, "status_code": status, "error_body": body},
                    )
                    if 400 <= status < 500 and status not in RETRYABLE_4XX:
                        raise APIClientError(f"API Client Error {status}: {body}", e) from e
                    if last:
                        raise APIClientError(f"API HTTP Error {status} after retries", e) from e

                except TimeoutException as e:
                    LOGGER.warning(
                        f"Model API timed out (attempt {attempt}/{self.max_retries})",
                        extra={"url": url},
                    )
                    if last:
                        raise APITimeoutError(f"API Timeout after {self.max_retries} attempts", e) from e

                except (httpx.HTTPError, ValueError) as e:
                    # Connection failures and undecodable bodies
                    LOGGER.warning(
                        f"Model API call failed (attempt {attempt}/{self.max_retries}): {e}",
                        extra={"url": url},
                    )
                    if last:
                        raise APIClientError(f"API Error: {e}", e) from e

                await self._wait_before_retry(attempt)

        raise APIClientError(f"Failed to call API {url} after {self.max_retries} attempts")

    async def _wait_before_retry(self, attempt: int) -> None:
        """Exponential backoff: ``retry_delay * 2 ** (attempt - 1)`` seconds."""
        await asyncio.sleep(self.retry_delay * (2 ** (attempt - 1)))
