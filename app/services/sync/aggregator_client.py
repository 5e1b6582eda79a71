"""
Bet aggregator API client (SharpSports-style bettor bet slips).

Fetches every bet slip for one bettor. Transport errors, timeouts, 429s and
5xx responses are retried (3 attempts, exponential backoff) behind the
aggregator circuit breaker. Anything that still fails is raised as
``UpstreamFetchError``, which aborts the sync call for that user.
"""
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from app.core.config import settings
from app.core.exceptions import UpstreamFetchError
from app.core.logging import get_logger
from app.core.metrics import record_aggregator_request_failure, record_aggregator_request_success
from app.services.sync.circuit_breaker import CircuitBreakerError, aggregator_breaker

logger = get_logger(__name__)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    return False


class AggregatorClient:
    """Async HTTP client for the bet aggregator feed."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: Aggregator API key (defaults to AGGREGATOR_API_KEY)
            base_url: API root (defaults to AGGREGATOR_BASE_URL)
            timeout: Request timeout in seconds (defaults to AGGREGATOR_TIMEOUT)
            transport: Optional httpx transport, used by tests
        """
        self.api_key = api_key if api_key is not None else settings.AGGREGATOR_API_KEY
        self.base_url = (base_url or settings.AGGREGATOR_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.AGGREGATOR_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._client

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/json",
        }

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    async def _fetch_bet_slips_with_breaker(self, bettor_id: str) -> Any:
        client = await self._get_client()
        with aggregator_breaker.calling():
            response = await client.get(f"/bettors/{bettor_id}/betSlips")
            response.raise_for_status()
        return response.json()

    async def get_bet_slips(self, bettor_id: str) -> List[Dict[str, Any]]:
        """
        Fetch all bet slips for a bettor.

        Raises:
            UpstreamFetchError: feed unreachable, timed out, or returned an error
        """
        try:
            data = await self._fetch_bet_slips_with_breaker(bettor_id)
        except CircuitBreakerError as e:
            record_aggregator_request_failure("circuit_open")
            raise UpstreamFetchError(f"Aggregator circuit breaker is open: {e}", retryable=True)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            record_aggregator_request_failure(f"http_{status}")
            raise UpstreamFetchError(
                f"Aggregator returned HTTP {status} for bettor {bettor_id}",
                retryable=status >= 500 or status == 429,
                status_code=status,
            )
        except httpx.TimeoutException:
            record_aggregator_request_failure("timeout")
            raise UpstreamFetchError(f"Aggregator timed out after {self.timeout}s", retryable=True)
        except httpx.HTTPError as e:
            record_aggregator_request_failure("transport")
            raise UpstreamFetchError(f"Aggregator unreachable: {e}", retryable=True)
        except ValueError as e:
            record_aggregator_request_failure("invalid_json")
            raise UpstreamFetchError(f"Aggregator returned invalid JSON: {e}", retryable=False)

        record_aggregator_request_success()

        if isinstance(data, dict):
            data = data.get("data") or data.get("betSlips") or []
        if not isinstance(data, list):
            raise UpstreamFetchError("Aggregator response is not a list of bet slips", retryable=False)

        logger.info(f"Fetched {len(data)} bet slips for bettor {bettor_id}")
        return data


# Singleton instance
_aggregator_client: Optional[AggregatorClient] = None


def get_aggregator_client() -> AggregatorClient:
    """Get or create AggregatorClient singleton."""
    global _aggregator_client
    if _aggregator_client is None:
        _aggregator_client = AggregatorClient()
    return _aggregator_client
