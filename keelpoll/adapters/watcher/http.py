"""HTTP watcher adapter.

Implements WatcherPort by forwarding watch requests to an external
watcher service over its REST API.
"""

import logging

import httpx

from keelpoll.core.models import WatchRequest
from keelpoll.core.ports import WatcherPort

logger = logging.getLogger(__name__)


class HTTPWatcherAdapter(WatcherPort):
    """Registers watches with a remote watcher service.

    The remote service is expected to treat ``POST /v1/watches`` as an
    upsert keyed by image, so repeated requests refresh rather than
    duplicate subscriptions.
    """

    def __init__(
        self,
        api_url: str,
        token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP watcher adapter.

        Args:
            api_url: Base URL of the watcher service (e.g., http://watcher:9300)
            token: Optional bearer token for authentication
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used in tests)
        """
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=self._get_headers(),
            timeout=timeout,
            transport=transport,
        )

    def _get_headers(self) -> dict[str, str]:
        """Build request headers."""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.client.aclose()

    async def close(self) -> None:
        """Close the httpx client and clean up resources."""
        await self.client.aclose()

    async def watch(self, request: WatchRequest) -> None:
        """Register or refresh a watch on the remote service."""
        payload = {
            "image": request.image,
            "schedule": request.schedule,
            "reserved1": request.reserved1,
            "reserved2": request.reserved2,
        }
        try:
            response = await self.client.post("/v1/watches", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Watcher rejected watch for {request.image}: "
                f"{e.response.status_code} {e.response.text}",
                extra={"image": request.image, "schedule": request.schedule},
            )
            raise
        except httpx.HTTPError as e:
            logger.error(
                f"Failed to reach watcher for {request.image}: {e}",
                extra={"image": request.image, "schedule": request.schedule},
            )
            raise
