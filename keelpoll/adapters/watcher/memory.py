"""In-memory watcher adapter.

Implements WatcherPort as a process-local subscription registry keyed by
image reference. It records what should be polled and when; the actual
repository polling belongs to whatever consumes the registry.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from keelpoll.core.models import WatchRequest
from keelpoll.core.ports import WatcherPort

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subscription:
    """A registered watch on an image repository."""

    image: str
    schedule: str
    created_at: datetime
    refreshed_at: datetime
    refresh_count: int = 0


class InMemoryWatcher(WatcherPort):
    """Process-local watch registry.

    Registering an image that is already watched refreshes the existing
    subscription (and picks up a changed schedule) instead of adding a
    second one.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()

    async def watch(self, request: WatchRequest) -> None:
        """Register or refresh a watch for request.image."""
        if not request.image:
            raise ValueError("image reference must be a non-empty string")

        now = datetime.now(timezone.utc)
        async with self._lock:
            existing = self._subscriptions.get(request.image)
            if existing is None:
                self._subscriptions[request.image] = Subscription(
                    image=request.image,
                    schedule=request.schedule,
                    created_at=now,
                    refreshed_at=now,
                )
                logger.info(
                    f"Watching {request.image} on schedule {request.schedule!r}",
                    extra={"image": request.image, "schedule": request.schedule},
                )
                return

            if existing.schedule != request.schedule:
                logger.info(
                    f"Schedule for {request.image} changed from "
                    f"{existing.schedule!r} to {request.schedule!r}",
                    extra={"image": request.image, "schedule": request.schedule},
                )
            self._subscriptions[request.image] = replace(
                existing,
                schedule=request.schedule,
                refreshed_at=now,
                refresh_count=existing.refresh_count + 1,
            )

    def get(self, image: str) -> Subscription | None:
        return self._subscriptions.get(image)

    def subscriptions(self) -> list[Subscription]:
        """All subscriptions, ordered by image reference."""
        return sorted(self._subscriptions.values(), key=lambda s: s.image)

    def __len__(self) -> int:
        return len(self._subscriptions)
