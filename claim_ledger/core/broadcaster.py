import asyncio
import logging
from typing import AsyncGenerator, List, Optional, Tuple

from claim_ledger.domain.models import ClaimRecord, InclusionProof

logger = logging.getLogger(__name__)

ClaimNotice = Tuple[ClaimRecord, InclusionProof]


class ClaimBroadcaster:
    """
    Fans committed claims out to SSE subscribers.

    Queues are bounded; a slow consumer loses notices rather than
    holding back redemptions. Single-replica only.
    """
    def __init__(self, max_queue_size: int = 100):
        self._subscribers: List[Tuple[Optional[bytes], asyncio.Queue]] = []
        self._lock = asyncio.Lock()
        self._max_queue_size = max_queue_size

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self, event_id: Optional[bytes] = None) -> AsyncGenerator[ClaimNotice, None]:
        """
        Yield claims as they are committed, optionally only for one event.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        entry = (event_id, queue)

        async with self._lock:
            self._subscribers.append(entry)

        try:
            while True:
                notice = await queue.get()
                yield notice
        finally:
            async with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

    async def publish(self, record: ClaimRecord, proof: InclusionProof) -> None:
        async with self._lock:
            # Snapshot to avoid mutation during iteration
            subscribers = list(self._subscribers)

        for event_id, queue in subscribers:
            if event_id is not None and event_id != record.event_id:
                continue
            try:
                queue.put_nowait((record, proof))
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full (size={self._max_queue_size}), dropping claim")
