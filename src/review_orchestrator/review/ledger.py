# src/review_orchestrator/review/ledger.py
import asyncio


class IdempotencyLedger:
    """Tracks the last published event per merge request.

    `claim` is an atomic check-and-set: of two concurrent deliveries of the
    same event only one gets to run.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._published: dict[str, str] = {}
        self._in_flight: set[tuple[str, str]] = set()

    async def claim(self, mr_key: str, event_id: str) -> bool:
        async with self._lock:
            if self._published.get(mr_key) == event_id or (mr_key, event_id) in self._in_flight:
                return False
            self._in_flight.add((mr_key, event_id))
            return True

    async def record(self, mr_key: str, event_id: str) -> None:
        async with self._lock:
            self._in_flight.discard((mr_key, event_id))
            self._published[mr_key] = event_id

    async def release(self, mr_key: str, event_id: str) -> None:
        async with self._lock:
            self._in_flight.discard((mr_key, event_id))

    def last_published(self, mr_key: str) -> str | None:
        return self._published.get(mr_key)
