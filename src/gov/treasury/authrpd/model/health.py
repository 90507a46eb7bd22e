import asyncio


class HealthGauge:
    """
    Decaying error counter backing the readiness probe.

    Administrative data defects (hierarchy cycles, regions without a configured
    RPD instance) and unexpected handler errors bump the counter; the health
    task decrements it once per tick. A burst of such errors above
    ``health_threshold`` makes ``is_healthy`` return False so the orchestrator
    stops routing traffic to this replica until the burst decays.
    Expected credential failures (expired tokens, audience mismatches) are
    normal traffic and must not be recorded here.
    """

    def __init__(self, value: int = 0, health_threshold: int = 100) -> None:
        self._value = value
        self._health_threshold = health_threshold
        self._lock = asyncio.Lock()

    async def womp(self, d=1) -> int:
        async with self._lock:
            self._value += int(d)
            return self._value

    async def tick(self) -> None:
        async with self._lock:
            if self._value > 0:
                self._value -= 1

    async def value(self) -> int:
        async with self._lock:
            return self._value

    async def is_healthy(self) -> bool:
        async with self._lock:
            return self._value <= self._health_threshold
