import time

from . import redis_client as redis_store

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitBreakerOpen(Exception):
    pass


class CircuitBreaker:
    """
    Redis-backed circuit breaker for an upstream dependency, shared by every
    instance of a service. State lives in one hash, cb:<name>:

      state      CLOSED | OPEN | HALF_OPEN
      failures   consecutive failures while CLOSED
      opened_at  epoch seconds of the last trip
      probe      epoch seconds the HALF_OPEN probe was admitted

    OPEN rejects calls until reset_timeout_seconds have passed. The first
    caller after that claims the probe field (HSETNX) and runs alone in
    HALF_OPEN while everyone else is still rejected; the probe outcome closes
    or re-opens the breaker.
    """

    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout_seconds: int = 30):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.key = f"cb:{name}"

    async def _snapshot(self) -> dict:
        raw = await redis_store.redis_client.hgetall(self.key)
        return {
            "state": raw.get("state") or CLOSED,
            "failures": int(raw.get("failures") or 0),
            "opened_at": float(raw.get("opened_at") or 0),
        }

    async def allow_request(self) -> None:
        snap = await self._snapshot()
        if snap["state"] == CLOSED:
            return

        now = time.time()
        if snap["state"] == OPEN and now - snap["opened_at"] < self.reset_timeout_seconds:
            raise CircuitBreakerOpen(f"{self.name} is unavailable (circuit open)")

        if not await self._claim_probe(now):
            raise CircuitBreakerOpen(f"{self.name} is unavailable (probe in flight)")
        await redis_store.redis_client.hset(self.key, "state", HALF_OPEN)

    async def _claim_probe(self, now: float) -> bool:
        r = redis_store.redis_client
        if await r.hsetnx(self.key, "probe", now):
            return True

        # a probe that never reported back is abandoned after one reset window
        started = float(await r.hget(self.key, "probe") or 0)
        if now - started < self.reset_timeout_seconds:
            return False
        await r.hset(self.key, "probe", now)
        return True

    async def record_success(self) -> None:
        await self.close()

    async def record_failure(self) -> None:
        snap = await self._snapshot()
        if snap["state"] == HALF_OPEN:
            await self.open()
            return

        failures = await redis_store.redis_client.hincrby(self.key, "failures", 1)
        await redis_store.redis_client.expire(self.key, 3600)
        if failures >= self.failure_threshold:
            await self.open()

    async def open(self) -> None:
        await redis_store.redis_client.hset(
            self.key,
            mapping={"state": OPEN, "failures": 0, "opened_at": time.time()},
        )
        await redis_store.redis_client.hdel(self.key, "probe")
        await redis_store.redis_client.expire(self.key, self.reset_timeout_seconds + 3600)

    async def close(self) -> None:
        await redis_store.redis_client.delete(self.key)

    async def status(self) -> dict:
        snap = await self._snapshot()
        return {
            "name": self.name,
            "state": snap["state"],
            "failures": snap["failures"],
            "failure_threshold": self.failure_threshold,
            "reset_timeout_seconds": self.reset_timeout_seconds,
        }
