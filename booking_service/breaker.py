import time

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitBreakerOpen(Exception):
    def __init__(self, name: str, retry_after: float):
        super().__init__(f"{name} circuit is open; retry in {retry_after:.0f}s")
        self.name = name
        self.retry_after = retry_after


class CircuitBreaker:
    """
    Guards calls to an external dependency. State lives in redis so every
    worker process sees the same circuit:

      breaker:<name>           hash {state, opened_at}
      breaker:<name>:failures  counter, expires after the failure window

    A tripped circuit rejects calls until reset_timeout_seconds have passed,
    then lets probes through (HALF_OPEN). A successful probe closes it, a
    failed one trips it again.
    """

    def __init__(
        self,
        redis_client,
        name: str,
        failure_threshold: int = 5,
        reset_timeout_seconds: int = 15,
        failure_window_seconds: int = 60,
    ):
        self.redis = redis_client
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.failure_window_seconds = failure_window_seconds
        self._key = f"breaker:{name}"
        self._failures_key = f"breaker:{name}:failures"

    async def state(self) -> str:
        return await self.redis.hget(self._key, "state") or CLOSED

    async def allow_request(self) -> None:
        current = await self.redis.hgetall(self._key)
        if current.get("state") != OPEN:
            return

        opened_at = current.get("opened_at")
        if opened_at is None:
            await self.close()
            return

        remaining = self.reset_timeout_seconds - (time.time() - float(opened_at))
        if remaining > 0:
            raise CircuitBreakerOpen(self.name, remaining)
        await self.redis.hset(self._key, "state", HALF_OPEN)

    async def record_success(self) -> None:
        if await self.state() != CLOSED or await self.redis.exists(self._failures_key):
            await self.close()

    async def record_failure(self) -> None:
        if await self.state() == HALF_OPEN:
            await self.open()
            return

        failures = await self.redis.incr(self._failures_key)
        if failures == 1:
            await self.redis.expire(self._failures_key, self.failure_window_seconds)
        if failures >= self.failure_threshold:
            await self.open()

    async def open(self) -> None:
        pipe = self.redis.pipeline()
        pipe.hset(self._key, mapping={"state": OPEN, "opened_at": str(time.time())})
        # an abandoned OPEN entry expires on its own
        pipe.expire(self._key, self.reset_timeout_seconds + self.failure_window_seconds)
        pipe.delete(self._failures_key)
        await pipe.execute()

    async def close(self) -> None:
        await self.redis.delete(self._key, self._failures_key)
