from __future__ import annotations

import asyncio
import enum
import logging
import time

from slotbot.challenges import SolveFn
from slotbot.domain import TokenPair
from slotbot.token_pool import TokenPool

logger = logging.getLogger(__name__)


def _format_duration(seconds: float) -> str:
    return f"{seconds:.2f}s"


class TokenSupplier:
    """Keeps one pool topped up for the lifetime of the process."""

    def __init__(
        self,
        pool: TokenPool,
        solve: SolveFn,
        *,
        warmup_size: int = 3,
        full_interval: float = 0.5,
        failure_interval: float = 1.0,
    ) -> None:
        self.pool = pool
        self._solve = solve
        self.warmup_size = warmup_size
        self.full_interval = full_interval
        self.failure_interval = failure_interval
        self.produced = 0
        self.failed = 0

    @property
    def name(self) -> str:
        return self.pool.name

    async def run(self) -> None:
        warmup = asyncio.create_task(self.warm_up(), name=f"warmup-{self.name}")
        try:
            await self._produce_forever()
        finally:
            warmup.cancel()
            await asyncio.gather(warmup, return_exceptions=True)

    async def warm_up(self) -> None:
        if self.warmup_size <= 0:
            return
        logger.info("[%s] Warm-up: requesting %d tokens in parallel", self.name, self.warmup_size)
        await asyncio.gather(*(self._warm_one(i + 1) for i in range(self.warmup_size)))
        logger.info("[%s] Warm-up completed, pool size=%d", self.name, self.pool.size())

    async def _warm_one(self, n: int) -> None:
        started = time.monotonic()
        try:
            token = await self._solve()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed += 1
            logger.error("[%s] Warm-up token #%d failed (%s: %s)", self.name, n, type(e).__name__, e)
            return

        logger.debug("[%s] Warm-up token #%d ready in %s", self.name, n, _format_duration(time.monotonic() - started))
        await self._store(token)

    async def _produce_forever(self) -> None:
        while True:
            if self.pool.is_full():
                await asyncio.sleep(self.full_interval)
                continue

            n = self.produced + self.failed + 1
            started = time.monotonic()
            logger.debug("[%s] Generating token #%d...", self.name, n)
            try:
                token = await self._solve()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error(
                    "[%s] Token #%d failed after %s (%s: %s)",
                    self.name,
                    n,
                    _format_duration(time.monotonic() - started),
                    type(e).__name__,
                    e,
                )
                await asyncio.sleep(self.failure_interval)
                continue

            logger.debug("[%s] Token #%d ready in %s", self.name, n, _format_duration(time.monotonic() - started))
            await self._store(token)

    async def _store(self, token: str) -> None:
        if await self.pool.add(token):
            self.produced += 1
            return
        # Пул успели заполнить параллельно (warm-up), лишний токен выбрасываем.
        logger.debug("[%s] Pool is full, dropping surplus token", self.name)


class SupplyState(enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


class SupplyController:
    """Owns the pair of supplier tasks. At most one pair per controller."""

    def __init__(self, supplier_a: TokenSupplier, supplier_b: TokenSupplier) -> None:
        self.supplier_a = supplier_a
        self.supplier_b = supplier_b
        self.state = SupplyState.NOT_STARTED
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def pool_a(self) -> TokenPool:
        return self.supplier_a.pool

    @property
    def pool_b(self) -> TokenPool:
        return self.supplier_b.pool

    @property
    def tasks(self) -> tuple[asyncio.Task[None], ...]:
        return tuple(self._tasks)

    def start(self) -> None:
        if self.state is not SupplyState.NOT_STARTED:
            return

        logger.info("Starting token suppliers...")
        self.state = SupplyState.RUNNING
        self._tasks = [
            asyncio.create_task(self.supplier_a.run(), name=f"supplier-{self.supplier_a.name}"),
            asyncio.create_task(self.supplier_b.run(), name=f"supplier-{self.supplier_b.name}"),
        ]

    async def stop(self) -> None:
        if self.state is not SupplyState.RUNNING:
            self.state = SupplyState.STOPPED
            return

        self.state = SupplyState.STOPPED
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Token suppliers stopped")

    async def wait_for_first_pair(self) -> None:
        logger.info("Waiting for first token pair...")
        # A consumer may drain one pool while we wait on the other; re-check both.
        while self.pool_a.is_empty() or self.pool_b.is_empty():
            await asyncio.gather(self.pool_a.wait_until_available(), self.pool_b.wait_until_available())
        logger.info("First token pair ready!")

    async def acquire_pair(self) -> TokenPair:
        token_a = await self.pool_a.wait_and_take()
        token_b = await self.pool_b.wait_and_take()
        logger.debug("Pool sizes after take: %s=%d %s=%d", self.pool_a.name, self.pool_a.size(), self.pool_b.name, self.pool_b.size())
        return TokenPair(challenge_a=token_a, challenge_b=token_b)

    async def __aenter__(self) -> SupplyController:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
