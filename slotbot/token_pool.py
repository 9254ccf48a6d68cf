from __future__ import annotations

import asyncio
from collections import deque

from slotbot.domain import Token


class TokenPool:
    """Bounded FIFO of pre-solved tokens for one challenge type.

    Capacity is a hard ceiling: ``add`` refuses instead of growing the pool.
    Waiters block on a condition and are woken by ``add``; every waiter
    re-checks the pool under the lock, so one token goes to one waiter.
    """

    def __init__(self, name: str, capacity: int = 3) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.name = name
        self.capacity = capacity
        self._tokens: deque[Token] = deque()
        self._cond = asyncio.Condition()

    def __repr__(self) -> str:
        return f"TokenPool({self.name!r}, size={self.size()}/{self.capacity})"

    async def add(self, token: Token) -> bool:
        async with self._cond:
            if len(self._tokens) >= self.capacity:
                return False
            self._tokens.append(token)
            self._cond.notify_all()
            return True

    def take(self) -> Token | None:
        # Без await между проверкой и popleft: атомарно внутри event loop.
        if not self._tokens:
            return None
        return self._tokens.popleft()

    async def wait_and_take(self) -> Token:
        async with self._cond:
            await self._cond.wait_for(lambda: bool(self._tokens))
            return self._tokens.popleft()

    async def wait_until_available(self) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: bool(self._tokens))

    def is_full(self) -> bool:
        return len(self._tokens) >= self.capacity

    def is_empty(self) -> bool:
        return not self._tokens

    def size(self) -> int:
        return len(self._tokens)
