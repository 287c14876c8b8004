import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Union

from .config import LOW_TIME_WARNING_SECONDS
from .scoring_engine import utcnow

logger = logging.getLogger(__name__)

ExpireCallback = Callable[[], Union[None, Awaitable[None]]]


class AttemptTimer:
    """Countdown for one attempt.

    Remaining time is recomputed from ``(started_at + duration) - now`` on
    every tick instead of decrementing a counter, so a suspended event loop
    does not make the clock drift. The expiry callback fires once.
    """

    def __init__(
        self,
        duration_minutes: int,
        started_at: datetime,
        on_expire: Optional[ExpireCallback] = None,
        clock: Callable[[], datetime] = utcnow,
        tick_seconds: float = 1.0,
    ):
        self.deadline = started_at + timedelta(minutes=duration_minutes)
        self.on_expire = on_expire
        self.clock = clock
        self.tick_seconds = tick_seconds
        self.expired = False
        self.remaining = self.remaining_seconds()

    def remaining_seconds(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        return max(0, math.ceil((self.deadline - now).total_seconds()))

    def tick(self, now: Optional[datetime] = None) -> bool:
        """Recompute remaining time. Returns True only on the tick that expires."""
        self.remaining = self.remaining_seconds(now)
        if self.remaining > 0 or self.expired:
            return False

        self.expired = True
        logger.info("Attempt timer expired")
        return True

    async def _fire(self):
        if self.on_expire is None:
            return
        result = self.on_expire()
        if asyncio.iscoroutine(result):
            await result

    async def run(self):
        while True:
            if self.tick():
                await self._fire()
                return
            if self.expired:
                return
            await asyncio.sleep(self.tick_seconds)

    def format_remaining(self) -> str:
        minutes, seconds = divmod(self.remaining, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def is_low(self) -> bool:
        return self.remaining <= LOW_TIME_WARNING_SECONDS
