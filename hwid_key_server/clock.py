from __future__ import annotations

import time
from abc import ABC, abstractmethod


class Clock(ABC):
    @abstractmethod
    def now_ms(self) -> int: ...


class SystemClock(Clock):
    def now_ms(self) -> int:
        return int(time.time() * 1000)


def seconds_left(expires_at: int, now_ms: int) -> int:
    return max(0, (expires_at - now_ms) // 1000)
