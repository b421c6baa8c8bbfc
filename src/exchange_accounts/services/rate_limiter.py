"""
exchange_accounts/services/rate_limiter.py — Ограничение частоты запросов.

Скользящее окно по ключу ``(scope, адрес клиента)``. Экземпляр
подставляется через FastAPI-зависимость (``get_rate_limiter``), поэтому
в тестах и при горизонтальном масштабировании его можно заменить.
"""

from __future__ import annotations

import time
from typing import Callable, Optional


class RateLimiter:
    """In-memory sliding window rate limiter."""

    # Как часто (в секундах) вычищать ключи, окна которых опустели
    sweep_interval = 60.0

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._requests: dict[str, list[float]] = {}
        self._windows: dict[str, int] = {}
        self._clock = clock
        self._last_sweep = clock()

    def check(
        self,
        key: str,
        window_seconds: int = 60,
        max_requests: int = 20,
    ) -> tuple[bool, Optional[int]]:
        """
        Учитывает запрос, если он укладывается в лимит.

        Returns: (allowed, retry_after_seconds)
        """
        now = self._clock()
        if now - self._last_sweep >= self.sweep_interval:
            self._sweep(now)

        recent = [ts for ts in self._requests.get(key, ()) if ts > now - window_seconds]
        if len(recent) >= max_requests:
            self._requests[key] = recent
            retry_after = int(recent[0] + window_seconds - now) + 1
            return False, retry_after

        recent.append(now)
        self._requests[key] = recent
        self._windows[key] = window_seconds
        return True, None

    def _sweep(self, now: float) -> None:
        """Удаляет ключи без отметок внутри их собственного окна."""
        for key in list(self._requests):
            window_start = now - self._windows.get(key, 0)
            recent = [ts for ts in self._requests[key] if ts > window_start]
            if recent:
                self._requests[key] = recent
            else:
                del self._requests[key]
                self._windows.pop(key, None)
        self._last_sweep = now

    def __len__(self) -> int:
        return len(self._requests)

    def reset(self) -> None:
        self._requests.clear()
        self._windows.clear()


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create rate limiter singleton."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
