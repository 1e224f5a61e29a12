from datetime import timedelta

from pydantic import BaseModel


class RetryPolicy(BaseModel):
    """Exponential backoff for outbox entries.

    The n-th failed attempt (1-based) waits ``base_delay * 2 ** (n - 1)``,
    never longer than ``max_delay``. Once ``max_attempts`` attempts have
    failed the entry is given up on.
    """

    max_attempts: int = 5
    base_delay: timedelta = timedelta(minutes=5)
    max_delay: timedelta = timedelta(hours=6)

    @classmethod
    def from_seconds(
        cls, max_attempts: int, base_delay_seconds: int, max_delay_seconds: int
    ) -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts,
            base_delay=timedelta(seconds=base_delay_seconds),
            max_delay=timedelta(seconds=max_delay_seconds),
        )

    def delay_for(self, attempt: int) -> timedelta:
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        # clamp the exponent so huge attempt counts cannot overflow timedelta
        exponent = min(attempt - 1, 32)
        return min(self.base_delay * (2**exponent), self.max_delay)

    def is_exhausted(self, attempt_count: int, max_attempts: int | None = None) -> bool:
        limit = self.max_attempts if max_attempts is None else max_attempts
        return attempt_count >= limit
