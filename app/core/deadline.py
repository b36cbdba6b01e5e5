# app/core/deadline.py
"""Caller-supplied deadlines for storage work"""
import time
from typing import Optional

from app.core.exceptions import DeadlineExceeded


class Deadline:
    """A point on the monotonic clock after which work must be abandoned"""

    def __init__(self, expires_at: float):
        self.expires_at = expires_at

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def check(self, operation: str = "operation") -> None:
        if self.expired():
            raise DeadlineExceeded(f"Deadline exceeded during {operation}")


def check_deadline(deadline: Optional[Deadline], operation: str) -> None:
    if deadline is not None:
        deadline.check(operation)
