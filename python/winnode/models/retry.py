"""
winnode/models/retry.py

Defines the RetryPolicy model shared by every bounded polling loop
(CSR discovery, host-subnet discovery) and by optimistic-update retries.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class RetryPolicy(BaseModel):
    """
    How many times to attempt an operation, how long to wait between attempts,
    and an optional wall-clock limit for the whole loop.

    Attributes:
        attempts: Total number of attempts (not just failures).
        interval_seconds: Delay between attempts.
        deadline_seconds: If set, stop retrying once this many seconds have
            elapsed since the first attempt, even if attempts remain.
    """

    attempts: int = Field(default=3, ge=1)
    interval_seconds: float = Field(default=1.0, ge=0.0)
    deadline_seconds: Optional[float] = Field(default=None, gt=0.0)

    class Config:
        frozen = True


CSR_RETRY = RetryPolicy(attempts=20, interval_seconds=5.0)
HOST_SUBNET_RETRY = RetryPolicy(attempts=60, interval_seconds=5.0)
CONFLICT_RETRY = RetryPolicy(attempts=5, interval_seconds=0.01)
