"""
Bounded attempt policy with a fixed backoff schedule
"""

from typing import Optional, Sequence, Tuple
from core.config import settings


class RetryPolicy:
    """
    Pure functions of the attempt number (1-based).
    
    Example:
        policy = RetryPolicy(max_attempts=3, backoff=(60, 300, 900))
        policy.should_retry(1)   # True
        policy.backoff_delay(2)  # 300
        policy.should_retry(3)   # False
    """
    
    def __init__(self, max_attempts: Optional[int] = None, backoff: Optional[Sequence[int]] = None):
        self.max_attempts = settings.MAX_RETRIES if max_attempts is None else max_attempts
        self.backoff: Tuple[int, ...] = tuple(settings.ETL_RETRY_BACKOFF if backoff is None else backoff)
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not self.backoff:
            raise ValueError("backoff schedule must not be empty")
    
    def should_retry(self, attempt: int) -> bool:
        """Whether a failed attempt leaves another attempt"""
        return attempt < self.max_attempts
    
    def backoff_delay(self, attempt: int) -> int:
        """Seconds to wait after failed attempt `attempt`; the last entry repeats"""
        index = min(max(attempt, 1), len(self.backoff)) - 1
        return self.backoff[index]
