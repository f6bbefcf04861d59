"""
Domain models for quota reads.
"""

from typing import Optional
from pydantic import BaseModel


class EffectiveQuota(BaseModel):
    """Token quota in force. ``limit``/``remaining`` None = unlimited."""

    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None

    def is_unlimited(self) -> bool:
        return self.limit is None

    def has_remaining(self) -> bool:
        return self.remaining is None or self.remaining > 0


class RemainingQuota(EffectiveQuota):
    """Quota after a successful ``record_usage``."""

    subscription_id: int
