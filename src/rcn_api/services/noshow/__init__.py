"""No-show trust tier exports."""

from .policy import (  # noqa: F401
    NoShowStatus,
    TierRestrictions,
    build_status,
    effective_tier,
    restrictions_for_tier,
    tier_for_count,
)
from .service import DisputeOutcome, NoShowService  # noqa: F401
