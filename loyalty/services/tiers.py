"""
Tier Policy - the one mapping from highest-points watermark to loyalty tier.

Pure functions, no I/O. Every place that derives or compares tiers goes
through this module.
"""

from loyalty.models.api import Tier

SILVER_THRESHOLD = 500
GOLD_THRESHOLD = 1000

_TIER_RANK: dict[Tier, int] = {
    Tier.BRONZE: 1,
    Tier.SILVER: 2,
    Tier.GOLD: 3,
}


def tier_for(highest_points: int) -> Tier:
    """Tier earned by a watermark. Thresholds are inclusive."""
    if highest_points >= GOLD_THRESHOLD:
        return Tier.GOLD
    if highest_points >= SILVER_THRESHOLD:
        return Tier.SILVER
    return Tier.BRONZE


def tier_rank(tier: Tier | str) -> int:
    """Ordinal rank of a tier: Bronze=1 < Silver=2 < Gold=3."""
    return _TIER_RANK[Tier(tier)]


def meets_minimum_tier(highest_points: int, minimum_tier: Tier | str | None) -> bool:
    """True when the watermark's tier ranks at or above ``minimum_tier`` (None = no gate)."""
    if minimum_tier is None:
        return True
    return tier_rank(tier_for(highest_points)) >= tier_rank(minimum_tier)
