from cisa.core.constants import Tier

GOLD_THRESHOLD = 8
SILVER_THRESHOLD = 5


def achievement_tier(score: float | None) -> Tier:
    """Tier shown in result notifications and on certificates."""
    value = float(score or 0)
    if value >= GOLD_THRESHOLD:
        return Tier.GOLD
    if value >= SILVER_THRESHOLD:
        return Tier.SILVER
    return Tier.BRONZE
