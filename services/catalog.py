# ================================================================
# services/catalog.py: Tier / Limits / Credit Package Catalog
# ================================================================
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from models.models import SubscriptionTier

logger = logging.getLogger(__name__)

UNLIMITED = -1


@dataclass(frozen=True)
class TierLimits:
    max_clients: int
    max_posts_per_month: int
    max_ai_credits_per_month: int


@dataclass(frozen=True)
class CreditPackage:
    id: str
    name: str
    credits: int
    price_cents: int


# Versioned with the code; changing a limit is a deploy, never a runtime edit.
TIER_LIMITS: Mapping[str, TierLimits] = MappingProxyType({
    SubscriptionTier.FREEMIUM.value: TierLimits(max_clients=1, max_posts_per_month=0, max_ai_credits_per_month=10),
    SubscriptionTier.STARTER.value: TierLimits(max_clients=1, max_posts_per_month=30, max_ai_credits_per_month=100),
    SubscriptionTier.PROFESSIONAL.value: TierLimits(max_clients=5, max_posts_per_month=150, max_ai_credits_per_month=500),
    SubscriptionTier.AGENCY.value: TierLimits(max_clients=UNLIMITED, max_posts_per_month=UNLIMITED, max_ai_credits_per_month=2000),
    # No-card trials get professional limits
    SubscriptionTier.TRIAL.value: TierLimits(max_clients=5, max_posts_per_month=150, max_ai_credits_per_month=500),
})

CREDIT_PACKAGES = (
    CreditPackage(id="small", name="Small Pack", credits=50, price_cents=999),
    CreditPackage(id="medium", name="Medium Pack", credits=150, price_cents=2499),
    CreditPackage(id="large", name="Large Pack", credits=500, price_cents=7499),
)


class TierCatalog:
    """
    Immutable price → tier and tier → limits lookup, built once at startup.

    Every known price id resolves to exactly one tier. Unknown or missing
    price ids resolve to the default tier with a warning; lookups never raise.
    """

    def __init__(
        self,
        price_to_tier: Union[Mapping[str, str], Iterable[Tuple[str, str]]],
        default_tier: str = SubscriptionTier.STARTER.value,
    ):
        if default_tier not in TIER_LIMITS:
            raise ValueError(f"Unknown default tier: {default_tier}")

        seen: Dict[str, str] = {}
        pairs = price_to_tier.items() if isinstance(price_to_tier, Mapping) else price_to_tier
        for price_id, tier in pairs:
            if tier not in TIER_LIMITS:
                raise ValueError(f"Price {price_id} maps to unknown tier {tier}")
            if price_id in seen and seen[price_id] != tier:
                raise ValueError(f"Price {price_id} maps to both {seen[price_id]} and {tier}")
            seen[price_id] = tier

        self._price_to_tier = MappingProxyType(seen)
        self.default_tier = default_tier

        self._packages = MappingProxyType({pkg.id: pkg for pkg in CREDIT_PACKAGES})

    @classmethod
    def from_settings(cls, settings) -> "TierCatalog":
        price_to_tier = [
            (price_id, tier)
            for tier, price_id in settings.tier_price_ids.items()
            if price_id
        ]
        if not price_to_tier:
            logger.warning("⚠️ No Stripe price ids configured: every subscription will resolve to the default tier.")
        return cls(
            price_to_tier,
            default_tier=settings.DEFAULT_TIER,
        )

    @property
    def price_map(self) -> Mapping[str, str]:
        return self._price_to_tier

    def tier_for_price(self, price_id: Optional[str]) -> Optional[str]:
        """Exact lookup; None when the price id is not in the catalog."""
        if not price_id:
            return None
        return self._price_to_tier.get(price_id)

    def resolve_tier(self, price_id: Optional[str]) -> str:
        tier = self.tier_for_price(price_id)
        if tier is None:
            logger.warning(f"⚠️ Unresolvable price id {price_id!r}, falling back to '{self.default_tier}' tier")
            return self.default_tier
        return tier

    def limits_for(self, tier: str) -> TierLimits:
        limits = TIER_LIMITS.get(tier)
        if limits is None:
            logger.warning(f"⚠️ Unknown tier {tier!r}, using '{self.default_tier}' limits")
            return TIER_LIMITS[self.default_tier]
        return limits

    def credit_package(self, package_id: Optional[str]) -> Optional[CreditPackage]:
        if not package_id:
            return None
        return self._packages.get(package_id)

