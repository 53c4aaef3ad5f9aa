"""Redemption authorization: home-shop, cross-shop and no-show caps."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Optional, Protocol

from loguru import logger

from rcn_api.core.clock import Clock, utcnow
from rcn_api.core.settings import settings
from rcn_api.models.noshow import NoShowTier
from rcn_api.services.ledger.balance_accessor import BalanceAccessor
from rcn_api.services.noshow.policy import NoShowStatus, suspension_active

ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class RedemptionDecision:
    can_redeem: bool
    max_redeemable: Decimal
    reason: Optional[str]
    is_home_shop: bool
    earned_balance: Decimal
    tier_multiplier: Decimal
    cross_shop_limit: Optional[Decimal] = None
    no_show_tier: Optional[NoShowTier] = None

    @property
    def message(self) -> str:
        return self.reason or f"Redemption approved for up to {self.max_redeemable} RCN"


class NoShowStatusProvider(Protocol):
    async def get_status(self, customer_address: str) -> NoShowStatus:
        ...


def floor_rcn(value: Decimal) -> Decimal:
    """Round down to whole tokens."""

    return Decimal(value).to_integral_value(rounding=ROUND_FLOOR)


def has_sub_cent_precision(amount: Decimal) -> bool:
    """True when ``amount`` cannot be stored in a 2-place ledger column unchanged."""

    return amount.normalize().as_tuple().exponent < -2


class RedemptionAuthorizer:
    """Decides whether a shop may redeem an amount against a customer's earned balance.

    The decision is a pure read: it never mutates balances, sessions or
    no-show records, so it is safe to run when a session is created, again at
    approval and once more inside the consumption transaction.
    """

    def __init__(
        self,
        balances: BalanceAccessor,
        no_shows: NoShowStatusProvider,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._balances = balances
        self._no_shows = no_shows
        self._clock = clock or utcnow

    async def authorize(self, customer_address: str, shop_id: str, amount: Decimal) -> RedemptionDecision:
        balances = await self._balances.get_balances(customer_address)
        amount = Decimal(amount)
        earned = balances.earned_balance
        is_home_shop = balances.home_shop_id is not None and shop_id == balances.home_shop_id

        def deny(
            reason: str,
            *,
            max_redeemable: Decimal = ZERO,
            tier_multiplier: Decimal = Decimal("1"),
            cross_shop_limit: Decimal | None = None,
            no_show_tier: NoShowTier | None = None,
        ) -> RedemptionDecision:
            decision = RedemptionDecision(
                can_redeem=False,
                max_redeemable=max_redeemable,
                reason=reason,
                is_home_shop=is_home_shop,
                earned_balance=earned,
                tier_multiplier=tier_multiplier,
                cross_shop_limit=cross_shop_limit,
                no_show_tier=no_show_tier,
            )
            logger.info(
                "Redemption denied",
                customer_address=balances.customer_address,
                shop_id=shop_id,
                amount=str(amount),
                max_redeemable=str(max_redeemable),
                reason=reason,
            )
            return decision

        if not amount.is_finite() or amount <= ZERO:
            return deny("Invalid redemption amount")
        if has_sub_cent_precision(amount):
            return deny("Redemption amount cannot have more than 2 decimal places")
        if earned <= ZERO:
            return deny("No earned balance available for redemption")

        if is_home_shop:
            base_cap = earned
            cross_shop_limit = None
        else:
            ratio = Decimal(str(settings.redemption_cross_shop_ratio))
            base_cap = floor_rcn(earned * ratio)
            cross_shop_limit = base_cap

        status = await self._no_shows.get_status(balances.customer_address)
        multiplier = status.redemption_multiplier
        context = {
            "tier_multiplier": multiplier,
            "cross_shop_limit": cross_shop_limit,
            "no_show_tier": status.tier,
        }
        if status.tier == NoShowTier.SUSPENDED and suspension_active(status.booking_suspended_until, self._clock()):
            return deny("Customer is suspended due to missed appointments", **context)

        max_redeemable = floor_rcn(base_cap * multiplier)
        if amount > max_redeemable:
            if not is_home_shop:
                reason = (
                    f"Cross-shop redemption limit exceeded. Maximum redeemable at this shop is "
                    f"{max_redeemable} RCN"
                )
            else:
                reason = f"Requested amount exceeds maximum redeemable of {max_redeemable} RCN"
            return deny(reason, max_redeemable=max_redeemable, **context)

        logger.info(
            "Redemption authorized",
            customer_address=balances.customer_address,
            shop_id=shop_id,
            amount=str(amount),
            max_redeemable=str(max_redeemable),
            is_home_shop=is_home_shop,
            no_show_tier=status.tier.value,
        )
        return RedemptionDecision(
            can_redeem=True,
            max_redeemable=max_redeemable,
            reason=None,
            is_home_shop=is_home_shop,
            earned_balance=earned,
            tier_multiplier=multiplier,
            cross_shop_limit=cross_shop_limit,
            no_show_tier=status.tier,
        )


__all__ = [
    "CENT",
    "NoShowStatusProvider",
    "RedemptionAuthorizer",
    "RedemptionDecision",
    "floor_rcn",
    "has_sub_cent_precision",
]
