"""Overdue fee calculation.

Fees grow linearly at the daily rate for the first ``tier_days`` overdue
days and at the extended rate for every day after that.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from ..config import Config

CENTS = Decimal("0.01")

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class FeePolicy:
    """Rates for the tiered overdue fee."""

    daily_rate: Decimal = Decimal("1.00")
    extended_daily_rate: Decimal = Decimal("2.00")
    tier_days: int = 30

    @classmethod
    def from_config(cls, config: Config) -> "FeePolicy":
        return cls(
            daily_rate=config.daily_fee,
            extended_daily_rate=config.extended_daily_fee,
            tier_days=config.fee_tier_days,
        )


DEFAULT_POLICY = FeePolicy()


def _as_date(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def overdue_days(due_date: DateLike, as_of: DateLike) -> int:
    """Whole days past due on as_of, never negative."""
    return max(0, (_as_date(as_of) - _as_date(due_date)).days)


def compute_overdue_fee(
    due_date: DateLike,
    as_of: DateLike,
    policy: Optional[FeePolicy] = None,
) -> Decimal:
    """Compute the overdue fee owed on as_of for an item due on due_date.

    Args:
        due_date: Date the item was due back
        as_of: Date to assess the fee on (return date, or today for open loans)
        policy: Fee rates (default: 1.00/day, 2.00/day after 30 days)

    Returns:
        Non-negative fee rounded to cents

    Example:
        >>> compute_overdue_fee(date(2024, 1, 1), date(2024, 2, 15))
        Decimal('60.00')
    """
    policy = policy or DEFAULT_POLICY
    days = overdue_days(due_date, as_of)

    if days == 0:
        return Decimal("0.00")

    if days <= policy.tier_days:
        fee = days * policy.daily_rate
    else:
        fee = (
            policy.tier_days * policy.daily_rate
            + (days - policy.tier_days) * policy.extended_daily_rate
        )

    return fee.quantize(CENTS, rounding=ROUND_HALF_UP)
