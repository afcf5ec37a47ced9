"""Sub-account split calculation for settlement lumps"""

from decimal import ROUND_DOWN, Decimal
from typing import List, Tuple

from settlement_gateway.domain.enums import SplitType
from settlement_gateway.domain.models import SubaccountShare, SubaccountSplit
from settlement_gateway.utils.money import to_minor


def calculate_share(amount: int, split_type: SplitType, split_value: Decimal) -> int:
    """
    Amount owed to one sub-account out of `amount` minor units.

    - percentage: floor(amount * value / 100)
    - flat: the configured major-unit value converted to minor units

    Example:
        calculate_share(2820, PERCENTAGE, Decimal("12.5")) -> 352  (352.5 floored)
    """
    if amount <= 0:
        return 0

    if split_type == SplitType.PERCENTAGE:
        share = (Decimal(amount) * Decimal(split_value) / 100).to_integral_value(rounding=ROUND_DOWN)
        return int(share)

    if split_type == SplitType.FLAT:
        return to_minor(Decimal(split_value))

    return 0


def split_lump(amount: int, splits: List[SubaccountSplit]) -> Tuple[List[SubaccountShare], int]:
    """
    Divide a payment link's net amount between its sub-accounts.

    Requirements:
    - Shares are taken in configuration order
    - A share never exceeds what is left, so the total shared never exceeds `amount`
    - Whatever is left (including rounding remainders) goes to the primary business

    Args:
        amount: Net amount collected on the payment link
        splits: Sub-account splits configured on that link

    Returns:
        (shares, remainder) where remainder is the primary business's part

    Example:
        1000 with 30% + 2.00 flat -> shares [300, 200], remainder 500
    """
    if amount <= 0:
        return [], 0

    remaining = amount
    shares = []

    for split in splits:
        share = min(calculate_share(amount, split.split_type, split.split_value), remaining)
        remaining -= share

        shares.append(
            SubaccountShare(
                subaccount_id=split.subaccount_id,
                code=split.code,
                payment_link=split.payment_link,
                destination=split.destination,
                split_type=split.split_type,
                split_value=split.split_value,
                amount=share,
            )
        )

    return shares, remaining
