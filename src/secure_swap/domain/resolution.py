"""Dispute resolutions and how they split escrowed funds.

An arbiter settles a dispute with one of two decisions:

    FullRefund()                 everything goes back to the buyer
    SplitTo(recipient, amount)   `amount` to one party, the remainder per policy

The payout plan is a list of (recipient, amount) pairs that always sums to
the escrowed balance, so a resolution can never strand or invent value.
"""

from __future__ import annotations

from dataclasses import dataclass

from secure_swap.domain.enums import RemainderPolicy
from secure_swap.domain.exceptions import InvalidTransitionError, ValidationError


@dataclass(frozen=True)
class FullRefund:
    """Return the whole escrow balance to the buyer."""


@dataclass(frozen=True)
class SplitTo:
    """Pay `amount` base units to `recipient` (buyer or seller address)."""

    recipient: str
    amount: int

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValidationError("split amount must not be negative", field="amount")


Resolution = FullRefund | SplitTo


def plan_split(
    split: SplitTo,
    *,
    seller: str,
    buyer: str,
    escrow_balance: int,
    policy: RemainderPolicy,
) -> list[tuple[str, int]]:
    """Turn a split decision into payouts that sum to escrow_balance.

    Zero-value payouts are dropped.
    """
    if split.recipient not in (seller, buyer):
        raise ValidationError(
            "dispute recipient must be the buyer or the seller of the trade",
            field="recipient",
        )
    if split.amount > escrow_balance:
        raise InvalidTransitionError(
            "DISPUTED",
            "resolve_dispute",
            reason=f"split {split.amount} exceeds escrow balance {escrow_balance}",
        )

    remainder = escrow_balance - split.amount
    if policy is RemainderPolicy.SELLER:
        remainder_to = seller
    elif policy is RemainderPolicy.BUYER:
        remainder_to = buyer
    else:
        remainder_to = buyer if split.recipient == seller else seller

    payouts: dict[str, int] = {}
    for recipient, amount in ((split.recipient, split.amount), (remainder_to, remainder)):
        if amount:
            payouts[recipient] = payouts.get(recipient, 0) + amount
    return list(payouts.items())
