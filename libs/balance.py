"""Balance sufficiency rules for payment methods.

The pure check here is *advisory* (UI warning before confirming). The commit
path re-validates atomically in :func:`db.repository.apply_balance_delta`.
"""
from __future__ import annotations

from typing import Iterable, Optional

from libs.models import BalanceCheck

__all__ = ["InsufficientBalance", "check_balance", "current_balance"]


class InsufficientBalance(Exception):
    """A debit would push a no-overdraft payment method below zero."""

    def __init__(self, check: BalanceCheck) -> None:
        super().__init__(check.message)
        self.check = check


def check_balance(
    current: int,
    signed_amount: int,
    allow_negative_balance: bool,
    account_name: Optional[str] = None,
) -> BalanceCheck:
    """Decide whether *signed_amount* may be applied to a balance of *current*.

    Only outflows (negative amounts) are ever refused, and only when the
    payment method does not allow a negative balance.
    """
    allowed = (
        signed_amount >= 0
        or allow_negative_balance
        or current + signed_amount >= 0
    )
    return BalanceCheck(
        allowed=allowed,
        current_balance=current,
        requested_amount=abs(signed_amount),
        account_name=account_name,
    )


def current_balance(initial_balance: int, amounts: Iterable[int]) -> int:
    """initial_balance + Σ(signed transaction amounts)."""
    return initial_balance + sum(amounts)
