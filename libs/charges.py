"""Fixed charges (loyer, SEEG, abonnement…) – next due date selection.

Rule: the earliest *unpaid* due date at or after today. A charge whose due
date for the current period has passed, or that is already paid for the
current period, moves to its next period.
"""
from __future__ import annotations

import datetime as _dt
from typing import AbstractSet, Iterable, Optional

from dateutil.relativedelta import relativedelta

from libs.models import ChargeFrequency, FixedCharge

__all__ = ["next_due_date", "next_due_charge"]

_STEP_MONTHS = {
    ChargeFrequency.MONTHLY: 1,
    ChargeFrequency.QUARTERLY: 3,
    ChargeFrequency.YEARLY: 12,
}


def next_due_date(
    charge: FixedCharge,
    today: _dt.date,
    paid_this_period: bool = False,
) -> _dt.date:
    """Next due date of *charge*; ``day=`` in relativedelta clamps 31 → month end."""
    step = _STEP_MONTHS[charge.frequency]
    anchor = charge.start_date or today
    months_since = (today.year - anchor.year) * 12 + today.month - anchor.month
    period_start = anchor.replace(day=1) + relativedelta(months=(months_since // step) * step)

    due = period_start + relativedelta(day=charge.due_day)
    if paid_this_period or due < today:
        due = period_start + relativedelta(months=step, day=charge.due_day)
    while charge.start_date and due < charge.start_date:
        period_start += relativedelta(months=step)
        due = period_start + relativedelta(day=charge.due_day)
    return due


def next_due_charge(
    charges: Iterable[FixedCharge],
    today: _dt.date,
    paid_ids: AbstractSet[str] = frozenset(),
) -> Optional[tuple[FixedCharge, _dt.date]]:
    """Active charge with the earliest upcoming due date (ties → by name)."""
    upcoming = [
        (next_due_date(c, today, c.id in paid_ids), c)
        for c in charges
        if c.is_active
    ]
    if not upcoming:
        return None
    due, charge = min(upcoming, key=lambda item: (item[0], item[1].name))
    return charge, due
