"""Percentage helpers."""

from __future__ import annotations

import math


def percentage(total: float, amount: float) -> float:
    """Return ``amount`` as a percentage of ``total``.

    Raises ``ValueError`` if ``amount`` exceeds ``total``. A zero total with a
    zero amount yields NaN.
    """
    if not total >= amount:
        raise ValueError(f"total must be >= amount; total={total}, amount={amount}")
    if total == 0:
        return math.nan
    return (amount / total) * 100.0


def percent_of(amount: int | float, total: int | float) -> int | float:
    """Return ``amount`` as a percentage of ``total``.

    Integer inputs give an integer result, truncated towards zero; an undefined
    percentage (zero of zero) is reported as ``0``. Float inputs give a float.
    """
    if isinstance(amount, int) and isinstance(total, int):
        result = percentage(float(total), float(amount))
        if math.isnan(result):
            return 0
        return int(result)
    return percentage(float(total), float(amount))