"""
services/remainder.py: Largest-remainder (Hamilton) apportionment.

This file is the SINGLE place where fractional cents are turned into whole
cents. Resolvers and the receipt allocator compute exact rational shares and
hand them here; nothing else in the codebase rounds money.

Algorithm:
  1. Truncate every raw share down to whole cents.
  2. remainder = total - sum(truncated).
  3. Award one extra cent to the `remainder` shares with the largest
     discarded fractional part. Ties go to the earlier key in input order.

Guarantees:
  - sum(result.values()) == total exactly.
  - No share receives more than one extra cent.
  - Same input (including key order) → same output. Nothing is random.

Layer rules:
  - Pure function. No Flask, no session, no shared state.
"""

from __future__ import annotations

import math
from decimal import Decimal
from fractions import Fraction
from typing import Mapping, Union

from tabsplit.app.errors import AppError, ErrorCode

RawShare = Union[int, Fraction, Decimal]


def distribute_remainder(total: int, raw_shares: Mapping[str, RawShare]) -> dict[str, int]:
    """
    Apportions `total` whole cents over `raw_shares`.

    Args:
        total:      The integer the result must sum to.
        raw_shares: {key: exact share} in tie-break order. The exact shares are
                    expected to sum to `total`; anything that leaves a remainder
                    outside [0, len(raw_shares)] is a caller bug.

    Returns:
        {key: cents} in the same key order as `raw_shares`.

    Raises:
        AppError(INTERNAL_ERROR, 500) if a raw share is negative or the
        shares cannot be apportioned to `total` with at most one extra cent each.
    """
    exact = {key: Fraction(value) for key, value in raw_shares.items()}

    negative = [key for key, value in exact.items() if value < 0]
    if negative:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Cannot apportion negative raw shares for {negative}.",
            500,
        )

    floors = {key: math.floor(value) for key, value in exact.items()}
    remainder = total - sum(floors.values())

    if remainder < 0 or remainder > len(exact):
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Raw shares do not apportion to {total}: "
            f"{remainder} cents left over for {len(exact)} shares. "
            f"This is a bug.",
            500,
        )

    # sorted() is stable, so equal fractional parts keep input order.
    by_fraction = sorted(
        exact,
        key=lambda key: exact[key] - floors[key],
        reverse=True,
    )
    result = dict(floors)
    for key in by_fraction[:remainder]:
        result[key] += 1

    return result
