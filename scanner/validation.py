"""
Validation functions for book and quote data at ingestion boundaries.

Provides validate_price(), validate_cents_price(), validate_size() and
validate_book() that raise ValueError on invalid data (NaN, Inf, negative,
out-of-range). Call these wherever connector data enters the core.
"""

from __future__ import annotations

import math

from scanner.models import OrderBookSnapshot


def _check_finite(x: float, context: str) -> None:
    if math.isnan(x):
        raise ValueError(f"Invalid {context}: NaN")
    if math.isinf(x):
        raise ValueError(f"Invalid {context}: Inf")


def validate_price(p: float, context: str = "price") -> float:
    """
    Validate a probability-scale price is within [0.0, 1.0] and finite.

    Raises:
        ValueError: If price is NaN, infinite, negative, or > 1.0.
    """
    _check_finite(p, context)
    if p < 0.0:
        raise ValueError(f"Invalid {context}: negative value {p}")
    if p > 1.0:
        raise ValueError(f"Invalid {context}: {p} out of range [0.0, 1.0]")
    return p


def validate_cents_price(p: float, context: str = "price") -> float:
    """Validate a cents-quoted price is within [0, 100] and finite."""
    _check_finite(p, context)
    if p < 0.0 or p > 100.0:
        raise ValueError(f"Invalid {context}: {p} cents out of range [0, 100]")
    return p


def validate_size(s: float, context: str = "size") -> float:
    """
    Validate a size/quantity value is non-negative and finite.

    Raises:
        ValueError: If size is NaN, infinite, or negative.
    """
    _check_finite(s, context)
    if s < 0.0:
        raise ValueError(f"Invalid {context}: negative value {s}")
    return s


def validate_book(book: OrderBookSnapshot) -> OrderBookSnapshot:
    """Validate every numeric field of a snapshot in its own price unit."""
    check = validate_cents_price if book.price_unit == "cents" else validate_price
    where = f"{book.venue}:{book.question_id}"
    if book.price_unit not in ("probability", "cents"):
        raise ValueError(f"Invalid price unit for {where}: {book.price_unit!r}")
    if book.bid_price is not None:
        check(book.bid_price, f"bid price for {where}")
    if book.ask_price is not None:
        check(book.ask_price, f"ask price for {where}")
    validate_size(book.bid_size, f"bid size for {where}")
    validate_size(book.ask_size, f"ask size for {where}")
    return book
