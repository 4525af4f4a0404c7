"""Deterministic cost totals.

``recompute_total`` is the only place a ``totalCost`` is produced. Totals a
model reports are discarded and replaced with this sum over the local price
table, so arithmetic never depends on the model.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping


class PriceTable(Mapping[str, float]):
    """Read-only, case-insensitive product name → unit price mapping."""

    def __init__(self, prices: Mapping[str, float] | None = None) -> None:
        self._prices: dict[str, float] = {}
        self._names: dict[str, str] = {}
        for name, price in (prices or {}).items():
            key = name.strip().casefold()
            self._prices[key] = float(price)
            self._names[key] = name.strip()

    def __getitem__(self, name: str) -> float:
        return self._prices[name.strip().casefold()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().casefold() in self._prices

    def __iter__(self) -> Iterator[str]:
        return iter(self._names.values())

    def __len__(self) -> int:
        return len(self._prices)

    def price_of(self, name: str, default: float) -> float:
        return self._prices.get(name.strip().casefold(), default)

    def as_dict(self) -> dict[str, float]:
        """Original-cased copy, used when the table is shown to the model."""
        return {self._names[k]: v for k, v in self._prices.items()}


def recompute_total(
    items: Iterable[str],
    prices: Mapping[str, float],
    default_price: float,
) -> float:
    """Sum unit prices over ``items``, using ``default_price`` for unknown names.

    Duplicated items are charged once per occurrence. The sum is exact up to
    float precision and does not depend on item order; rounding to cents is
    left to whatever displays it.
    """
    table = prices if isinstance(prices, PriceTable) else PriceTable(prices)
    return math.fsum(table.price_of(item, default_price) for item in items)


def fits_budget(total: float, ceiling: float) -> bool:
    """True when ``total``, taken to the cent, does not exceed ``ceiling``."""
    return round(total, 2) <= ceiling
