"""Pure functions computing normalized price ranges.

The helpers operate on *tidy* DataFrames with one row per observation and the
columns ``timestamp``, ``symbol`` and ``price``.  Results are tidy DataFrames
with columns ``symbol`` and ``normalized_range``.
"""

from __future__ import annotations

from typing import Iterable, Optional

import numpy as np
import pandas as pd

from crypto_recommendation.models import NormalizedRange, PriceObservation

OBSERVATION_COLUMNS = ["timestamp", "symbol", "price"]
RESULT_COLUMNS = ["symbol", "normalized_range"]


def observations_frame(observations: Iterable[PriceObservation]) -> pd.DataFrame:
    """Return ``observations`` as a tidy DataFrame.

    Examples
    --------
    >>> from datetime import datetime, timezone
    >>> obs = [PriceObservation(datetime(2022, 1, 1, tzinfo=timezone.utc), "BTC", 1.0)]
    >>> observations_frame(obs)[["symbol", "price"]]
      symbol  price
    0    BTC    1.0
    """

    records = [(obs.timestamp, obs.symbol, float(obs.price)) for obs in observations]
    frame = pd.DataFrame.from_records(records, columns=OBSERVATION_COLUMNS)
    return frame.astype({"symbol": "object", "price": "float64"})


def normalized_range(prices: pd.DataFrame) -> pd.DataFrame:
    """Compute ``(max - min) / min`` per symbol.

    Parameters
    ----------
    prices:
        Tidy observations with at least ``symbol`` and ``price`` columns.

    Returns
    -------
    DataFrame
        Columns ``symbol`` and ``normalized_range`` in first-seen symbol order.
        Symbols whose minimum price is zero, or whose range overflows to
        infinity, are omitted instead of producing a non-finite value.

    Examples
    --------
    >>> prices = pd.DataFrame({"symbol": ["A", "A", "B", "B"],
    ...                        "price": [100.0, 200.0, 0.0, 5.0]})
    >>> normalized_range(prices)
      symbol  normalized_range
    0      A               1.0
    """

    if prices.empty:
        return pd.DataFrame(columns=RESULT_COLUMNS).astype({"normalized_range": "float64"})

    bounds = prices.groupby("symbol", sort=False)["price"].agg(["min", "max"])
    bounds = bounds[bounds["min"] > 0]
    ranges = (bounds["max"] - bounds["min"]) / bounds["min"]
    ranges = ranges[np.isfinite(ranges)]
    return (
        ranges.rename("normalized_range")
        .rename_axis("symbol")
        .reset_index()
        .astype({"normalized_range": "float64"})
    )


def rank_normalized_ranges(prices: pd.DataFrame) -> pd.DataFrame:
    """Return :func:`normalized_range` sorted in descending order.

    A stable sort is used so ties keep first-seen symbol order.
    """

    ranges = normalized_range(prices)
    return ranges.sort_values(
        "normalized_range", ascending=False, kind="mergesort"
    ).reset_index(drop=True)


def highest_normalized_range(prices: pd.DataFrame) -> Optional[NormalizedRange]:
    """Return the symbol with the largest normalized range, or ``None``.

    ``None`` means no symbol had a strictly positive minimum price.  Ties are
    resolved in favour of the first symbol encountered.
    """

    ranges = normalized_range(prices)
    if ranges.empty:
        return None
    row = ranges.loc[ranges["normalized_range"].idxmax()]
    return NormalizedRange(
        symbol=str(row["symbol"]), normalized_range=float(row["normalized_range"])
    )


def to_results(ranges: pd.DataFrame) -> list[NormalizedRange]:
    """Convert a result frame into :class:`NormalizedRange` objects."""

    return [
        NormalizedRange(symbol=str(symbol), normalized_range=float(value))
        for symbol, value in zip(ranges["symbol"], ranges["normalized_range"])
    ]


__all__ = [
    "OBSERVATION_COLUMNS",
    "RESULT_COLUMNS",
    "highest_normalized_range",
    "normalized_range",
    "observations_frame",
    "rank_normalized_ranges",
    "to_results",
]
