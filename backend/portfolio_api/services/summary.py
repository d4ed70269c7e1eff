from __future__ import annotations

from typing import Any, Dict, List, Optional

import pandas as pd

from portfolio_api.models.records import Snapshot

_NUMERIC = ["investment", "present_value", "gain_loss", "portfolio_share"]


def _opt(value: Any) -> Optional[float]:
    return None if pd.isna(value) else float(value)


def _sum_or_none(s: pd.Series) -> float:
    # NaN when every holding in the group is unpriced
    return s.sum(min_count=1)


def summarize(snapshot: Snapshot) -> Dict[str, Any]:
    """Portfolio totals plus one row per sector, in sheet order."""
    df = pd.DataFrame([h.model_dump() for h in snapshot.holdings])
    if df.empty:
        return {
            "totalInvestment": 0.0,
            "totalPresentValue": None,
            "totalGainLoss": None,
            "gainLossPercent": None,
            "holdingCount": 0,
            "pricedCount": 0,
            "sectors": [],
            "timestamp": snapshot.timestamp,
        }

    for c in _NUMERIC:
        df[c] = pd.to_numeric(df[c], errors="coerce")

    priced = df[df["present_value"].notna()]
    priced_investment = float(priced["investment"].sum())
    total_gl = _opt(_sum_or_none(priced["gain_loss"]))

    grouped = df.groupby("sector", sort=False).agg(
        investment=("investment", "sum"),
        presentValue=("present_value", _sum_or_none),
        gainLoss=("gain_loss", _sum_or_none),
        portfolioShare=("portfolio_share", "sum"),
        holdingCount=("name", "count"),
    )
    sectors: List[Dict[str, Any]] = [
        {
            "sector": sector,
            "investment": float(row["investment"]),
            "presentValue": _opt(row["presentValue"]),
            "gainLoss": _opt(row["gainLoss"]),
            "portfolioShare": float(row["portfolioShare"]),
            "holdingCount": int(row["holdingCount"]),
        }
        for sector, row in grouped.iterrows()
    ]

    return {
        "totalInvestment": float(df["investment"].sum()),
        "totalPresentValue": _opt(_sum_or_none(priced["present_value"])),
        "totalGainLoss": total_gl,
        "gainLossPercent": (total_gl / priced_investment * 100) if total_gl is not None and priced_investment > 0 else None,
        "holdingCount": int(len(df)),
        "pricedCount": int(len(priced)),
        "sectors": sectors,
        "timestamp": snapshot.timestamp,
    }
