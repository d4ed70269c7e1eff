from io import BytesIO

import pandas as pd

from portfolio_api.models.records import Snapshot

# Column order: sheet inputs first, then market data and derived fields
PREFERRED = [
    "name", "sector", "exchange", "symbol", "purchasePrice", "quantity", "investment",
    "portfolioShare", "currentPrice", "presentValue", "gainLoss", "peRatio", "latestEarnings",
]


def to_csv_bytes(snapshot: Snapshot) -> bytes:
    df = pd.DataFrame(snapshot.to_rows(), columns=None if snapshot.holdings else PREFERRED)
    cols = [c for c in PREFERRED if c in df.columns] + [c for c in df.columns if c not in PREFERRED]
    df = df[cols]
    bio = BytesIO()
    df.to_csv(bio, index=False)
    return bio.getvalue()
