# backend/portfolio_api/services/io_utils.py
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd
from loguru import logger

from portfolio_api.core.errors import SourceReadError

# ---------- Canonical header aliases ----------
_CANONICAL_ALIASES: Dict[str, set[str]] = {
    "name": {
        "particulars", "name", "stock", "stock name", "company", "company name",
        "security", "security name", "holding", "scrip",
    },
    "purchase_price": {
        "purchase price", "buy price", "avg price", "average price", "avg cost",
        "cost price", "cost",
    },
    "quantity": {
        "qty", "quantity", "shares", "# of shares", "units", "no of shares",
    },
    "exchange": {
        "nse/bse", "exchange", "exch", "listing", "market",
    },
}

CANONICAL_COLUMNS = list(_CANONICAL_ALIASES)
_NUMERIC_COLUMNS = ["purchase_price", "quantity"]
_EXCEL_SUFFIXES = (".xlsx", ".xlsm")

def _norm(s: Any) -> str:
    return re.sub(r"[^a-z0-9#]+", "", str(s).strip().lower())

_REV: Dict[str, str] = {}
for canon, aliases in _CANONICAL_ALIASES.items():
    for a in aliases:
        _REV[_norm(a)] = canon

def _map_headers(cols: List[Any]) -> List[str]:
    return [_REV.get(_norm(c), str(c)) for c in cols]

def _coerce_numeric_cols(df: pd.DataFrame, cols: list[str]) -> pd.DataFrame:
    for c in cols:
        if c in df.columns:
            df[c] = pd.to_numeric(
                df[c].astype(str).str.replace(",", "").str.strip(),
                errors="coerce",
            )
    return df

def _read_frame(path: Path, header_rows: int) -> pd.DataFrame:
    # header_rows title rows sit above the real header row
    suffix = path.suffix.lower()
    if suffix in _EXCEL_SUFFIXES:
        return pd.read_excel(path, sheet_name=0, header=header_rows)
    # sep=None sniffs the delimiter from the header row (skiprows lines are not sniffed)
    return pd.read_csv(path, skiprows=header_rows, header=0, encoding="utf-8-sig", sep=None, engine="python")


class SheetSource:
    """Reads holdings rows from an Excel workbook (first sheet) or a CSV file."""

    def __init__(self, path: str | Path, header_rows: int = 1):
        self.path = Path(path)
        self.header_rows = max(0, int(header_rows))

    def read_rows(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            raise SourceReadError(f"Portfolio file not found: {self.path}")
        if self.path.suffix.lower() == ".xls":
            raise SourceReadError(f"Legacy .xls workbooks are not supported, save {self.path.name} as .xlsx or .csv")
        try:
            df = _read_frame(self.path, self.header_rows)
        except Exception as e:
            logger.exception(f"Failed to read {self.path.name}: {e}")
            raise SourceReadError(f"Could not read {self.path.name}: {e}") from e

        original_cols = list(df.columns)
        df.columns = _map_headers(df.columns)
        if "name" not in df.columns:
            raise SourceReadError(
                f"No holdings name column in {self.path.name}; headers were {original_cols}"
            )
        df = df.loc[:, ~df.columns.duplicated()].copy()

        for col in CANONICAL_COLUMNS:
            if col not in df.columns:
                df[col] = None

        df = df[CANONICAL_COLUMNS].dropna(how="all")
        df = _coerce_numeric_cols(df, _NUMERIC_COLUMNS)
        df = df.astype(object).where(df.notna(), None)
        for c in ["name", "exchange"]:
            df[c] = df[c].apply(lambda x: x.strip() if isinstance(x, str) else x)

        logger.info(
            f"Loaded {len(df)} rows from {self.path.name}; "
            f"headers {original_cols} -> {list(df.columns)}"
        )
        return df.to_dict(orient="records")
