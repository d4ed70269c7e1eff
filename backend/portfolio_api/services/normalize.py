import math
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence

from loguru import logger

from portfolio_api.models.records import Holding

SECTOR_MARKER = "Sector"
UNKNOWN_SECTOR = "Unknown"


def usable_number(value: Any) -> Optional[float]:
    """Positive finite number from a sheet cell, else None (blank, text, NaN, <= 0)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, str):
            value = value.replace(",", "").strip()
        n = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(n) or n <= 0:
        return None
    return n


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    s = str(value).strip()
    return s or None


def is_sector_marker(name: Optional[str], price: Optional[float], qty: Optional[float]) -> bool:
    return price is None and qty is None and bool(name) and SECTOR_MARKER in name


class HoldingRows:
    """
    Holdings view over raw sheet rows.

    Each row is either a sector marker (switches the running sector), a skipped
    row (no name, or no quantity to hold), or a holding in the current sector.
    Iteration is lazy and can be repeated; every pass starts from "Unknown".
    """

    def __init__(self, rows: Iterable[Mapping[str, Any]]):
        self._rows: Sequence[Mapping[str, Any]] = rows if isinstance(rows, Sequence) else tuple(rows)

    def __iter__(self) -> Iterator[Holding]:
        sector = UNKNOWN_SECTOR
        for i, row in enumerate(self._rows):
            name = clean_text(row.get("name"))
            price = usable_number(row.get("purchase_price"))
            qty = usable_number(row.get("quantity"))

            if is_sector_marker(name, price, qty):
                sector = name
                continue

            if not name or qty is None:
                logger.debug(f"Skipping row {i}: name={name!r} price={price} qty={qty}")
                continue

            yield Holding(
                name=name,
                purchase_price=price or 0.0,
                quantity=qty,
                exchange=clean_text(row.get("exchange")) or "",
                sector=sector,
            )
