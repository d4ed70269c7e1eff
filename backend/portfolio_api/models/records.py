from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Holding(BaseModel):
    """One position from the sheet. Immutable; enrichment works on copies."""

    name: str
    purchase_price: float = Field(default=0.0, alias="purchasePrice")
    quantity: float = 0.0
    exchange: str = ""
    sector: str = "Unknown"
    symbol: Optional[str] = None
    current_price: Optional[float] = Field(default=None, alias="currentPrice")
    pe_ratio: Optional[float] = Field(default=None, alias="peRatio")
    latest_earnings: Optional[float] = Field(default=None, alias="latestEarnings")
    portfolio_share: float = Field(default=0.0, alias="portfolioShare")

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    @computed_field(alias="investment")
    @property
    def investment(self) -> float:
        return self.purchase_price * self.quantity

    @computed_field(alias="presentValue")
    @property
    def present_value(self) -> Optional[float]:
        if self.current_price is None:
            return None
        return self.current_price * self.quantity

    @computed_field(alias="gainLoss")
    @property
    def gain_loss(self) -> Optional[float]:
        pv = self.present_value
        if pv is None:
            return None
        return pv - self.investment


class MarketRecord(BaseModel):
    symbol: str
    current_price: Optional[float] = None
    pe_ratio: Optional[float] = None
    earnings: Optional[float] = None  # trailing EPS
    source: str = ""

    model_config = ConfigDict(frozen=True)


class Fundamentals(BaseModel):
    pe_ratio: Optional[float] = None
    earnings: Optional[float] = None

    model_config = ConfigDict(frozen=True)

    def is_empty(self) -> bool:
        return self.pe_ratio is None and self.earnings is None


class Snapshot(BaseModel):
    """Result of one enrichment run."""

    holdings: Tuple[Holding, ...] = ()
    built_at: datetime
    generation: int = 0

    model_config = ConfigDict(frozen=True)

    @property
    def total_investment(self) -> float:
        return sum(h.investment for h in self.holdings)

    @property
    def timestamp(self) -> str:
        return self.built_at.isoformat()

    def to_rows(self) -> List[Dict[str, Any]]:
        return [h.model_dump(by_alias=True) for h in self.holdings]
