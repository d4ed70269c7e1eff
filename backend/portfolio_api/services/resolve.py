from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from loguru import logger

# Sheet names -> Yahoo Finance tickers for the shipped sample portfolio
DEFAULT_SYMBOL_MAP: Dict[str, str] = {
    "HDFC Bank": "HDFCBANK.NS",
    "Bajaj Finance": "BAJFINANCE.NS",
    "ICICI Bank": "ICICIBANK.NS",
    "Affle India": "AFFLE.NS",
    "LTI Mindtree": "LTIM.NS",
    "KPIT Tech": "KPITTECH.NS",
    "Tata Tech": "TATATECH.NS",
    "BLS E-Services": "BLSE.NS",
    "Tanla": "TANLA.NS",
    "Dmart": "DMART.NS",
    "Tata Consumer": "TATACONSUM.NS",
    "Pidilite": "PIDILITIND.NS",
    "Tata Power": "TATAPOWER.NS",
    "KPI Green": "KPIGREEN.NS",
    "Suzlon": "SUZLON.NS",
    "Gensol": "GENSOL.NS",
    "Hariom Pipes": "HARIOMPIPE.NS",
    "Astral": "ASTRAL.NS",
    "Polycab": "POLYCAB.NS",
    "Clean Science": "CLEAN.NS",
    "Deepak Nitrite": "DEEPAKNTR.NS",
    "Fine Organic": "FINEORG.NS",
    "Gravita": "GRAVITA.NS",
    "SBI Life": "SBILIFE.NS",
    "Infy": "INFY.NS",
    "Happeist Mind": "HAPPSTMNDS.NS",
    "Easemytrip": "EASEMYTRIP.NS",
}


class SymbolResolver:
    """Read-only name -> ticker table. A missing name is not an error."""

    def __init__(self, mapping: Mapping[str, str]):
        table: Dict[str, str] = {}
        for name, symbol in mapping.items():
            key = name.strip()
            sym = symbol.strip().upper()
            if not key or not sym:
                continue
            if key in table and table[key] != sym:
                raise ValueError(f"Name {key!r} maps to both {table[key]} and {sym}")
            table[key] = sym
        self._table = table

    def resolve(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        return self._table.get(name.strip())

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) is not None

    @classmethod
    def from_json(cls, path: str | Path) -> "SymbolResolver":
        """Load a JSON object of name -> symbol. Conflicting duplicate keys are rejected."""

        def _pairs(pairs: List[Tuple[str, str]]) -> Dict[str, str]:
            out: Dict[str, str] = {}
            for k, v in pairs:
                if k in out and out[k] != v:
                    raise ValueError(f"Name {k!r} maps to both {out[k]} and {v}")
                out[k] = v
            return out

        with Path(path).open("r", encoding="utf-8") as f:
            data = json.load(f, object_pairs_hook=_pairs)
        if not isinstance(data, dict):
            raise ValueError(f"Symbol map {path} must be a JSON object")
        logger.info(f"Loaded {len(data)} symbol mappings from {path}")
        return cls(data)


def build_resolver(symbol_map_path: Optional[str] = None) -> SymbolResolver:
    if symbol_map_path:
        return SymbolResolver.from_json(symbol_map_path)
    return SymbolResolver(DEFAULT_SYMBOL_MAP)
